"""Correlation IDs for tracing one inbound message or one sweep across logs."""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

# Shared by webhook requests, worker tasks and the periodic sweep thread
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id(prefix: str = "") -> str:
    """Generate a new correlation ID, optionally prefixed (e.g. "sweep-")."""
    return f"{prefix}{uuid.uuid4()}"


def get_correlation_id() -> str:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def set_correlation_id(cid: str) -> Token[str]:
    """Set correlation ID in context."""
    return correlation_id_var.set(cid)


def reset_correlation_id(token: Token[str]) -> None:
    """Reset correlation ID to previous value."""
    correlation_id_var.reset(token)


@contextmanager
def correlation_scope(cid: str | None = None, *, prefix: str = "") -> Iterator[str]:
    """Bind a correlation ID for the duration of a block.

    Used outside HTTP requests (scheduler thread), where no middleware
    sets one.
    """
    value = cid or generate_correlation_id(prefix)
    token = set_correlation_id(value)
    try:
        yield value
    finally:
        reset_correlation_id(token)
