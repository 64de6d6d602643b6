"""Shared authentication for internal task endpoints.

Callers (cron, Cloud Scheduler, operators) send the shared secret in
X-Internal-Task-Secret. Fail-closed when INTERNAL_TASK_SECRET is not set.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request

from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)

TASK_SECRET_HEADER = "X-Internal-Task-Secret"


def verify_task_auth(request: Request) -> bool:
    """Check the internal task secret header.

    Args:
        request: FastAPI request object.

    Returns:
        True if the header matches INTERNAL_TASK_SECRET, False otherwise.
    """
    expected = os.environ.get("INTERNAL_TASK_SECRET", "")
    if not expected:
        logger.error(
            "INTERNAL_TASK_SECRET not configured - fail closed",
            extra={"extra_fields": safe_log_context(reason="missing_secret_env")},
        )
        return False

    provided = request.headers.get(TASK_SECRET_HEADER, "")
    if not provided:
        logger.warning(
            "task auth failed: missing secret header",
            extra={"extra_fields": safe_log_context(reason="missing_header")},
        )
        return False

    return hmac.compare_digest(provided, expected)
