"""Staff notifications about complaint lifecycle events.

The escalation workflow only calls Notifier.notify(); delivery (email,
websocket, dashboard) happens elsewhere. A failed notify never changes
complaint or ticket state.
"""

from __future__ import annotations

from typing import Any, Protocol

from jarvis.infra.db import txn
from jarvis.infra.repositories.outbox_repository import enqueue_complaint_event
from jarvis.observability.correlation import get_correlation_id
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)

COMPLAINT_ESCALATED = "complaint_escalated"
PRIORITY_CHANGED = "priority_changed"
COMPLAINT_REMINDER = "complaint_reminder"
UNASSIGNED_COMPLAINT_REMINDER = "unassigned_complaint_reminder"
COMPLAINT_CREATED = "complaint_created"


class Notifier(Protocol):
    def notify(
        self,
        event: str,
        complaint_id: str,
        payload: dict[str, Any],
        recipient: str | None = None,
    ) -> None:
        ...


class LoggingNotifier:
    """Writes notifications to the log only (dev, tests)."""

    def notify(
        self,
        event: str,
        complaint_id: str,
        payload: dict[str, Any],
        recipient: str | None = None,
    ) -> None:
        logger.info(
            "notification",
            extra={
                "extra_fields": safe_log_context(
                    event=event,
                    complaint_id=complaint_id,
                    recipient=recipient or "unassigned_queue",
                    **payload,
                )
            },
        )


class OutboxNotifier:
    """Stores notifications in outbox_events for a delivery worker."""

    def notify(
        self,
        event: str,
        complaint_id: str,
        payload: dict[str, Any],
        recipient: str | None = None,
    ) -> None:
        with txn() as cur:
            event_id = enqueue_complaint_event(
                cur,
                event,
                complaint_id,
                recipient=recipient,
                payload=payload,
                correlation_id=get_correlation_id() or None,
            )
        logger.info(
            "notification queued",
            extra={
                "extra_fields": safe_log_context(
                    event=event, complaint_id=complaint_id, outbox_event_id=event_id
                )
            },
        )
