"""Inbound message handling: dedupe, decide, persist, open complaint, reply.

The reply is always attempted, even when persistence fails, so the sender
never goes unanswered. A redelivered message id is acknowledged without
processing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal, Protocol

from jarvis.domain.complaints import new_complaint
from jarvis.domain.errors import ErrorCode
from jarvis.domain.models import Complaint, InboundMessage, MessageOutcome
from jarvis.domain.orchestrator import MessageOrchestrator
from jarvis.infra.time import utc_now
from jarvis.notifications.notifier import COMPLAINT_CREATED, Notifier
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)


class MessageStore(Protocol):
    def claim(self, message: InboundMessage) -> bool:
        """Record the message id. False if it was already seen."""
        ...

    def record_outcome(
        self, message_id: str, outcome: MessageOutcome, complaint: Complaint | None
    ) -> None:
        ...


class ReplySender(Protocol):
    def send_bilingual(self, phone: str, fr: str, ar: str) -> None:
        ...


@dataclass(frozen=True)
class IntakeResult:
    status: Literal["processed", "duplicate"]
    outcome: MessageOutcome | None = None
    complaint_id: str | None = None
    persisted: bool = False
    reply_sent: bool = False


def should_open_complaint(outcome: MessageOutcome) -> bool:
    """Complaint detected on a well-formed contract that was not reported missing."""
    return (
        outcome.has_complaint
        and outcome.contract_number is not None
        and outcome.is_valid_format
        and outcome.error_code != ErrorCode.CONTRACT_NOT_FOUND.value
    )


def build_complaint(message: InboundMessage, outcome: MessageOutcome, now: datetime) -> Complaint:
    return new_complaint(
        phone=message.phone,
        contract_number=outcome.contract_number or "",
        complaint_type=outcome.complaint_type or "general",
        description=message.text,
        priority=outcome.complaint_priority,
        now=now,
        contractor_name=message.sender_name,
        message_id=message.message_id,
    )


def handle_inbound(
    message: InboundMessage,
    *,
    orchestrator: MessageOrchestrator,
    messages: MessageStore,
    sender: ReplySender | None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> IntakeResult:
    log_ctx = safe_log_context(
        message_id=message.message_id, sender_hash=hash_identifier(message.phone)
    )

    if not messages.claim(message):
        logger.info("duplicate message ignored", extra={"extra_fields": log_ctx})
        return IntakeResult(status="duplicate")

    outcome = orchestrator.process(message)

    complaint = build_complaint(message, outcome, clock()) if should_open_complaint(outcome) else None

    persisted = False
    try:
        messages.record_outcome(message.message_id, outcome, complaint)
        persisted = True
    except Exception:
        logger.exception("failed to persist message outcome", extra={"extra_fields": log_ctx})

    if complaint is not None and persisted:
        logger.info(
            "complaint opened",
            extra={
                "extra_fields": {
                    **log_ctx,
                    "complaint_id": complaint.id,
                    "complaint_type": complaint.complaint_type,
                    "priority": complaint.priority,
                }
            },
        )
        if notifier is not None:
            try:
                notifier.notify(
                    COMPLAINT_CREATED,
                    complaint.id,
                    {"complaint_type": complaint.complaint_type, "priority": complaint.priority},
                )
            except Exception:
                logger.exception(
                    "notification failed",
                    extra={"extra_fields": {**log_ctx, "complaint_id": complaint.id}},
                )

    reply_sent = False
    if sender is None:
        logger.warning("no reply sender configured, reply not sent", extra={"extra_fields": log_ctx})
    else:
        try:
            sender.send_bilingual(message.phone, outcome.response_fr, outcome.response_ar)
            reply_sent = True
        except Exception:
            logger.exception("failed to send reply", extra={"extra_fields": log_ctx})

    return IntakeResult(
        status="processed",
        outcome=outcome,
        complaint_id=complaint.id if complaint is not None and persisted else None,
        persisted=persisted,
        reply_sent=reply_sent,
    )
