"""Time-driven escalation of unresolved complaints.

A sweep looks at every complaint in open/assigned and applies the first
matching rule:

1. Ticket handoff: no ticket yet and age >= TICKET_THRESHOLD_HOURS[priority]
2. Reminder: first unsent REMINDER_HOURS[priority] threshold already reached
3. Priority bump: age >= PRIORITY_BUMP_HOURS[priority] and priority != high
4. Otherwise skipped

Rules are keyed by the complaint's current priority. Each complaint is
handled in isolation: a failure is logged and reported as skipped, and the
sweep moves on. Only one sweep runs at a time per scheduler.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, Callable, Protocol

from jarvis.domain.complaints import ACTIVE_STATUSES, next_priority
from jarvis.domain.models import Complaint, EscalationResult, Priority, Ticket
from jarvis.infra.time import utc_now
from jarvis.notifications.notifier import (
    COMPLAINT_ESCALATED,
    COMPLAINT_REMINDER,
    PRIORITY_CHANGED,
    UNASSIGNED_COMPLAINT_REMINDER,
    Notifier,
)
from jarvis.observability.correlation import correlation_scope
from jarvis.observability.logging import get_logger
from jarvis.observability.metrics import MetricsSink, NullMetrics
from jarvis.observability.redaction import safe_log_context
from jarvis.tickets.service import TicketService

logger = get_logger(__name__)

TICKET_THRESHOLD_HOURS: dict[Priority, float] = {"high": 8, "medium": 48, "low": 168}
REMINDER_HOURS: dict[Priority, tuple[int, ...]] = {
    "high": (2, 4, 6),
    "medium": (12, 24, 36),
    "low": (24, 48, 72),
}
PRIORITY_BUMP_HOURS: dict[Priority, float] = {"high": 4, "medium": 24, "low": 72}


def reminder_marker(threshold_hours: int) -> str:
    return f"reminder_{threshold_hours}h"


class ComplaintStore(Protocol):
    """Persistence used by the sweep. Every write is guarded on current state.

    Guarded writes return False when the complaint changed underneath
    (another process escalated, resolved, or already recorded it).
    """

    def list_for_escalation(self) -> list[Complaint]:
        """Complaints in open/assigned, with reminders_sent and has_ticket loaded."""
        ...

    def attach_ticket(self, complaint_id: str, ticket: Ticket, now: datetime) -> bool:
        """Insert the ticket and move the complaint to escalated, atomically."""
        ...

    def record_reminder(
        self, complaint_id: str, threshold_hours: int, note: str, now: datetime
    ) -> bool:
        ...

    def bump_priority(
        self,
        complaint_id: str,
        old_priority: Priority,
        new_priority: Priority,
        note: str,
        now: datetime,
    ) -> bool:
        ...


class EscalationScheduler:
    def __init__(
        self,
        store: ComplaintStore,
        tickets: TicketService,
        notifier: Notifier,
        metrics: MetricsSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._tickets = tickets
        self._notifier = notifier
        self._metrics = metrics or NullMetrics()
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run_sweep(self) -> list[EscalationResult] | None:
        """Run one sweep. Returns None if another sweep is in progress."""
        if not self._lock.acquire(blocking=False):
            logger.info("escalation sweep already running, skipping")
            self._metrics.increment("escalation.sweeps", outcome="overlap")
            return None

        try:
            with correlation_scope(prefix="sweep-"):
                return self._sweep()
        finally:
            self._lock.release()

    def _sweep(self) -> list[EscalationResult]:
        now = self._clock()
        complaints = self._store.list_for_escalation()
        logger.info(
            "escalation sweep started",
            extra={"extra_fields": safe_log_context(candidates=len(complaints))},
        )

        results = [self._evaluate_isolated(complaint, now) for complaint in complaints]

        counts = {"escalated": 0, "reminded": 0, "skipped": 0}
        for result in results:
            counts[result.action] += 1
            self._metrics.increment("escalation.actions", action=result.action)
        self._metrics.increment("escalation.sweeps", outcome="completed")

        logger.info(
            "escalation sweep completed",
            extra={"extra_fields": safe_log_context(total=len(results), **counts)},
        )
        return results

    def _evaluate_isolated(self, complaint: Complaint, now: datetime) -> EscalationResult:
        try:
            return self.evaluate(complaint, now)
        except Exception as e:
            logger.exception(
                "escalation failed for complaint",
                extra={"extra_fields": safe_log_context(complaint_id=complaint.id)},
            )
            return EscalationResult(
                complaint_id=complaint.id,
                action="skipped",
                reason=f"Escalation error: {type(e).__name__}",
            )

    def evaluate(self, complaint: Complaint, now: datetime) -> EscalationResult:
        """Apply the first matching rule to one complaint."""
        if complaint.status not in ACTIVE_STATUSES:
            return EscalationResult(
                complaint_id=complaint.id,
                action="skipped",
                reason=f"Complaint is {complaint.status}",
            )

        age_hours = complaint.age_hours(now)
        has_ticket = complaint.escalated_to_orange or complaint.has_ticket

        if not has_ticket and age_hours >= TICKET_THRESHOLD_HOURS[complaint.priority]:
            return self._escalate_to_ticket(complaint, age_hours, now)

        reminded = self._maybe_remind(complaint, age_hours, now)
        if reminded is not None:
            return reminded

        if complaint.priority != "high" and age_hours >= PRIORITY_BUMP_HOURS[complaint.priority]:
            return self._bump_priority(complaint, age_hours, now)

        return EscalationResult(
            complaint_id=complaint.id, action="skipped", reason="No escalation needed"
        )

    def _escalate_to_ticket(
        self, complaint: Complaint, age_hours: float, now: datetime
    ) -> EscalationResult:
        ticket = self._tickets.create_for(complaint)

        if not self._store.attach_ticket(complaint.id, ticket, now):
            # Someone else escalated or resolved it since we listed it
            return EscalationResult(
                complaint_id=complaint.id,
                action="skipped",
                reason="Complaint already escalated or closed",
            )

        self._notify(
            COMPLAINT_ESCALATED,
            complaint,
            {
                "ticket_id": ticket.id,
                "orange_ticket_id": ticket.orange_ticket_id,
                "priority": complaint.priority,
                "complaint_type": complaint.complaint_type,
            },
            recipient=complaint.assigned_to,
        )
        logger.info(
            "complaint escalated to ticket",
            extra={
                "extra_fields": safe_log_context(
                    complaint_id=complaint.id,
                    ticket_id=ticket.id,
                    local_only=ticket.is_local,
                    age_hours=round(age_hours, 1),
                )
            },
        )
        return EscalationResult(
            complaint_id=complaint.id,
            action="escalated",
            reason=f"Auto-escalated to Orange after {age_hours:.1f} hours",
            details={"ticketId": ticket.id, "orangeTicketId": ticket.orange_ticket_id},
        )

    def _maybe_remind(
        self, complaint: Complaint, age_hours: float, now: datetime
    ) -> EscalationResult | None:
        for threshold in REMINDER_HOURS[complaint.priority]:
            if threshold in complaint.reminders_sent:
                continue
            if age_hours < threshold:
                return None

            note = f"[{reminder_marker(threshold)}] Automatic reminder sent"
            if not self._store.record_reminder(complaint.id, threshold, note, now):
                return EscalationResult(
                    complaint_id=complaint.id,
                    action="skipped",
                    reason=f"{threshold}h reminder already recorded",
                )

            payload = {"interval_hours": threshold, "priority": complaint.priority}
            if complaint.assigned_to:
                self._notify(
                    COMPLAINT_REMINDER, complaint, payload, recipient=complaint.assigned_to
                )
            else:
                self._notify(UNASSIGNED_COMPLAINT_REMINDER, complaint, payload)

            return EscalationResult(
                complaint_id=complaint.id,
                action="reminded",
                reason=f"Sent {threshold}h reminder",
                details={"interval": threshold, "ageHours": round(age_hours, 1)},
            )
        return None

    def _bump_priority(
        self, complaint: Complaint, age_hours: float, now: datetime
    ) -> EscalationResult:
        old_priority = complaint.priority
        new_priority = next_priority(old_priority)
        note = (
            f"Priority auto-escalated from {old_priority} to {new_priority} "
            f"after {age_hours:.1f} hours"
        )

        if not self._store.bump_priority(complaint.id, old_priority, new_priority, note, now):
            return EscalationResult(
                complaint_id=complaint.id,
                action="skipped",
                reason="Priority already changed",
            )

        self._notify(
            PRIORITY_CHANGED,
            complaint,
            {"old_priority": old_priority, "new_priority": new_priority},
            recipient=complaint.assigned_to,
        )
        return EscalationResult(
            complaint_id=complaint.id,
            action="escalated",
            reason=f"Priority escalated from {old_priority} to {new_priority}",
            details={"oldPriority": old_priority, "newPriority": new_priority},
        )

    def _notify(
        self,
        event: str,
        complaint: Complaint,
        payload: dict[str, Any],
        recipient: str | None = None,
    ) -> None:
        try:
            self._notifier.notify(event, complaint.id, payload, recipient=recipient)
        except Exception:
            logger.exception(
                "notification failed",
                extra={"extra_fields": safe_log_context(event=event, complaint_id=complaint.id)},
            )


def escalation_status(complaint: Complaint, now: datetime) -> dict[str, Any]:
    """Age, hours until the next priority-based step, and what it will be."""
    age_hours = complaint.age_hours(now)

    if complaint.status not in ACTIVE_STATUSES:
        return {"age_hours": age_hours, "next_escalation_in": None, "will_escalate_to": None}

    threshold = PRIORITY_BUMP_HOURS[complaint.priority]
    if age_hours >= threshold:
        return {
            "age_hours": age_hours,
            "next_escalation_in": 0.0,
            "will_escalate_to": None if complaint.escalated_to_orange else "Orange",
        }

    if complaint.priority == "high":
        target = "Orange"
    else:
        target = f"Priority {next_priority(complaint.priority)}"
    return {
        "age_hours": age_hours,
        "next_escalation_in": threshold - age_hours,
        "will_escalate_to": target,
    }
