"""In-memory fakes for the domain protocols (no Postgres, no network)."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from jarvis.domain.errors import ContractNotFoundError
from jarvis.domain.models import (
    AnalysisResult,
    Complaint,
    ContractStatus,
    InboundMessage,
    MessageOutcome,
    Ticket,
)

T0 = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_message(text: str, message_id: str = "MSG001", phone: str = "+212612345678") -> InboundMessage:
    return InboundMessage(message_id=message_id, phone=phone, text=text, received_at=T0)


def make_complaint(
    complaint_id: str = "c-1",
    *,
    priority: str = "medium",
    status: str = "open",
    age_hours: float = 0,
    now: datetime = T0,
    **kwargs: Any,
) -> Complaint:
    created = now - timedelta(hours=age_hours)
    return Complaint(
        id=complaint_id,
        phone=kwargs.pop("phone", "+212612345678"),
        contract_number="F0823846D",
        complaint_type=kwargs.pop("complaint_type", "delay"),
        description="retard installation",
        priority=priority,  # type: ignore[arg-type]
        status=status,  # type: ignore[arg-type]
        created_at=created,
        updated_at=created,
        **kwargs,
    )


class StaticAnalyzer:
    """Analyzer returning a fixed result, or raising a fixed error."""

    def __init__(self, result: AnalysisResult | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = 0

    def analyze(self, message: str) -> AnalysisResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        assert self.result is not None
        return self.result


class FakeProvider:
    """ContractStatusProvider backed by a dict; scripted errors per call."""

    def __init__(self, statuses: dict[str, ContractStatus] | None = None) -> None:
        self.statuses = statuses or {}
        self.errors: list[Exception] = []
        self.calls: list[str] = []
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def lookup(self, contract_number: str) -> ContractStatus:
        with self._lock:
            self.calls.append(contract_number)
            error = self.errors.pop(0) if self.errors else None
        if self.gate is not None:
            self.gate.wait(5)
        if error is not None:
            raise error
        status = self.statuses.get(contract_number)
        if status is None:
            raise ContractNotFoundError("Contract not found")
        return status


class FakeTemplateSource:
    def __init__(self, templates=()) -> None:
        self.templates = list(templates)

    def find(self, etat, sous_etat, sous_etat_2):
        for t in self.templates:
            if (t.etat, t.sous_etat, t.sous_etat_2) == (etat, sous_etat, sous_etat_2):
                return t
        return None


class FakeSender:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    def send_bilingual(self, phone: str, fr: str, ar: str) -> None:
        if self.fail:
            raise RuntimeError("send failed")
        self.sent.append((phone, fr, ar))


class FakeNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.events: list[tuple[str, str, dict, str | None]] = []
        self.fail = fail

    def notify(self, event, complaint_id, payload, recipient=None) -> None:
        if self.fail:
            raise RuntimeError("notify failed")
        self.events.append((event, complaint_id, payload, recipient))

    def names(self) -> list[str]:
        return [e[0] for e in self.events]


class InMemoryMessageStore:
    def __init__(self, fail_record: bool = False) -> None:
        self.seen: set[str] = set()
        self.outcomes: dict[str, MessageOutcome] = {}
        self.complaints: list[Complaint] = []
        self.fail_record = fail_record

    def claim(self, message: InboundMessage) -> bool:
        if message.message_id in self.seen:
            return False
        self.seen.add(message.message_id)
        return True

    def record_outcome(self, message_id, outcome, complaint) -> None:
        if self.fail_record:
            raise RuntimeError("db down")
        self.outcomes[message_id] = outcome
        if complaint is not None:
            self.complaints.append(complaint)


@dataclass
class InMemoryComplaintStore:
    """ComplaintStore with the same guards as the Postgres one."""

    complaints: dict[str, Complaint] = field(default_factory=dict)
    tickets: dict[str, Ticket] = field(default_factory=dict)
    notes: dict[str, list[str]] = field(default_factory=dict)
    fail_on: set[str] = field(default_factory=set)

    def add(self, complaint: Complaint) -> Complaint:
        self.complaints[complaint.id] = complaint
        return complaint

    def list_for_escalation(self) -> list[Complaint]:
        # Copies: the sweep must not see later writes through its snapshot
        return [
            replace(c, reminders_sent=set(c.reminders_sent), has_ticket=c.id in self.tickets)
            for c in self.complaints.values()
            if c.status in ("open", "assigned")
        ]

    def _check(self, complaint_id: str) -> Complaint:
        if complaint_id in self.fail_on:
            raise RuntimeError(f"store failure for {complaint_id}")
        return self.complaints[complaint_id]

    def attach_ticket(self, complaint_id: str, ticket: Ticket, now: datetime) -> bool:
        complaint = self._check(complaint_id)
        if complaint.status not in ("open", "assigned") or complaint_id in self.tickets:
            return False
        self.tickets[complaint_id] = ticket
        complaint.status = "escalated"
        complaint.escalated_to_orange = True
        complaint.orange_ticket_id = ticket.orange_ticket_id
        complaint.updated_at = now
        self.notes.setdefault(complaint_id, []).append("escalated")
        return True

    def record_reminder(self, complaint_id: str, threshold_hours: int, note: str, now) -> bool:
        complaint = self._check(complaint_id)
        if complaint.status not in ("open", "assigned") or threshold_hours in complaint.reminders_sent:
            return False
        complaint.reminders_sent.add(threshold_hours)
        self.notes.setdefault(complaint_id, []).append(note)
        return True

    def bump_priority(self, complaint_id, old_priority, new_priority, note, now) -> bool:
        complaint = self._check(complaint_id)
        if complaint.status not in ("open", "assigned") or complaint.priority != old_priority:
            return False
        complaint.priority = new_priority
        self.notes.setdefault(complaint_id, []).append(note)
        return True


class InMemoryTicketStore:
    def __init__(self, tickets: list[Ticket] | None = None) -> None:
        self.tickets = {t.id: t for t in tickets or []}
        self.updates: list[tuple[str, str]] = []

    def get_ticket_by_orange_id(self, orange_ticket_id: str) -> Ticket | None:
        for t in self.tickets.values():
            if t.orange_ticket_id == orange_ticket_id:
                return t
        return None

    def list_open_tickets(self) -> list[Ticket]:
        return [
            t
            for t in self.tickets.values()
            if t.status in ("open", "in_progress")
            and t.orange_ticket_id
            and not t.orange_ticket_id.startswith("LOCAL-")
        ]

    def update_ticket_status(self, ticket_id, status, provider_response, now) -> None:
        self.tickets[ticket_id].status = status
        self.updates.append((ticket_id, status))
