"""Domain records for the message pipeline and the complaint lifecycle."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

LanguageCode = Literal["fr", "ar", "dar", "en"]
Intent = Literal["status_check", "complaint", "other"]
Priority = Literal["low", "medium", "high"]
ComplaintStatus = Literal["open", "assigned", "escalated", "resolved"]
TicketStatus = Literal["open", "in_progress", "resolved", "closed"]
EscalationAction = Literal["escalated", "reminded", "skipped"]

CONTRACT_PATTERN = r"^F\d{7}D$"

PRIORITY_ORDER: tuple[Priority, ...] = ("low", "medium", "high")


@dataclass(frozen=True)
class InboundMessage:
    """One inbound WhatsApp text. Contains PII (phone, text): never log it."""

    message_id: str
    phone: str
    text: str
    received_at: datetime
    sender_name: str | None = None


@dataclass(frozen=True)
class AnalysisResult:
    """Structured fields extracted from one message."""

    language: LanguageCode = "fr"
    intent: Intent = "other"
    contract_number: str | None = None
    is_valid_format: bool = False
    is_spam: bool = False
    confidence: float = 0.0
    used_fallback: bool = False


@dataclass(frozen=True)
class ContractStatus:
    """Snapshot of a contract in the external system of record."""

    contract_id: str
    etat: str
    sous_etat: str | None = None
    sous_etat_2: str | None = None
    date_created: str | None = None
    appointment_date: str | None = None
    technician: str | None = None
    seller_name: str | None = None
    seller_phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContractStatus":
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class ResponseTemplate:
    """Bilingual reply keyed by (etat, sous_etat, sous_etat_2)."""

    etat: str
    sous_etat: str | None
    sous_etat_2: str | None
    fr: str
    ar: str
    allow_complaint: bool
    id: str = "default"


@dataclass(frozen=True)
class BilingualText:
    fr: str
    ar: str


@dataclass(frozen=True)
class ComplaintDetection:
    is_complaint: bool
    complaint_type: str | None
    priority: Priority
    confidence: float
    detected_keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class MessageOutcome:
    """Everything decided for one inbound message. Persisted as-is."""

    response_fr: str
    response_ar: str
    language: LanguageCode
    intent: Intent
    contract_number: str | None
    is_valid_format: bool
    is_spam: bool
    confidence: float
    used_fallback: bool
    nlu_latency_ms: int
    crm_latency_ms: int | None = None
    total_latency_ms: int = 0
    from_cache: bool = False
    crm_status: ContractStatus | None = None
    allow_complaint: bool = False
    error_code: str | None = None
    error_message: str | None = None
    has_complaint: bool = False
    complaint_type: str | None = None
    complaint_priority: Priority = "low"
    complaint_confidence: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["crm_status"] = self.crm_status.to_dict() if self.crm_status else None
        return data


@dataclass(frozen=True)
class ComplaintNote:
    author: str
    text: str
    created_at: datetime

    def render(self) -> str:
        return f"[{self.created_at.isoformat()}] {self.author}: {self.text}"


@dataclass
class Complaint:
    """Complaint aggregate. status only moves forward; resolved is terminal."""

    id: str
    phone: str
    contract_number: str
    complaint_type: str
    description: str
    priority: Priority
    status: ComplaintStatus
    created_at: datetime
    updated_at: datetime
    assigned_to: str | None = None
    escalated_to_orange: bool = False
    orange_ticket_id: str | None = None
    contractor_name: str | None = None
    message_id: str | None = None
    notes: list[ComplaintNote] = field(default_factory=list)
    reminders_sent: set[int] = field(default_factory=set)
    has_ticket: bool = False

    def age_hours(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds() / 3600


@dataclass
class Ticket:
    id: str
    complaint_id: str
    orange_ticket_id: str | None
    status: TicketStatus
    priority: str
    description: str
    provider_response: dict[str, Any] | None = None
    created_at: datetime | None = None

    @property
    def is_local(self) -> bool:
        return self.orange_ticket_id is None or self.orange_ticket_id.startswith("LOCAL-")


@dataclass(frozen=True)
class EscalationResult:
    complaint_id: str
    action: EscalationAction
    reason: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "complaintId": self.complaint_id,
            "action": self.action,
            "reason": self.reason,
            "details": self.details,
        }
