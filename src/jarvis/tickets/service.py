"""Ticket handoff for escalated complaints.

create_for() never fails because of the provider:
- provider not configured -> LOCAL-... placeholder reference
- provider unreachable    -> no provider reference (orange_ticket_id=None)

Persisting the ticket is the caller's job (the escalation store does it in
the same transaction that flips the complaint to escalated).
"""

from __future__ import annotations

import secrets
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Protocol

from jarvis.domain.complaints import TICKET_CATEGORY
from jarvis.domain.errors import ErrorCategory, TicketProviderError
from jarvis.domain.models import Complaint, Ticket, TicketStatus
from jarvis.infra.time import utc_now
from jarvis.observability.logging import get_logger
from jarvis.observability.metrics import MetricsSink, NullMetrics
from jarvis.observability.redaction import mask_contract, safe_log_context
from jarvis.tickets.orange_client import OrangeTicketClient

logger = get_logger(__name__)

PROVIDER_PRIORITY = {"high": "P1", "medium": "P2", "low": "P3"}

PROVIDER_STATUS: dict[str, TicketStatus] = {
    "OPEN": "open",
    "IN_PROGRESS": "in_progress",
    "PENDING": "in_progress",
    "RESOLVED": "resolved",
    "CLOSED": "closed",
}

LOCAL_PREFIX = "LOCAL-"


def provider_priority(priority: str) -> str:
    return PROVIDER_PRIORITY.get(priority, "P3")


def provider_category(complaint_type: str) -> str:
    return TICKET_CATEGORY.get(complaint_type, "OTHER")


def local_status(provider_status: str | None) -> TicketStatus:
    return PROVIDER_STATUS.get((provider_status or "").upper(), "open")


def local_reference() -> str:
    return f"{LOCAL_PREFIX}{int(time.time() * 1000)}-{secrets.token_hex(3)}"


def format_ticket_description(complaint: Complaint) -> str:
    """Snapshot sent to the provider and stored on the ticket (French)."""
    return "\n".join(
        [
            "Réclamation via WhatsApp (JARVIS)",
            "---------------------------------",
            f"Numéro contrat: {complaint.contract_number}",
            f"Téléphone: {complaint.phone}",
            f"Type: {complaint.complaint_type}",
            f"Priorité: {complaint.priority}",
            "",
            "Description:",
            complaint.description or "",
            "",
            "---",
            "Source: TKTM JARVIS WhatsApp Assistant",
        ]
    )


def build_ticket_payload(complaint: Complaint) -> dict[str, Any]:
    return {
        "contractNumber": complaint.contract_number,
        "phoneNumber": complaint.phone,
        "category": provider_category(complaint.complaint_type),
        "priority": provider_priority(complaint.priority),
        "description": format_ticket_description(complaint),
        "source": "JARVIS_WHATSAPP",
    }


class TicketStore(Protocol):
    def get_ticket_by_orange_id(self, orange_ticket_id: str) -> Ticket | None:
        ...

    def list_open_tickets(self) -> list[Ticket]:
        ...

    def update_ticket_status(
        self,
        ticket_id: str,
        status: TicketStatus,
        provider_response: dict[str, Any] | None,
        now: datetime,
    ) -> None:
        """Persist the new status; resolving a ticket resolves its complaint."""
        ...


class TicketService:
    def __init__(
        self,
        client: OrangeTicketClient | None = None,
        store: TicketStore | None = None,
        metrics: MetricsSink | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._store = store
        self._metrics = metrics or NullMetrics()
        self._clock = clock

    def create_for(self, complaint: Complaint) -> Ticket:
        """Build the ticket for a complaint, calling the provider if configured."""
        log_ctx = safe_log_context(
            complaint_id=complaint.id, contract=mask_contract(complaint.contract_number)
        )
        provider_response: dict[str, Any] | None = None

        if self._client is None or not self._client.configured:
            orange_ticket_id: str | None = local_reference()
            logger.warning(
                "ticket provider not configured, using local reference",
                extra={"extra_fields": log_ctx},
            )
            self._metrics.increment("tickets.created", provider="local")
        else:
            try:
                provider_response = self._client.create(build_ticket_payload(complaint))
                orange_ticket_id = str(provider_response["ticketId"])
                self._metrics.increment("tickets.created", provider="orange")
            except TicketProviderError:
                orange_ticket_id = None
                logger.error(
                    "ticket provider unavailable, keeping local-only ticket",
                    extra={
                        "extra_fields": {
                            **log_ctx,
                            "error_category": ErrorCategory.PROVIDER_UNAVAILABLE.value,
                        }
                    },
                )
                self._metrics.increment("tickets.created", provider="unavailable")

        return Ticket(
            id=str(uuid.uuid4()),
            complaint_id=complaint.id,
            orange_ticket_id=orange_ticket_id,
            status="open",
            priority=provider_priority(complaint.priority),
            description=format_ticket_description(complaint),
            provider_response=provider_response,
            created_at=self._clock(),
        )

    def sync_ticket_status(self, orange_ticket_id: str) -> TicketStatus | None:
        """Pull the provider status for one ticket and store it.

        Returns the new local status, or None when there is nothing to sync
        (local ticket, no provider, unknown ticket, provider failure).
        """
        if (
            self._client is None
            or not self._client.configured
            or self._store is None
            or orange_ticket_id.startswith(LOCAL_PREFIX)
        ):
            return None

        ticket = self._store.get_ticket_by_orange_id(orange_ticket_id)
        if ticket is None:
            logger.warning(
                "ticket not found for status sync",
                extra={"extra_fields": safe_log_context(orange_ticket_id=orange_ticket_id)},
            )
            return None

        try:
            data = self._client.get(orange_ticket_id)
        except TicketProviderError:
            logger.error(
                "ticket status sync failed",
                extra={"extra_fields": safe_log_context(ticket_id=ticket.id)},
            )
            return None

        status = local_status(data.get("status"))
        self._store.update_ticket_status(ticket.id, status, data, self._clock())
        logger.info(
            "ticket status synced",
            extra={"extra_fields": safe_log_context(ticket_id=ticket.id, status=status)},
        )
        return status

    def sync_open_tickets(self) -> dict[str, int]:
        """Sync every open/in-progress provider ticket."""
        if self._store is None:
            return {"synced": 0, "failed": 0}

        synced = failed = 0
        for ticket in self._store.list_open_tickets():
            if not ticket.orange_ticket_id:
                continue
            if self.sync_ticket_status(ticket.orange_ticket_id) is None:
                failed += 1
            else:
                synced += 1

        logger.info(
            "ticket sync completed",
            extra={"extra_fields": safe_log_context(synced=synced, failed=failed)},
        )
        return {"synced": synced, "failed": failed}
