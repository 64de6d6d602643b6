"""Messages repository - one row per inbound WhatsApp message.

Uses raw SQL with psycopg2 (no ORM). The unique message_id doubles as the
dedupe receipt for provider redeliveries.
"""

from __future__ import annotations

import json

from psycopg2.extensions import cursor as PgCursor

from jarvis.domain.models import Complaint, InboundMessage, MessageOutcome
from jarvis.infra.db import txn
from jarvis.infra.repositories.complaints_repository import insert_complaint


def insert_received(cur: PgCursor, message: InboundMessage) -> bool:
    """Insert the raw message. Returns False if message_id was already seen."""
    cur.execute(
        """
        INSERT INTO messages (message_id, phone, contractor_name, incoming_message, received_at)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (message_id) DO NOTHING
        """,
        (
            message.message_id,
            message.phone,
            message.sender_name,
            message.text,
            message.received_at,
        ),
    )
    return cur.rowcount == 1


def update_outcome(cur: PgCursor, message_id: str, outcome: MessageOutcome) -> None:
    cur.execute(
        """
        UPDATE messages
        SET language_detected = %s,
            intent = %s,
            contract_number = %s,
            is_valid_format = %s,
            is_spam = %s,
            confidence = %s,
            lm_studio_latency = %s,
            crm_lookup_latency = %s,
            total_latency = %s,
            from_cache = %s,
            lm_studio_fallback = %s,
            crm_status = %s,
            response_message_fr = %s,
            response_message_ar = %s,
            has_complaint = %s,
            complaint_type = %s,
            complaint_priority = %s,
            error_code = %s,
            error_message = %s
        WHERE message_id = %s
        """,
        (
            outcome.language,
            outcome.intent,
            outcome.contract_number,
            outcome.is_valid_format,
            outcome.is_spam,
            outcome.confidence,
            outcome.nlu_latency_ms,
            outcome.crm_latency_ms,
            outcome.total_latency_ms,
            outcome.from_cache,
            outcome.used_fallback,
            json.dumps(outcome.crm_status.to_dict()) if outcome.crm_status else None,
            outcome.response_fr,
            outcome.response_ar,
            outcome.has_complaint,
            outcome.complaint_type,
            outcome.complaint_priority if outcome.has_complaint else None,
            outcome.error_code,
            outcome.error_message,
            message_id,
        ),
    )


class PgMessageStore:
    def claim(self, message: InboundMessage) -> bool:
        with txn() as cur:
            return insert_received(cur, message)

    def record_outcome(
        self, message_id: str, outcome: MessageOutcome, complaint: Complaint | None
    ) -> None:
        """Store the outcome and, if any, the complaint it opened (one transaction)."""
        with txn() as cur:
            update_outcome(cur, message_id, outcome)
            if complaint is not None:
                insert_complaint(cur, complaint)
