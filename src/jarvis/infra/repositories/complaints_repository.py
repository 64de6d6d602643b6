"""Complaints repository - complaints, notes, reminder markers.

Uses raw SQL with psycopg2 (no ORM). Cursor-level functions do one thing
each; PgComplaintStore composes them into guarded transactions for the
escalation sweep.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from jarvis.domain.complaints import ACTIVE_STATUSES, validate_transition
from jarvis.domain.errors import ComplaintNotFoundError
from jarvis.domain.models import Complaint, ComplaintNote, ComplaintStatus, Priority, Ticket
from jarvis.infra.db import fetchall, fetchone, for_update, txn
from jarvis.infra.repositories.tickets_repository import insert_ticket
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)

SYSTEM_AUTHOR = "SYSTEM"

_COMPLAINT_COLUMNS = """
    c.id, c.phone, c.contract_number, c.complaint_type, c.description,
    c.priority, c.status, c.created_at, c.updated_at, c.assigned_to,
    c.escalated_to_orange, c.orange_ticket_id, c.contractor_name, c.message_id,
    EXISTS (SELECT 1 FROM tickets t WHERE t.complaint_id = c.id) AS has_ticket,
    COALESCE(
        (SELECT array_agg(r.threshold_hours) FROM complaint_reminders r
         WHERE r.complaint_id = c.id),
        ARRAY[]::integer[]
    ) AS reminders_sent
"""


def _row_to_complaint(row: tuple[Any, ...]) -> Complaint:
    return Complaint(
        id=str(row[0]),
        phone=row[1],
        contract_number=row[2],
        complaint_type=row[3],
        description=row[4],
        priority=row[5],
        status=row[6],
        created_at=row[7],
        updated_at=row[8],
        assigned_to=row[9],
        escalated_to_orange=row[10],
        orange_ticket_id=row[11],
        contractor_name=row[12],
        message_id=row[13],
        has_ticket=row[14],
        reminders_sent=set(row[15] or ()),
    )


def insert_complaint(cur: PgCursor, complaint: Complaint) -> None:
    cur.execute(
        """
        INSERT INTO complaints (
            id, phone, contractor_name, contract_number, complaint_type,
            description, priority, status, message_id, created_at, updated_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """,
        (
            complaint.id,
            complaint.phone,
            complaint.contractor_name,
            complaint.contract_number,
            complaint.complaint_type,
            complaint.description,
            complaint.priority,
            complaint.status,
            complaint.message_id,
            complaint.created_at,
            complaint.updated_at,
        ),
    )


def select_complaint(cur: PgCursor, complaint_id: str) -> Complaint | None:
    row = fetchone(
        cur,
        f"SELECT {_COMPLAINT_COLUMNS} FROM complaints c WHERE c.id = %s",
        (complaint_id,),
    )
    if row is None:
        return None
    complaint = _row_to_complaint(row)
    complaint.notes = select_notes(cur, complaint_id)
    return complaint


def select_active_complaints(cur: PgCursor) -> list[Complaint]:
    rows = fetchall(
        cur,
        f"""
        SELECT {_COMPLAINT_COLUMNS}
        FROM complaints c
        WHERE c.status = ANY(%s)
        ORDER BY c.created_at
        """,
        (list(ACTIVE_STATUSES),),
    )
    return [_row_to_complaint(row) for row in rows]


def insert_note(
    cur: PgCursor, complaint_id: str, *, author: str, text: str, now: datetime
) -> None:
    cur.execute(
        """
        INSERT INTO complaint_notes (complaint_id, author, body, created_at)
        VALUES (%s, %s, %s, %s)
        """,
        (complaint_id, author, text, now),
    )


def select_notes(cur: PgCursor, complaint_id: str) -> list[ComplaintNote]:
    rows = fetchall(
        cur,
        """
        SELECT author, body, created_at
        FROM complaint_notes
        WHERE complaint_id = %s
        ORDER BY id
        """,
        (complaint_id,),
    )
    return [ComplaintNote(author=r[0], text=r[1], created_at=r[2]) for r in rows]


def set_status(
    cur: PgCursor,
    complaint_id: str,
    target: ComplaintStatus,
    *,
    actor: str,
    now: datetime,
) -> ComplaintStatus:
    """Move a complaint to target under a row lock. Returns the old status.

    Raises:
        ComplaintNotFoundError: Unknown complaint.
        ComplaintTransitionError: Transition not allowed.
    """
    row = for_update(cur, "SELECT status FROM complaints WHERE id = %s", (complaint_id,))
    if row is None:
        raise ComplaintNotFoundError(f"complaint {complaint_id} not found")
    current: ComplaintStatus = row[0]
    validate_transition(current, target)

    cur.execute(
        "UPDATE complaints SET status = %s, updated_at = %s WHERE id = %s",
        (target, now, complaint_id),
    )
    insert_note(
        cur, complaint_id, author=actor, text=f"Status changed from {current} to {target}", now=now
    )
    return current


class PgComplaintStore:
    """Postgres-backed complaint store (escalation sweep + intake)."""

    def create(self, complaint: Complaint) -> None:
        with txn() as cur:
            insert_complaint(cur, complaint)

    def get(self, complaint_id: str) -> Complaint | None:
        with txn() as cur:
            return select_complaint(cur, complaint_id)

    def update_status(
        self, complaint_id: str, target: ComplaintStatus, actor: str, now: datetime
    ) -> None:
        with txn() as cur:
            set_status(cur, complaint_id, target, actor=actor, now=now)

    def list_for_escalation(self) -> list[Complaint]:
        with txn() as cur:
            return select_active_complaints(cur)

    def attach_ticket(self, complaint_id: str, ticket: Ticket, now: datetime) -> bool:
        with txn() as cur:
            row = for_update(
                cur,
                "SELECT status, escalated_to_orange FROM complaints WHERE id = %s",
                (complaint_id,),
            )
            if row is None or row[0] not in ACTIVE_STATUSES or row[1]:
                return False

            if not insert_ticket(cur, ticket):
                # Unique index on complaint_id: a ticket already exists
                return False

            validate_transition(row[0], "escalated")
            cur.execute(
                """
                UPDATE complaints
                SET status = 'escalated',
                    escalated_to_orange = true,
                    orange_ticket_id = %s,
                    updated_at = %s
                WHERE id = %s
                """,
                (ticket.orange_ticket_id, now, complaint_id),
            )
            insert_note(
                cur,
                complaint_id,
                author=SYSTEM_AUTHOR,
                text=f"Escalated to Orange (ticket {ticket.orange_ticket_id or 'local-only'})",
                now=now,
            )

        logger.info(
            "ticket attached to complaint",
            extra={"extra_fields": safe_log_context(complaint_id=complaint_id, ticket_id=ticket.id)},
        )
        return True

    def record_reminder(
        self, complaint_id: str, threshold_hours: int, note: str, now: datetime
    ) -> bool:
        with txn() as cur:
            cur.execute(
                """
                UPDATE complaints SET updated_at = %s
                WHERE id = %s AND status = ANY(%s)
                """,
                (now, complaint_id, list(ACTIVE_STATUSES)),
            )
            if cur.rowcount == 0:
                return False

            cur.execute(
                """
                INSERT INTO complaint_reminders (complaint_id, threshold_hours, sent_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (complaint_id, threshold_hours) DO NOTHING
                """,
                (complaint_id, threshold_hours, now),
            )
            if cur.rowcount == 0:
                return False

            insert_note(cur, complaint_id, author=SYSTEM_AUTHOR, text=note, now=now)
        return True

    def bump_priority(
        self,
        complaint_id: str,
        old_priority: Priority,
        new_priority: Priority,
        note: str,
        now: datetime,
    ) -> bool:
        with txn() as cur:
            # Guarded on the old value: never lowers, never touches escalated/resolved
            cur.execute(
                """
                UPDATE complaints
                SET priority = %s, updated_at = %s
                WHERE id = %s AND priority = %s AND status = ANY(%s)
                """,
                (new_priority, now, complaint_id, old_priority, list(ACTIVE_STATUSES)),
            )
            if cur.rowcount == 0:
                return False
            insert_note(cur, complaint_id, author=SYSTEM_AUTHOR, text=note, now=now)
        return True
