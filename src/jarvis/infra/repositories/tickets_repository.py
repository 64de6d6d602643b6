"""Tickets repository - provider ticket handoffs, one per complaint.

Uses raw SQL with psycopg2 (no ORM).
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from jarvis.domain.models import Ticket, TicketStatus
from jarvis.infra.db import fetchall, fetchone, txn

_TICKET_COLUMNS = """
    id, complaint_id, orange_ticket_id, status, priority,
    description, provider_response, created_at
"""


def _row_to_ticket(row: tuple[Any, ...]) -> Ticket:
    return Ticket(
        id=str(row[0]),
        complaint_id=str(row[1]),
        orange_ticket_id=row[2],
        status=row[3],
        priority=row[4],
        description=row[5],
        provider_response=row[6],
        created_at=row[7],
    )


def insert_ticket(cur: PgCursor, ticket: Ticket) -> bool:
    """Insert a ticket. Returns False if the complaint already has one."""
    cur.execute(
        """
        INSERT INTO tickets (
            id, complaint_id, orange_ticket_id, status, priority,
            description, provider_response, created_at, updated_at
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (complaint_id) DO NOTHING
        """,
        (
            ticket.id,
            ticket.complaint_id,
            ticket.orange_ticket_id,
            ticket.status,
            ticket.priority,
            ticket.description,
            json.dumps(ticket.provider_response) if ticket.provider_response else None,
            ticket.created_at,
            ticket.created_at,
        ),
    )
    return cur.rowcount == 1


def select_by_orange_id(cur: PgCursor, orange_ticket_id: str) -> Ticket | None:
    row = fetchone(
        cur,
        f"SELECT {_TICKET_COLUMNS} FROM tickets WHERE orange_ticket_id = %s",
        (orange_ticket_id,),
    )
    return _row_to_ticket(row) if row else None


def select_open_provider_tickets(cur: PgCursor) -> list[Ticket]:
    rows = fetchall(
        cur,
        f"""
        SELECT {_TICKET_COLUMNS}
        FROM tickets
        WHERE status IN ('open', 'in_progress')
          AND orange_ticket_id IS NOT NULL
          AND orange_ticket_id NOT LIKE %s
        ORDER BY created_at
        """,
        ("LOCAL-%",),
    )
    return [_row_to_ticket(row) for row in rows]


class PgTicketStore:
    def get_ticket_by_orange_id(self, orange_ticket_id: str) -> Ticket | None:
        with txn() as cur:
            return select_by_orange_id(cur, orange_ticket_id)

    def list_open_tickets(self) -> list[Ticket]:
        with txn() as cur:
            return select_open_provider_tickets(cur)

    def update_ticket_status(
        self,
        ticket_id: str,
        status: TicketStatus,
        provider_response: dict[str, Any] | None,
        now: datetime,
    ) -> None:
        # Imported here: complaints_repository imports this module
        from jarvis.infra.repositories.complaints_repository import SYSTEM_AUTHOR, set_status

        with txn() as cur:
            cur.execute(
                """
                UPDATE tickets
                SET status = %s,
                    provider_response = COALESCE(%s, provider_response),
                    updated_at = %s
                WHERE id = %s
                RETURNING complaint_id
                """,
                (
                    status,
                    json.dumps(provider_response) if provider_response else None,
                    now,
                    ticket_id,
                ),
            )
            row = cur.fetchone()
            if row is None or status != "resolved":
                return

            current = fetchone(
                cur, "SELECT status FROM complaints WHERE id = %s", (row[0],)
            )
            if current and current[0] != "resolved":
                set_status(cur, str(row[0]), "resolved", actor=SYSTEM_AUTHOR, now=now)
