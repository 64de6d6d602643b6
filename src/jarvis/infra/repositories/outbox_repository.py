"""Outbox repository - staff notifications queued for a delivery worker.

Uses raw SQL with psycopg2 (no ORM). Every event hangs off a complaint;
payloads carry ids, types and priorities only, never phone or message text.
"""

from __future__ import annotations

import json
from typing import Any

from psycopg2.extensions import cursor as PgCursor

COMPLAINT_AGGREGATE = "complaint"


def enqueue_complaint_event(
    cur: PgCursor,
    event_type: str,
    complaint_id: str,
    *,
    recipient: str | None = None,
    payload: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> int:
    """Queue one notification inside the caller's transaction.

    recipient None means the shared staff queue (unassigned complaints).
    Returns the outbox row id.
    """
    cur.execute(
        """
        INSERT INTO outbox_events (
            event_type, aggregate_type, aggregate_id,
            recipient, payload, correlation_id
        )
        VALUES (%s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            event_type,
            COMPLAINT_AGGREGATE,
            complaint_id,
            recipient,
            json.dumps(payload, default=str) if payload else None,
            correlation_id,
        ),
    )
    (event_id,) = cur.fetchone()
    return event_id
