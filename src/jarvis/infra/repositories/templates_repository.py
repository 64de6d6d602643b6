"""Message templates repository - persisted reply templates.

Uses raw SQL with psycopg2 (no ORM). Matching is exact per level and
case-insensitive; NULL sub-states only match NULL.
"""

from __future__ import annotations

from jarvis.domain.models import ResponseTemplate
from jarvis.infra.db import fetchone, txn


class PgTemplateRepository:
    """TemplateSource backed by the message_templates table."""

    def find(
        self, etat: str, sous_etat: str | None, sous_etat_2: str | None
    ) -> ResponseTemplate | None:
        with txn() as cur:
            row = fetchone(
                cur,
                """
                SELECT id, etat, sous_etat, sous_etat_2, message_fr, message_ar, allow_complaint
                FROM message_templates
                WHERE is_active
                  AND lower(etat) = lower(%s)
                  AND lower(coalesce(sous_etat, '')) = lower(coalesce(%s, ''))
                  AND lower(coalesce(sous_etat_2, '')) = lower(coalesce(%s, ''))
                LIMIT 1
                """,
                (etat, sous_etat, sous_etat_2),
            )
        if row is None:
            return None
        return ResponseTemplate(
            id=str(row[0]),
            etat=row[1],
            sous_etat=row[2],
            sous_etat_2=row[3],
            fr=row[4],
            ar=row[5],
            allow_complaint=row[6],
        )
