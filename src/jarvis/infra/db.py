"""Postgres access layer (psycopg2, raw SQL).

Provides:
- get_conn(): Connection from DATABASE_URL (+ DB_PASSWORD, timeouts)
- txn(): Commit-or-rollback transaction context
- fetchone/fetchall: Query helpers
- for_update(): Lock one row (SELECT ... FOR UPDATE)
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor, parse_dsn


APPLICATION_NAME = "jarvis"


def _connect_kwargs(dsn: str) -> dict[str, Any]:
    """Extra libpq options layered over DATABASE_URL.

    DB_PASSWORD is used only when the DSN carries no password (secret
    mounted apart from the connection string). DB_CONNECT_TIMEOUT bounds
    how long a webhook thread can wait for Postgres.
    """
    params = parse_dsn(dsn)
    kwargs: dict[str, Any] = {}

    db_password = os.environ.get("DB_PASSWORD")
    if db_password and not params.get("password"):
        kwargs["password"] = db_password
    if "connect_timeout" not in params:
        kwargs["connect_timeout"] = int(os.environ.get("DB_CONNECT_TIMEOUT", "5"))
    if "application_name" not in params:
        kwargs["application_name"] = APPLICATION_NAME
    return kwargs


def get_conn() -> PgConnection:
    """Open a new connection.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn, **_connect_kwargs(dsn))


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """Short transaction. Commits on success, rolls back on any exception.

    A connection opened here is closed on exit; a passed-in one is left open.

    Example:
        with txn() as cur:
            cur.execute("UPDATE complaints SET status = %s WHERE id = %s", ("resolved", cid))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    cur.execute(query, params)
    return cur.fetchall()


def _lock_suffix(nowait: bool, skip_locked: bool) -> str:
    if nowait and skip_locked:
        raise ValueError("Cannot use both nowait and skip_locked")
    suffix = " FOR UPDATE"
    if nowait:
        suffix += " NOWAIT"
    elif skip_locked:
        suffix += " SKIP LOCKED"
    return suffix


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
    *,
    nowait: bool = False,
    skip_locked: bool = False,
) -> tuple[Any, ...] | None:
    """Run a SELECT with FOR UPDATE appended and fetch one row.

    The lock is held until the surrounding transaction ends.

    Raises:
        ValueError: If both nowait and skip_locked are True.
    """
    full_query = query.rstrip().rstrip(";") + _lock_suffix(nowait, skip_locked)
    cur.execute(full_query, params)
    return cur.fetchone()
