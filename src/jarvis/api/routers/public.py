"""Public-facing routes (APP_ROLE=public)."""

import os

from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from jarvis.infra.db import fetchone, txn
from jarvis.observability.logging import get_logger

router = APIRouter()

logger = get_logger(__name__)


@router.get("/health")
def health() -> dict:
    """Liveness: the process is up."""
    return {"status": "ok"}


def _database_ready() -> bool:
    try:
        with txn() as cur:
            return fetchone(cur, "SELECT 1") == (1,)
    except Exception:
        logger.exception("readiness: database check failed")
        return False


@router.get("/ready")
async def ready() -> JSONResponse:
    """Readiness: Postgres reachable when DATABASE_URL is configured.

    Without DATABASE_URL the app runs on in-memory/logging fallbacks and is
    considered ready.
    """
    if not os.environ.get("DATABASE_URL"):
        return JSONResponse({"status": "ok", "database": "not_configured"})
    if await run_in_threadpool(_database_ready):
        return JSONResponse({"status": "ok", "database": "ok"})
    return JSONResponse(status_code=503, content={"status": "unavailable", "database": "error"})
