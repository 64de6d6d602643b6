"""Worker routes for the escalation sweep and ticket status sync."""

from fastapi import APIRouter, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from jarvis.api import services
from jarvis.api.task_auth import verify_task_auth
from jarvis.domain.escalation import EscalationScheduler
from jarvis.observability.correlation import get_correlation_id
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context
from jarvis.tickets.service import TicketService

router = APIRouter(prefix="/tasks", tags=["tasks"])

logger = get_logger(__name__)


def _get_scheduler() -> EscalationScheduler:
    return services.get_scheduler()


def _get_ticket_service() -> TicketService:
    return services.get_ticket_service()


def _require_auth(request: Request) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/escalation/sweep")
async def run_escalation_sweep(request: Request) -> JSONResponse:
    """Run one escalation sweep.

    Returns:
    - 200 {"status": "completed", "results": [...]} after a sweep
    - 200 {"status": "skipped"} if a sweep is already running
    - 401 if the task secret is missing or wrong
    """
    _require_auth(request)

    scheduler = _get_scheduler()
    try:
        results = await run_in_threadpool(scheduler.run_sweep)
    except Exception:
        # Listing complaints failed; per-complaint errors never get here
        logger.exception(
            "escalation sweep failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "sweep failed"})

    if results is None:
        return JSONResponse({"status": "skipped"})
    return JSONResponse(
        {"status": "completed", "results": [result.to_dict() for result in results]}
    )


@router.post("/tickets/sync")
async def sync_tickets(request: Request) -> JSONResponse:
    """Pull provider status for every open provider ticket."""
    _require_auth(request)

    service = _get_ticket_service()
    try:
        counts = await run_in_threadpool(service.sync_open_tickets)
    except Exception:
        logger.exception(
            "ticket sync failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        return JSONResponse(status_code=500, content={"ok": False, "error": "sync failed"})
    return JSONResponse({"status": "completed", **counts})
