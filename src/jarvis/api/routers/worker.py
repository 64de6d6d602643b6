"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter, HTTPException, Request

from jarvis.api import services
from jarvis.api.task_auth import verify_task_auth

router = APIRouter()


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}


@router.get("/internal/metrics")
def internal_metrics(request: Request) -> dict:
    """Snapshot of in-process counters and gauges."""
    if not verify_task_auth(request):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return services.get_metrics().snapshot()
