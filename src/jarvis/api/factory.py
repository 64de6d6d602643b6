"""FastAPI application factory with role-based route mounting."""

import os
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, Request, Response

from jarvis.api import services
from jarvis.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from jarvis.tasks.periodic import PeriodicRunner, interval_from_env

from .routers import public, worker
from .routes import tasks_escalation, webhooks_whatsapp

AppRole = Literal["public", "worker"]


def _scheduler_enabled() -> bool:
    return os.environ.get("ESCALATION_SCHEDULER_ENABLED", "").lower() in ("1", "true", "yes")


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create FastAPI app with routes based on APP_ROLE.

    Args:
        role: Explicit role override. If None, reads from APP_ROLE env var.
              Defaults to "public" if env var is not set.

    Returns:
        Configured FastAPI application.
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Worker may run the sweep in-process instead of via POST /tasks/escalation/sweep
        runner = None
        if role == "worker" and _scheduler_enabled():
            runner = PeriodicRunner(
                lambda: services.get_scheduler().run_sweep(),
                interval_from_env(),
                name="escalation-sweep",
            )
            runner.start()
        try:
            yield
        finally:
            if runner is not None:
                runner.stop()
            services.reset()

    app = FastAPI(
        title="JARVIS",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    # Mount public routes (always)
    app.include_router(public.router)
    app.include_router(webhooks_whatsapp.router)

    # Mount worker routes only for worker role
    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_escalation.router)

    return app
