"""WhatsApp webhook routes - Evolution API integration.

Phone numbers and message text stay in memory for the duration of the
request; logs carry only hashed or masked identifiers.
"""

import hmac
import os
from typing import Any

from fastapi import APIRouter, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from jarvis.api import services
from jarvis.domain.intake import IntakeResult, MessageStore, ReplySender, handle_inbound
from jarvis.domain.models import InboundMessage
from jarvis.domain.orchestrator import MessageOrchestrator
from jarvis.notifications.notifier import Notifier
from jarvis.observability.correlation import get_correlation_id
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context
from jarvis.whatsapp.evolution_adapter import InvalidPayloadError, normalize

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _get_orchestrator() -> MessageOrchestrator:
    return services.get_orchestrator()


def _get_message_store() -> MessageStore:
    return services.get_message_store()


def _get_sender() -> ReplySender | None:
    return services.get_sender()


def _get_notifier() -> Notifier:
    return services.get_notifier()


def _run_intake(msg: InboundMessage) -> IntakeResult:
    return handle_inbound(
        msg,
        orchestrator=_get_orchestrator(),
        messages=_get_message_store(),
        sender=_get_sender(),
        notifier=_get_notifier(),
    )


@router.post("/evolution")
async def evolution_webhook(
    request: Request,
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive Evolution API webhook and answer the sender.

    Returns:
        200 {"status": "processed"|"duplicate"|"ignored"} for valid payloads.
        400 Bad Request if payload invalid.
        401 Unauthorized if secret validation fails.
        500 Internal Server Error if processing fails before a reply.
    """
    correlation_id = get_correlation_id()

    # Webhook secret validation (fail-closed)
    expected_secret = os.environ.get("EVOLUTION_WEBHOOK_SECRET", "")
    if not expected_secret:
        logger.error(
            "EVOLUTION_WEBHOOK_SECRET not configured - rejecting webhook (fail-closed)",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=401, content="unauthorized")
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected_secret):
        logger.warning(
            "evolution webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=401, content="unauthorized")

    try:
        payload: dict[str, Any] = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    try:
        msg = normalize(payload)
    except InvalidPayloadError:
        logger.warning(
            "invalid evolution payload shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid payload shape")

    if msg is None:
        # Status updates, own messages, media without caption
        return JSONResponse({"status": "ignored"})

    try:
        result = await run_in_threadpool(_run_intake, msg)
    except Exception:
        logger.exception(
            "webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=500, content="processing failed")

    if result.status == "duplicate":
        return JSONResponse({"status": "duplicate"})

    outcome = result.outcome
    logger.info(
        "evolution message processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_id_prefix=msg.message_id[:8],
                intent=outcome.intent if outcome else None,
                error_code=outcome.error_code if outcome else None,
                has_complaint=outcome.has_complaint if outcome else False,
                reply_sent=result.reply_sent,
            )
        },
    )
    return JSONResponse(
        {
            "status": "processed",
            "error_code": outcome.error_code if outcome else None,
            "complaint_id": result.complaint_id,
            "reply_sent": result.reply_sent,
        }
    )
