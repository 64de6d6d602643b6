"""Outbound WhatsApp replies via Evolution API.

Security: NEVER log the recipient or the text. Only log hashes and lengths.
"""

from __future__ import annotations

import os
import time

import requests

from jarvis.domain.templating import format_bilingual
from jarvis.observability.correlation import get_correlation_id
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import hash_identifier, safe_log_context
from jarvis.whatsapp.evolution_adapter import phone_to_jid

logger = get_logger(__name__)

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 30

# Retry config
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0

DEFAULT_INSTANCE = "jarvis"


class ReplySendError(Exception):
    """Reply could not be delivered after retries."""


class EvolutionSender:
    """ReplySender backed by the Evolution API sendText endpoint.

    Required env (if not passed):
    - EVOLUTION_API_URL: Base URL
    - EVOLUTION_API_KEY: API token

    Optional:
    - EVOLUTION_INSTANCE: Instance name (default: jarvis)
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        instance: str | None = None,
        session: requests.Session | None = None,
        sleep=time.sleep,
    ) -> None:
        resolved_url = base_url or os.environ.get("EVOLUTION_API_URL", "")
        resolved_key = api_key or os.environ.get("EVOLUTION_API_KEY", "")
        if not resolved_url or not resolved_key:
            raise RuntimeError("Missing Evolution config: EVOLUTION_API_URL, EVOLUTION_API_KEY")
        self._base_url = resolved_url.rstrip("/")
        self._api_key = resolved_key
        self._instance = instance or os.environ.get("EVOLUTION_INSTANCE", DEFAULT_INSTANCE)
        self._session = session or requests.Session()
        self._sleep = sleep

    def send(self, phone: str, text: str) -> None:
        """Send one text message.

        Args:
            phone: Recipient phone. NEVER logged.
            text: Message text. NEVER logged.

        Raises:
            ReplySendError: Delivery failed after retries.
        """
        url = f"{self._base_url}/message/sendText/{self._instance}"
        payload = {"number": phone_to_jid(phone), "text": text}
        headers = {"Content-Type": "application/json", "apikey": self._api_key}

        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            to_hash=hash_identifier(phone),
            text_len=len(text),
        )

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = self._session.post(
                    url, json=payload, headers=headers, timeout=HTTP_TIMEOUT
                )
                response.raise_for_status()
                logger.info(
                    "reply sent",
                    extra={"extra_fields": {**log_ctx, "attempt": str(attempt)}},
                )
                return
            except requests.RequestException as e:
                status = getattr(e.response, "status_code", None)
                retryable = status is None or status >= 500
                if attempt < MAX_RETRIES and retryable:
                    logger.warning(
                        "reply send failed, retrying",
                        extra={
                            "extra_fields": {
                                **log_ctx,
                                "attempt": str(attempt),
                                "error_type": type(e).__name__,
                            }
                        },
                    )
                    self._sleep(RETRY_BASE_DELAY * (2**attempt))
                    continue

                logger.error(
                    "reply send failed",
                    extra={
                        "extra_fields": {
                            **log_ctx,
                            "attempt": str(attempt),
                            "error_type": type(e).__name__,
                            "status_code": str(status),
                        }
                    },
                )
                raise ReplySendError("WhatsApp delivery failed") from e

    def send_bilingual(self, phone: str, fr: str, ar: str) -> None:
        self.send(phone, format_bilingual(fr, ar))
