"""HTTP client for the Orange ticketing API.

Security: the payload carries the contractor phone. NEVER log the payload;
log the complaint id and masked contract only.
"""

from __future__ import annotations

import os
from typing import Any

import requests

from jarvis.domain.errors import TicketProviderError
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_ORANGE_API_URL = "https://api.orange.ma/tickets"
HTTP_TIMEOUT = 15

SOURCE_SYSTEM = "TKTM-JARVIS"


class OrangeTicketClient:
    """Create and read provider tickets.

    Env (if not passed):
    - ORANGE_API_URL: Base URL (default https://api.orange.ma/tickets)
    - ORANGE_API_KEY: Bearer token. Empty means "not configured".
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float = HTTP_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = (
            base_url or os.environ.get("ORANGE_API_URL", DEFAULT_ORANGE_API_URL)
        ).rstrip("/")
        self._api_key = api_key if api_key is not None else os.environ.get("ORANGE_API_KEY", "")
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "X-Source-System": SOURCE_SYSTEM,
        }

    def create(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Create a ticket. Returns the provider response (has "ticketId").

        Raises:
            TicketProviderError: Transport failure, non-2xx, or bad body.
        """
        data = self._request("POST", f"{self._base_url}/create", json=payload)
        if not data.get("ticketId"):
            raise TicketProviderError("provider response has no ticketId")
        return data

    def get(self, orange_ticket_id: str) -> dict[str, Any]:
        """Fetch a ticket's current state. Raises TicketProviderError."""
        return self._request("GET", f"{self._base_url}/{orange_ticket_id}")

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
        except requests.RequestException as e:
            logger.warning(
                "ticket provider unreachable",
                extra={
                    "extra_fields": safe_log_context(method=method, error_type=type(e).__name__)
                },
            )
            raise TicketProviderError(f"ticket provider unreachable: {type(e).__name__}") from e

        if response.status_code >= 400:
            logger.warning(
                "ticket provider rejected request",
                extra={
                    "extra_fields": safe_log_context(
                        method=method, status_code=response.status_code
                    )
                },
            )
            raise TicketProviderError(f"ticket provider error: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TicketProviderError("ticket provider returned invalid JSON") from e
        if not isinstance(data, dict):
            raise TicketProviderError("unexpected ticket provider response")
        return data
