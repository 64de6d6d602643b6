"""Contract status providers (the external system of record).

The resolver only depends on ContractStatusProvider. The HTTP implementation
talks to a JSON status API; the portal-scraping transport used historically is
just another implementation of the same protocol.
"""

from __future__ import annotations

import os
from typing import Any, Protocol

import requests

from jarvis.domain.errors import (
    ContractNotFoundError,
    CrmAuthError,
    CrmError,
    CrmNotConfiguredError,
    CrmTimeoutError,
)
from jarvis.domain.models import ContractStatus
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import mask_contract, safe_log_context

logger = get_logger(__name__)

DEFAULT_REQUEST_TIMEOUT = 20.0

# Portal placeholder meaning "no etat on record"
_UNKNOWN_ETAT = "Inconnu"


class ContractStatusProvider(Protocol):
    """Resolve a contract number to a status snapshot.

    Raises:
        ContractNotFoundError: Definitive not-found.
        CrmTimeoutError / CrmAuthError / CrmError: Retryable failures.
        CrmNotConfiguredError: No endpoint configured, not retried.
    """

    def lookup(self, contract_number: str) -> ContractStatus:
        ...


def status_from_payload(contract_number: str, data: dict[str, Any]) -> ContractStatus | None:
    """Map an API/portal record onto ContractStatus. None when no etat."""
    etat = (data.get("etat") or "").strip()
    if not etat or etat == _UNKNOWN_ETAT:
        return None

    seller = data.get("seller_info") or {}
    return ContractStatus(
        contract_id=data.get("contract_id") or contract_number,
        etat=etat,
        sous_etat=data.get("sous_etat") or None,
        sous_etat_2=data.get("sous_etat_2") or None,
        date_created=data.get("date_created") or None,
        appointment_date=data.get("appointment_date") or None,
        technician=data.get("technician") or None,
        seller_name=seller.get("name") or data.get("seller_name") or None,
        seller_phone=seller.get("phone") or data.get("seller_phone") or None,
    )


class HttpContractStatusProvider:
    """Contract status over a JSON HTTP API.

    Required env (if not passed):
    - CRM_API_URL: Base URL of the status API. Without it every lookup
      fails with CrmNotConfiguredError.

    Optional:
    - CRM_API_KEY: Bearer token
    - CRM_REQUEST_TIMEOUT: Per-attempt timeout in seconds (default 20)
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        resolved_url = base_url or os.environ.get("CRM_API_URL", "")
        self._base_url = resolved_url.rstrip("/")
        self._api_key = api_key if api_key is not None else os.environ.get("CRM_API_KEY", "")
        if timeout is None:
            timeout = float(os.environ.get("CRM_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT))
        self._timeout = timeout
        self._session = session or requests.Session()

    def lookup(self, contract_number: str) -> ContractStatus:
        if not self._base_url:
            raise CrmNotConfiguredError("Missing CRM config: CRM_API_URL required")

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        log_ctx = safe_log_context(contract=mask_contract(contract_number))

        try:
            response = self._session.get(
                f"{self._base_url}/contracts/{contract_number}",
                headers=headers,
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            logger.warning("crm lookup timed out", extra={"extra_fields": log_ctx})
            raise CrmTimeoutError("CRM lookup timeout") from e
        except requests.RequestException as e:
            logger.warning(
                "crm lookup transport error",
                extra={"extra_fields": {**log_ctx, "error_type": type(e).__name__}},
            )
            raise CrmError("CRM lookup failed") from e

        if response.status_code == 404:
            raise ContractNotFoundError("Contract not found")
        if response.status_code in (401, 403):
            raise CrmAuthError("CRM authentication failed")
        if response.status_code == 504:
            raise CrmTimeoutError("CRM lookup timeout")
        if response.status_code >= 400:
            raise CrmError(f"CRM lookup failed with HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise CrmError("CRM returned invalid JSON") from e

        status = status_from_payload(contract_number, data if isinstance(data, dict) else {})
        if status is None:
            raise ContractNotFoundError("Contract not found")
        return status
