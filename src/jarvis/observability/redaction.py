"""Redaction helpers for safe logging.

Contractor phones, message text and contract numbers are personal data.
Anything that reaches a log line goes through these helpers first.
"""

import hashlib
import re
from typing import Any

# Patterns that should never appear in logs
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_CONTRACT_PATTERN = re.compile(r"\bF\s*\d{7}\s*D\b", re.IGNORECASE)

_REDACTED = "[REDACTED]"


def redact_string(value: str) -> str:
    """Redact PII patterns (phones, emails, contract numbers) from a string."""
    result = _CONTRACT_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def mask_phone(phone: str | None) -> str:
    """Keep only the last 4 digits: +212612345678 -> *********5678."""
    if not phone or len(phone) <= 4:
        return "****"
    return "*" * (len(phone) - 4) + phone[-4:]


def mask_contract(contract_number: str | None) -> str:
    """Keep first and last 2 characters: F0823846D -> F0****6D."""
    if not contract_number or len(contract_number) <= 4:
        return "****"
    return contract_number[:2] + "****" + contract_number[-2:]


def hash_identifier(value: str) -> str:
    """Non-reversible short hash, for correlating a sender across log lines."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
