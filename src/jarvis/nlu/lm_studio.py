"""LM Studio client and model-output parsing.

The model is asked for a single JSON object. Its raw text is scanned for the
first decodable object, validated against ModelAnalysis, then normalized.
Security: NEVER log the prompt or the message text.
"""

from __future__ import annotations

import json
import os
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictStr, ValidationError

from jarvis.domain.errors import SchemaInvalidError, UpstreamError, UpstreamTimeoutError
from jarvis.domain.fallback import normalize_contract_number
from jarvis.domain.models import AnalysisResult, Intent, LanguageCode
from jarvis.observability.logging import get_logger
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_LM_STUDIO_URL = "http://localhost:5000"
DEFAULT_TIMEOUT_SECONDS = 10.0

# Model confidences are kept strictly above the fallback's fixed 0.6
MODEL_CONFIDENCE_FLOOR = 0.65
MODEL_DEFAULT_CONFIDENCE = 0.8

ANALYSIS_PROMPT = """You are JARVIS, analyzing WhatsApp messages from TKTM Orange contractors in Morocco.

Analyze this message and return a JSON response with these fields:
- language: detected language code ('fr' for French, 'ar' for Arabic, 'dar' for Darija, 'en' for English)
- intent: 'status_check' for contract status, 'complaint' for filing a complaint, 'other' for anything else
- contract_number: extracted contract number in format F0000000D (null if not found)
- is_valid_format: true if contract number matches F + 7 digits + D pattern
- is_spam: true if message is gibberish, spam, or clearly invalid
- confidence: your confidence level from 0 to 1

Contract format rules:
- Valid format: F followed by exactly 7 digits followed by D (e.g., F0823846D)
- Handle common typos: spaces between characters, lowercase letters
- Extract and normalize to uppercase

Message to analyze:
"{message}"

Respond ONLY with valid JSON, no explanations:"""

LANGUAGE_ALIASES: dict[LanguageCode, tuple[str, ...]] = {
    "fr": ("fr", "french", "français", "francais"),
    "ar": ("ar", "arabic", "arabe", "العربية"),
    "dar": ("dar", "darija", "دارجة", "marocain"),
    "en": ("en", "english", "anglais"),
}

INTENT_ALIASES: dict[Intent, tuple[str, ...]] = {
    "status_check": ("status_check", "status", "check", "vérification", "verification"),
    "complaint": ("complaint", "plainte", "réclamation", "reclamation", "problème"),
}


class ModelAnalysis(BaseModel):
    """Shape of the JSON object the model must return. Every field optional."""

    model_config = ConfigDict(extra="ignore")

    language: StrictStr | None = None
    intent: StrictStr | None = None
    contract_number: StrictStr | None = None
    is_valid_format: StrictBool | None = None
    is_spam: StrictBool | None = None
    confidence: StrictFloat | None = Field(default=None, ge=0, le=1)


def find_json_object(text: str) -> dict[str, Any] | None:
    """Return the first JSON object embedded in text, or None."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def normalize_language(value: str | None) -> LanguageCode:
    if not value:
        return "fr"
    lowered = value.strip().lower()
    for code, aliases in LANGUAGE_ALIASES.items():
        if lowered in aliases:
            return code
    return "fr"


def normalize_intent(value: str | None) -> Intent:
    if not value:
        return "other"
    lowered = value.strip().lower()
    for intent, aliases in INTENT_ALIASES.items():
        if lowered in aliases:
            return intent
    return "other"


def parse_model_output(text: str) -> AnalysisResult:
    """Turn raw model text into an AnalysisResult.

    Raises:
        SchemaInvalidError: No JSON object, or the object fails validation.
    """
    raw = find_json_object(text)
    if raw is None:
        raise SchemaInvalidError("no JSON object in model output")

    try:
        parsed = ModelAnalysis.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "model output failed schema validation",
            extra={"extra_fields": safe_log_context(error_count=e.error_count())},
        )
        raise SchemaInvalidError("model output failed schema validation") from e

    contract_number = normalize_contract_number(parsed.contract_number)
    confidence = (
        parsed.confidence if parsed.confidence is not None else MODEL_DEFAULT_CONFIDENCE
    )

    return AnalysisResult(
        language=normalize_language(parsed.language),
        intent=normalize_intent(parsed.intent),
        contract_number=contract_number,
        is_valid_format=contract_number is not None and parsed.is_valid_format is not False,
        is_spam=bool(parsed.is_spam),
        confidence=max(confidence, MODEL_CONFIDENCE_FLOOR),
        used_fallback=False,
    )


class LMStudioClient:
    """Thin HTTP client for the LM Studio generate endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = (
            base_url or os.environ.get("LM_STUDIO_URL", DEFAULT_LM_STUDIO_URL)
        ).rstrip("/")
        if timeout is None:
            timeout = float(os.environ.get("LM_STUDIO_TIMEOUT", DEFAULT_TIMEOUT_SECONDS))
        self.timeout = timeout
        self._session = session or requests.Session()

    def generate(self, message: str) -> str:
        """Send the analysis prompt and return the raw model text.

        Raises:
            UpstreamTimeoutError: Request exceeded the timeout.
            UpstreamError: Any other transport or HTTP failure.
        """
        payload = {
            "prompt": ANALYSIS_PROMPT.replace("{message}", message),
            "temperature": 0.3,
            "max_tokens": 200,
            "stop": ["\n\n", "```"],
        }
        try:
            response = self._session.post(
                f"{self._base_url}/api/generate",
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise UpstreamTimeoutError("LM Studio request timed out") from e
        except (requests.RequestException, ValueError) as e:
            raise UpstreamError(f"LM Studio request failed: {type(e).__name__}") from e

        if not isinstance(data, dict):
            raise SchemaInvalidError("unexpected LM Studio response envelope")

        choices = data.get("choices") or [{}]
        return (
            data.get("generated_text")
            or data.get("text")
            or data.get("response")
            or choices[0].get("text")
            or ""
        )

    def analyze(self, message: str) -> AnalysisResult:
        return parse_model_output(self.generate(message))

    def health(self) -> bool:
        try:
            response = self._session.get(f"{self._base_url}/health", timeout=5)
        except requests.RequestException:
            return False
        return response.status_code == 200
