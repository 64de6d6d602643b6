"""Intent extraction: language model first, regex fallback on any failure.

The caller never sees an exception from this stage.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

from jarvis.domain.errors import JarvisError
from jarvis.domain.fallback import extract_with_fallback
from jarvis.domain.models import AnalysisResult
from jarvis.observability.logging import get_logger
from jarvis.observability.metrics import MetricsSink, NullMetrics
from jarvis.observability.redaction import safe_log_context

logger = get_logger(__name__)


class Analyzer(Protocol):
    """Anything that turns text into an AnalysisResult (LMStudioClient in prod)."""

    def analyze(self, message: str) -> AnalysisResult:
        ...


@dataclass(frozen=True)
class ExtractionResult:
    result: AnalysisResult
    used_fallback: bool
    latency_ms: int


class IntentExtractor:
    """Runs the model analyzer and converges every failure to the fallback."""

    def __init__(self, analyzer: Analyzer | None, metrics: MetricsSink | None = None) -> None:
        self._analyzer = analyzer
        self._metrics = metrics or NullMetrics()

    def analyze(self, text: str) -> ExtractionResult:
        started = time.monotonic()
        self._metrics.increment("nlu.calls")

        if self._analyzer is None:
            return self._fallback(text, started, reason="NOT_CONFIGURED")

        try:
            result = self._analyzer.analyze(text)
        except JarvisError as e:
            return self._fallback(text, started, reason=e.category.value)
        except Exception:
            logger.exception(
                "unexpected intent extractor failure",
                extra={"extra_fields": safe_log_context(text_len=len(text))},
            )
            return self._fallback(text, started, reason="SERVICE_ERROR")

        latency_ms = _elapsed_ms(started)
        logger.info(
            "intent extracted by model",
            extra={
                "extra_fields": safe_log_context(
                    latency_ms=latency_ms,
                    intent=result.intent,
                    language=result.language,
                    has_contract=result.contract_number is not None,
                )
            },
        )
        return ExtractionResult(result=result, used_fallback=False, latency_ms=latency_ms)

    def _fallback(self, text: str, started: float, *, reason: str) -> ExtractionResult:
        self._metrics.increment("nlu.fallbacks", reason=reason)
        result = extract_with_fallback(text)
        latency_ms = _elapsed_ms(started)
        logger.warning(
            "intent extractor fell back to regex",
            extra={
                "extra_fields": safe_log_context(
                    reason=reason,
                    latency_ms=latency_ms,
                    intent=result.intent,
                    has_contract=result.contract_number is not None,
                )
            },
        )
        return ExtractionResult(result=result, used_fallback=True, latency_ms=latency_ms)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
