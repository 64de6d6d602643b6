"""Per-message decision tree.

Branches, first match wins:
1. Spam -> SPAM_DETECTED copy (no CRM call)
2. No contract and nothing asked -> WELCOME copy
3. Missing/invalid contract -> INVALID_FORMAT copy
4. Resolver failure -> CONTRACT_NOT_FOUND / SERVICE_UNAVAILABLE / SYSTEM_ERROR copy
5. Status template (+ complaint prompt when allowed)

Every branch returns a MessageOutcome; nothing raises to the caller, so the
sender always has a bilingual reply.
"""

from __future__ import annotations

import time
from dataclasses import replace

from jarvis.crm.resolver import ContractStatusResolver, Resolution
from jarvis.domain.complaints import detect_complaint
from jarvis.domain.errors import ContractNotFoundError, CrmLookupError, ErrorCode
from jarvis.domain.models import AnalysisResult, InboundMessage, MessageOutcome
from jarvis.domain.templating import ResponseTemplater, system_message
from jarvis.nlu.extractor import ExtractionResult, IntentExtractor
from jarvis.observability.logging import get_logger
from jarvis.observability.metrics import MetricsSink, NullMetrics
from jarvis.observability.redaction import mask_contract, safe_log_context

logger = get_logger(__name__)


class MessageOrchestrator:
    def __init__(
        self,
        extractor: IntentExtractor,
        resolver: ContractStatusResolver,
        templater: ResponseTemplater,
        metrics: MetricsSink | None = None,
    ) -> None:
        self._extractor = extractor
        self._resolver = resolver
        self._templater = templater
        self._metrics = metrics or NullMetrics()

    def process(self, message: InboundMessage) -> MessageOutcome:
        started = time.monotonic()
        extraction = self._extractor.analyze(message.text)
        outcome = self._decide(message.text, extraction)
        outcome = replace(outcome, total_latency_ms=_elapsed_ms(started))

        self._metrics.increment("messages.processed")
        if outcome.error_code:
            self._metrics.increment("messages.errors", code=outcome.error_code)

        logger.info(
            "message processed",
            extra={
                "extra_fields": safe_log_context(
                    message_id=message.message_id,
                    intent=outcome.intent,
                    language=outcome.language,
                    contract=mask_contract(outcome.contract_number),
                    error_code=outcome.error_code,
                    used_fallback=outcome.used_fallback,
                    from_cache=outcome.from_cache,
                    has_complaint=outcome.has_complaint,
                    total_latency_ms=outcome.total_latency_ms,
                )
            },
        )
        return outcome

    def _decide(self, text: str, extraction: ExtractionResult) -> MessageOutcome:
        analysis = extraction.result

        if analysis.is_spam:
            copy = system_message("SPAM_DETECTED")
            return _base_outcome(
                analysis,
                extraction,
                response_fr=copy.fr,
                response_ar=copy.ar,
                contract_number=analysis.contract_number,
                is_valid_format=analysis.is_valid_format,
                error_code=ErrorCode.SPAM_DETECTED.value,
                error_message="Spam message detected",
            )

        complaint = _complaint_fields(text, analysis)

        if analysis.intent == "other" and not analysis.contract_number:
            copy = system_message("WELCOME")
            return _base_outcome(
                analysis,
                extraction,
                response_fr=copy.fr,
                response_ar=copy.ar,
                contract_number=None,
                is_valid_format=False,
                **complaint,
            )

        if not analysis.contract_number or not analysis.is_valid_format:
            copy = system_message("INVALID_FORMAT")
            return _base_outcome(
                analysis,
                extraction,
                response_fr=copy.fr,
                response_ar=copy.ar,
                contract_number=analysis.contract_number,
                is_valid_format=False,
                error_code=ErrorCode.INVALID_FORMAT.value,
                error_message="Invalid contract format",
                **complaint,
            )

        contract_number = analysis.contract_number
        crm_started = time.monotonic()
        try:
            resolution: Resolution = self._resolver.resolve(contract_number)
        except ContractNotFoundError:
            copy = system_message("CONTRACT_NOT_FOUND")
            return _base_outcome(
                analysis,
                extraction,
                response_fr=copy.fr,
                response_ar=copy.ar,
                contract_number=contract_number,
                is_valid_format=True,
                crm_latency_ms=_elapsed_ms(crm_started),
                error_code=ErrorCode.CONTRACT_NOT_FOUND.value,
                error_message="Contract not found in CRM",
                **complaint,
            )
        except CrmLookupError as e:
            copy = system_message("SERVICE_UNAVAILABLE")
            return _base_outcome(
                analysis,
                extraction,
                response_fr=copy.fr,
                response_ar=copy.ar,
                contract_number=contract_number,
                is_valid_format=True,
                crm_latency_ms=_elapsed_ms(crm_started),
                error_code=e.code,
                error_message=e.message,
                **complaint,
            )
        except Exception:
            logger.exception(
                "unexpected contract resolver failure",
                extra={"extra_fields": safe_log_context(contract=mask_contract(contract_number))},
            )
            copy = system_message("SYSTEM_ERROR")
            return _base_outcome(
                analysis,
                extraction,
                response_fr=copy.fr,
                response_ar=copy.ar,
                contract_number=contract_number,
                is_valid_format=True,
                crm_latency_ms=_elapsed_ms(crm_started),
                error_code=ErrorCode.SYSTEM_ERROR.value,
                error_message="Unexpected error",
                **complaint,
            )

        rendered = self._templater.render(resolution.status, contract_number)
        return _base_outcome(
            analysis,
            extraction,
            response_fr=rendered.fr,
            response_ar=rendered.ar,
            contract_number=contract_number,
            is_valid_format=True,
            crm_latency_ms=resolution.latency_ms,
            from_cache=resolution.from_cache,
            crm_status=resolution.status,
            allow_complaint=rendered.allow_complaint,
            **complaint,
        )


def _complaint_fields(text: str, analysis: AnalysisResult) -> dict:
    detection = detect_complaint(text, analysis.language)
    has_complaint = detection.is_complaint or analysis.intent == "complaint"
    if not has_complaint:
        return {}
    return {
        "has_complaint": True,
        "complaint_type": detection.complaint_type or "general",
        "complaint_priority": detection.priority,
        "complaint_confidence": detection.confidence,
    }


def _base_outcome(
    analysis: AnalysisResult,
    extraction: ExtractionResult,
    *,
    response_fr: str,
    response_ar: str,
    contract_number: str | None,
    is_valid_format: bool,
    **fields,
) -> MessageOutcome:
    return MessageOutcome(
        response_fr=response_fr,
        response_ar=response_ar,
        language=analysis.language,
        intent=analysis.intent,
        contract_number=contract_number,
        is_valid_format=is_valid_format,
        is_spam=analysis.is_spam,
        confidence=analysis.confidence,
        used_fallback=extraction.used_fallback,
        nlu_latency_ms=extraction.latency_ms,
        **fields,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
