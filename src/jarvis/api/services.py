"""Process-wide service wiring.

Services are built lazily on first use from environment, so importing the
app never touches the network or the database. Route modules reach them
through their own `_get_*` helpers, which tests replace.
"""

from __future__ import annotations

import os
import threading

from jarvis.crm.provider import HttpContractStatusProvider
from jarvis.crm.resolver import ContractStatusResolver
from jarvis.domain.escalation import EscalationScheduler
from jarvis.domain.orchestrator import MessageOrchestrator
from jarvis.domain.templating import ResponseTemplater
from jarvis.infra.cache import get_cache
from jarvis.infra.repositories.complaints_repository import PgComplaintStore
from jarvis.infra.repositories.messages_repository import PgMessageStore
from jarvis.infra.repositories.templates_repository import PgTemplateRepository
from jarvis.infra.repositories.tickets_repository import PgTicketStore
from jarvis.nlu.extractor import IntentExtractor
from jarvis.nlu.lm_studio import LMStudioClient
from jarvis.notifications.notifier import LoggingNotifier, Notifier, OutboxNotifier
from jarvis.observability.logging import get_logger
from jarvis.observability.metrics import InMemoryMetrics
from jarvis.tickets.orange_client import OrangeTicketClient
from jarvis.tickets.service import TicketService
from jarvis.whatsapp.evolution_sender import EvolutionSender

logger = get_logger(__name__)

_metrics = InMemoryMetrics()
# Reentrant: builders call other getters
_lock = threading.RLock()
_instances: dict[str, object] = {}


def _singleton(name: str, build):
    with _lock:
        if name not in _instances:
            _instances[name] = build()
        return _instances[name]


def get_metrics() -> InMemoryMetrics:
    return _metrics


def get_resolver() -> ContractStatusResolver:
    return _singleton(
        "resolver",
        lambda: ContractStatusResolver.from_env(
            HttpContractStatusProvider(), get_cache(), get_metrics()
        ),
    )


def get_extractor() -> IntentExtractor:
    def build() -> IntentExtractor:
        # No LM_STUDIO_URL: keyword fallback only
        analyzer = LMStudioClient() if os.environ.get("LM_STUDIO_URL") else None
        return IntentExtractor(analyzer, get_metrics())

    return _singleton("extractor", build)


def get_orchestrator() -> MessageOrchestrator:
    return _singleton(
        "orchestrator",
        lambda: MessageOrchestrator(
            get_extractor(),
            get_resolver(),
            ResponseTemplater(PgTemplateRepository()),
            get_metrics(),
        ),
    )


def get_message_store() -> PgMessageStore:
    return _singleton("messages", PgMessageStore)


def get_sender() -> EvolutionSender | None:
    """Reply sender, or None when Evolution is not configured."""
    if not (os.environ.get("EVOLUTION_API_URL") and os.environ.get("EVOLUTION_API_KEY")):
        return None
    return _singleton("sender", EvolutionSender)


def get_notifier() -> Notifier:
    def build() -> Notifier:
        if os.environ.get("DATABASE_URL"):
            return OutboxNotifier()
        return LoggingNotifier()

    return _singleton("notifier", build)


def get_ticket_service() -> TicketService:
    return _singleton(
        "tickets",
        lambda: TicketService(OrangeTicketClient(), PgTicketStore(), get_metrics()),
    )


def get_scheduler() -> EscalationScheduler:
    return _singleton(
        "scheduler",
        lambda: EscalationScheduler(
            PgComplaintStore(), get_ticket_service(), get_notifier(), get_metrics()
        ),
    )


def reset() -> None:
    """Drop built services (tests, reconfiguration)."""
    with _lock:
        resolver = _instances.pop("resolver", None)
        _instances.clear()
    if isinstance(resolver, ContractStatusResolver):
        resolver.shutdown()
    _metrics.reset()
