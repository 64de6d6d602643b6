"""Tests for inbound message handling (dedupe, complaint creation, reply)."""

import pytest

from jarvis.crm.resolver import ContractStatusResolver
from jarvis.domain.intake import handle_inbound
from jarvis.domain.models import ContractStatus
from jarvis.domain.orchestrator import MessageOrchestrator
from jarvis.domain.templating import ResponseTemplater
from jarvis.infra.cache import InMemoryTTLCache
from jarvis.nlu.extractor import IntentExtractor
from jarvis.notifications.notifier import COMPLAINT_CREATED

from .fakes import (
    T0,
    FakeClock,
    FakeNotifier,
    FakeProvider,
    FakeSender,
    InMemoryMessageStore,
    make_message,
)


@pytest.fixture
def orchestrator():
    provider = FakeProvider({"F1234567D": ContractStatus("F1234567D", "En cours", "Planifié")})
    resolver = ContractStatusResolver(provider, InMemoryTTLCache(), max_attempts=1)
    yield MessageOrchestrator(IntentExtractor(None), resolver, ResponseTemplater())
    resolver.shutdown()


def _handle(message, orchestrator, messages, sender=None, notifier=None):
    return handle_inbound(
        message,
        orchestrator=orchestrator,
        messages=messages,
        sender=sender if sender is not None else FakeSender(),
        notifier=notifier,
        clock=FakeClock(),
    )


class TestHandleInbound:
    def test_status_reply_sent(self, orchestrator):
        sender = FakeSender()
        messages = InMemoryMessageStore()

        result = _handle(make_message("F1234567D"), orchestrator, messages, sender)

        assert result.status == "processed"
        assert result.reply_sent is True
        assert result.complaint_id is None
        assert messages.outcomes["MSG001"].contract_number == "F1234567D"
        phone, fr, ar = sender.sent[0]
        assert phone == "+212612345678"
        assert fr.startswith("L'installation")
        assert ar

    def test_complaint_opened(self, orchestrator):
        messages = InMemoryMessageStore()
        notifier = FakeNotifier()
        text = "problème urgent avec mon contrat F1234567D"

        result = _handle(make_message(text), orchestrator, messages, notifier=notifier)

        assert len(messages.complaints) == 1
        complaint = messages.complaints[0]
        assert result.complaint_id == complaint.id
        assert complaint.status == "open"
        assert complaint.priority == "high"
        assert complaint.complaint_type == "quality"
        assert complaint.description == text
        assert complaint.contract_number == "F1234567D"
        assert complaint.created_at == T0
        assert notifier.names() == [COMPLAINT_CREATED]

    def test_duplicate_message_not_reprocessed(self, orchestrator):
        sender = FakeSender()
        messages = InMemoryMessageStore()
        message = make_message("F1234567D")

        _handle(message, orchestrator, messages, sender)
        result = _handle(message, orchestrator, messages, sender)

        assert result.status == "duplicate"
        assert len(sender.sent) == 1

    def test_no_complaint_for_unknown_contract(self, orchestrator):
        messages = InMemoryMessageStore()
        result = _handle(make_message("problème avec F9999999D"), orchestrator, messages)

        assert result.outcome.error_code == "CONTRACT_NOT_FOUND"
        assert result.outcome.has_complaint is True
        assert messages.complaints == []

    def test_no_complaint_without_valid_contract(self, orchestrator):
        messages = InMemoryMessageStore()
        _handle(make_message("problème avec mon contrat"), orchestrator, messages)
        assert messages.complaints == []

    def test_reply_sent_when_persistence_fails(self, orchestrator):
        sender = FakeSender()
        result = _handle(
            make_message("problème urgent F1234567D"),
            orchestrator,
            InMemoryMessageStore(fail_record=True),
            sender,
        )

        assert result.persisted is False
        assert result.complaint_id is None
        assert result.reply_sent is True
        assert len(sender.sent) == 1

    def test_send_failure_is_reported(self, orchestrator):
        result = _handle(
            make_message("F1234567D"), orchestrator, InMemoryMessageStore(), FakeSender(fail=True)
        )
        assert result.status == "processed"
        assert result.reply_sent is False
        assert result.persisted is True

    def test_notifier_failure_does_not_block_reply(self, orchestrator):
        sender = FakeSender()
        result = _handle(
            make_message("problème urgent F1234567D"),
            orchestrator,
            InMemoryMessageStore(),
            sender,
            FakeNotifier(fail=True),
        )
        assert result.complaint_id is not None
        assert result.reply_sent is True
