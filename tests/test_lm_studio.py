"""Tests for the LM Studio client and model-output parsing."""

from unittest.mock import MagicMock

import pytest
import requests

from jarvis.domain.errors import SchemaInvalidError, UpstreamError, UpstreamTimeoutError
from jarvis.nlu.lm_studio import (
    MODEL_CONFIDENCE_FLOOR,
    MODEL_DEFAULT_CONFIDENCE,
    LMStudioClient,
    find_json_object,
    parse_model_output,
)


class TestFindJsonObject:
    def test_object_inside_prose(self):
        text = 'Voici la réponse: {"intent": "status_check"} merci'
        assert find_json_object(text) == {"intent": "status_check"}

    def test_skips_broken_brace(self):
        assert find_json_object('{oops {"a": 1}') == {"a": 1}

    def test_no_object(self):
        assert find_json_object("no json here") is None


class TestParseModelOutput:
    def test_full_object(self):
        result = parse_model_output(
            '{"language": "Arabic", "intent": "status", "contract_number": "f 0823846 d",'
            ' "is_valid_format": true, "is_spam": false, "confidence": 0.92}'
        )
        assert result.language == "ar"
        assert result.intent == "status_check"
        assert result.contract_number == "F0823846D"
        assert result.is_valid_format is True
        assert result.confidence == 0.92
        assert result.used_fallback is False

    def test_missing_confidence_uses_default(self):
        result = parse_model_output('{"intent": "complaint"}')
        assert result.confidence == MODEL_DEFAULT_CONFIDENCE

    def test_low_confidence_raised_to_floor(self):
        result = parse_model_output('{"intent": "other", "confidence": 0.1}')
        assert result.confidence == MODEL_CONFIDENCE_FLOOR

    def test_invalid_contract_dropped(self):
        result = parse_model_output('{"contract_number": "F12D", "is_valid_format": true}')
        assert result.contract_number is None
        assert result.is_valid_format is False

    def test_unknown_values_default(self):
        result = parse_model_output('{"language": "klingon", "intent": "chat"}')
        assert result.language == "fr"
        assert result.intent == "other"

    def test_no_json_raises(self):
        with pytest.raises(SchemaInvalidError):
            parse_model_output("I cannot help with that")

    def test_wrong_types_raise(self):
        with pytest.raises(SchemaInvalidError):
            parse_model_output('{"is_spam": "maybe"}')

    def test_confidence_out_of_range_raises(self):
        with pytest.raises(SchemaInvalidError):
            parse_model_output('{"confidence": 3}')

    @pytest.mark.parametrize("confidence", ['"0.9"', "true", "false"])
    def test_confidence_must_be_a_number(self, confidence):
        with pytest.raises(SchemaInvalidError):
            parse_model_output('{"intent": "status_check", "confidence": %s}' % confidence)

    def test_integer_confidence_accepted(self):
        assert parse_model_output('{"intent": "other", "confidence": 1}').confidence == 1.0


class TestLMStudioClient:
    def _client(self, session):
        return LMStudioClient(base_url="http://lm.test/", timeout=1, session=session)

    def test_generate_reads_generated_text(self):
        session = MagicMock()
        session.post.return_value.json.return_value = {"generated_text": '{"intent": "other"}'}

        client = self._client(session)
        assert client.generate("Bonjour") == '{"intent": "other"}'

        url = session.post.call_args.args[0]
        assert url == "http://lm.test/api/generate"
        assert "Bonjour" in session.post.call_args.kwargs["json"]["prompt"]

    def test_generate_reads_choices(self):
        session = MagicMock()
        session.post.return_value.json.return_value = {"choices": [{"text": "{}"}]}
        assert self._client(session).generate("x") == "{}"

    def test_timeout_maps_to_upstream_timeout(self):
        session = MagicMock()
        session.post.side_effect = requests.Timeout()
        with pytest.raises(UpstreamTimeoutError):
            self._client(session).generate("x")

    def test_http_error_maps_to_upstream_error(self):
        session = MagicMock()
        session.post.return_value.raise_for_status.side_effect = requests.HTTPError("500")
        with pytest.raises(UpstreamError):
            self._client(session).generate("x")

    def test_health(self):
        session = MagicMock()
        session.get.return_value.status_code = 200
        assert self._client(session).health() is True

        session.get.side_effect = requests.ConnectionError()
        assert self._client(session).health() is False
