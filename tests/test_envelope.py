"""Tests for response and architecture normalization."""

import json

import pytest

from runagent.envelope import (
    EnvelopeShape,
    decode_structured_object,
    decode_structured_string,
    normalize_architecture,
    normalize_response,
    resolve_envelope,
)
from runagent.errors import RunAgentError, RunAgentExecutionError
from runagent.schemas import ErrorKind


def body(value) -> bytes:
    return json.dumps(value).encode()


class TestStructuredStrings:
    """Test one-level structured-string decoding."""

    def test_json_text_decoded(self):
        assert decode_structured_string('{"a": 1}') == {"a": 1}
        assert decode_structured_string("42") == 42

    def test_json_quoted_string_unquoted(self):
        assert decode_structured_string('"hello"') == "hello"

    @pytest.mark.parametrize(
        "text",
        ["'hello'", "'Hi' is what I said, she replied 'ok'", "''x''", "it's fine"],
    )
    def test_apostrophes_preserved(self, text):
        """Single-quoted plain text is not an encoding and stays intact."""
        assert decode_structured_string(text) == text

    @pytest.mark.parametrize("text", ["hello world", "'quoted'", "''x''", ""])
    def test_decode_idempotent_on_plain_text(self, text):
        once = decode_structured_string(text)
        assert decode_structured_string(once) == once

    def test_plain_text_unchanged(self):
        assert decode_structured_string("hello world") == "hello world"

    def test_single_level_only(self):
        """A JSON string containing JSON is decoded one level."""
        twice = json.dumps(json.dumps({"a": 1}))
        assert decode_structured_string(twice) == '{"a": 1}'

    def test_payload_object_unwrapped(self):
        assert decode_structured_object({"payload": '{"x": 2}'}) == {"x": 2}
        assert decode_structured_object({"payload": [1]}) == [1]
        assert decode_structured_object({"other": 1}) == {"other": 1}


class TestEnvelopeShapes:
    """Test shape recognition priority."""

    def test_nested_result_data(self):
        match = resolve_envelope({"success": True, "data": {"result_data": {"data": {"x": 1}}}})
        assert match.shape is EnvelopeShape.NESTED_RESULT_DATA
        assert match.value == {"x": 1}

    def test_string_data_with_nested_result(self):
        """A data string holding the nested form yields the innermost value."""
        envelope = {"data": json.dumps({"result_data": {"data": {"x": 1}}})}
        match = resolve_envelope(envelope)
        assert match.shape is EnvelopeShape.STRING_DATA
        assert match.value == {"x": 1}

    def test_string_data_plain(self):
        assert resolve_envelope({"data": "just text"}).value == "just text"

    def test_plain_data(self):
        match = resolve_envelope({"data": {"data": [1, 2]}})
        assert match.shape is EnvelopeShape.PLAIN_DATA
        assert match.value == [1, 2]

    def test_data_content(self):
        match = resolve_envelope({"data": {"content": "hi"}})
        assert match.shape is EnvelopeShape.DATA_CONTENT
        assert match.value == "hi"

    def test_data_object(self):
        match = resolve_envelope({"data": {"answer": 42}})
        assert match.shape is EnvelopeShape.DATA_OBJECT
        assert match.value == {"answer": 42}

    def test_data_scalar(self):
        match = resolve_envelope({"data": 7})
        assert match.shape is EnvelopeShape.DATA_VALUE
        assert match.value == 7

    def test_legacy_payload(self):
        match = resolve_envelope({"payload": '"done"'})
        assert match.shape is EnvelopeShape.LEGACY_PAYLOAD
        assert match.value == "done"

    def test_legacy_output_data(self):
        match = resolve_envelope({"output_data": {"y": 2}})
        assert match.shape is EnvelopeShape.LEGACY_OUTPUT_DATA
        assert match.value == {"y": 2}

    def test_data_beats_legacy_fields(self):
        assert resolve_envelope({"data": 1, "payload": 2, "output_data": 3}).value == 1

    def test_null_data_falls_through(self):
        assert resolve_envelope({"data": None, "output_data": "x"}).value == "x"

    def test_bare_envelope(self):
        match = resolve_envelope({"answer": 42})
        assert match.shape is EnvelopeShape.BARE
        assert match.value == {"answer": 42}


class TestNormalizeResponse:
    """Test synchronous response classification."""

    def test_success_returns_value(self):
        assert normalize_response(200, body({"success": True, "data": {"result_data": {"data": "ok"}}})) == "ok"

    def test_failure_flag_raises_with_message(self):
        with pytest.raises(RunAgentExecutionError) as exc_info:
            normalize_response(200, body({"success": False, "message": "agent crashed"}))
        assert exc_info.value.kind is ErrorKind.SERVER
        assert exc_info.value.message == "agent crashed"

    def test_error_field_raises_even_with_data(self):
        """An error field always wins over any data."""
        payload = {"success": True, "data": {"x": 1}, "error": {"type": "VALIDATION_ERROR", "message": "bad"}}
        with pytest.raises(RunAgentExecutionError) as exc_info:
            normalize_response(200, body(payload))
        assert exc_info.value.kind is ErrorKind.VALIDATION

    def test_blank_error_string_ignored(self):
        assert normalize_response(200, body({"error": "", "data": 3})) == 3

    @pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
    def test_non_success_status_never_returns(self, status):
        with pytest.raises(RunAgentExecutionError):
            normalize_response(status, body({"success": True, "data": "looks fine"}))

    def test_plain_text_body_is_value(self):
        assert normalize_response(200, b"hello there") == "hello there"

    def test_apostrophe_bounded_body_unchanged(self):
        text = "'Hi' is what I said, she replied 'ok'"
        assert normalize_response(200, text.encode()) == text

    def test_non_object_json_returned_as_is(self):
        assert normalize_response(200, b"[1, 2, 3]") == [1, 2, 3]

    def test_str_body_accepted(self):
        assert normalize_response(200, '{"data": 5}') == 5


class TestNormalizeArchitecture:
    """Test architecture lookups."""

    ENTRYPOINTS = [{"tag": "chat", "name": "chat"}, {"tag": "chat_stream"}]

    def test_enveloped(self):
        arch = normalize_architecture(
            200, body({"success": True, "data": {"agent_id": "a1", "entrypoints": self.ENTRYPOINTS}})
        )
        assert arch.agent_id == "a1"
        assert arch.tags() == ["chat", "chat_stream"]
        assert arch.entrypoints[1].is_stream

    def test_legacy_bare(self):
        arch = normalize_architecture(200, body({"agent_id": "a1", "entrypoints": self.ENTRYPOINTS}))
        assert arch.tags() == ["chat", "chat_stream"]

    def test_envelope_failure(self):
        with pytest.raises(RunAgentExecutionError) as exc_info:
            normalize_architecture(200, body({"success": False, "error": {"type": "PERMISSION_ERROR", "message": "no"}}))
        assert exc_info.value.kind is ErrorKind.PERMISSION

    def test_envelope_without_success(self):
        with pytest.raises(RunAgentError) as exc_info:
            normalize_architecture(200, body({"message": "hm", "data": {"entrypoints": self.ENTRYPOINTS}}))
        assert exc_info.value.kind is ErrorKind.SERVER

    @pytest.mark.parametrize(
        "payload",
        [{"success": True, "data": {"entrypoints": []}}, {"entrypoints": []}, {"agent_id": "a1"}],
    )
    def test_missing_entrypoints(self, payload):
        with pytest.raises(RunAgentError) as exc_info:
            normalize_architecture(200, body(payload))
        assert exc_info.value.kind is ErrorKind.VALIDATION
        assert exc_info.value.code == "ARCHITECTURE_MISSING"

    def test_undecodable_body(self):
        with pytest.raises(RunAgentError) as exc_info:
            normalize_architecture(200, b"not json")
        assert exc_info.value.kind is ErrorKind.UNKNOWN

    def test_http_error(self):
        with pytest.raises(RunAgentExecutionError) as exc_info:
            normalize_architecture(401, b"")
        assert exc_info.value.kind is ErrorKind.AUTHENTICATION
