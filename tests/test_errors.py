"""Tests for error classification and enrichment."""

import json

import httpx
import pytest

from runagent.errors import (
    RunAgentError,
    RunAgentExecutionError,
    StreamCancelledError,
    classify_frame_error,
    classify_http_error,
    classify_transport_error,
    enrich,
    execution_error,
    extract_envelope_error,
    format_friendly_error,
    parse_error_payload,
    validation_error,
)
from runagent.schemas import ErrorKind, ErrorPayload


class TestErrorKind:
    """Test wire value parsing."""

    def test_parse_known_values(self):
        """Full and short names map to members."""
        assert ErrorKind.parse("AUTHENTICATION_ERROR") is ErrorKind.AUTHENTICATION
        assert ErrorKind.parse("permission_error") is ErrorKind.PERMISSION
        assert ErrorKind.parse("SERVER") is ErrorKind.SERVER

    def test_parse_unknown_falls_back(self):
        """Unrecognized values become UNKNOWN, never None."""
        assert ErrorKind.parse("TEAPOT_ERROR") is ErrorKind.UNKNOWN

    def test_parse_absent(self):
        """Absent values stay absent so callers can apply defaults."""
        assert ErrorKind.parse(None) is None
        assert ErrorKind.parse("  ") is None


class TestRunAgentError:
    """Test error rendering."""

    def test_str_includes_code_and_suggestion(self):
        err = RunAgentError(ErrorKind.VALIDATION, "bad input", code="X", suggestion="fix it")
        assert str(err) == "VALIDATION_ERROR: bad input (X) | suggestion: fix it"

    def test_invalid_kind_coerced_to_unknown(self):
        """Kind is always a taxonomy member."""
        err = RunAgentError("nonsense", "boom")
        assert err.kind is ErrorKind.UNKNOWN

    def test_cancelled_error_kind(self):
        err = StreamCancelledError()
        assert err.kind is ErrorKind.CONNECTION
        assert err.code == "CANCELLED"

    def test_friendly_format(self):
        err = RunAgentError(ErrorKind.SERVER, "it broke", suggestion="try again")
        assert format_friendly_error(err) == "RunAgent error: it broke (SERVER_ERROR)\nSuggestion: try again"
        assert format_friendly_error(ValueError("plain")) == "RunAgent error: plain"


class TestEnrichment:
    """Test suggestion rules."""

    def test_unexpected_keyword(self):
        payload = enrich(ErrorPayload(message="run() got an Unexpected Keyword Argument 'foo'"))
        assert "parameter names" in payload.suggestion

    def test_entrypoint_not_found(self):
        payload = enrich(ErrorPayload(message="Entrypoint chat not found"))
        assert "get_architecture" in payload.suggestion

    def test_authentication_kind(self):
        payload = enrich(ErrorPayload(message="denied"), ErrorKind.AUTHENTICATION)
        assert "RUNAGENT_API_KEY" in payload.suggestion

    def test_stream_codes(self):
        assert "run_stream" in enrich(ErrorPayload(message="x", code="STREAM_ENTRYPOINT")).suggestion
        assert "client.run(" in enrich(ErrorPayload(message="x", code="NON_STREAM_ENTRYPOINT")).suggestion

    def test_existing_suggestion_kept(self):
        payload = enrich(ErrorPayload(message="unexpected keyword argument", suggestion="server hint"))
        assert payload.suggestion == "server hint"

    def test_no_match_leaves_empty(self):
        payload = enrich(ErrorPayload(message="something odd"), ErrorKind.SERVER)
        assert payload.suggestion is None


class TestPayloadParsing:
    """Test error field and envelope parsing."""

    def test_string_error(self):
        assert parse_error_payload("boom").message == "boom"

    def test_blank_and_null_error(self):
        assert parse_error_payload(None) is None
        assert parse_error_payload("") is None

    def test_structured_error(self):
        payload = parse_error_payload({
            "type": "VALIDATION_ERROR",
            "code": "BAD",
            "message": "nope",
            "suggestion": "fix",
            "details": {"field": "x"},
        })
        assert payload.type is ErrorKind.VALIDATION
        assert payload.code == "BAD"
        assert payload.details == {"field": "x"}

    def test_success_false_uses_message(self):
        payload = extract_envelope_error({"success": False, "message": "agent crashed"})
        assert payload.message == "agent crashed"

    def test_success_false_default_message(self):
        payload = extract_envelope_error({"success": False})
        assert payload.message == "agent execution failed"

    def test_clean_envelope(self):
        assert extract_envelope_error({"success": True, "data": 1, "error": None}) is None


class TestHttpClassification:
    """Test status and body classification."""

    @pytest.mark.parametrize(
        "status,kind",
        [(401, ErrorKind.AUTHENTICATION), (403, ErrorKind.PERMISSION), (500, ErrorKind.SERVER), (503, ErrorKind.SERVER)],
    )
    def test_status_mapping(self, status, kind):
        err = classify_http_error(status, b"")
        assert isinstance(err, RunAgentExecutionError)
        assert err.kind is kind
        assert err.http_status == status

    def test_body_type_overrides_status(self):
        body = json.dumps({"success": False, "error": {"type": "VALIDATION_ERROR", "message": "bad tag"}})
        err = classify_http_error(500, body.encode())
        assert err.kind is ErrorKind.VALIDATION
        assert err.message == "bad tag"

    def test_code_naming_kind_overrides_status(self):
        body = json.dumps({"error": {"code": "AUTHENTICATION_ERROR", "message": "expired"}})
        err = classify_http_error(400, body.encode())
        assert err.kind is ErrorKind.AUTHENTICATION
        assert "RUNAGENT_API_KEY" in err.suggestion

    def test_non_json_body_degrades(self):
        """Malformed bodies never raise a secondary parse error."""
        err = classify_http_error(502, b"<html>Bad Gateway</html>")
        assert err.kind is ErrorKind.SERVER
        assert "502" in err.message
        assert err.details == {"body": "<html>Bad Gateway</html>"}

    def test_fastapi_detail_body(self):
        err = classify_http_error(422, json.dumps({"detail": "invalid payload"}).encode())
        assert err.message == "invalid payload"
        assert err.kind is ErrorKind.SERVER

    def test_auth_status_gets_suggestion(self):
        err = classify_http_error(401, b'{"error": "invalid token"}')
        assert err.message == "invalid token"
        assert err.suggestion


class TestOtherClassification:
    """Test stream, transport and local errors."""

    def test_frame_error_absent(self):
        err = classify_frame_error(None)
        assert err.message == "stream failed"
        assert err.kind is ErrorKind.SERVER

    def test_frame_error_structured(self):
        err = classify_frame_error({"type": "PERMISSION_ERROR", "message": "no access"})
        assert err.kind is ErrorKind.PERMISSION

    def test_transport_error_is_connection(self):
        cause = httpx.ConnectError("dns failure")
        err = classify_transport_error(cause, "failed to reach RunAgent service")
        assert err.kind is ErrorKind.CONNECTION
        assert "network" in err.suggestion

    def test_execution_error_default_payload(self):
        err = execution_error(None)
        assert err.kind is ErrorKind.SERVER
        assert err.message == "agent execution failed"

    def test_validation_error(self):
        err = validation_error("wrong op", code="STREAM_ENTRYPOINT")
        assert err.kind is ErrorKind.VALIDATION
        assert "run_stream" in err.suggestion
