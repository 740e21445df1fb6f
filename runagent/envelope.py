"""Response normalization for synchronous calls.

Servers answer with several coexisting envelope shapes. They are recognized
by an ordered list of shape matchers; the first matcher that applies decides
the logical value and nothing after it is consulted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from runagent.errors import (
    CODE_ARCHITECTURE_MISSING,
    RunAgentError,
    classify_http_error,
    execution_error,
    extract_envelope_error,
)
from runagent.schemas import AgentArchitecture, EntryPoint, ErrorKind

logger = logging.getLogger(__name__)


# --- Structured-string unwrap ---


def decode_structured_string(value: str) -> Any:
    """Decode one level of a structured string.

    Text that parses as JSON (including a JSON-quoted string) is decoded;
    anything else is returned unchanged. Never loops to a fixed point.
    """
    if not value:
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def decode_structured_object(obj: dict[str, Any]) -> Any:
    """Unwrap a ``payload`` field (string or native) when present."""
    if "payload" in obj:
        payload = obj["payload"]
        if isinstance(payload, str):
            return decode_structured_string(payload)
        return payload
    return obj


def _payload_unwrap(value: Any) -> Any:
    if isinstance(value, dict):
        return decode_structured_object(value)
    return value


# --- Envelope shapes ---


class EnvelopeShape(str, Enum):
    """Recognized success envelope shapes, in priority order."""

    STRING_DATA = "string_data"
    NESTED_RESULT_DATA = "nested_result_data"
    PLAIN_DATA = "plain_data"
    DATA_CONTENT = "data_content"
    DATA_OBJECT = "data_object"
    DATA_VALUE = "data_value"
    LEGACY_PAYLOAD = "legacy_payload"
    LEGACY_OUTPUT_DATA = "legacy_output_data"
    BARE = "bare"


@dataclass(frozen=True)
class ShapeMatch:
    """The shape an envelope was recognized as and the value it carries."""

    shape: EnvelopeShape
    value: Any


def _unwrap_data_mapping(data: dict[str, Any]) -> ShapeMatch:
    result_data = data.get("result_data")
    if isinstance(result_data, dict) and "data" in result_data:
        return ShapeMatch(EnvelopeShape.NESTED_RESULT_DATA, _payload_unwrap(result_data["data"]))
    if "data" in data:
        return ShapeMatch(EnvelopeShape.PLAIN_DATA, _payload_unwrap(data["data"]))
    if "content" in data:
        return ShapeMatch(EnvelopeShape.DATA_CONTENT, _payload_unwrap(data["content"]))
    return ShapeMatch(EnvelopeShape.DATA_OBJECT, decode_structured_object(data))


def _match_data(envelope: dict[str, Any]) -> ShapeMatch | None:
    data = envelope.get("data")
    if data is None:
        return None
    if isinstance(data, str):
        decoded = decode_structured_string(data)
        if isinstance(decoded, dict):
            inner = _unwrap_data_mapping(decoded)
            return ShapeMatch(EnvelopeShape.STRING_DATA, inner.value)
        return ShapeMatch(EnvelopeShape.STRING_DATA, decoded)
    if isinstance(data, dict):
        return _unwrap_data_mapping(data)
    return ShapeMatch(EnvelopeShape.DATA_VALUE, data)


def _match_legacy_payload(envelope: dict[str, Any]) -> ShapeMatch | None:
    if "payload" not in envelope:
        return None
    payload = envelope["payload"]
    if isinstance(payload, str):
        payload = decode_structured_string(payload)
    return ShapeMatch(EnvelopeShape.LEGACY_PAYLOAD, payload)


def _match_legacy_output_data(envelope: dict[str, Any]) -> ShapeMatch | None:
    if "output_data" not in envelope:
        return None
    return ShapeMatch(EnvelopeShape.LEGACY_OUTPUT_DATA, envelope["output_data"])


SHAPE_MATCHERS: tuple[Callable[[dict[str, Any]], ShapeMatch | None], ...] = (
    _match_data,
    _match_legacy_payload,
    _match_legacy_output_data,
)


def resolve_envelope(envelope: dict[str, Any]) -> ShapeMatch:
    """Reduce a success envelope to its single logical value.

    Matchers are tried in fixed priority order; the first match wins and the
    whole envelope is returned verbatim when none applies.
    """
    for matcher in SHAPE_MATCHERS:
        match = matcher(envelope)
        if match is not None:
            return match
    return ShapeMatch(EnvelopeShape.BARE, envelope)


# --- Response normalization ---


def normalize_response(status: int, body: bytes | str) -> Any:
    """Classify a synchronous response and extract its logical value.

    Args:
        status: HTTP status code
        body: Raw response body

    Returns:
        The logical result value

    Raises:
        RunAgentExecutionError: non-2xx status or an embedded failure indicator
    """
    if not 200 <= status < 300:
        raise classify_http_error(status, body)

    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        # Plain-text outputs are values, not errors
        return decode_structured_string(text)

    if not isinstance(decoded, dict):
        return decoded

    failure = extract_envelope_error(decoded)
    if failure is not None:
        raise execution_error(failure, http_status=status)

    match = resolve_envelope(decoded)
    logger.debug(f"Resolved response envelope as {match.shape.value}")
    return match.value


# --- Architecture ---

_ENVELOPE_KEYS = ("success", "message", "error")


def _architecture_missing() -> RunAgentError:
    return RunAgentError(
        ErrorKind.VALIDATION,
        "architecture missing entrypoints",
        code=CODE_ARCHITECTURE_MISSING,
        suggestion="Redeploy the agent with entrypoints configured.",
    )


def normalize_architecture(status: int, body: bytes | str) -> AgentArchitecture:
    """Normalize an architecture lookup in enveloped or legacy bare shape.

    Raises:
        RunAgentError: classified HTTP/envelope failure, VALIDATION_ERROR
            (ARCHITECTURE_MISSING) for an empty entrypoint list, or
            UNKNOWN_ERROR for an undecodable body
    """
    if not 200 <= status < 300:
        raise classify_http_error(status, body)

    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise RunAgentError(ErrorKind.UNKNOWN, "failed to decode architecture") from e
    if not isinstance(decoded, dict):
        raise RunAgentError(ErrorKind.UNKNOWN, "failed to decode architecture")

    if any(key in decoded for key in _ENVELOPE_KEYS):
        failure = extract_envelope_error(decoded)
        if failure is not None:
            raise execution_error(failure, http_status=status)
        if decoded.get("success") is not True:
            raise RunAgentError(ErrorKind.SERVER, "failed to retrieve agent architecture")
        source = decoded.get("data") if isinstance(decoded.get("data"), dict) else {}
    else:
        source = decoded

    raw_entrypoints = source.get("entrypoints") or []
    if not isinstance(raw_entrypoints, list) or not raw_entrypoints:
        raise _architecture_missing()

    try:
        entrypoints = [EntryPoint.model_validate(ep) for ep in raw_entrypoints]
    except ValidationError as e:
        raise RunAgentError(ErrorKind.UNKNOWN, "failed to decode architecture entrypoints") from e

    agent_id = source.get("agent_id")
    return AgentArchitecture(
        agent_id=str(agent_id) if agent_id is not None else None,
        entrypoints=entrypoints,
    )
