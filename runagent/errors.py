"""Error taxonomy and classification for RunAgent calls.

Every failure surfaced by the SDK is a :class:`RunAgentError` carrying exactly
one :class:`ErrorKind`. The classifier functions below turn HTTP statuses,
structured/unstructured error bodies, stream error payloads and transport
exceptions into those errors, and fill in remediation hints when the server
did not provide one.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from runagent.schemas import ErrorKind, ErrorPayload

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "agent execution failed"
STREAM_FAILURE_MESSAGE = "stream failed"

# Codes attached to locally raised errors
CODE_STREAM_ENTRYPOINT = "STREAM_ENTRYPOINT"
CODE_NON_STREAM_ENTRYPOINT = "NON_STREAM_ENTRYPOINT"
CODE_ARCHITECTURE_MISSING = "ARCHITECTURE_MISSING"
CODE_ENTRYPOINT_NOT_FOUND = "ENTRYPOINT_NOT_FOUND"
CODE_AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
CODE_CANCELLED = "CANCELLED"

API_KEY_SUGGESTION = "Set RUNAGENT_API_KEY or pass api_key=... for remote calls."


class RunAgentError(Exception):
    """Root error raised by the SDK."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind if isinstance(kind, ErrorKind) else ErrorKind.UNKNOWN
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.details = details

    def __str__(self) -> str:
        base = f"{self.kind.value}: {self.message}"
        if self.code:
            base = f"{base} ({self.code})"
        if self.suggestion:
            base = f"{base} | suggestion: {self.suggestion}"
        return base

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a plain mapping."""
        return {
            "type": self.kind.value,
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class RunAgentExecutionError(RunAgentError):
    """Failure reported by the agent service (explicit flag, non-2xx, or stream error)."""

    def __init__(self, *args: Any, http_status: int | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.http_status = http_status


class StreamCancelledError(RunAgentError):
    """Raised when a caller-supplied cancellation signal stops an operation."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(ErrorKind.CONNECTION, message, code=CODE_CANCELLED)


# --- Enrichment ---


def enrich(payload: ErrorPayload, kind: ErrorKind | None = None) -> ErrorPayload:
    """Fill an empty suggestion from the message, code and kind.

    Args:
        payload: Error payload to enrich in place
        kind: Resolved kind, when it differs from payload.type

    Returns:
        The same payload
    """
    if payload.suggestion:
        return payload

    msg = (payload.message or "").lower()
    code = (payload.code or "").upper()
    kind = kind or payload.type

    if "unexpected keyword argument" in msg:
        payload.suggestion = (
            "Check the entrypoint's expected parameter names. "
            "If your agent expects 'message', pass Kw('message', ...)."
        )
    elif "entrypoint" in msg and "not found" in msg:
        payload.suggestion = (
            "Verify the entrypoint tag and use client.get_architecture() to list available tags."
        )
    elif code == ErrorKind.AUTHENTICATION.value or kind == ErrorKind.AUTHENTICATION:
        payload.suggestion = API_KEY_SUGGESTION
    elif code == CODE_NON_STREAM_ENTRYPOINT:
        payload.suggestion = "Use client.run(...) for non-stream tags."
    elif code == CODE_STREAM_ENTRYPOINT:
        payload.suggestion = "Use client.run_stream(...) for *_stream tags."
    elif kind == ErrorKind.PERMISSION:
        payload.suggestion = "Check that your API key has access to this agent."
    elif kind == ErrorKind.CONNECTION:
        payload.suggestion = "Check your network connection or agent status."
    return payload


# --- Payload parsing ---


def parse_error_payload(raw: Any) -> ErrorPayload | None:
    """Parse an ``error`` field of any shape into an ErrorPayload.

    Strings become the message, mappings contribute type/code/message/
    suggestion/details, anything else is stringified. None and blank
    strings yield None.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        return ErrorPayload(message=raw) if raw.strip() else None
    if isinstance(raw, dict):
        details = raw.get("details")
        message = raw.get("message")
        if message is None:
            message = raw.get("error") if isinstance(raw.get("error"), str) else ""
        return ErrorPayload(
            type=ErrorKind.parse(raw.get("type")),
            code=_optional_str(raw.get("code")),
            message=str(message),
            suggestion=_optional_str(raw.get("suggestion")),
            details=details if isinstance(details, dict) else None,
        )
    return ErrorPayload(message=str(raw))


def extract_envelope_error(envelope: dict[str, Any]) -> ErrorPayload | None:
    """Return the failure carried by an envelope, if any.

    A non-null ``error`` field wins; otherwise ``success: false`` yields a
    payload built from ``message``. ``success: true`` with no error is clean.
    """
    payload = parse_error_payload(envelope.get("error"))
    if payload is not None:
        if not payload.message:
            payload.message = _envelope_message(envelope)
        return payload

    if envelope.get("success") is False:
        return ErrorPayload(message=_envelope_message(envelope))
    return None


def _envelope_message(envelope: dict[str, Any]) -> str:
    message = envelope.get("message")
    if isinstance(message, str) and message:
        return message
    return DEFAULT_FAILURE_MESSAGE


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


# --- Classification ---


def kind_for_status(status: int) -> ErrorKind:
    """Kind implied by an HTTP status alone."""
    if status == 401:
        return ErrorKind.AUTHENTICATION
    if status == 403:
        return ErrorKind.PERMISSION
    return ErrorKind.SERVER


def execution_error(
    payload: ErrorPayload | None,
    *,
    http_status: int | None = None,
    default_kind: ErrorKind = ErrorKind.SERVER,
) -> RunAgentExecutionError:
    """Build an enriched execution error from a parsed payload.

    An explicit ``type`` on the payload overrides ``default_kind``; a ``code``
    naming a taxonomy member is honored when ``type`` is absent.
    """
    if payload is None:
        payload = ErrorPayload(message=DEFAULT_FAILURE_MESSAGE)

    kind = payload.type
    if kind is None and payload.code:
        code_kind = ErrorKind.parse(payload.code)
        if code_kind is not ErrorKind.UNKNOWN:
            kind = code_kind
    if kind is None:
        kind = default_kind

    enrich(payload, kind)
    return RunAgentExecutionError(
        kind,
        payload.message or DEFAULT_FAILURE_MESSAGE,
        code=payload.code,
        suggestion=payload.suggestion,
        details=payload.details,
        http_status=http_status,
    )


def classify_http_error(status: int, body: bytes | str | None) -> RunAgentExecutionError:
    """Classify a non-2xx response.

    The body is probed for an envelope error; an unparseable body degrades
    to a generic error carrying the status code and never raises.
    """
    default_kind = kind_for_status(status)
    payload: ErrorPayload | None = None

    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else (body or "")
    try:
        decoded = json.loads(text) if text.strip() else None
    except json.JSONDecodeError:
        logger.warning(f"Unparseable error body for status {status}")
        decoded = None

    if isinstance(decoded, dict):
        payload = extract_envelope_error(decoded)
        if payload is None and isinstance(decoded.get("detail"), str):
            payload = ErrorPayload(message=decoded["detail"])

    if payload is None:
        payload = ErrorPayload(
            message=f"server returned status {status}",
            details={"body": text[:500]} if text.strip() else None,
        )

    return execution_error(payload, http_status=status, default_kind=default_kind)


def classify_frame_error(raw: Any) -> RunAgentExecutionError:
    """Classify the error payload of a stream frame (string, mapping, or absent)."""
    payload = parse_error_payload(raw)
    if payload is None:
        payload = ErrorPayload(message=STREAM_FAILURE_MESSAGE)
    elif not payload.message:
        payload.message = STREAM_FAILURE_MESSAGE
    return execution_error(payload)


def classify_transport_error(exc: BaseException, message: str) -> RunAgentError:
    """Wrap a failure to obtain any response as CONNECTION_ERROR.

    The original exception is kept as ``__cause__`` by the caller's
    ``raise ... from exc``.
    """
    logger.error(f"{message}: {exc}")
    payload = enrich(ErrorPayload(message=message, details={"cause": str(exc)}), ErrorKind.CONNECTION)
    return RunAgentError(
        ErrorKind.CONNECTION,
        payload.message,
        suggestion=payload.suggestion,
        details=payload.details,
    )


def validation_error(
    message: str,
    *,
    code: str | None = None,
    suggestion: str | None = None,
) -> RunAgentError:
    """Build an enriched local precondition failure."""
    payload = enrich(ErrorPayload(message=message, code=code, suggestion=suggestion), ErrorKind.VALIDATION)
    return RunAgentError(
        ErrorKind.VALIDATION,
        message,
        code=code,
        suggestion=payload.suggestion,
    )


def format_friendly_error(err: BaseException) -> str:
    """Render an error for humans, including the suggestion when present."""
    if isinstance(err, RunAgentError):
        text = f"RunAgent error: {err.message} ({err.kind.value})"
        if err.suggestion:
            text = f"{text}\nSuggestion: {err.suggestion}"
        return text
    return f"RunAgent error: {err}"
