"""Pull-based stream iterator over a RunAgent streaming connection.

Frames are read one at a time inside ``__next__``; there is no background
reader and no look-ahead. The iterator moves through

    AWAITING_FIRST_FRAME -> ACTIVE -> TERMINATED_OK | TERMINATED_ERROR

and closes the connection exactly once, on whichever terminal path is taken.
"""

from __future__ import annotations

import json
import logging
import threading
from enum import Enum
from typing import Any, Iterator, Protocol

from pydantic import ValidationError
from websockets.exceptions import WebSocketException

from runagent.envelope import decode_structured_object, decode_structured_string
from runagent.errors import (
    RunAgentError,
    StreamCancelledError,
    classify_frame_error,
    classify_transport_error,
    format_friendly_error,
)
from runagent.observability import NullHook, ObservabilityHook
from runagent.schemas import ErrorKind, FrameType, StreamFrame, StreamStatus

logger = logging.getLogger(__name__)

# Substrings of a status value that signal failure
FAILURE_VOCABULARY = ("error", "fail")


class StreamConnection(Protocol):
    """The slice of a websocket connection the iterator needs."""

    def send(self, message: str) -> None: ...

    def recv(self, timeout: float | None = None) -> str | bytes: ...

    def close(self) -> None: ...


class StreamState(str, Enum):
    """Lifecycle of one stream."""

    AWAITING_FIRST_FRAME = "awaiting_first_frame"
    ACTIVE = "active"
    TERMINATED_OK = "terminated_ok"
    TERMINATED_ERROR = "terminated_error"


_TERMINAL_STATES = (StreamState.TERMINATED_OK, StreamState.TERMINATED_ERROR)


def parse_frame(raw: str | bytes) -> StreamFrame:
    """Decode one raw message into a StreamFrame.

    Raises:
        RunAgentError: SERVER_ERROR when the message is not a JSON object
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        decoded = json.loads(raw)
        if not isinstance(decoded, dict):
            raise ValueError("stream message is not a JSON object")
        return StreamFrame.model_validate(decoded)
    except (ValueError, ValidationError) as e:
        err = RunAgentError(ErrorKind.SERVER, "invalid stream message", details={"raw": raw[:500]})
        raise err from e


def decode_frame_payload(frame: StreamFrame) -> Any:
    """Extract the content chunk of a data frame with one structured-string unwrap."""
    raw = frame.content if frame.content is not None else frame.data
    if raw is None:
        return None
    if isinstance(raw, dict):
        if "content" in raw:
            return raw["content"]
        return decode_structured_object(raw)
    if isinstance(raw, str):
        decoded = decode_structured_string(raw)
        if isinstance(decoded, dict):
            return decode_structured_object(decoded)
        return decoded
    return raw


def is_failure_status(status: str) -> bool:
    """Whether a lowercased status string names a failure."""
    return any(word in status for word in FAILURE_VOCABULARY)


def _embedded_error(payload: Any) -> Any:
    """Return the error carried inside a decoded data chunk, or None."""
    if not isinstance(payload, dict):
        return None
    if _has_error(payload.get("error")):
        return payload["error"]
    if str(payload.get("type") or "").lower() == FrameType.ERROR.value:
        embedded = {k: v for k, v in payload.items() if k != "type"}
        return embedded or {}
    return None


def _has_error(value: Any) -> bool:
    """Whether an error field is present; None and blank strings are absent."""
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None


def _frame_error(frame: StreamFrame) -> Any:
    if _has_error(frame.error):
        return frame.error
    extra = frame.model_extra or {}
    if isinstance(extra.get("message"), str):
        return {"message": extra["message"], "code": extra.get("code")}
    return None


class StreamIterator:
    """Blocking iterator over the content chunks of one stream.

    Usage::

        with client.run_stream(Kw("message", "hi")) as stream:
            for chunk in stream:
                print(chunk, end="")
    """

    def __init__(
        self,
        conn: StreamConnection,
        *,
        cancel: threading.Event | None = None,
        read_timeout: float | None = None,
        hook: ObservabilityHook | None = None,
    ):
        self._conn = conn
        self._cancel = cancel
        self._read_timeout = read_timeout
        self._hook = hook or NullHook()
        self._state = StreamState.AWAITING_FIRST_FRAME
        self._closed = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> Iterator[Any]:
        return self

    def __enter__(self) -> StreamIterator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __next__(self) -> Any:
        """Return the next content chunk.

        Raises:
            StopIteration: the stream completed (or was already terminated)
            StreamCancelledError: the cancellation signal was set before a read
            RunAgentError: classified stream or transport failure
        """
        while True:
            if self._state in _TERMINAL_STATES:
                raise StopIteration

            if self._cancel is not None and self._cancel.is_set():
                self._terminate(StreamState.TERMINATED_ERROR)
                raise StreamCancelledError("stream cancelled")

            frame = self._read_frame()
            self._hook.on_frame(frame)
            if self._state is StreamState.AWAITING_FIRST_FRAME:
                self._state = StreamState.ACTIVE

            frame_type = frame.frame_type
            status = frame.status_text

            if _has_error(frame.error) or frame_type is FrameType.ERROR or is_failure_status(status):
                self._fail(classify_frame_error(_frame_error(frame)))

            if frame_type is FrameType.STATUS:
                if status == StreamStatus.COMPLETED.value:
                    logger.debug("Stream completed")
                    self._terminate(StreamState.TERMINATED_OK)
                    raise StopIteration
                # stream_started and other informational statuses
                continue

            payload = decode_frame_payload(frame)
            embedded = _embedded_error(payload)
            if embedded is not None:
                self._fail(classify_frame_error(embedded))
            return payload

    def next_or_abort(self) -> Any:
        """Return the next chunk or exit the process with a friendly message.

        For quick-start scripts only; ``__next__`` is the error-raising core.
        """
        try:
            return next(self)
        except StopIteration:
            raise SystemExit("RunAgent stream: terminated before another chunk arrived")
        except RunAgentError as e:
            raise SystemExit(format_friendly_error(e)) from e

    def close(self) -> None:
        """Close the connection; later reads report end-of-stream."""
        if self._state not in _TERMINAL_STATES:
            self._terminate(StreamState.TERMINATED_OK)

    def _read_frame(self) -> StreamFrame:
        try:
            raw = self._conn.recv(timeout=self._read_timeout)
        except (WebSocketException, OSError) as e:
            err = classify_transport_error(e, "failed to read stream message")
            self._terminate(StreamState.TERMINATED_ERROR)
            raise err from e

        try:
            return parse_frame(raw)
        except RunAgentError:
            self._terminate(StreamState.TERMINATED_ERROR)
            raise

    def _fail(self, err: RunAgentError) -> None:
        logger.info(f"Stream terminated with error: {err}")
        self._terminate(StreamState.TERMINATED_ERROR)
        raise err

    def _terminate(self, state: StreamState) -> None:
        if self._state in _TERMINAL_STATES:
            return
        self._state = state
        if self._closed:
            return
        self._closed = True
        try:
            self._conn.close()
        except (WebSocketException, OSError) as e:
            logger.warning(f"Error closing stream connection: {e}")
