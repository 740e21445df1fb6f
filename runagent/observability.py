"""Injectable observability hooks for request, response and frame tracing."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MAX_LOGGED_BODY_CHARS = 2000


class ObservabilityHook(Protocol):
    """Receives tracing callbacks from the client and stream iterator."""

    def on_request(self, method: str, url: str, body: Any) -> None: ...

    def on_response(self, status: int, body: bytes) -> None: ...

    def on_frame(self, frame: Any) -> None: ...


class NullHook:
    """Default hook; does nothing."""

    def on_request(self, method: str, url: str, body: Any) -> None:
        pass

    def on_response(self, status: int, body: bytes) -> None:
        pass

    def on_frame(self, frame: Any) -> None:
        pass


class LoggingHook:
    """Emit request/response/frame traces at DEBUG level."""

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def on_request(self, method: str, url: str, body: Any) -> None:
        self._log.debug(f"Request {method} {url}: {_truncate(repr(body))}")

    def on_response(self, status: int, body: bytes) -> None:
        text = body.decode("utf-8", errors="replace")
        self._log.debug(f"Response {status}: {_truncate(text)}")

    def on_frame(self, frame: Any) -> None:
        self._log.debug(f"Stream frame: {_truncate(repr(frame))}")


def _truncate(text: str) -> str:
    if len(text) <= MAX_LOGGED_BODY_CHARS:
        return text
    return text[:MAX_LOGGED_BODY_CHARS] + "..."
