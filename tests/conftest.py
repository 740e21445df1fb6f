"""Pytest configuration and fixtures for RunAgent tests."""

import json
from collections import deque
from pathlib import Path

import httpx
import pytest

RUNAGENT_ENV_VARS = [
    "RUNAGENT_API_KEY",
    "RUNAGENT_BASE_URL",
    "RUNAGENT_LOCAL",
    "RUNAGENT_HOST",
    "RUNAGENT_PORT",
    "RUNAGENT_TIMEOUT",
    "RUNAGENT_LOGGING_LEVEL",
]


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch) -> Path:
    """Keep tests away from real RUNAGENT_* settings and ~/.runagent."""
    for name in RUNAGENT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    cache_dir = tmp_path / "runagent-home"
    monkeypatch.setenv("RUNAGENT_CACHE_DIR", str(cache_dir))
    return cache_dir


class FakeConnection:
    """In-memory stand-in for a websocket connection."""

    def __init__(self, messages):
        self._messages = deque(messages)
        self.sent = []
        self.close_calls = 0
        self.reads = 0
        self.timeouts = []

    def send(self, message):
        self.sent.append(message)

    def recv(self, timeout=None):
        if self.close_calls:
            raise OSError("connection closed")
        if not self._messages:
            raise TimeoutError("no frame arrived")
        self.reads += 1
        self.timeouts.append(timeout)
        message = self._messages.popleft()
        if isinstance(message, (str, bytes)):
            return message
        return json.dumps(message)

    def close(self):
        self.close_calls += 1

    @property
    def remaining(self) -> int:
        return len(self._messages)


@pytest.fixture
def make_connection():
    """Factory for fake streaming connections preloaded with frames."""
    return FakeConnection


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it handled."""

    def __init__(self, handler):
        self.requests = []

        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording)


@pytest.fixture
def make_transport():
    """Factory for recording HTTP transports from a handler function."""
    return RecordingTransport


@pytest.fixture
def registry_db(tmp_path: Path) -> Path:
    """Temporary path for a registry database."""
    return tmp_path / "registry.db"
