"""Environment variable names and library defaults."""

from __future__ import annotations

import os
from pathlib import Path

# Environment variables
ENV_API_KEY = "RUNAGENT_API_KEY"
ENV_BASE_URL = "RUNAGENT_BASE_URL"
ENV_CACHE_DIR = "RUNAGENT_CACHE_DIR"
ENV_LOG_LEVEL = "RUNAGENT_LOGGING_LEVEL"
ENV_LOCAL_AGENT = "RUNAGENT_LOCAL"
ENV_AGENT_HOST = "RUNAGENT_HOST"
ENV_AGENT_PORT = "RUNAGENT_PORT"
ENV_TIMEOUT = "RUNAGENT_TIMEOUT"

# Endpoints
DEFAULT_BASE_URL = "https://backend.run-agent.ai"
DEFAULT_API_PREFIX = "/api/v1"
DEFAULT_LOCAL_HOST = "127.0.0.1"
DEFAULT_LOCAL_PORT = 8450

# Timeouts (seconds)
DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_STREAM_TIMEOUT_SECONDS = 600
HANDSHAKE_TIMEOUT_SECONDS = 30.0

# Local registry
USER_DATA_FILE_NAME = "user_data.json"
DATABASE_FILE_NAME = "runagent_local.db"
MAX_LOCAL_AGENTS = 5
PORT_RANGE_START = 8450
PORT_RANGE_END = 8500

# Entrypoint tags that always stream, plus the suffix convention
STREAM_TAG_ALIASES = frozenset({"stream", "generic_stream"})
STREAM_TAG_SUFFIX = "_stream"


def get_local_cache_directory() -> Path:
    """Return the directory holding persisted settings and the registry."""
    env_path = os.environ.get(ENV_CACHE_DIR, "").strip()
    if env_path:
        return Path(env_path)
    return Path.home() / ".runagent"


def get_database_path() -> Path:
    """Return the path of the local agent registry database."""
    return get_local_cache_directory() / DATABASE_FILE_NAME


def get_user_data_path() -> Path:
    """Return the path of the persisted user settings file."""
    return get_local_cache_directory() / USER_DATA_FILE_NAME


def is_stream_tag(entrypoint_tag: str) -> bool:
    """Whether an entrypoint tag names a streaming entrypoint."""
    tag = entrypoint_tag.strip().lower()
    return tag in STREAM_TAG_ALIASES or tag.endswith(STREAM_TAG_SUFFIX)
