"""Configuration sources: environment, persisted user settings, and the
immutable per-client configuration they resolve into."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from runagent.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_AGENT_HOST,
    ENV_AGENT_PORT,
    ENV_API_KEY,
    ENV_BASE_URL,
    ENV_LOCAL_AGENT,
    ENV_TIMEOUT,
    get_user_data_path,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}


def parse_bool(value: str | None) -> bool | None:
    """Parse a boolean env value; None when absent or malformed."""
    if value is None:
        return None
    text = value.strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return None


def parse_positive_int(value: str | None) -> int | None:
    """Parse a positive integer env value; None when absent or malformed."""
    if value is None or not value.strip():
        return None
    try:
        number = int(value.strip())
    except ValueError:
        return None
    return number if number > 0 else None


@dataclass(frozen=True)
class EnvConfig:
    """Settings sourced from RUNAGENT_* environment variables."""

    api_key: str | None = None
    base_url: str | None = None
    host: str | None = None
    port: int | None = None
    timeout_seconds: int | None = None
    local: bool | None = None


def load_env_config(environ: Mapping[str, str] | None = None) -> EnvConfig:
    """Snapshot the RUNAGENT_* variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)
    """
    env = os.environ if environ is None else environ

    def text(key: str) -> str | None:
        value = env.get(key, "").strip()
        return value or None

    return EnvConfig(
        api_key=text(ENV_API_KEY),
        base_url=text(ENV_BASE_URL),
        host=text(ENV_AGENT_HOST),
        port=parse_positive_int(env.get(ENV_AGENT_PORT)),
        timeout_seconds=parse_positive_int(env.get(ENV_TIMEOUT)),
        local=parse_bool(env.get(ENV_LOCAL_AGENT)),
    )


@dataclass
class UserSettings:
    """Settings persisted in ``<cache dir>/user_data.json``."""

    api_key: str | None = None
    base_url: str | None = None
    user_info: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, path: Path | str | None = None) -> UserSettings:
        """Read persisted settings; a missing or invalid file yields defaults."""
        config_path = Path(path) if path else get_user_data_path()
        if not config_path.exists():
            return cls()
        try:
            data = json.loads(config_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable config file {config_path}: {e}")
            return cls()
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {config_path}: not a JSON object")
            return cls()
        user_info = data.get("user_info")
        return cls(
            api_key=data.get("api_key") or None,
            base_url=data.get("base_url") or None,
            user_info=user_info if isinstance(user_info, dict) else {},
        )

    def save(self, path: Path | str | None = None) -> Path:
        """Write settings with owner-only permissions."""
        config_path = Path(path) if path else get_user_data_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        payload: dict[str, Any] = {"base_url": self.base_url or DEFAULT_BASE_URL, "user_info": self.user_info}
        if self.api_key:
            payload["api_key"] = self.api_key
        config_path.write_text(json.dumps(payload, indent=2) + "\n")
        config_path.chmod(0o600)
        logger.info(f"Saved settings to {config_path}")
        return config_path

    @staticmethod
    def clear(path: Path | str | None = None) -> bool:
        """Remove the settings file; returns whether one existed."""
        config_path = Path(path) if path else get_user_data_path()
        if not config_path.exists():
            return False
        config_path.unlink()
        return True

    def status(self, path: Path | str | None = None) -> dict[str, Any]:
        config_path = Path(path) if path else get_user_data_path()
        return {
            "configured": bool(self.api_key and self.base_url),
            "api_key_set": bool(self.api_key),
            "base_url": self.base_url or DEFAULT_BASE_URL,
            "user_info": self.user_info,
            "config_file": str(config_path),
            "config_exists": config_path.exists(),
        }


def first_set(*values: Any) -> Any:
    """Return the first value that is neither None nor blank."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str):
            if value.strip():
                return value.strip()
            continue
        return value
    return None


@dataclass(frozen=True)
class ClientConfig:
    """Resolved, read-only configuration shared by one client's calls."""

    agent_id: str
    entrypoint_tag: str
    local: bool
    rest_base: str
    stream_base: str
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
    api_key: str | None = None
    async_default: bool = False
    extra_params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)
