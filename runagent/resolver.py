"""Resolve an agent id to its REST and streaming base endpoints."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlsplit, urlunsplit

from runagent.config import EnvConfig, UserSettings, first_set
from runagent.constants import DEFAULT_API_PREFIX, DEFAULT_BASE_URL
from runagent.errors import CODE_AGENT_NOT_FOUND, RunAgentError, validation_error
from runagent.registry import lookup_agent
from runagent.schemas import ErrorKind

logger = logging.getLogger(__name__)

RegistryLookup = Callable[[str], tuple[str, int] | None]

_STREAM_SCHEMES = {"https": "wss", "http": "ws"}


@dataclass(frozen=True)
class Endpoints:
    """Base URLs for one agent; both already carry the API prefix."""

    rest_base: str
    stream_base: str


def normalize_remote_bases(raw: str | None, api_prefix: str = DEFAULT_API_PREFIX) -> Endpoints:
    """Derive REST and streaming bases from a remote base URL.

    A missing scheme defaults to https; the streaming base swaps http(s) for
    ws(s) and keeps host, port and path.

    Raises:
        RunAgentError: VALIDATION_ERROR for a non-HTTP scheme or missing host
    """
    url = (raw or DEFAULT_BASE_URL).strip()
    if "://" not in url:
        url = f"https://{url}"

    parts = urlsplit(url.rstrip("/"))
    scheme = parts.scheme.lower()
    if scheme not in _STREAM_SCHEMES or not parts.netloc:
        raise validation_error(
            f"invalid base URL: {raw}",
            suggestion="Use an http:// or https:// URL, e.g. https://backend.run-agent.ai",
        )

    path = parts.path.rstrip("/") + api_prefix
    rest_base = urlunsplit((scheme, parts.netloc, path, "", ""))
    stream_base = urlunsplit((_STREAM_SCHEMES[scheme], parts.netloc, path, "", ""))
    return Endpoints(rest_base=rest_base, stream_base=stream_base)


def local_bases(host: str, port: int, api_prefix: str = DEFAULT_API_PREFIX) -> Endpoints:
    return Endpoints(
        rest_base=f"http://{host}:{port}{api_prefix}",
        stream_base=f"ws://{host}:{port}{api_prefix}",
    )


def _discover_local_agent(agent_id: str, lookup: RegistryLookup) -> tuple[str, int]:
    try:
        found = lookup(agent_id)
    except sqlite3.Error as e:
        err = RunAgentError(
            ErrorKind.CONNECTION,
            "failed to open local agent registry",
            details={"cause": str(e)},
        )
        raise err from e

    if found is None:
        raise validation_error(
            f"agent {agent_id} was not found locally",
            code=CODE_AGENT_NOT_FOUND,
            suggestion="Pass host=/port= explicitly, or start and register the agent locally (runagent serve).",
        )
    return found


def resolve_endpoints(
    agent_id: str,
    *,
    local: bool,
    host: str | None = None,
    port: int | None = None,
    base_url: str | None = None,
    env: EnvConfig | None = None,
    settings: UserSettings | None = None,
    lookup: RegistryLookup | None = None,
) -> Endpoints:
    """Resolve base endpoints once, at client construction.

    Precedence is explicit value, then environment, then persisted settings
    (base URL only), then library default. In local mode a missing host or
    port is looked up in the registry.

    Raises:
        RunAgentError: VALIDATION_ERROR when a local agent cannot be located
    """
    env = env or EnvConfig()

    if local:
        resolved_host = first_set(host, env.host)
        resolved_port = first_set(port, env.port)

        if resolved_host is None or resolved_port is None:
            found_host, found_port = _discover_local_agent(agent_id, lookup or lookup_agent)
            resolved_host = resolved_host or found_host
            resolved_port = resolved_port or found_port

        if not resolved_host or not resolved_port:
            raise validation_error(
                f"unable to resolve local host/port for agent {agent_id}",
                code=CODE_AGENT_NOT_FOUND,
                suggestion="Pass host=/port= explicitly or ensure the agent is registered locally.",
            )

        endpoints = local_bases(resolved_host, int(resolved_port))
    else:
        remote = first_set(base_url, env.base_url, settings.base_url if settings else None)
        endpoints = normalize_remote_bases(remote)

    logger.debug(f"Resolved agent {agent_id}: rest={endpoints.rest_base} stream={endpoints.stream_base}")
    return endpoints
