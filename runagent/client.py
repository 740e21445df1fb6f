"""RunAgent client: synchronous runs, streaming runs and architecture lookup."""

from __future__ import annotations

import json
import logging
import threading
from types import MappingProxyType
from typing import Any, Callable, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from websockets.exceptions import WebSocketException
from websockets.sync.client import connect as ws_connect

from runagent import __version__
from runagent.config import ClientConfig, UserSettings, first_set, load_env_config
from runagent.constants import (
    DEFAULT_STREAM_TIMEOUT_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    HANDSHAKE_TIMEOUT_SECONDS,
    is_stream_tag,
)
from runagent.envelope import normalize_architecture, normalize_response
from runagent.errors import (
    API_KEY_SUGGESTION,
    CODE_ENTRYPOINT_NOT_FOUND,
    CODE_NON_STREAM_ENTRYPOINT,
    CODE_STREAM_ENTRYPOINT,
    RunAgentError,
    StreamCancelledError,
    classify_transport_error,
    format_friendly_error,
    validation_error,
)
from runagent.observability import NullHook, ObservabilityHook
from runagent.payload import coerce_to_run_input
from runagent.resolver import RegistryLookup, resolve_endpoints
from runagent.schemas import AgentArchitecture, ErrorKind
from runagent.stream import StreamConnection, StreamIterator

logger = logging.getLogger(__name__)

USER_AGENT = f"runagent-python/{__version__}"

# (url, headers, open_timeout) -> open connection
StreamConnector = Callable[[str, dict[str, str], float], StreamConnection]


def open_websocket(url: str, headers: dict[str, str], open_timeout: float) -> StreamConnection:
    """Open a websocket connection, sending ``headers`` on the upgrade request."""
    return ws_connect(
        url,
        additional_headers=headers,
        user_agent_header=None,
        open_timeout=open_timeout,
    )


def append_token(url: str, token: str | None) -> str:
    """Add ``token=<token>`` to a URL's query string."""
    if not token:
        return url
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "token"]
    query.append(("token", token))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class RunAgentClient:
    """Client bound to one agent and one entrypoint.

    Endpoints, credential and timeout are resolved once here and never
    change afterwards. Explicit arguments win over RUNAGENT_* environment
    variables, which win over persisted settings and library defaults.

    Usage::

        client = RunAgentClient("my-agent", "chat", local=True)
        answer = client.run(Kw("message", "hello"))

        streamer = RunAgentClient("my-agent", "chat_stream", local=True)
        for chunk in streamer.run_stream(Kw("message", "hello")):
            print(chunk, end="")
    """

    def __init__(
        self,
        agent_id: str,
        entrypoint_tag: str,
        *,
        local: bool | None = None,
        host: str | None = None,
        port: int | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: int | None = None,
        async_execution: bool | None = None,
        extra_params: Mapping[str, Any] | None = None,
        http_client: httpx.Client | None = None,
        connect: StreamConnector | None = None,
        registry_lookup: RegistryLookup | None = None,
        hook: ObservabilityHook | None = None,
        environ: Mapping[str, str] | None = None,
        settings: UserSettings | None = None,
    ):
        if not agent_id or not agent_id.strip():
            raise validation_error("agent_id is required")
        if not entrypoint_tag or not entrypoint_tag.strip():
            raise validation_error("entrypoint_tag is required")

        env = load_env_config(environ)
        settings = settings if settings is not None else UserSettings.load()

        resolved_local = bool(first_set(local, env.local))
        timeout = first_set(
            timeout_seconds if timeout_seconds and timeout_seconds > 0 else None,
            env.timeout_seconds,
            DEFAULT_TIMEOUT_SECONDS,
        )

        endpoints = resolve_endpoints(
            agent_id,
            local=resolved_local,
            host=host,
            port=port,
            base_url=base_url,
            env=env,
            settings=settings,
            lookup=registry_lookup,
        )

        self.config = ClientConfig(
            agent_id=agent_id.strip(),
            entrypoint_tag=entrypoint_tag.strip(),
            local=resolved_local,
            rest_base=endpoints.rest_base,
            stream_base=endpoints.stream_base,
            timeout_seconds=timeout,
            api_key=first_set(api_key, env.api_key, settings.api_key),
            async_default=bool(async_execution),
            extra_params=MappingProxyType(dict(extra_params or {})),
        )

        self._owns_http = http_client is None
        self._http = http_client or httpx.Client(timeout=float(timeout))
        self._connect = connect or open_websocket
        self._hook = hook or NullHook()

        logger.debug(
            f"Client ready: agent={self.config.agent_id} entrypoint={self.config.entrypoint_tag} "
            f"local={self.config.local}"
        )

    @classmethod
    def from_env(cls, agent_id: str, entrypoint_tag: str, **overrides: Any) -> RunAgentClient:
        """Build a client from RUNAGENT_* variables and persisted settings."""
        return cls(agent_id, entrypoint_tag, **overrides)

    # --- Properties ---

    @property
    def agent_id(self) -> str:
        return self.config.agent_id

    @property
    def entrypoint_tag(self) -> str:
        return self.config.entrypoint_tag

    @property
    def is_stream(self) -> bool:
        return is_stream_tag(self.config.entrypoint_tag)

    @property
    def extra_params(self) -> dict[str, Any]:
        """Opaque metadata passed at construction (a copy)."""
        return dict(self.config.extra_params)

    # --- Lifecycle ---

    def close(self) -> None:
        """Release the HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> RunAgentClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --- Operations ---

    def run(self, *values: Any, cancel: threading.Event | None = None) -> Any:
        """Invoke a non-streaming entrypoint and return its normalized result.

        Args:
            values: Argument tokens (Arg/Args/Kw/Kws), records, a dict, a
                single primitive, or a prebuilt RunInput
            cancel: Checked before the request is issued

        Returns:
            The logical result value

        Raises:
            RunAgentError: VALIDATION_ERROR for a stream entrypoint or
                arguments that cannot be serialized,
                AUTHENTICATION_ERROR for a remote call without a key,
                CONNECTION_ERROR when the service cannot be reached, or the
                classified server failure
        """
        if self.is_stream:
            raise validation_error(
                "stream entrypoint must be invoked with run_stream",
                code=CODE_STREAM_ENTRYPOINT,
            )

        run_input = coerce_to_run_input(*values)
        request = run_input.to_request(
            self.config.entrypoint_tag,
            self.config.timeout_seconds,
            self.config.async_default,
        )
        headers = self._headers(purpose="remote runs")
        _check_cancelled(cancel, "run cancelled")

        url = f"{self.config.rest_base}/agents/{self.config.agent_id}/run"
        body = request.to_wire()
        content = _encode_body(body)
        self._hook.on_request("POST", url, body)
        try:
            response = self._http.post(
                url,
                content=content,
                headers=headers,
                timeout=float(request.timeout_seconds),
            )
        except httpx.TransportError as e:
            raise classify_transport_error(e, "failed to reach RunAgent service") from e

        self._hook.on_response(response.status_code, response.content)
        return normalize_response(response.status_code, response.content)

    def run_or_abort(self, *values: Any) -> Any:
        """Like run(), but exit the process with a friendly message on error."""
        try:
            return self.run(*values)
        except RunAgentError as e:
            raise SystemExit(format_friendly_error(e)) from e

    def run_stream(self, *values: Any, cancel: threading.Event | None = None) -> StreamIterator:
        """Start a streaming entrypoint and return a live iterator over its chunks.

        The credential travels as a bearer header and, in remote mode, also as
        a ``token`` query parameter. The first message sent is the same body a
        synchronous run would post.

        Raises:
            RunAgentError: VALIDATION_ERROR for a non-stream entrypoint or
                arguments that cannot be serialized,
                AUTHENTICATION_ERROR for a remote call without a key,
                CONNECTION_ERROR when the connection cannot be opened
        """
        if not self.is_stream:
            raise validation_error(
                "non-stream entrypoint must be invoked with run",
                code=CODE_NON_STREAM_ENTRYPOINT,
            )

        run_input = coerce_to_run_input(*values)
        request = run_input.to_request(self.config.entrypoint_tag, DEFAULT_STREAM_TIMEOUT_SECONDS)
        request.async_execution = False
        headers = self._headers(purpose="remote streaming")
        headers.pop("Content-Type", None)
        _check_cancelled(cancel, "stream cancelled")

        url = f"{self.config.stream_base}/agents/{self.config.agent_id}/run-stream"
        if not self.config.local:
            url = append_token(url, self.config.api_key)

        body = request.to_wire()
        handshake = _encode_body(body)
        self._hook.on_request("WEBSOCKET", url, body)
        try:
            conn = self._connect(url, headers, HANDSHAKE_TIMEOUT_SECONDS)
        except (WebSocketException, OSError) as e:
            raise classify_transport_error(e, "failed to open WebSocket connection") from e

        try:
            conn.send(handshake)
        except (WebSocketException, OSError) as e:
            conn.close()
            raise classify_transport_error(e, "failed to send stream bootstrap payload") from e

        logger.info(f"Opened stream for {self.config.agent_id}/{self.config.entrypoint_tag}")
        return StreamIterator(
            conn,
            cancel=cancel,
            read_timeout=float(request.timeout_seconds),
            hook=self._hook,
        )

    def get_architecture(self) -> AgentArchitecture:
        """Fetch the agent's entrypoints (enveloped or legacy response shape)."""
        headers = self._headers(purpose="remote calls")
        headers.pop("Content-Type", None)

        url = f"{self.config.rest_base}/agents/{self.config.agent_id}/architecture"
        self._hook.on_request("GET", url, None)
        try:
            response = self._http.get(url, headers=headers)
        except httpx.TransportError as e:
            raise classify_transport_error(e, "failed to reach RunAgent service") from e

        self._hook.on_response(response.status_code, response.content)
        return normalize_architecture(response.status_code, response.content)

    def validate_entrypoint(self) -> AgentArchitecture:
        """Check that the configured entrypoint exists on the agent."""
        architecture = self.get_architecture()
        if self.config.entrypoint_tag not in architecture.tags():
            raise validation_error(
                f"entrypoint `{self.config.entrypoint_tag}` not found in agent {self.config.agent_id}",
                code=CODE_ENTRYPOINT_NOT_FOUND,
            )
        return architecture

    def _headers(self, purpose: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        if self.config.local:
            return headers
        if not self.config.api_key:
            raise RunAgentError(
                ErrorKind.AUTHENTICATION,
                f"api_key is required for {purpose}",
                suggestion=API_KEY_SUGGESTION,
            )
        headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers


def _check_cancelled(cancel: threading.Event | None, message: str) -> None:
    if cancel is not None and cancel.is_set():
        raise StreamCancelledError(message)


def _encode_body(body: dict[str, Any]) -> str:
    try:
        return json.dumps(body)
    except (TypeError, ValueError) as e:
        err = validation_error(
            f"failed to serialize request: {e}",
            suggestion="Pass JSON-compatible values (strings, numbers, booleans, lists, dicts, None).",
        )
        raise err from e
