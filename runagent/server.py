"""Mock local agent server for exercising the SDK without a deployment.

Serves the same routes a local RunAgent server exposes: architecture, a
synchronous run endpoint answering in the enveloped shape, and a websocket
run-stream endpoint emitting status/data frames.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Iterable

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from runagent import __version__
from runagent.constants import DEFAULT_API_PREFIX, is_stream_tag
from runagent.registry import LocalRegistry
from runagent.schemas import ErrorKind, RunRequest, StreamStatus

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


def echo(*args: Any, **kwargs: Any) -> dict[str, Any]:
    """Return the arguments it was called with."""
    return {"args": list(args), "kwargs": kwargs}


def echo_stream(*args: Any, **kwargs: Any) -> Iterable[Any]:
    """Yield the words of ``message`` (or each positional argument)."""
    message = kwargs.get("message")
    if isinstance(message, str):
        for word in message.split():
            yield word
        return
    yield from args


DEFAULT_HANDLERS: dict[str, Handler] = {
    "echo": echo,
    "echo_stream": echo_stream,
}


def _error_body(kind: ErrorKind, message: str, code: str | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"type": kind.value, "message": message}
    if code:
        error["code"] = code
    return {"success": False, "error": error}


def create_app(
    agent_id: str,
    handlers: dict[str, Handler] | None = None,
    registry: LocalRegistry | None = None,
) -> FastAPI:
    """Build the mock server app for one agent.

    Args:
        agent_id: The only agent id this server answers for
        handlers: Entrypoint tag to callable; streaming tags must return iterables
        registry: When given, each synchronous run is recorded in it
    """
    handlers = dict(handlers or DEFAULT_HANDLERS)
    app = FastAPI(
        title="RunAgent Local Server",
        description=f"Mock local server for agent {agent_id}",
        version=__version__,
    )

    def unknown_agent(requested: str) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content=_error_body(ErrorKind.VALIDATION, f"agent {requested} not found", "AGENT_NOT_FOUND"),
        )

    @app.get("/health")
    @app.get(f"{DEFAULT_API_PREFIX}/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "agent_id": agent_id, "server": "runagent-local", "version": __version__}

    @app.get(f"{DEFAULT_API_PREFIX}/agents/{{requested_id}}/architecture")
    async def architecture(requested_id: str) -> Any:
        if requested_id != agent_id:
            return unknown_agent(requested_id)
        return {
            "success": True,
            "data": {
                "agent_id": agent_id,
                "entrypoints": [
                    {"tag": tag, "name": getattr(fn, "__name__", tag), "description": fn.__doc__}
                    for tag, fn in handlers.items()
                ],
            },
            "message": "Agent architecture retrieved",
        }

    @app.post(f"{DEFAULT_API_PREFIX}/agents/{{requested_id}}/run")
    def run(requested_id: str, request: RunRequest) -> Any:
        if requested_id != agent_id:
            return unknown_agent(requested_id)

        logger.info(f"Run request: agent={requested_id} entrypoint={request.entrypoint_tag}")
        handler = handlers.get(request.entrypoint_tag)
        if handler is None:
            return JSONResponse(
                status_code=404,
                content=_error_body(
                    ErrorKind.VALIDATION,
                    f"entrypoint {request.entrypoint_tag} not found",
                    "ENTRYPOINT_NOT_FOUND",
                ),
            )
        if is_stream_tag(request.entrypoint_tag):
            return JSONResponse(
                status_code=400,
                content=_error_body(
                    ErrorKind.VALIDATION,
                    "stream entrypoint must be invoked over the run-stream websocket",
                    "STREAM_ENTRYPOINT",
                ),
            )

        started = time.monotonic()
        try:
            result = handler(*request.input_args, **request.input_kwargs)
        except TypeError as e:
            _record(registry, agent_id, request, None, str(e), started)
            return _error_body(ErrorKind.VALIDATION, str(e))
        except Exception as e:
            logger.error(f"Entrypoint {request.entrypoint_tag} failed: {e}", exc_info=True)
            _record(registry, agent_id, request, None, str(e), started)
            return JSONResponse(status_code=500, content=_error_body(ErrorKind.SERVER, str(e)))

        _record(registry, agent_id, request, result, None, started)
        return {
            "success": True,
            "data": {"result_data": {"data": result}},
            "message": "Agent execution completed",
        }

    @app.websocket(f"{DEFAULT_API_PREFIX}/agents/{{requested_id}}/run-stream")
    async def run_stream(websocket: WebSocket, requested_id: str) -> None:
        await websocket.accept()
        try:
            raw = await websocket.receive_text()
            try:
                request = RunRequest.model_validate_json(raw)
            except ValidationError as e:
                await _send_error(websocket, ErrorKind.VALIDATION, f"invalid stream request: {e.error_count()} errors")
                return

            if requested_id != agent_id:
                await _send_error(websocket, ErrorKind.VALIDATION, f"agent {requested_id} not found")
                return
            handler = handlers.get(request.entrypoint_tag)
            if handler is None:
                await _send_error(websocket, ErrorKind.VALIDATION, f"entrypoint {request.entrypoint_tag} not found")
                return

            await websocket.send_json({"type": "status", "status": StreamStatus.STARTED.value})
            try:
                for chunk in handler(*request.input_args, **request.input_kwargs):
                    await websocket.send_json({"type": "data", "content": chunk})
            except Exception as e:
                logger.error(f"Stream entrypoint {request.entrypoint_tag} failed: {e}")
                await _send_error(websocket, ErrorKind.SERVER, str(e))
                return
            await websocket.send_json({"type": "status", "status": StreamStatus.COMPLETED.value})
        except WebSocketDisconnect:
            logger.info("Stream client disconnected")
            return
        await websocket.close()

    return app


async def _send_error(websocket: WebSocket, kind: ErrorKind, message: str) -> None:
    await websocket.send_json({"type": "error", "error": {"type": kind.value, "message": message}})
    await websocket.close()


def _record(
    registry: LocalRegistry | None,
    agent_id: str,
    request: RunRequest,
    result: Any,
    error: str | None,
    started: float,
) -> None:
    if registry is None:
        return
    registry.record_run(
        agent_id,
        input_data=json.dumps(request.to_wire(), default=str),
        success=error is None,
        output_data=json.dumps(result, default=str) if error is None else None,
        error_message=error,
        execution_time=time.monotonic() - started,
    )
