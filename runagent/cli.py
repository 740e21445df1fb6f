"""CLI for RunAgent - invoke agents, inspect them, and run a local mock server."""

from __future__ import annotations

import functools
import json
import logging
import os
import sys
from typing import Any, Callable

import click

from runagent import __version__
from runagent.constants import ENV_LOG_LEVEL

# Tag used by commands that only inspect an agent and never run an entrypoint
INSPECT_TAG = "architecture"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.environ.get(ENV_LOG_LEVEL, "WARNING").upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.WARNING), format=LOG_FORMAT)


def _parse_value(raw: str) -> Any:
    """Interpret a CLI value as JSON when possible, else as a string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def _parse_kwargs(pairs: tuple[str, ...]) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got '{pair}'", param_hint="--kw")
        kwargs[key] = _parse_value(value)
    return kwargs


def _echo_result(result: Any, as_json: bool) -> None:
    if as_json or not isinstance(result, str):
        click.echo(json.dumps(result, indent=2, default=str))
    else:
        click.echo(result)


def handle_errors(fn: Callable[..., None]) -> Callable[..., None]:
    """Render RunAgent errors with their suggestion and exit with status 1."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> None:
        from runagent.errors import RunAgentError, format_friendly_error

        try:
            fn(*args, **kwargs)
        except RunAgentError as e:
            click.echo(format_friendly_error(e), err=True)
            sys.exit(1)

    return wrapper


def connection_options(fn: Callable[..., None]) -> Callable[..., None]:
    """Options shared by every command that talks to an agent."""
    options = [
        click.option("--local/--remote", "local", default=None, help="Target a local agent (default: RUNAGENT_LOCAL)"),
        click.option("--host", default=None, help="Local agent host"),
        click.option("--port", type=int, default=None, help="Local agent port"),
        click.option("--base-url", default=None, help="Remote base URL"),
        click.option("--api-key", default=None, help="API key for remote agents"),
        click.option("--timeout", type=int, default=None, help="Timeout in seconds"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def _build_client(agent_id: str, entrypoint: str, **conn: Any):
    from runagent.client import RunAgentClient
    from runagent.observability import LoggingHook

    return RunAgentClient(
        agent_id,
        entrypoint,
        local=conn["local"],
        host=conn["host"],
        port=conn["port"],
        base_url=conn["base_url"],
        api_key=conn["api_key"],
        timeout_seconds=conn["timeout"],
        hook=LoggingHook(),
    )


@click.group()
@click.version_option(version=__version__, prog_name="runagent")
@click.option("--verbose", "-v", is_flag=True, help="Log requests, responses and stream frames")
def main(verbose: bool) -> None:
    """RunAgent - invoke local and remote AI agents.

    Run entrypoints, stream their output, and inspect agent architecture.
    """
    _configure_logging(verbose)


@main.command()
@click.argument("agent_id")
@click.argument("entrypoint")
@click.option("--arg", "-a", "args", multiple=True, help="Positional argument (JSON or string)")
@click.option("--kw", "-k", "kws", multiple=True, help="Named argument as key=value (value JSON or string)")
@click.option("--json", "as_json", is_flag=True, help="Always print the result as JSON")
@connection_options
@handle_errors
def run(agent_id: str, entrypoint: str, args: tuple[str, ...], kws: tuple[str, ...], as_json: bool, **conn: Any) -> None:
    """Run a non-streaming entrypoint and print its result.

    \b
    Example:
        runagent run my-agent echo --kw message=hello --local
        runagent run my-agent solve --arg 4 --arg '"x"' --api-key $KEY
    """
    from runagent.payload import Args, Kws

    with _build_client(agent_id, entrypoint, **conn) as client:
        result = client.run(Args(*[_parse_value(a) for a in args]), Kws(_parse_kwargs(kws)))
    _echo_result(result, as_json)


@main.command()
@click.argument("agent_id")
@click.argument("entrypoint")
@click.option("--arg", "-a", "args", multiple=True, help="Positional argument (JSON or string)")
@click.option("--kw", "-k", "kws", multiple=True, help="Named argument as key=value (value JSON or string)")
@connection_options
@handle_errors
def stream(agent_id: str, entrypoint: str, args: tuple[str, ...], kws: tuple[str, ...], **conn: Any) -> None:
    """Run a streaming entrypoint and print chunks as they arrive.

    \b
    Example:
        runagent stream my-agent echo_stream --kw message="hello there" --local
    """
    from runagent.payload import Args, Kws

    with _build_client(agent_id, entrypoint, **conn) as client:
        with client.run_stream(Args(*[_parse_value(a) for a in args]), Kws(_parse_kwargs(kws))) as chunks:
            for chunk in chunks:
                text = chunk if isinstance(chunk, str) else json.dumps(chunk, default=str)
                click.echo(text)


@main.command()
@click.argument("agent_id")
@click.option("--check", "entrypoint", default=None, help="Fail unless this entrypoint exists")
@connection_options
@handle_errors
def architecture(agent_id: str, entrypoint: str | None, **conn: Any) -> None:
    """List an agent's entrypoints."""
    with _build_client(agent_id, entrypoint or INSPECT_TAG, **conn) as client:
        arch = client.validate_entrypoint() if entrypoint else client.get_architecture()

    click.echo(f"Agent: {arch.agent_id or agent_id}")
    for ep in arch.entrypoints:
        kind = "stream" if ep.is_stream else "run"
        description = f" - {ep.description.strip()}" if ep.description else ""
        click.echo(f"  - {ep.tag} ({kind}){description}")


# --- Persisted settings ---


@main.group()
def config() -> None:
    """Show or change persisted settings."""


@config.command("show")
def config_show() -> None:
    """Show persisted settings (the API key is never printed)."""
    from runagent.config import UserSettings

    status = UserSettings.load().status()
    for key, value in status.items():
        click.echo(f"{key}: {value}")


@config.command("set")
@click.option("--api-key", default=None, help="API key for remote agents")
@click.option("--base-url", default=None, help="Remote base URL")
def config_set(api_key: str | None, base_url: str | None) -> None:
    """Persist an API key and/or base URL."""
    from runagent.config import UserSettings

    if api_key is None and base_url is None:
        raise click.UsageError("Pass --api-key and/or --base-url")

    settings = UserSettings.load()
    if api_key is not None:
        settings.api_key = api_key
    if base_url is not None:
        settings.base_url = base_url if "://" in base_url else f"https://{base_url}"
    path = settings.save()
    click.echo(f"Saved settings to {path}")


@config.command("clear")
@click.confirmation_option(prompt="Are you sure you want to remove persisted settings?")
def config_clear() -> None:
    """Remove persisted settings."""
    from runagent.config import UserSettings

    if UserSettings.clear():
        click.echo("Settings removed")
    else:
        click.echo("No settings file found")


# --- Local registry ---


@main.group()
def agents() -> None:
    """Manage the local agent registry."""


@agents.command("list")
def agents_list() -> None:
    """List locally registered agents."""
    from runagent.registry import LocalRegistry

    registry = LocalRegistry()
    info = registry.capacity_info()
    if not info.agents:
        click.echo("No local agents registered. Run 'runagent serve' to start one.")
        return

    click.echo(f"Local agents ({info.current_count}/{info.max_capacity}):")
    for record in registry.list_agents():
        click.echo(
            f"  - {record.agent_id} @ {record.address} [{record.status}] "
            f"runs={record.run_count} ok={record.success_count} errors={record.error_count}"
        )


@agents.command("add")
@click.argument("agent_id")
@click.option("--path", "agent_path", default="", help="Agent source directory")
@click.option("--host", default=None, help="Host (allocated when omitted)")
@click.option("--port", type=int, default=None, help="Port (allocated when omitted)")
@click.option("--framework", default=None, help="Agent framework name")
def agents_add(agent_id: str, agent_path: str, host: str | None, port: int | None, framework: str | None) -> None:
    """Register an agent address in the local registry."""
    from runagent.registry import LocalRegistry

    result = LocalRegistry().add_agent(agent_id, agent_path=agent_path, host=host, port=port, framework=framework)
    if not result.success:
        click.echo(f"Failed: {result.error} ({result.code})", err=True)
        sys.exit(1)
    click.echo(f"Registered {agent_id} at {result.address}")


@agents.command("remove")
@click.argument("agent_id")
def agents_remove(agent_id: str) -> None:
    """Remove an agent from the local registry."""
    from runagent.registry import LocalRegistry

    if LocalRegistry().remove_agent(agent_id):
        click.echo(f"Removed {agent_id}")
    else:
        click.echo(f"Agent {agent_id} is not registered", err=True)
        sys.exit(1)


# --- Mock server ---


@main.command()
@click.argument("agent_id")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", type=int, default=None, help="Port to bind to (allocated when omitted)")
@click.option("--no-register", is_flag=True, help="Do not add the agent to the local registry")
def serve(agent_id: str, host: str, port: int | None, no_register: bool) -> None:
    """Start a mock local agent server with echo entrypoints.

    \b
    Example:
        runagent serve demo-agent
        runagent run demo-agent echo --kw message=hi --local
    """
    import uvicorn

    from runagent.registry import LocalRegistry, allocate_address
    from runagent.server import create_app

    registry = None if no_register else LocalRegistry()
    if registry is not None:
        existing = registry.get_agent(agent_id)
        if existing is not None:
            host = existing.host
            if port is not None and port != existing.port:
                registry.update_address(agent_id, host, port)
            port = port or existing.port
        else:
            result = registry.add_agent(agent_id, host=host, port=port)
            if not result.success:
                click.echo(f"Failed to register agent: {result.error} ({result.code})", err=True)
                sys.exit(1)
            port = result.allocated_port
    elif port is None:
        _, port = allocate_address(host=host)

    click.echo(f"Starting RunAgent mock server for '{agent_id}' on {host}:{port}")
    uvicorn.run(create_app(agent_id, registry=registry), host=host, port=port)


if __name__ == "__main__":
    main()
