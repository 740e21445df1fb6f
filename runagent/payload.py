"""Argument tokens and their reduction into a canonical run payload.

Callers mix tokens freely::

    client.run(Arg("q"), Arg(4))             # positional
    client.run(Kws({"m": 3}))                # named
    client.run(Args("q", 4), Kw("m", 3))     # mixed
    client.run(MyRecord(...))                # dataclass/pydantic -> named
    client.run("hello")                      # single primitive -> positional
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Iterator, Mapping, Sequence, Set
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from runagent.errors import validation_error
from runagent.schemas import RunRequest


@dataclass(frozen=True)
class Arg:
    """One positional argument."""

    value: Any


@dataclass(frozen=True, init=False)
class Args:
    """Several positional arguments, in order."""

    values: tuple[Any, ...]

    def __init__(self, *values: Any):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Kw:
    """One named argument."""

    key: str
    value: Any


@dataclass(frozen=True)
class Kws:
    """A mapping of named arguments."""

    mapping: dict[str, Any]


@dataclass
class RunInput:
    """Canonical request payload.

    Both collections are always present, possibly empty. ``None`` overrides
    inherit the client defaults.
    """

    positional_args: list[Any] = field(default_factory=list)
    named_args: dict[str, Any] = field(default_factory=dict)
    timeout_seconds: int | None = None
    async_execution: bool | None = None

    def __post_init__(self) -> None:
        if self.positional_args is None:
            self.positional_args = []
        if self.named_args is None:
            self.named_args = {}

    def to_request(
        self,
        entrypoint_tag: str,
        fallback_timeout: int,
        default_async: bool = False,
    ) -> RunRequest:
        """Build the wire request, applying per-call overrides."""
        timeout = self.timeout_seconds if self.timeout_seconds and self.timeout_seconds > 0 else fallback_timeout
        async_execution = default_async if self.async_execution is None else self.async_execution
        return RunRequest(
            entrypoint_tag=entrypoint_tag,
            input_args=list(self.positional_args),
            input_kwargs=dict(self.named_args),
            timeout_seconds=timeout,
            async_execution=async_execution,
        )


# Bare collections are ambiguous between one argument and many
_COLLECTION_TYPES = (Sequence, Set, Iterator)
_TEXT_TYPES = (str, bytes, bytearray)


def coerce_to_run_input(*values: Any) -> RunInput:
    """Reduce heterogeneous caller tokens to one RunInput.

    Raises:
        RunAgentError: VALIDATION_ERROR for a bare sequence or a record that
            cannot be encoded as named arguments
    """
    result = RunInput()

    for value in values:
        if isinstance(value, RunInput):
            result.positional_args.extend(value.positional_args)
            result.named_args.update(value.named_args)
            if value.timeout_seconds is not None:
                result.timeout_seconds = value.timeout_seconds
            if value.async_execution is not None:
                result.async_execution = value.async_execution
        elif isinstance(value, Arg):
            result.positional_args.append(value.value)
        elif isinstance(value, Args):
            result.positional_args.extend(value.values)
        elif isinstance(value, Kw):
            result.named_args[value.key] = value.value
        elif isinstance(value, Kws):
            result.named_args.update(value.mapping)
        elif isinstance(value, Mapping):
            result.named_args.update({str(k): v for k, v in value.items()})
        elif isinstance(value, _COLLECTION_TYPES) and not isinstance(value, _TEXT_TYPES):
            raise validation_error(
                "pass positional sequences via Args(...), not a raw list",
                suggestion="Use Args(v1, v2, ...) for many positional arguments, or Arg([...]) for one list argument.",
            )
        elif _is_record(value):
            result.named_args.update(_record_to_mapping(value))
        else:
            result.positional_args.append(value)

    return result


def _is_record(value: Any) -> bool:
    if isinstance(value, BaseModel):
        return True
    return dataclasses.is_dataclass(value) and not isinstance(value, type)


def _record_to_mapping(value: Any) -> dict[str, Any]:
    """Field names become keys, field values become values (JSON round-trip)."""
    try:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json", by_alias=True)
        return json.loads(json.dumps(dataclasses.asdict(value)))
    except (TypeError, ValueError) as e:
        err = validation_error(f"failed to encode {type(value).__name__} into named arguments: {e}")
        raise err from e
