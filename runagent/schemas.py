"""Pydantic schemas for RunAgent request/response contracts."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from runagent.constants import is_stream_tag


class ErrorKind(str, Enum):
    """Closed error taxonomy shared by every RunAgent SDK."""

    AUTHENTICATION = "AUTHENTICATION_ERROR"
    PERMISSION = "PERMISSION_ERROR"
    CONNECTION = "CONNECTION_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    SERVER = "SERVER_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"

    @classmethod
    def parse(cls, value: Any) -> ErrorKind | None:
        """Map a wire value to a kind; None when absent, UNKNOWN when unrecognized."""
        if value is None:
            return None
        if isinstance(value, ErrorKind):
            return value
        text = str(value).strip().upper()
        if not text:
            return None
        for kind in cls:
            if text == kind.value or text == kind.name:
                return kind
        return cls.UNKNOWN


class FrameType(str, Enum):
    """Stream frame types."""

    STATUS = "status"
    DATA = "data"
    ERROR = "error"


class StreamStatus(str, Enum):
    """Informational and terminal stream status values."""

    STARTED = "stream_started"
    COMPLETED = "stream_completed"


# --- Request Schemas ---


class RunRequest(BaseModel):
    """Body of a synchronous run and the streaming handshake message."""

    entrypoint_tag: str
    input_args: list[Any] = Field(default_factory=list)
    input_kwargs: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: int = Field(..., gt=0)
    async_execution: bool = False

    def to_wire(self) -> dict[str, Any]:
        """Serialize, omitting async_execution when false."""
        body = self.model_dump()
        if not self.async_execution:
            body.pop("async_execution")
        return body


# --- Response Schemas ---


class ErrorPayload(BaseModel):
    """Structured error as reported by a server or built locally."""

    type: ErrorKind | None = None
    code: str | None = None
    message: str = ""
    suggestion: str | None = None
    details: dict[str, Any] | None = None


class StreamFrame(BaseModel):
    """One decoded message received over a streaming connection."""

    model_config = ConfigDict(extra="allow")

    type: Any = None
    status: Any = None
    content: Any = None
    data: Any = None
    error: Any = None

    @property
    def frame_type(self) -> FrameType:
        """Frame type, case-insensitive; unrecognized values are treated as data."""
        try:
            return FrameType(str(self.type or "").strip().lower())
        except ValueError:
            return FrameType.DATA

    @property
    def status_text(self) -> str:
        """Lowercased status string, empty when absent."""
        if self.status is None:
            return ""
        return str(self.status).strip().lower()


class EntryPoint(BaseModel):
    """A callable surface exposed by an agent."""

    tag: str
    file: str | None = None
    module: str | None = None
    name: str | None = None
    description: str | None = None
    extractor: dict[str, Any] | None = None

    @property
    def is_stream(self) -> bool:
        return is_stream_tag(self.tag)


class AgentArchitecture(BaseModel):
    """Entrypoint metadata for an agent."""

    agent_id: str | None = None
    entrypoints: list[EntryPoint] = Field(default_factory=list)

    def tags(self) -> list[str]:
        return [ep.tag for ep in self.entrypoints]
