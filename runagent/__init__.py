"""RunAgent Python SDK.

Invoke locally-hosted or remotely-deployed RunAgent agents over HTTP and
WebSocket, with normalized responses and a single error taxonomy.
"""

__version__ = "0.1.0"

from runagent.client import RunAgentClient
from runagent.errors import (
    ErrorKind,
    RunAgentError,
    RunAgentExecutionError,
    StreamCancelledError,
    format_friendly_error,
)
from runagent.payload import Arg, Args, Kw, Kws, RunInput
from runagent.schemas import AgentArchitecture, EntryPoint
from runagent.stream import StreamIterator

__all__ = [
    "AgentArchitecture",
    "Arg",
    "Args",
    "EntryPoint",
    "ErrorKind",
    "Kw",
    "Kws",
    "RunAgentClient",
    "RunAgentError",
    "RunAgentExecutionError",
    "RunInput",
    "StreamCancelledError",
    "StreamIterator",
    "format_friendly_error",
]
