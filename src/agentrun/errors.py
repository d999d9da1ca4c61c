"""Error taxonomy for agent runs.

Only :class:`ToolFailureError` is recovered inside the library (the agent loop
turns it into a failed ``ToolResult``). Every other error ends the current run
and is surfaced to the caller.
"""


class AgentRunError(Exception):
    """Base class for all agentrun errors."""


class TransportError(AgentRunError):
    """Connection or timeout failure talking to the completion endpoint."""


class ProtocolError(AgentRunError):
    """Unexpected status code or malformed response body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderError(AgentRunError):
    """Explicit error object returned by the completion endpoint."""

    def __init__(self, message: str, error_type: str | None = None):
        super().__init__(message)
        self.error_type = error_type


class CancelledRequestError(AgentRunError):
    """A stream callback asked to stop the exchange early."""


class ResourceError(AgentRunError):
    """No pooled connection became available within the acquire timeout."""


class ToolFailureError(AgentRunError):
    """A single tool invocation failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message
