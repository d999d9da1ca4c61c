"""Base types for the tool system."""

import asyncio
import inspect
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    type: str  # JSON Schema type
    description: str
    required: bool = True
    enum: list[str] | None = None


@dataclass
class ToolSchema:
    """JSON Schema representation of a tool for LLM function calling."""

    name: str
    description: str
    parameters: list[ToolParameter]

    def to_openai_format(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format.

        Returns:
            Dictionary matching OpenAI's function schema format
        """
        properties = {}
        required = []

        for param in self.parameters:
            param_schema: dict[str, Any] = {
                "type": param.type,
                "description": param.description,
            }
            if param.enum:
                param_schema["enum"] = param.enum

            properties[param.name] = param_schema

            if param.required:
                required.append(param.name)

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }


# Sync or async callable; the result is rendered to text
ToolFunction = Callable[..., Any]


def render_output(value: Any) -> str:
    """Render a tool's return value as the text sent back to the model."""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def error_output(message: str) -> str:
    """The JSON payload sent back to the model when a tool call fails."""
    return json.dumps({"error": message})


@dataclass
class Tool:
    """A tool that the agent can use."""

    schema: ToolSchema
    fn: ToolFunction

    @property
    def name(self) -> str:
        return self.schema.name

    async def execute(self, **kwargs: Any) -> str:
        """Execute the tool with given arguments.

        Synchronous functions run in a worker thread so they never block
        the event loop.

        Args:
            **kwargs: Tool arguments

        Returns:
            Tool execution result as string
        """
        if inspect.iscoroutinefunction(self.fn):
            result = await self.fn(**kwargs)
        else:
            result = await asyncio.to_thread(self.fn, **kwargs)
        return render_output(result)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool invocation.

    A failed invocation carries ``{"error": "..."}`` JSON in ``output``.
    """

    id: str
    name: str
    output: str
    success: bool = True
    duration_ms: float = 0.0


class ToolExecutor(Protocol):
    """What the agent loop needs from a tool backend."""

    def list_schemas(self) -> list[dict[str, Any]]:
        """Tool schemas in OpenAI function format."""
        ...

    async def invoke(self, name: str, arguments_json: str, call_id: str = "") -> ToolResult:
        """Run one tool call.

        Must be safe to call concurrently for distinct calls, and must report
        failures as ``ToolResult(success=False)`` rather than raising.
        """
        ...
