"""Tool registration and dispatch."""

import inspect
import json
import logging
import time
import types
from collections.abc import Callable
from typing import Any, Union, get_type_hints

from agentrun.errors import ToolFailureError
from agentrun.tools.base import (
    Tool,
    ToolFunction,
    ToolParameter,
    ToolResult,
    ToolSchema,
    error_output,
)

logger = logging.getLogger(__name__)


def _python_type_to_json_schema(py_type: Any) -> str:
    """Convert Python type hint to JSON Schema type.

    Args:
        py_type: Python type annotation

    Returns:
        JSON Schema type string
    """
    # Unwrap Optional / X | None to the first non-None member
    origin = getattr(py_type, "__origin__", None)
    if origin is Union or isinstance(py_type, types.UnionType):
        non_none = [arg for arg in py_type.__args__ if arg is not type(None)]
        if non_none:
            py_type = non_none[0]
        origin = getattr(py_type, "__origin__", None)

    if origin is not None:
        py_type = origin

    type_map = {
        str: "string",
        int: "integer",
        float: "number",
        bool: "boolean",
        list: "array",
        dict: "object",
    }

    return type_map.get(py_type, "string")


def _param_descriptions(doc: str | None) -> dict[str, str]:
    """Collect ``name: description`` lines from a docstring's Args section."""
    descriptions: dict[str, str] = {}
    if not doc:
        return descriptions

    in_args = False
    for raw in doc.split("\n"):
        line = raw.strip()
        if line in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if not in_args:
            continue
        if not line:
            continue
        if line.endswith(":") and " " not in line:
            # Next section (Returns:, Raises:, ...)
            break
        name, sep, desc = line.partition(":")
        name = name.split("(")[0].strip()
        if sep and name.isidentifier():
            descriptions[name] = desc.strip()
    return descriptions


def build_schema(fn: ToolFunction, description: str, name: str | None = None) -> ToolSchema:
    """Introspect a function's signature and docstring into a ToolSchema.

    Args:
        fn: Tool function
        description: Human-readable description of what the tool does
        name: Tool name, defaults to the function name

    Returns:
        The schema advertised to the model
    """
    hints = get_type_hints(fn)
    sig = inspect.signature(fn)
    descriptions = _param_descriptions(fn.__doc__)

    parameters: list[ToolParameter] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        parameters.append(
            ToolParameter(
                name=param_name,
                type=_python_type_to_json_schema(hints.get(param_name, str)),
                description=descriptions.get(param_name, f"Parameter {param_name}"),
                required=param.default is inspect.Parameter.empty,
            )
        )

    return ToolSchema(name=name or fn.__name__, description=description, parameters=parameters)


class ToolRegistry:
    """In-process tool executor.

    Example:
        registry = ToolRegistry()

        @registry.tool(description="Add two numbers")
        def add(a: float, b: float) -> dict:
            '''Add numbers.

            Args:
                a: First addend
                b: Second addend
            '''
            return {"result": a + b}
    """

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: Tool) -> None:
        """Add a tool, replacing any tool with the same name."""
        if tool.name in self._tools:
            logger.debug("Replacing registered tool %s", tool.name)
        self._tools[tool.name] = tool

    def tool(
        self,
        description: str,
        name: str | None = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """Decorator to register a function as a tool.

        Args:
            description: Human-readable description of what the tool does
            name: Tool name, defaults to the function name

        Returns:
            Decorator returning the function unchanged
        """

        def decorator(fn: ToolFunction) -> ToolFunction:
            self.register(Tool(schema=build_schema(fn, description, name), fn=fn))
            return fn

        return decorator

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def list_schemas(self) -> list[dict[str, Any]]:
        """Schemas of all registered tools in OpenAI function format."""
        return [t.schema.to_openai_format() for t in self._tools.values()]

    async def _run(self, tool: Tool, arguments_json: str) -> str:
        try:
            arguments = json.loads(arguments_json) if arguments_json.strip() else {}
        except json.JSONDecodeError as e:
            raise ToolFailureError(tool.name, "invalid arguments JSON") from e
        if not isinstance(arguments, dict):
            raise ToolFailureError(tool.name, "invalid arguments JSON")

        try:
            return await tool.execute(**arguments)
        except Exception as e:
            raise ToolFailureError(tool.name, str(e) or type(e).__name__) from e

    async def invoke(self, name: str, arguments_json: str, call_id: str = "") -> ToolResult:
        """Run one tool call, reporting failures in the result.

        Args:
            name: Tool name requested by the model
            arguments_json: Raw argument JSON produced by the model
            call_id: Tool call id, echoed into the result

        Returns:
            The result; ``success`` is False and ``output`` holds
            ``{"error": ...}`` when the call could not be completed
        """
        start = time.perf_counter()
        tool = self._tools.get(name)

        if tool is None:
            logger.warning("Tool not found: %s", name)
            return ToolResult(
                id=call_id,
                name=name,
                output=error_output(f"Tool '{name}' not found"),
                success=False,
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        logger.info("Executing tool %s", name)
        try:
            output = await self._run(tool, arguments_json)
        except ToolFailureError as e:
            logger.warning("Tool %s failed: %s", name, e, exc_info=e.__cause__ is not None)
            return ToolResult(
                id=call_id,
                name=name,
                output=error_output(e.message),
                success=False,
                duration_ms=(time.perf_counter() - start) * 1000,
            )

        return ToolResult(
            id=call_id,
            name=name,
            output=output,
            success=True,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
