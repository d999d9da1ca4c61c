"""Tool execution for agent runs.

The agent loop talks to any :class:`~agentrun.tools.base.ToolExecutor`.
:class:`~agentrun.tools.registry.ToolRegistry` is the in-process
implementation: functions are registered with the ``tool`` decorator, which
builds the JSON Schema from type hints and the docstring ``Args:`` section.

Usage::

    from agentrun.tools import ToolRegistry

    registry = ToolRegistry()

    @registry.tool(description="Look up a user")
    async def lookup(user_id: str) -> dict:
        ...
"""

from .base import Tool, ToolExecutor, ToolParameter, ToolResult, ToolSchema
from .builtin import builtin_registry, calculator, get_current_time
from .registry import ToolRegistry, build_schema

__all__ = [
    "Tool",
    "ToolExecutor",
    "ToolParameter",
    "ToolRegistry",
    "ToolResult",
    "ToolSchema",
    "build_schema",
    "builtin_registry",
    "calculator",
    "get_current_time",
]
