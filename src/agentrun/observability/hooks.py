"""Lifecycle hooks fired by the agent loop.

Hooks are synchronous and receive immutable snapshots. Pass a hook set to
``Agent(hooks=...)``; agents built without one fall back to the process-wide
default installed with :func:`set_hooks`, which must be set before any run
starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentrun.observability.trace import TraceContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunStartInfo:
    agent_name: str
    trace: TraceContext
    message: str
    instructions: str | None
    model: str | None
    max_iterations: int
    tool_count: int


@dataclass(frozen=True)
class RunEndInfo:
    agent_name: str
    trace: TraceContext
    status: str
    content: str | None
    iterations: int
    prompt_tokens: int
    completion_tokens: int
    duration_ms: float
    error: str | None = None


@dataclass(frozen=True)
class IterationInfo:
    agent_name: str
    trace: TraceContext
    iteration: int
    max_iterations: int


@dataclass(frozen=True)
class LLMRequestInfo:
    agent_name: str
    trace: TraceContext
    iteration: int
    model: str | None
    message_count: int
    messages: tuple[dict[str, Any], ...]
    tools: tuple[dict[str, Any], ...] | None


@dataclass(frozen=True)
class LLMResponseInfo:
    agent_name: str
    trace: TraceContext
    iteration: int
    content: str | None
    finish_reason: str
    tool_call_count: int
    tool_calls: tuple[dict[str, Any], ...]
    prompt_tokens: int
    completion_tokens: int
    duration_ms: float


@dataclass(frozen=True)
class ToolStartInfo:
    agent_name: str
    trace: TraceContext
    iteration: int
    call_id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ToolEndInfo:
    agent_name: str
    trace: TraceContext
    iteration: int
    call_id: str
    name: str
    result: str
    success: bool
    duration_ms: float


class AgentHooks:
    """Base hook set. Override the methods you care about."""

    def on_run_start(self, info: RunStartInfo) -> None:
        pass

    def on_run_end(self, info: RunEndInfo) -> None:
        pass

    def on_iteration_start(self, info: IterationInfo) -> None:
        pass

    def on_iteration_end(self, info: IterationInfo) -> None:
        pass

    def on_llm_request(self, info: LLMRequestInfo) -> None:
        pass

    def on_llm_response(self, info: LLMResponseInfo) -> None:
        pass

    def on_tool_start(self, info: ToolStartInfo) -> None:
        pass

    def on_tool_end(self, info: ToolEndInfo) -> None:
        pass


def call_hook(hooks: AgentHooks | None, method: str, info: Any) -> None:
    """Invoke one hook method, logging instead of propagating failures."""
    if hooks is None:
        return
    try:
        getattr(hooks, method)(info)
    except Exception:
        logger.exception("Hook %s.%s failed", type(hooks).__name__, method)


class CompositeHooks(AgentHooks):
    """Fan each hook call out to several hook sets, in registration order."""

    def __init__(self, *hooks: AgentHooks):
        self.hooks: list[AgentHooks] = list(hooks)

    def add(self, hooks: AgentHooks) -> None:
        self.hooks.append(hooks)

    def _fan_out(self, method: str, info: Any) -> None:
        for hooks in self.hooks:
            call_hook(hooks, method, info)

    def on_run_start(self, info: RunStartInfo) -> None:
        self._fan_out("on_run_start", info)

    def on_run_end(self, info: RunEndInfo) -> None:
        self._fan_out("on_run_end", info)

    def on_iteration_start(self, info: IterationInfo) -> None:
        self._fan_out("on_iteration_start", info)

    def on_iteration_end(self, info: IterationInfo) -> None:
        self._fan_out("on_iteration_end", info)

    def on_llm_request(self, info: LLMRequestInfo) -> None:
        self._fan_out("on_llm_request", info)

    def on_llm_response(self, info: LLMResponseInfo) -> None:
        self._fan_out("on_llm_response", info)

    def on_tool_start(self, info: ToolStartInfo) -> None:
        self._fan_out("on_tool_start", info)

    def on_tool_end(self, info: ToolEndInfo) -> None:
        self._fan_out("on_tool_end", info)


_default_hooks: AgentHooks | None = None


def set_hooks(hooks: AgentHooks | None) -> None:
    """Install (or clear, with ``None``) the process-wide default hook set."""
    global _default_hooks
    _default_hooks = hooks


def get_hooks() -> AgentHooks | None:
    return _default_hooks
