"""Per-run trace context and the trace events derived from hooks."""

from __future__ import annotations

import logging
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from agentrun.observability.hooks import (
    AgentHooks,
    IterationInfo,
    LLMRequestInfo,
    LLMResponseInfo,
    RunEndInfo,
    RunStartInfo,
    ToolEndInfo,
    ToolStartInfo,
)

logger = logging.getLogger(__name__)


def new_trace_id() -> str:
    """``tr_<epoch ms in hex>_<8 random hex digits>``."""
    return f"tr_{int(time.time() * 1000):x}_{secrets.randbits(32):08x}"


@dataclass
class TraceContext:
    """Identity, ordering and token totals of one agent run."""

    agent_name: str
    trace_id: str = field(default_factory=new_trace_id)
    start_time: float = field(default_factory=time.time)
    sequence: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def next_sequence(self) -> int:
        """Allocate the next event sequence number (strictly increasing)."""
        with self._lock:
            self.sequence += 1
            return self.sequence

    def add_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        with self._lock:
            self.total_prompt_tokens += prompt_tokens
            self.total_completion_tokens += completion_tokens

    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000


class TraceEventType(StrEnum):
    AGENT_START = "agent_start"
    AGENT_END = "agent_end"
    ITER_START = "iter_start"
    ITER_END = "iter_end"
    LLM_REQUEST = "llm_request"
    LLM_RESPONSE = "llm_response"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"


class TraceEvent(BaseModel):
    """One exported trace event."""

    type: TraceEventType
    trace_id: str
    agent_name: str
    timestamp: str = Field(description="ISO 8601 UTC time the event was recorded")
    timestamp_ms: int = Field(description="Epoch milliseconds")
    sequence: int = Field(description="Position within the run, starting at 1")
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, type: TraceEventType, trace: TraceContext, data: dict[str, Any]) -> TraceEvent:
        now = datetime.now(timezone.utc)
        return cls(
            type=type,
            trace_id=trace.trace_id,
            agent_name=trace.agent_name,
            timestamp=now.isoformat(),
            timestamp_ms=int(now.timestamp() * 1000),
            sequence=trace.next_sequence(),
            data=data,
        )


TraceHandler = Callable[[TraceEvent], None]


class TraceRecorder(AgentHooks):
    """Hooks that turn a run's lifecycle into ordered trace events.

    Example:
        exporter = JsonTraceExporter("./traces")
        agent = Agent(llm, tools, hooks=TraceRecorder([exporter]))
    """

    def __init__(self, handlers: list[TraceHandler] | None = None):
        self.handlers: list[TraceHandler] = list(handlers or [])

    def add_handler(self, handler: TraceHandler) -> None:
        self.handlers.append(handler)

    def _emit(self, type: TraceEventType, trace: TraceContext, data: dict[str, Any]) -> None:
        event = TraceEvent.create(type, trace, data)
        for handler in self.handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Trace handler %r failed on %s", handler, event.type)

    def on_run_start(self, info: RunStartInfo) -> None:
        self._emit(
            TraceEventType.AGENT_START,
            info.trace,
            {
                "message": info.message,
                "instructions": info.instructions,
                "model": info.model,
                "max_iterations": info.max_iterations,
                "tool_count": info.tool_count,
            },
        )

    def on_run_end(self, info: RunEndInfo) -> None:
        self._emit(
            TraceEventType.AGENT_END,
            info.trace,
            {
                "status": str(info.status),
                "content": info.content,
                "iterations": info.iterations,
                "total_tokens": info.prompt_tokens + info.completion_tokens,
                "prompt_tokens": info.prompt_tokens,
                "completion_tokens": info.completion_tokens,
                "duration_ms": round(info.duration_ms, 3),
                "error": info.error,
            },
        )

    def on_iteration_start(self, info: IterationInfo) -> None:
        self._emit(
            TraceEventType.ITER_START,
            info.trace,
            {"iteration": info.iteration, "max_iterations": info.max_iterations},
        )

    def on_iteration_end(self, info: IterationInfo) -> None:
        self._emit(
            TraceEventType.ITER_END,
            info.trace,
            {"iteration": info.iteration, "max_iterations": info.max_iterations},
        )

    def on_llm_request(self, info: LLMRequestInfo) -> None:
        self._emit(
            TraceEventType.LLM_REQUEST,
            info.trace,
            {
                "iteration": info.iteration,
                "model": info.model,
                "message_count": info.message_count,
                "messages": list(info.messages),
                "tools": list(info.tools) if info.tools else None,
            },
        )

    def on_llm_response(self, info: LLMResponseInfo) -> None:
        self._emit(
            TraceEventType.LLM_RESPONSE,
            info.trace,
            {
                "iteration": info.iteration,
                "content": info.content,
                "finish_reason": str(info.finish_reason),
                "tool_call_count": info.tool_call_count,
                "tool_calls": list(info.tool_calls),
                "prompt_tokens": info.prompt_tokens,
                "completion_tokens": info.completion_tokens,
                "duration_ms": round(info.duration_ms, 3),
            },
        )

    def on_tool_start(self, info: ToolStartInfo) -> None:
        self._emit(
            TraceEventType.TOOL_START,
            info.trace,
            {
                "iteration": info.iteration,
                "id": info.call_id,
                "name": info.name,
                "arguments": info.arguments,
            },
        )

    def on_tool_end(self, info: ToolEndInfo) -> None:
        self._emit(
            TraceEventType.TOOL_END,
            info.trace,
            {
                "iteration": info.iteration,
                "id": info.call_id,
                "name": info.name,
                "result": info.result,
                "success": info.success,
                "duration_ms": round(info.duration_ms, 3),
            },
        )
