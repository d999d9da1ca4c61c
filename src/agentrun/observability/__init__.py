"""Run lifecycle hooks, trace context and trace exporters."""

from .exporters import ConsoleTraceExporter, JsonTraceExporter
from .hooks import (
    AgentHooks,
    CompositeHooks,
    IterationInfo,
    LLMRequestInfo,
    LLMResponseInfo,
    RunEndInfo,
    RunStartInfo,
    ToolEndInfo,
    ToolStartInfo,
    get_hooks,
    set_hooks,
)
from .trace import TraceContext, TraceEvent, TraceEventType, TraceRecorder, new_trace_id

__all__ = [
    "AgentHooks",
    "CompositeHooks",
    "ConsoleTraceExporter",
    "IterationInfo",
    "JsonTraceExporter",
    "LLMRequestInfo",
    "LLMResponseInfo",
    "RunEndInfo",
    "RunStartInfo",
    "ToolEndInfo",
    "ToolStartInfo",
    "TraceContext",
    "TraceEvent",
    "TraceEventType",
    "TraceRecorder",
    "get_hooks",
    "new_trace_id",
    "set_hooks",
]
