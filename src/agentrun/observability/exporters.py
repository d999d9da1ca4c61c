"""Trace event handlers that write runs to disk or the terminal."""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape

from agentrun.observability.trace import TraceEvent, TraceEventType

logger = logging.getLogger(__name__)


@dataclass
class _OpenTrace:
    path: Path
    document: dict[str, Any]
    events: list[dict[str, Any]] = field(default_factory=list)


class JsonTraceExporter:
    """Write one JSON document per run, keyed by trace id.

    The file is created on ``agent_start`` and rewritten after every event,
    so a run that never ends still leaves its events on disk. Concurrent runs
    go to separate files.
    """

    def __init__(
        self,
        output_dir: str | Path,
        pretty: bool = True,
        include_timestamps: bool = True,
    ):
        """Initialize the exporter.

        Args:
            output_dir: Directory for trace files, created if missing
            pretty: Indent the JSON output
            include_timestamps: Keep ``timestamp``/``timestamp_ms`` on each event
        """
        self.output_dir = Path(output_dir)
        self.pretty = pretty
        self.include_timestamps = include_timestamps
        self.written: list[Path] = []
        self._open: dict[str, _OpenTrace] = {}
        self._lock = threading.Lock()

    def __call__(self, event: TraceEvent) -> None:
        with self._lock:
            if event.type is TraceEventType.AGENT_START:
                self._start(event)

            trace = self._open.get(event.trace_id)
            if trace is None:
                logger.debug("Dropping %s event for unknown trace %s", event.type, event.trace_id)
                return
            trace.events.append(self._event_dict(event))

            if event.type is TraceEventType.AGENT_END:
                self._finish(event.trace_id)
            else:
                self._write(trace)

    def _event_dict(self, event: TraceEvent) -> dict[str, Any]:
        exclude = {"trace_id", "agent_name"}
        if not self.include_timestamps:
            exclude |= {"timestamp", "timestamp_ms"}
        return event.model_dump(mode="json", exclude=exclude)

    def _start(self, event: TraceEvent) -> None:
        if event.trace_id in self._open:
            self._finish(event.trace_id)

        stamp = datetime.fromtimestamp(event.timestamp_ms / 1000).strftime("%Y%m%d_%H%M%S")
        path = self.output_dir / f"{event.agent_name}_{stamp}_{event.trace_id}.json"
        trace = _OpenTrace(
            path=path,
            document={
                "trace_id": event.trace_id,
                "agent_name": event.agent_name,
                "start_time": event.timestamp,
            },
        )
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._open[event.trace_id] = trace

    def _finish(self, trace_id: str) -> None:
        trace = self._open.pop(trace_id)
        self._write(trace)
        self.written.append(trace.path)
        logger.debug("Wrote trace %s to %s", trace_id, trace.path)

    def _write(self, trace: _OpenTrace) -> None:
        document = {**trace.document, "events": trace.events}
        with open(trace.path, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2 if self.pretty else None, ensure_ascii=False)
            f.write("\n")

    def close(self) -> None:
        """Finalize every trace still open."""
        with self._lock:
            for trace_id in list(self._open):
                self._finish(trace_id)


def _clip(value: Any, limit: int) -> str:
    text = "" if value is None else str(value)
    return text if len(text) <= limit else text[:limit] + "..."


_STYLES = {
    TraceEventType.AGENT_START: "green",
    TraceEventType.AGENT_END: "green",
    TraceEventType.ITER_START: "cyan",
    TraceEventType.ITER_END: "cyan",
    TraceEventType.LLM_REQUEST: "blue",
    TraceEventType.LLM_RESPONSE: "blue",
    TraceEventType.TOOL_START: "magenta",
    TraceEventType.TOOL_END: "magenta",
}


class ConsoleTraceExporter:
    """Print one compact line per trace event to stderr."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True)

    def format(self, event: TraceEvent) -> str:
        data = event.data
        kind = event.type
        if kind is TraceEventType.AGENT_START:
            return f"Agent: {event.agent_name} | Message: {_clip(data.get('message'), 50)}"
        if kind is TraceEventType.AGENT_END:
            return (
                f"Iterations: {data.get('iterations')} | Tokens: {data.get('total_tokens')} | "
                f"{_clip(data.get('content'), 50)} | {int(data.get('duration_ms') or 0)}ms"
            )
        if kind in (TraceEventType.ITER_START, TraceEventType.ITER_END):
            return f"Iteration: {data.get('iteration')}/{data.get('max_iterations')}"
        if kind is TraceEventType.LLM_REQUEST:
            return (
                f"Model: {data.get('model') or '?'} | Messages: {data.get('message_count')} | "
                f"Tools: {'yes' if data.get('tools') else 'no'}"
            )
        if kind is TraceEventType.LLM_RESPONSE:
            prompt = data.get("prompt_tokens") or 0
            completion = data.get("completion_tokens") or 0
            return (
                f"Tokens: {prompt + completion} ({prompt} + {completion}) | "
                f"{data.get('finish_reason') or '?'} | {int(data.get('duration_ms') or 0)}ms"
            )
        if kind is TraceEventType.TOOL_START:
            return f"{data.get('name') or '?'}({_clip(data.get('arguments') or '{}', 60)})"
        return (
            f"{data.get('name') or '?'} -> {_clip(data.get('result'), 60)} "
            f"({int(data.get('duration_ms') or 0)}ms)"
        )

    def __call__(self, event: TraceEvent) -> None:
        style = _STYLES.get(event.type, "white")
        self.console.print(
            f"[dim]\\[TRACE][/dim] [{style}]{event.type.value:<18}[/{style}] | {escape(self.format(event))}",
            highlight=False,
        )
