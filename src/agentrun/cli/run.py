"""One-shot ``agentrun run`` command."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown

from agentrun.agent.loop import Agent, RunStatus
from agentrun.config.loader import ConfigError, load_config
from agentrun.llm.factory import create_llm_client
from agentrun.llm.stream import Delta, DeltaKind
from agentrun.llm.transport import HTTPTransport
from agentrun.observability.exporters import ConsoleTraceExporter, JsonTraceExporter
from agentrun.observability.trace import TraceRecorder
from agentrun.tools.builtin import builtin_registry

if TYPE_CHECKING:
    from agentrun.agent.loop import AgentResult
    from agentrun.config.schema import AgentRunConfig
    from agentrun.llm.stream import StreamEvent

console = Console()
logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    """Route library logs through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def run_command(
    message: str,
    config_path: str | None = None,
    stream: bool | None = None,
    trace: bool | None = None,
    verbose: bool = False,
) -> int:
    """Run the configured agent once and print its answer.

    Args:
        message: User message
        config_path: Optional path to config file
        stream: Override ``agent.stream``
        trace: Override ``trace.enabled``
        verbose: Enable debug logging

    Returns:
        Process exit code: 0 on success, 1 otherwise
    """
    configure_logging(verbose)

    try:
        config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Failed to load config: {e}[/red]")
        return 1

    if stream is not None:
        config.agent.stream = stream
    if trace is not None:
        config.trace.enabled = trace

    result = asyncio.run(_run(config, message))

    if result.status is RunStatus.ERROR:
        console.print(f"[red]Error: {result.error}[/red]")
        return 1

    if not config.agent.stream and result.content:
        console.print(Markdown(result.content))
    elif config.agent.stream:
        console.print()

    if result.status is RunStatus.MAX_ITERATIONS:
        console.print(
            f"[yellow]Stopped after {result.iterations} iterations with tool calls pending[/yellow]"
        )
        return 1

    console.print(
        f"[dim]{result.iterations} iteration(s), "
        f"{result.prompt_tokens + result.completion_tokens} tokens, "
        f"{result.duration_ms:.0f}ms[/dim]"
    )
    return 0


def _print_delta(event: StreamEvent) -> None:
    if isinstance(event, Delta) and event.kind is DeltaKind.TEXT:
        console.print(event.payload, end="", markup=False, highlight=False)


async def _run(config: AgentRunConfig, message: str) -> AgentResult:
    recorder = None
    json_exporter = None
    if config.trace.enabled or config.trace.console:
        recorder = TraceRecorder()
        if config.trace.enabled:
            json_exporter = JsonTraceExporter(config.trace.output_dir, pretty=config.trace.pretty)
            recorder.add_handler(json_exporter)
        if config.trace.console:
            recorder.add_handler(ConsoleTraceExporter())

    async with HTTPTransport(
        timeout=config.llm.timeout,
        max_connections=config.pool.max_connections,
        acquire_timeout=config.pool.acquire_timeout,
    ) as transport:
        llm = create_llm_client(config.llm, transport=transport)
        agent = Agent.from_config(
            config,
            llm,
            builtin_registry(),
            hooks=recorder,
            on_event=_print_delta,
        )
        try:
            result = await agent.run(message)
        finally:
            if json_exporter is not None:
                json_exporter.close()

    if json_exporter is not None and json_exporter.written:
        logger.info("Trace written to %s", json_exporter.written[-1])
    return result
