"""ReAct agent loop implementation."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from agentrun.errors import AgentRunError
from agentrun.llm.client import (
    ChatRequest,
    ChatResponse,
    FinishReason,
    LLMClient,
    Message,
    OnStreamEvent,
    Role,
    ToolCall,
)
from agentrun.observability.hooks import (
    AgentHooks,
    IterationInfo,
    LLMRequestInfo,
    LLMResponseInfo,
    RunEndInfo,
    RunStartInfo,
    ToolEndInfo,
    ToolStartInfo,
    call_hook,
    get_hooks,
)
from agentrun.observability.trace import TraceContext
from agentrun.tools.base import ToolExecutor, ToolResult, error_output

if TYPE_CHECKING:
    from agentrun.config.schema import AgentRunConfig

logger = logging.getLogger(__name__)


class RunStatus(StrEnum):
    """How a run finished."""

    SUCCESS = "success"
    MAX_ITERATIONS = "max_iterations"
    ERROR = "error"


class AgentState:
    """Maintains conversation state for one run."""

    def __init__(self, instructions: str | None = None):
        """Initialize agent state.

        Args:
            instructions: System message for the agent, if any
        """
        self.messages: list[Message] = []
        if instructions:
            self.messages.append(Message(role=Role.SYSTEM, content=instructions))

    def add_user_message(self, content: str) -> None:
        self.messages.append(Message(role=Role.USER, content=content))

    def add_assistant_message(self, response: ChatResponse) -> None:
        """Add an assistant response, keeping its raw tool calls for replay."""
        self.messages.append(
            Message(
                role=Role.ASSISTANT,
                content=response.content,
                tool_calls=list(response.tool_calls) or None,
            )
        )

    def add_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        """Add a tool result, correlated to its call by id."""
        self.messages.append(
            Message(
                role=Role.TOOL,
                content=result.output,
                tool_name=call.name,
                tool_call_id=call.id,
            )
        )


@dataclass
class AgentResult:
    """Outcome of one agent run."""

    status: RunStatus
    content: str | None = None
    iterations: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    duration_ms: float = 0.0
    messages: list[Message] = field(default_factory=list)
    error: AgentRunError | None = None
    trace_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.SUCCESS

    def raise_for_status(self) -> AgentResult:
        """Re-raise the terminal error of a failed run."""
        if self.error is not None:
            raise self.error
        return self


class Agent:
    """ReAct agent with tool calling capabilities.

    One Agent may serve any number of concurrent ``run`` calls; each run owns
    its own conversation and trace context.
    """

    def __init__(
        self,
        llm: LLMClient,
        tools: ToolExecutor | None = None,
        *,
        name: str = "agent",
        instructions: str | None = None,
        max_iterations: int = 10,
        stream: bool = False,
        parallel_tool_calls: bool = True,
        temperature: float | None = None,
        max_tokens: int | None = None,
        model: str | None = None,
        hooks: AgentHooks | None = None,
        on_event: OnStreamEvent | None = None,
    ):
        """Initialize the agent.

        Args:
            llm: Completion client
            tools: Tool executor; ``None`` runs without tools
            name: Agent name used in traces
            instructions: System prompt
            max_iterations: Maximum completion requests per run
            stream: Use streaming completions
            parallel_tool_calls: Run the tool calls of one response concurrently
            temperature: Sampling temperature override
            max_tokens: Completion length override
            model: Model override
            hooks: Lifecycle hooks; falls back to the process-wide default
            on_event: Stream event callback used when ``stream`` is set
        """
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.llm = llm
        self.tools = tools
        self.name = name
        self.instructions = instructions
        self.max_iterations = max_iterations
        self.stream = stream
        self.parallel_tool_calls = parallel_tool_calls
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.model = model
        self.hooks = hooks
        self.on_event = on_event

    @classmethod
    def from_config(
        cls,
        config: AgentRunConfig,
        llm: LLMClient,
        tools: ToolExecutor | None = None,
        hooks: AgentHooks | None = None,
        on_event: OnStreamEvent | None = None,
    ) -> Agent:
        """Build an agent from the ``agent`` section of a configuration."""
        return cls(
            llm,
            tools,
            name=config.agent.name,
            instructions=config.agent.instructions,
            max_iterations=config.agent.max_iterations,
            stream=config.agent.stream,
            parallel_tool_calls=config.agent.parallel_tool_calls,
            hooks=hooks,
            on_event=on_event,
        )

    def _tool_schemas(self) -> list[dict] | None:
        if self.tools is None:
            return None
        return self.tools.list_schemas() or None

    async def run(self, message: str) -> AgentResult:
        """Run the agent on a user message.

        Transport, protocol, provider, cancellation and pool errors end the
        run with ``RunStatus.ERROR``; the error is kept on the result.

        Args:
            message: User's input message

        Returns:
            The run outcome
        """
        hooks = self.hooks if self.hooks is not None else get_hooks()
        trace = TraceContext(agent_name=self.name)
        state = AgentState(self.instructions)
        state.add_user_message(message)
        schemas = self._tool_schemas()
        start = time.perf_counter()

        call_hook(
            hooks,
            "on_run_start",
            RunStartInfo(
                agent_name=self.name,
                trace=trace,
                message=message,
                instructions=self.instructions,
                model=self.model or getattr(self.llm, "model", None),
                max_iterations=self.max_iterations,
                tool_count=len(schemas or []),
            ),
        )

        progress = {"iterations": 0}
        status = RunStatus.ERROR
        content: str | None = None
        error: AgentRunError | None = None
        error_text: str | None = None

        try:
            status, content = await self._loop(state, trace, hooks, schemas, progress)
        except AgentRunError as e:
            error = e
            error_text = str(e)
            logger.error("Agent %s run failed: %s", self.name, e)
        except BaseException as e:
            error_text = f"{type(e).__name__}: {e}"
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            call_hook(
                hooks,
                "on_run_end",
                RunEndInfo(
                    agent_name=self.name,
                    trace=trace,
                    status=status,
                    content=content,
                    iterations=progress["iterations"],
                    prompt_tokens=trace.total_prompt_tokens,
                    completion_tokens=trace.total_completion_tokens,
                    duration_ms=duration_ms,
                    error=error_text,
                ),
            )

        logger.info(
            "Agent %s finished: %s after %d iteration(s)",
            self.name,
            status,
            progress["iterations"],
        )
        return AgentResult(
            status=status,
            content=content,
            iterations=progress["iterations"],
            prompt_tokens=trace.total_prompt_tokens,
            completion_tokens=trace.total_completion_tokens,
            duration_ms=duration_ms,
            messages=list(state.messages),
            error=error,
            trace_id=trace.trace_id,
        )

    async def _loop(
        self,
        state: AgentState,
        trace: TraceContext,
        hooks: AgentHooks | None,
        schemas: list[dict] | None,
        progress: dict[str, int],
    ) -> tuple[RunStatus, str | None]:
        iteration = 0
        while True:
            iteration += 1
            progress["iterations"] = iteration
            iteration_info = IterationInfo(
                agent_name=self.name,
                trace=trace,
                iteration=iteration,
                max_iterations=self.max_iterations,
            )
            call_hook(hooks, "on_iteration_start", iteration_info)

            response = await self._request(state, trace, hooks, schemas, iteration)

            # Final answer
            if response.finish_reason is not FinishReason.TOOL_CALLS or not response.tool_calls:
                state.add_assistant_message(response)
                call_hook(hooks, "on_iteration_end", iteration_info)
                return RunStatus.SUCCESS, response.content

            if iteration >= self.max_iterations:
                logger.warning(
                    "Agent %s reached max_iterations=%d with %d pending tool call(s)",
                    self.name,
                    self.max_iterations,
                    len(response.tool_calls),
                )
                call_hook(hooks, "on_iteration_end", iteration_info)
                return RunStatus.MAX_ITERATIONS, response.content

            state.add_assistant_message(response)
            results = await self._dispatch(response.tool_calls, trace, hooks, iteration)
            for call, result in zip(response.tool_calls, results):
                state.add_tool_result(call, result)
            call_hook(hooks, "on_iteration_end", iteration_info)

    async def _request(
        self,
        state: AgentState,
        trace: TraceContext,
        hooks: AgentHooks | None,
        schemas: list[dict] | None,
        iteration: int,
    ) -> ChatResponse:
        request = ChatRequest(
            messages=tuple(state.messages),
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=self.stream,
            tools=schemas,
        )
        call_hook(
            hooks,
            "on_llm_request",
            LLMRequestInfo(
                agent_name=self.name,
                trace=trace,
                iteration=iteration,
                model=self.model or getattr(self.llm, "model", None),
                message_count=len(request.messages),
                messages=tuple(m.to_dict() for m in request.messages),
                tools=tuple(schemas) if schemas else None,
            ),
        )

        start = time.perf_counter()
        if self.stream:
            response = await self.llm.complete_stream(request, self.on_event)
        else:
            response = await self.llm.complete(request)
        duration_ms = (time.perf_counter() - start) * 1000

        trace.add_usage(response.prompt_tokens, response.completion_tokens)
        call_hook(
            hooks,
            "on_llm_response",
            LLMResponseInfo(
                agent_name=self.name,
                trace=trace,
                iteration=iteration,
                content=response.content,
                finish_reason=response.finish_reason,
                tool_call_count=len(response.tool_calls),
                tool_calls=tuple(
                    {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                    for tc in response.tool_calls
                ),
                prompt_tokens=response.prompt_tokens,
                completion_tokens=response.completion_tokens,
                duration_ms=duration_ms,
            ),
        )
        return response

    async def _dispatch(
        self,
        calls: tuple[ToolCall, ...],
        trace: TraceContext,
        hooks: AgentHooks | None,
        iteration: int,
    ) -> list[ToolResult]:
        """Run the calls of one response; results come back in call order."""
        if self.parallel_tool_calls and len(calls) > 1:
            return list(
                await asyncio.gather(
                    *(self._execute_tool_call(call, trace, hooks, iteration) for call in calls)
                )
            )
        return [await self._execute_tool_call(call, trace, hooks, iteration) for call in calls]

    async def _execute_tool_call(
        self,
        call: ToolCall,
        trace: TraceContext,
        hooks: AgentHooks | None,
        iteration: int,
    ) -> ToolResult:
        """Execute one tool call. Failures come back as unsuccessful results."""
        call_hook(
            hooks,
            "on_tool_start",
            ToolStartInfo(
                agent_name=self.name,
                trace=trace,
                iteration=iteration,
                call_id=call.id,
                name=call.name,
                arguments=call.arguments,
            ),
        )

        start = time.perf_counter()
        if self.tools is None:
            result = ToolResult(
                id=call.id,
                name=call.name,
                output=error_output("No tools available"),
                success=False,
            )
        else:
            try:
                result = await self.tools.invoke(call.name, call.arguments, call.id)
            except Exception as e:
                logger.warning("Tool executor raised for %s: %s", call.name, e, exc_info=True)
                result = ToolResult(
                    id=call.id,
                    name=call.name,
                    output=error_output(f"Tool execution failed: {e}"),
                    success=False,
                )
        duration_ms = (time.perf_counter() - start) * 1000

        call_hook(
            hooks,
            "on_tool_end",
            ToolEndInfo(
                agent_name=self.name,
                trace=trace,
                iteration=iteration,
                call_id=call.id,
                name=call.name,
                result=result.output,
                success=result.success,
                duration_ms=duration_ms,
            ),
        )
        return result
