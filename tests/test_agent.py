"""Tests for agent loop."""

import asyncio
import json

import httpx
import pytest
from conftest import chunked_handler, sse

from agentrun.agent.loop import Agent, AgentResult, AgentState, RunStatus
from agentrun.config.schema import AgentRunConfig
from agentrun.errors import ProtocolError, ProviderError, TransportError
from agentrun.llm.anthropic import AnthropicClient
from agentrun.llm.client import ChatRequest, ChatResponse, FinishReason, Role, ToolCall
from agentrun.llm.stream import Delta, DeltaKind, StreamAction
from agentrun.llm.transport import HTTPTransport
from agentrun.observability.hooks import AgentHooks, set_hooks
from agentrun.tools.base import ToolResult
from agentrun.tools.builtin import builtin_registry
from agentrun.tools.registry import ToolRegistry


class MockLLM:
    """Mock LLM client for testing."""

    model = "mock-model"

    def __init__(self, responses: list[ChatResponse | Exception]):
        """Initialize with predefined responses.

        Args:
            responses: Responses (or errors to raise) returned in order
        """
        self.responses = responses
        self.requests: list[ChatRequest] = []
        self.streamed = 0

    def _next(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        item = self.responses[len(self.requests) - 1]
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Return next predefined response."""
        return self._next(request)

    async def complete_stream(self, request: ChatRequest, on_event=None) -> ChatResponse:
        """Return next predefined response, reporting its text as one delta."""
        self.streamed += 1
        response = self._next(request)
        if on_event is not None and response.content:
            on_event(Delta(index=0, kind=DeltaKind.TEXT, payload=response.content))
        return response


class RecordingHooks(AgentHooks):
    """Record every hook call in order."""

    def __init__(self):
        self.calls: list[tuple[str, object]] = []

    def on_run_start(self, info):
        self.calls.append(("on_run_start", info))

    def on_run_end(self, info):
        self.calls.append(("on_run_end", info))

    def on_iteration_start(self, info):
        self.calls.append(("on_iteration_start", info))

    def on_iteration_end(self, info):
        self.calls.append(("on_iteration_end", info))

    def on_llm_request(self, info):
        self.calls.append(("on_llm_request", info))

    def on_llm_response(self, info):
        self.calls.append(("on_llm_response", info))

    def on_tool_start(self, info):
        self.calls.append(("on_tool_start", info))

    def on_tool_end(self, info):
        self.calls.append(("on_tool_end", info))

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def infos(self, name: str) -> list:
        return [info for n, info in self.calls if n == name]


def final(content: str, prompt_tokens: int = 0, completion_tokens: int = 0) -> ChatResponse:
    return ChatResponse(
        content=content,
        finish_reason=FinishReason.STOP,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
    )


def tool_calls(*calls: ToolCall, content: str | None = None) -> ChatResponse:
    return ChatResponse(content=content, finish_reason=FinishReason.TOOL_CALLS, tool_calls=calls)


def sleeper_registry(completed: list[str]) -> ToolRegistry:
    registry = ToolRegistry()

    @registry.tool(description="Sleep, then echo a label")
    async def sleeper(label: str, delay: float) -> str:
        await asyncio.sleep(delay)
        completed.append(label)
        return label

    return registry


def test_agent_state_roles():
    """Test that AgentState keeps the system prompt first and correlates tool results."""
    state = AgentState("Be brief")
    state.add_user_message("Hi")
    call = ToolCall(id="c1", name="calculator", arguments="{}")
    state.add_assistant_message(tool_calls(call))
    state.add_tool_result(call, ToolResult(id="c1", name="calculator", output="4"))

    assert [m.role for m in state.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL]
    assert state.messages[2].tool_calls == [call]
    assert state.messages[3].tool_call_id == "c1"
    assert state.messages[3].tool_name == "calculator"
    assert AgentState().messages == []


@pytest.mark.asyncio
async def test_agent_simple_response():
    """Test agent with simple response (no tools)."""
    llm = MockLLM([final("Hello! I'm here to help.", 7, 5)])

    agent = Agent(llm, builtin_registry(), instructions="You are helpful")
    result = await agent.run("Hi there")

    assert result.status is RunStatus.SUCCESS
    assert result.ok
    assert result.content == "Hello! I'm here to help."
    assert result.iterations == 1
    assert result.prompt_tokens == 7
    assert result.completion_tokens == 5
    assert result.trace_id.startswith("tr_")
    assert [m.role for m in result.messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]

    request = llm.requests[0]
    assert request.stream is False
    assert {t["function"]["name"] for t in request.tools} == {"calculator", "get_current_time"}


@pytest.mark.asyncio
async def test_calculator_round_trip():
    """Test a tool call followed by a final answer."""
    call = ToolCall(id="call_1", name="calculator", arguments='{"operation": "add", "a": 2, "b": 2}')
    llm = MockLLM([tool_calls(call), final("2 + 2 = 4")])
    hooks = RecordingHooks()

    agent = Agent(llm, builtin_registry(), instructions="Use tools", hooks=hooks)
    result = await agent.run("What is 2+2?")

    assert result.status is RunStatus.SUCCESS
    assert result.content == "2 + 2 = 4"
    assert result.iterations == 2
    assert [m.role for m in result.messages] == [
        Role.SYSTEM,
        Role.USER,
        Role.ASSISTANT,
        Role.TOOL,
        Role.ASSISTANT,
    ]
    tool_message = result.messages[3]
    assert json.loads(tool_message.content) == {"result": 4}
    assert tool_message.tool_call_id == "call_1"

    # The second request replays the call and its result
    assert len(llm.requests[1].messages) == 4
    assert llm.requests[1].messages[2].tool_calls == [call]

    assert hooks.names() == [
        "on_run_start",
        "on_iteration_start",
        "on_llm_request",
        "on_llm_response",
        "on_tool_start",
        "on_tool_end",
        "on_iteration_end",
        "on_iteration_start",
        "on_llm_request",
        "on_llm_response",
        "on_iteration_end",
        "on_run_end",
    ]
    (tool_end,) = hooks.infos("on_tool_end")
    assert tool_end.success
    assert tool_end.call_id == "call_1"
    (run_end,) = hooks.infos("on_run_end")
    assert run_end.status == RunStatus.SUCCESS
    assert run_end.iterations == 2
    assert run_end.error is None


@pytest.mark.asyncio
async def test_parallel_results_keep_call_order():
    """Test that concurrent tool calls are reported in call order, not completion order."""
    completed: list[str] = []
    calls = (
        ToolCall(id="a", name="sleeper", arguments='{"label": "A", "delay": 0.06}'),
        ToolCall(id="b", name="sleeper", arguments='{"label": "B", "delay": 0.03}'),
        ToolCall(id="c", name="sleeper", arguments='{"label": "C", "delay": 0}'),
    )
    llm = MockLLM([tool_calls(*calls), final("done")])

    result = await Agent(llm, sleeper_registry(completed)).run("go")

    assert completed == ["C", "B", "A"]
    tool_messages = [m for m in result.messages if m.role == Role.TOOL]
    assert [m.tool_call_id for m in tool_messages] == ["a", "b", "c"]
    assert [m.content for m in tool_messages] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_sequential_tool_calls():
    """Test that parallel_tool_calls=False runs calls one after another."""
    completed: list[str] = []
    calls = (
        ToolCall(id="a", name="sleeper", arguments='{"label": "A", "delay": 0.03}'),
        ToolCall(id="b", name="sleeper", arguments='{"label": "B", "delay": 0}'),
    )
    llm = MockLLM([tool_calls(*calls), final("done")])

    await Agent(llm, sleeper_registry(completed), parallel_tool_calls=False).run("go")

    assert completed == ["A", "B"]


@pytest.mark.asyncio
async def test_max_iterations_stops_before_dispatch():
    """Test that the last allowed response's tool calls are never executed."""
    call = ToolCall(id="c1", name="calculator", arguments='{"operation": "add", "a": 1, "b": 1}')
    llm = MockLLM([tool_calls(call, content="Let me compute")])
    hooks = RecordingHooks()

    result = await Agent(llm, builtin_registry(), max_iterations=1, hooks=hooks).run("1+1?")

    assert result.status is RunStatus.MAX_ITERATIONS
    assert not result.ok
    assert result.iterations == 1
    assert result.content == "Let me compute"
    assert [m.role for m in result.messages] == [Role.USER]
    assert hooks.infos("on_tool_start") == []
    assert hooks.infos("on_run_end")[0].status == RunStatus.MAX_ITERATIONS


@pytest.mark.asyncio
async def test_max_iterations_counts_requests():
    """Test that max_iterations=N allows exactly N completion requests."""
    call = ToolCall(id="c", name="get_current_time")
    llm = MockLLM([tool_calls(call), tool_calls(ToolCall(id="d", name="get_current_time")), final("late")])

    result = await Agent(llm, builtin_registry(), max_iterations=2).run("time?")

    assert result.status is RunStatus.MAX_ITERATIONS
    assert len(llm.requests) == 2
    assert [m.role for m in result.messages] == [Role.USER, Role.ASSISTANT, Role.TOOL]


def test_max_iterations_must_be_positive():
    """Test constructor validation."""
    with pytest.raises(ValueError):
        Agent(MockLLM([]), max_iterations=0)


@pytest.mark.asyncio
async def test_transport_error_on_first_request():
    """Test that a request failure ends the run with ERROR and leaves history untouched."""
    llm = MockLLM([TransportError("connection refused")])
    hooks = RecordingHooks()

    result = await Agent(llm, builtin_registry(), instructions="sys", hooks=hooks).run("Hi")

    assert result.status is RunStatus.ERROR
    assert isinstance(result.error, TransportError)
    assert result.content is None
    assert [m.role for m in result.messages] == [Role.SYSTEM, Role.USER]
    (run_end,) = hooks.infos("on_run_end")
    assert run_end.status == RunStatus.ERROR
    assert "connection refused" in run_end.error

    with pytest.raises(TransportError):
        result.raise_for_status()


@pytest.mark.asyncio
async def test_provider_error_after_tool_round():
    """Test that a failure on a later request keeps the completed rounds."""
    call = ToolCall(id="c1", name="get_current_time")
    llm = MockLLM([tool_calls(call), ProviderError("overloaded", error_type="overloaded_error")])

    result = await Agent(llm, builtin_registry()).run("time?")

    assert result.status is RunStatus.ERROR
    assert result.iterations == 2
    assert [m.role for m in result.messages] == [Role.USER, Role.ASSISTANT, Role.TOOL]
    assert result.error.error_type == "overloaded_error"


@pytest.mark.asyncio
async def test_unexpected_error_propagates_after_run_end():
    """Test that non-library exceptions are re-raised once run_end has fired."""
    llm = MockLLM([RuntimeError("bug")])
    hooks = RecordingHooks()

    with pytest.raises(RuntimeError, match="bug"):
        await Agent(llm, hooks=hooks).run("Hi")

    (run_end,) = hooks.infos("on_run_end")
    assert run_end.status == RunStatus.ERROR
    assert run_end.error == "RuntimeError: bug"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model():
    """Test that a call to an unregistered tool becomes an error result."""
    llm = MockLLM([tool_calls(ToolCall(id="x", name="nope")), final("sorry")])
    hooks = RecordingHooks()

    result = await Agent(llm, builtin_registry(), hooks=hooks).run("Hi")

    assert result.status is RunStatus.SUCCESS
    assert json.loads(result.messages[2].content) == {"error": "Tool 'nope' not found"}
    (tool_end,) = hooks.infos("on_tool_end")
    assert tool_end.success is False


@pytest.mark.asyncio
async def test_agent_without_tools():
    """Test that tool calls without an executor get an error result."""
    llm = MockLLM([tool_calls(ToolCall(id="x", name="calculator")), final("ok")])

    result = await Agent(llm).run("Hi")

    assert llm.requests[0].tools is None
    assert json.loads(result.messages[2].content) == {"error": "No tools available"}
    assert result.status is RunStatus.SUCCESS


@pytest.mark.asyncio
async def test_executor_exception_becomes_failed_result():
    """Test that an executor breaking its contract doesn't end the run."""

    class BrokenExecutor:
        def list_schemas(self):
            return []

        async def invoke(self, name, arguments_json, call_id=""):
            raise RuntimeError("executor crashed")

    llm = MockLLM([tool_calls(ToolCall(id="x", name="t")), final("ok")])

    result = await Agent(llm, BrokenExecutor()).run("Hi")

    assert result.status is RunStatus.SUCCESS
    output = json.loads(result.messages[2].content)
    assert output == {"error": "Tool execution failed: executor crashed"}


@pytest.mark.asyncio
async def test_failing_hook_does_not_affect_run():
    """Test that an exception inside a hook is logged and ignored."""

    class ExplodingHooks(AgentHooks):
        def on_llm_request(self, info):
            raise RuntimeError("hook bug")

        def on_run_end(self, info):
            raise RuntimeError("hook bug")

    llm = MockLLM([final("fine")])

    result = await Agent(llm, hooks=ExplodingHooks()).run("Hi")

    assert result.status is RunStatus.SUCCESS
    assert result.content == "fine"


@pytest.mark.asyncio
async def test_process_wide_hooks_fallback():
    """Test that agents without hooks use the installed default."""
    hooks = RecordingHooks()
    set_hooks(hooks)

    await Agent(MockLLM([final("a")])).run("Hi")

    assert hooks.names()[0] == "on_run_start"
    assert hooks.names()[-1] == "on_run_end"

    # Explicit hooks take precedence
    explicit = RecordingHooks()
    await Agent(MockLLM([final("b")]), hooks=explicit).run("Hi")
    assert len(explicit.infos("on_run_start")) == 1
    assert len(hooks.infos("on_run_start")) == 1


@pytest.mark.asyncio
async def test_streaming_passes_event_callback():
    """Test that stream mode uses complete_stream with the agent's callback."""
    deltas: list[str] = []

    def on_event(event):
        deltas.append(event.payload)
        return StreamAction.CONTINUE

    llm = MockLLM([final("streamed answer")])

    result = await Agent(llm, stream=True, on_event=on_event).run("Hi")

    assert llm.streamed == 1
    assert llm.requests[0].stream is True
    assert deltas == ["streamed answer"]
    assert result.content == "streamed answer"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        # Anthropic delta without a block index
        sse({"type": "message_start", "message": {"id": "m"}})
        + sse({"type": "content_block_delta", "delta": {"type": "text_delta", "text": "x"}}),
        # Connection dropped inside a tool-use block
        sse({"type": "message_start", "message": {"id": "m"}})
        + sse(
            {
                "type": "content_block_start",
                "index": 0,
                "content_block": {"type": "tool_use", "id": "t", "name": "calculator"},
            }
        )
        + sse(
            {
                "type": "content_block_delta",
                "index": 0,
                "delta": {"type": "input_json_delta", "partial_json": "{\"a\""},
            }
        ),
    ],
)
async def test_broken_stream_ends_run_with_error(body):
    """Test that a malformed or truncated stream is a failed run, not an exception or a success."""
    transport = HTTPTransport(transport=httpx.MockTransport(chunked_handler(body.encode(), 16)))
    llm = AnthropicClient(api_key="k", transport=transport)

    result = await Agent(llm, builtin_registry(), stream=True).run("Hi")

    assert result.status is RunStatus.ERROR
    assert isinstance(result.error, ProtocolError)
    assert result.content is None
    assert [m.role for m in result.messages] == [Role.USER]


@pytest.mark.asyncio
async def test_concurrent_runs_are_isolated():
    """Test that one agent can serve several runs at once."""

    class EchoLLM:
        model = "echo"

        async def complete(self, request):
            await asyncio.sleep(0.01)
            return final(f"echo: {request.messages[-1].content}", 3, 2)

        async def complete_stream(self, request, on_event=None):
            return await self.complete(request)

    agent = Agent(EchoLLM(), instructions="sys")

    results = await asyncio.gather(*(agent.run(f"msg {i}") for i in range(5)))

    assert [r.content for r in results] == [f"echo: msg {i}" for i in range(5)]
    assert len({r.trace_id for r in results}) == 5
    assert all(len(r.messages) == 3 for r in results)
    assert all(r.prompt_tokens == 3 for r in results)


@pytest.mark.asyncio
async def test_from_config():
    """Test building an agent from configuration."""
    config = AgentRunConfig.model_validate(
        {"agent": {"name": "math", "instructions": "Do math", "max_iterations": 3, "stream": True}}
    )
    llm = MockLLM([final("x")])

    agent = Agent.from_config(config, llm)
    result = await agent.run("Hi")

    assert agent.name == "math"
    assert agent.max_iterations == 3
    assert llm.streamed == 1
    assert result.messages[0].content == "Do math"


def test_result_raise_for_status_on_success():
    """Test that a successful result returns itself."""
    result = AgentResult(status=RunStatus.SUCCESS, content="x")

    assert result.raise_for_status() is result
