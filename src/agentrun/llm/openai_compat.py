"""Client for OpenAI-compatible chat completion servers."""

import logging
import uuid
from typing import Any

from agentrun.errors import ProtocolError
from agentrun.llm.base import BaseCompletionClient, error_message, load_payload
from agentrun.llm.client import ChatRequest, ChatResponse, FinishReason, Message, ToolCall
from agentrun.llm.sse import SSEEvent
from agentrun.llm.stream import (
    BlockKind,
    ContentBlockStart,
    ContentBlockStop,
    Delta,
    DeltaKind,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamError,
    StreamEvent,
    Usage,
)
from agentrun.llm.transport import HTTPTransport

logger = logging.getLogger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"


class OpenAIStreamInterpreter:
    """Translate chat completion chunks into stream events.

    The chunk format has no block framing, so block indices are assigned
    here. At most one block is open at a time; it is closed whenever the
    delta kind changes, a new tool call begins, a ``finish_reason`` arrives,
    or the stream ends.
    """

    def __init__(self) -> None:
        self._started = False
        self._stopped = False
        self._finish_seen = False
        self._next_index = 0
        self._open: tuple[BlockKind, int] | None = None
        self._tool_blocks: dict[int, int] = {}

    def _close(self, events: list[StreamEvent]) -> None:
        if self._open is not None:
            events.append(ContentBlockStop(index=self._open[1]))
            self._open = None

    def _ensure_open(self, kind: BlockKind, events: list[StreamEvent]) -> int:
        if self._open is not None and self._open[0] is kind:
            return self._open[1]
        self._close(events)
        index = self._next_index
        self._next_index += 1
        events.append(ContentBlockStart(index=index, block_kind=kind))
        self._open = (kind, index)
        return index

    def _tool_delta(self, call: dict[str, Any], events: list[StreamEvent]) -> None:
        slot = call.get("index", 0)
        function = call.get("function") or {}
        index = self._tool_blocks.get(slot)

        if index is None:
            self._close(events)
            index = self._next_index
            self._next_index += 1
            self._tool_blocks[slot] = index
            events.append(
                ContentBlockStart(
                    index=index,
                    block_kind=BlockKind.TOOL_USE,
                    tool_name=function.get("name"),
                    tool_id=call.get("id"),
                )
            )
            self._open = (BlockKind.TOOL_USE, index)
        elif self._open is None or self._open[1] != index:
            raise ProtocolError(f"Delta for tool call {slot} after its block was closed")

        arguments = function.get("arguments")
        if arguments:
            events.append(Delta(index=index, kind=DeltaKind.TOOL_INPUT_JSON, payload=arguments))

    def interpret(self, event: SSEEvent) -> list[StreamEvent]:
        data = load_payload(event.data)
        error = error_message(data)
        if error is not None:
            return [StreamError(message=error[0], error_type=error[1])]

        events: list[StreamEvent] = []
        if not self._started:
            self._started = True
            events.append(MessageStart(id=data.get("id"), model=data.get("model")))

        choices = data.get("choices") or []
        if choices:
            choice = choices[0]
            delta = choice.get("delta") or {}

            reasoning = delta.get("reasoning_content")
            if reasoning:
                index = self._ensure_open(BlockKind.THINKING, events)
                events.append(Delta(index=index, kind=DeltaKind.THINKING, payload=reasoning))

            content = delta.get("content")
            if content:
                index = self._ensure_open(BlockKind.TEXT, events)
                events.append(Delta(index=index, kind=DeltaKind.TEXT, payload=content))

            for call in delta.get("tool_calls") or []:
                self._tool_delta(call, events)

            finish_reason = choice.get("finish_reason")
            if finish_reason:
                self._finish_seen = True
                self._close(events)
                events.append(MessageDelta(finish_reason=finish_reason))

        usage = data.get("usage")
        if usage:
            events.append(
                MessageDelta(
                    usage=Usage(
                        prompt_tokens=usage.get("prompt_tokens"),
                        completion_tokens=usage.get("completion_tokens"),
                    )
                )
            )
        return events

    def finish(self, truncated: bool = False) -> list[StreamEvent]:
        """Close the open block and stop the message.

        A body that ends without ``[DONE]`` is only complete if a
        ``finish_reason`` arrived; otherwise nothing is emitted and the
        accumulator reports the truncation.
        """
        if truncated and not self._finish_seen:
            return []
        events: list[StreamEvent] = []
        self._close(events)
        if self._started and not self._stopped:
            self._stopped = True
            events.append(MessageStop())
        return events


class OpenAICompatibleClient(BaseCompletionClient):
    """Completion client for any OpenAI-compatible server.

    OpenAI, vLLM, SGLang, Ollama, llama.cpp, DeepSeek and Kimi all expose a
    ``/chat/completions`` endpoint with the same request and chunk format.
    """

    provider = "openai"

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        transport: HTTPTransport | None = None,
        timeout: float | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """Initialise the client.

        Args:
            model: Model name served by the backend.
            api_key: Bearer token (many local backends ignore it).
            api_base: Endpoint base including the version, e.g. ``http://localhost:8000/v1``.
            transport: Shared transport.
            timeout: Request timeout in seconds.
            temperature: Default sampling temperature.
            top_p: Default nucleus sampling value.
            max_tokens: Default completion length bound.
        """
        super().__init__(
            model=model,
            api_key=api_key,
            api_base=api_base,
            transport=transport,
            timeout=timeout,
            temperature=temperature,
            top_p=top_p,
            max_tokens=max_tokens,
        )

    @classmethod
    def default_api_base(cls) -> str:
        return OPENAI_API_BASE

    def _url(self) -> str:
        return f"{self.api_base}/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = {"content-type": "application/json"}
        if self.api_key:
            headers["authorization"] = f"Bearer {self.api_key}"
        return headers

    def _convert_messages(self, messages: tuple[Message, ...]) -> list[dict[str, Any]]:
        """Convert internal Message format to OpenAI format."""
        openai_messages: list[dict[str, Any]] = []

        for msg in messages:
            message_dict: dict[str, Any] = {
                "role": str(msg.role),
                "content": msg.content,
            }

            if msg.tool_calls:
                message_dict["tool_calls"] = [
                    {
                        "id": tc.id,
                        "type": "function",
                        "function": {"name": tc.name, "arguments": tc.arguments},
                    }
                    for tc in msg.tool_calls
                ]

            if msg.tool_call_id:
                message_dict["tool_call_id"] = msg.tool_call_id

            openai_messages.append(message_dict)

        return openai_messages

    def _build_payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": self._convert_messages(request.messages),
        }
        payload.update(self._sampling(request))

        max_tokens = request.max_tokens or self.max_tokens
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if request.stop:
            payload["stop"] = list(request.stop)
        if request.tools:
            payload["tools"] = request.tools
            payload["tool_choice"] = "auto"
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        return payload

    def _parse_tool_calls(self, tool_calls: list[dict[str, Any]] | None) -> list[ToolCall]:
        """Parse tool calls from a chat completion message."""
        if not tool_calls:
            return []

        parsed: list[ToolCall] = []
        for tc in tool_calls:
            function = tc["function"]
            parsed.append(
                ToolCall(
                    id=tc.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    name=function["name"],
                    arguments=function.get("arguments") or "{}",
                )
            )
        return parsed

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        choice = data["choices"][0]
        message = choice.get("message") or {}
        tool_calls = self._parse_tool_calls(message.get("tool_calls"))

        raw_finish = choice.get("finish_reason")
        finish_reason = FinishReason.from_provider(raw_finish)
        if raw_finish is None and tool_calls:
            finish_reason = FinishReason.TOOL_CALLS

        usage = data.get("usage") or {}
        return ChatResponse(
            id=data.get("id"),
            model=data.get("model"),
            content=message.get("content"),
            finish_reason=finish_reason,
            tool_calls=tuple(tool_calls),
            prompt_tokens=usage.get("prompt_tokens") or 0,
            completion_tokens=usage.get("completion_tokens") or 0,
            thinking=message.get("reasoning_content"),
        )

    def _new_interpreter(self) -> OpenAIStreamInterpreter:
        return OpenAIStreamInterpreter()
