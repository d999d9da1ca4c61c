"""Anthropic Claude completion client using httpx.

Implements the LLMClient protocol for the Anthropic Messages API.
Uses httpx directly (through the shared transport) to avoid adding
the anthropic SDK as a dependency.
"""

import json
import logging
from typing import Any

from agentrun.llm.base import BaseCompletionClient, load_payload
from agentrun.llm.client import ChatRequest, ChatResponse, FinishReason, Message, Role, ToolCall
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

ANTHROPIC_API_BASE = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096
THINKING_MIN_BUDGET = 1024

_BLOCK_KINDS = {
    "text": BlockKind.TEXT,
    "thinking": BlockKind.THINKING,
    "tool_use": BlockKind.TOOL_USE,
}


def _usage(data: dict[str, Any] | None) -> Usage | None:
    if not data:
        return None
    return Usage(
        prompt_tokens=data.get("input_tokens"),
        completion_tokens=data.get("output_tokens"),
    )


class AnthropicStreamInterpreter:
    """Translate Anthropic streaming events into stream events.

    Block indices are the provider's own. Blocks of a kind we don't surface
    (``redacted_thinking``, server tool blocks) are skipped along with their
    deltas and stop.
    """

    def __init__(self) -> None:
        self._skipped: set[int] = set()

    def interpret(self, event: SSEEvent) -> list[StreamEvent]:
        data = load_payload(event.data)
        kind = data.get("type") or event.event

        if kind == "message_start":
            message = data.get("message") or {}
            return [
                MessageStart(
                    id=message.get("id"),
                    model=message.get("model"),
                    usage=_usage(message.get("usage")),
                )
            ]

        if kind == "content_block_start":
            index = data["index"]
            block = data.get("content_block") or {}
            block_kind = _BLOCK_KINDS.get(block.get("type"))
            if block_kind is None:
                logger.debug("Skipping unsupported content block %r", block.get("type"))
                self._skipped.add(index)
                return []
            self._skipped.discard(index)
            events: list[StreamEvent] = [
                ContentBlockStart(
                    index=index,
                    block_kind=block_kind,
                    tool_name=block.get("name"),
                    tool_id=block.get("id"),
                )
            ]
            # A text block may open with initial text
            if block_kind is BlockKind.TEXT and block.get("text"):
                events.append(Delta(index=index, kind=DeltaKind.TEXT, payload=block["text"]))
            return events

        if kind == "content_block_delta":
            index = data["index"]
            if index in self._skipped:
                return []
            delta = data.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                return [Delta(index=index, kind=DeltaKind.TEXT, payload=delta.get("text", ""))]
            if delta_type == "thinking_delta":
                return [Delta(index=index, kind=DeltaKind.THINKING, payload=delta.get("thinking", ""))]
            if delta_type == "input_json_delta":
                return [
                    Delta(
                        index=index,
                        kind=DeltaKind.TOOL_INPUT_JSON,
                        payload=delta.get("partial_json", ""),
                    )
                ]
            # signature_delta and anything newer
            return []

        if kind == "content_block_stop":
            index = data["index"]
            if index in self._skipped:
                self._skipped.discard(index)
                return []
            return [ContentBlockStop(index=index)]

        if kind == "message_delta":
            delta = data.get("delta") or {}
            return [MessageDelta(finish_reason=delta.get("stop_reason"), usage=_usage(data.get("usage")))]

        if kind == "message_stop":
            return [MessageStop()]

        if kind == "error":
            error = data.get("error") or {}
            return [StreamError(message=error.get("message", "unknown error"), error_type=error.get("type"))]

        # ping and unknown event types
        return []

    def finish(self, truncated: bool = False) -> list[StreamEvent]:
        # message_stop is the only end marker; a truncated stream gets nothing
        return []


class AnthropicClient(BaseCompletionClient):
    """Completion client for the Anthropic Messages API."""

    provider = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        api_base: str | None = None,
        transport: HTTPTransport | None = None,
        timeout: float | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        thinking_budget: int | None = None,
    ):
        """Initialize Anthropic client.

        Args:
            api_key: Anthropic API key
            model: Model name (e.g., "claude-sonnet-4-20250514")
            api_base: Endpoint base, defaults to https://api.anthropic.com
            transport: Shared transport
            timeout: Request timeout in seconds
            temperature: Default sampling temperature
            top_p: Default nucleus sampling value
            max_tokens: Default max tokens for responses
            thinking_budget: Enables extended thinking with this token budget
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
        self.thinking_budget = thinking_budget

    @classmethod
    def default_api_base(cls) -> str:
        return ANTHROPIC_API_BASE

    def _url(self) -> str:
        return f"{self.api_base}/v1/messages"

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": ANTHROPIC_API_VERSION,
            "content-type": "application/json",
        }

    def _convert_messages(self, messages: tuple[Message, ...]) -> tuple[str | None, list[dict[str, Any]]]:
        """Convert internal Message format to Anthropic format.

        Anthropic requires the system prompt to be separate from the
        messages array, and tool results to be ``tool_result`` blocks in a
        user turn.

        Args:
            messages: Conversation to send

        Returns:
            Tuple of (system_prompt, anthropic_messages)
        """
        system_parts: list[str] = []
        anthropic_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role == Role.SYSTEM:
                if msg.content:
                    system_parts.append(msg.content)
                continue

            if msg.role == Role.ASSISTANT and msg.tool_calls:
                content_blocks: list[dict[str, Any]] = []
                if msg.content:
                    content_blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    try:
                        tool_input = tc.parsed_arguments()
                    except ValueError:
                        tool_input = {}
                    content_blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": tool_input,
                        }
                    )
                anthropic_messages.append({"role": "assistant", "content": content_blocks})

            elif msg.role == Role.TOOL:
                result = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content or "",
                }
                previous = anthropic_messages[-1] if anthropic_messages else None
                # Consecutive tool results share one user turn
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(block.get("type") == "tool_result" for block in previous["content"])
                ):
                    previous["content"].append(result)
                else:
                    anthropic_messages.append({"role": "user", "content": [result]})

            else:
                anthropic_messages.append({"role": str(msg.role), "content": msg.content or ""})

        system_prompt = "\n\n".join(system_parts) if system_parts else None
        return system_prompt, anthropic_messages

    def _convert_tools(self, tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert OpenAI function format to Anthropic tool format."""
        anthropic_tools = []
        for tool in tools:
            func = tool.get("function", tool)
            anthropic_tools.append(
                {
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {"type": "object", "properties": {}}),
                }
            )
        return anthropic_tools

    def _build_payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        system_prompt, anthropic_messages = self._convert_messages(request.messages)

        payload: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": anthropic_messages,
            "max_tokens": request.max_tokens or self.max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system_prompt:
            payload["system"] = system_prompt

        budget = request.thinking_budget or self.thinking_budget
        if budget:
            payload["thinking"] = {
                "type": "enabled",
                "budget_tokens": max(budget, THINKING_MIN_BUDGET),
            }
        else:
            # The API rejects custom sampling while thinking is enabled
            payload.update(self._sampling(request))
            if request.top_k is not None:
                payload["top_k"] = request.top_k

        if request.stop:
            payload["stop_sequences"] = list(request.stop)
        if request.tools:
            payload["tools"] = self._convert_tools(request.tools)
        if stream:
            payload["stream"] = True
        return payload

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        text_parts: list[str] = []
        thinking_parts: list[str] = []
        tool_calls: list[ToolCall] = []

        for block in data["content"]:
            block_type = block.get("type")
            if block_type == "text":
                text_parts.append(block["text"])
            elif block_type == "thinking":
                thinking_parts.append(block.get("thinking", ""))
            elif block_type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block["id"],
                        name=block["name"],
                        arguments=json.dumps(block.get("input") or {}),
                    )
                )

        stop_reason = data.get("stop_reason")
        finish_reason = FinishReason.from_provider(stop_reason)
        if stop_reason is None and tool_calls:
            finish_reason = FinishReason.TOOL_CALLS

        usage = data.get("usage") or {}
        return ChatResponse(
            id=data.get("id"),
            model=data.get("model"),
            content="".join(text_parts) if text_parts else None,
            finish_reason=finish_reason,
            tool_calls=tuple(tool_calls),
            prompt_tokens=usage.get("input_tokens") or 0,
            completion_tokens=usage.get("output_tokens") or 0,
            thinking="".join(thinking_parts) if thinking_parts else None,
        )

    def _new_interpreter(self) -> AnthropicStreamInterpreter:
        return AnthropicStreamInterpreter()
