"""LLM client protocol and data types."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from agentrun.errors import ProtocolError

if TYPE_CHECKING:
    from agentrun.llm.stream import StreamAction, StreamEvent


class Role(StrEnum):
    """Conversation roles."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class FinishReason(StrEnum):
    """Why the model stopped generating."""

    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    ERROR = "error"

    @classmethod
    def from_provider(cls, raw: str | None) -> FinishReason:
        """Map a provider-specific stop code onto a FinishReason.

        Args:
            raw: Provider code such as ``end_turn`` or ``tool_calls``

        Returns:
            The normalized finish reason (``STOP`` when unknown)
        """
        if raw is None:
            return cls.STOP
        return _PROVIDER_FINISH_REASONS.get(raw, cls.STOP)


_PROVIDER_FINISH_REASONS = {
    "stop": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "max_tokens": FinishReason.LENGTH,
    "tool_use": FinishReason.TOOL_CALLS,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.ERROR,
    "refusal": FinishReason.ERROR,
}


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the LLM.

    ``arguments`` is kept as the raw JSON text the model produced.
    """

    id: str
    name: str
    arguments: str = "{}"

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode the argument JSON (empty text decodes to ``{}``)."""
        if not self.arguments.strip():
            return {}
        value = json.loads(self.arguments)
        if not isinstance(value, dict):
            raise ValueError("tool arguments must be a JSON object")
        return value


@dataclass
class Message:
    """A message in the conversation."""

    role: Role
    content: str | None = None
    tool_name: str | None = None  # For tool response messages
    tool_call_id: str | None = None  # For tool response messages
    tool_calls: list[ToolCall] | None = None  # For assistant messages

    def to_dict(self) -> dict[str, Any]:
        """Provider-neutral dict form, used by traces."""
        data: dict[str, Any] = {"role": str(self.role), "content": self.content}
        if self.tool_name:
            data["tool_name"] = self.tool_name
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.tool_calls:
            data["tool_calls"] = [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self.tool_calls
            ]
        return data


@dataclass(frozen=True)
class ChatRequest:
    """One request to the completion endpoint.

    Built fresh for every iteration; ``messages`` is a tuple so a submitted
    request can't be changed underneath the client.
    """

    messages: tuple[Message, ...]
    model: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_tokens: int | None = None
    stop: tuple[str, ...] | None = None
    stream: bool = False
    tools: list[dict[str, Any]] | None = None
    thinking_budget: int | None = None


@dataclass(frozen=True)
class ChatResponse:
    """Response from LLM completion."""

    id: str | None = None
    model: str | None = None
    content: str | None = None
    finish_reason: FinishReason = FinishReason.STOP
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)
    prompt_tokens: int = 0
    completion_tokens: int = 0
    thinking: str | None = None

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for call in self.tool_calls:
            if call.id in seen:
                raise ProtocolError(f"Duplicate tool call id in response: {call.id}")
            seen.add(call.id)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


OnStreamEvent = Callable[["StreamEvent"], "StreamAction | None"]


class LLMClient(Protocol):
    """Protocol for completion client implementations."""

    model: str

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Perform one blocking completion.

        Args:
            request: Conversation and sampling parameters

        Returns:
            The parsed response
        """
        ...

    async def complete_stream(
        self,
        request: ChatRequest,
        on_event: OnStreamEvent | None = None,
    ) -> ChatResponse:
        """Perform a streaming completion.

        Args:
            request: Conversation and sampling parameters
            on_event: Called synchronously for every stream event in receipt order

        Returns:
            The response reassembled from the stream
        """
        ...
