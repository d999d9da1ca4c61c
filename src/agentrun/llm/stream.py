"""Streaming response events and their reassembly into a ChatResponse.

Provider interpreters translate each SSE payload into the provider-neutral
events defined here. :class:`StreamAccumulator` folds those events back into
a single :class:`~agentrun.llm.client.ChatResponse`: text and thinking
deltas are concatenated per block, and tool-use blocks collect their
argument JSON until ``ContentBlockStop`` promotes them to a ``ToolCall``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum, StrEnum
from typing import TYPE_CHECKING, Protocol

from agentrun.errors import ProtocolError, ProviderError
from agentrun.llm.client import ChatResponse, FinishReason, ToolCall

if TYPE_CHECKING:
    from agentrun.llm.sse import SSEEvent


class StreamAction(Enum):
    """Returned by stream callbacks to keep going or stop the exchange."""

    CONTINUE = "continue"
    ABORT = "abort"


class BlockKind(StrEnum):
    """Kind of a streamed content block."""

    TEXT = "text"
    THINKING = "thinking"
    TOOL_USE = "tool_use"


class DeltaKind(StrEnum):
    """Kind of payload carried by a delta."""

    TEXT = "text"
    THINKING = "thinking"
    TOOL_INPUT_JSON = "tool_input_json"


@dataclass(frozen=True)
class Usage:
    """Token usage reported mid-stream. ``None`` means not reported."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None


@dataclass(frozen=True)
class MessageStart:
    id: str | None = None
    model: str | None = None
    usage: Usage | None = None


@dataclass(frozen=True)
class ContentBlockStart:
    index: int
    block_kind: BlockKind
    tool_name: str | None = None
    tool_id: str | None = None


@dataclass(frozen=True)
class Delta:
    index: int
    kind: DeltaKind
    payload: str


@dataclass(frozen=True)
class ContentBlockStop:
    index: int


@dataclass(frozen=True)
class MessageDelta:
    finish_reason: str | None = None
    usage: Usage | None = None


@dataclass(frozen=True)
class MessageStop:
    pass


@dataclass(frozen=True)
class StreamError:
    message: str
    error_type: str | None = None


StreamEvent = (
    MessageStart
    | ContentBlockStart
    | Delta
    | ContentBlockStop
    | MessageDelta
    | MessageStop
    | StreamError
)


class StreamInterpreter(Protocol):
    """Translates provider SSE payloads into stream events."""

    def interpret(self, event: SSEEvent) -> list[StreamEvent]:
        """Translate one decoded SSE event (never the ``[DONE]`` sentinel)."""
        ...

    def finish(self, truncated: bool = False) -> list[StreamEvent]:
        """Events owed at stream completion, e.g. closing open blocks.

        ``truncated`` is set when the body ended without the ``[DONE]`` sentinel.
        """
        ...


_DELTA_FOR_BLOCK = {
    BlockKind.TEXT: DeltaKind.TEXT,
    BlockKind.THINKING: DeltaKind.THINKING,
    BlockKind.TOOL_USE: DeltaKind.TOOL_INPUT_JSON,
}


@dataclass
class _Block:
    kind: BlockKind
    tool_id: str | None = None
    tool_name: str | None = None
    parts: list[str] = field(default_factory=list)
    closed: bool = False


class StreamAccumulator:
    """Fold stream events into a ChatResponse."""

    def __init__(self) -> None:
        self.id: str | None = None
        self.model: str | None = None
        self.finish_reason: str | None = None
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.started = False
        self.stopped = False
        self._blocks: dict[int, _Block] = {}
        self._order: list[int] = []
        self._tool_calls: list[ToolCall] = []

    def apply(self, event: StreamEvent) -> None:
        """Fold one event into the pending response.

        Raises:
            ProviderError: For an in-stream error event
            ProtocolError: If the events violate message or block ordering
        """
        if isinstance(event, StreamError):
            raise ProviderError(event.message, error_type=event.error_type)

        if isinstance(event, MessageStart):
            if self.started:
                raise ProtocolError("Message started twice")
            self.started = True
            self.id = event.id or self.id
            self.model = event.model or self.model
            self._apply_usage(event.usage)
        elif not self.started:
            raise ProtocolError(f"{type(event).__name__} before message start")
        elif self.stopped:
            raise ProtocolError(f"{type(event).__name__} after message stop")
        elif isinstance(event, ContentBlockStart):
            block = self._blocks.get(event.index)
            if block is not None and not block.closed:
                raise ProtocolError(f"Content block {event.index} started twice without stop")
            if event.index not in self._blocks:
                self._order.append(event.index)
            self._blocks[event.index] = _Block(
                kind=event.block_kind,
                tool_id=event.tool_id,
                tool_name=event.tool_name,
            )
        elif isinstance(event, Delta):
            block = self._blocks.get(event.index)
            if block is None or block.closed:
                raise ProtocolError(f"Delta for content block {event.index} that is not open")
            if _DELTA_FOR_BLOCK[block.kind] is not event.kind:
                raise ProtocolError(
                    f"{event.kind} delta does not fit {block.kind} block {event.index}"
                )
            block.parts.append(event.payload)
        elif isinstance(event, ContentBlockStop):
            block = self._blocks.get(event.index)
            if block is None or block.closed:
                raise ProtocolError(f"Stop for content block {event.index} that is not open")
            block.closed = True
            if block.kind is BlockKind.TOOL_USE:
                self._promote_tool_call(block)
        elif isinstance(event, MessageDelta):
            # Last reported finish reason wins
            if event.finish_reason is not None:
                self.finish_reason = event.finish_reason
            self._apply_usage(event.usage)
        elif isinstance(event, MessageStop):
            self.stopped = True

    def build(self) -> ChatResponse:
        """Materialize the accumulated response.

        Raises:
            ProtocolError: If the message never stopped or a block is still open
        """
        if not self.stopped:
            raise ProtocolError("Stream ended before message stop")
        unclosed = [i for i in self._order if not self._blocks[i].closed]
        if unclosed:
            raise ProtocolError(f"Stream ended with content block {unclosed[0]} open")

        text = [
            "".join(self._blocks[i].parts)
            for i in self._order
            if self._blocks[i].kind is BlockKind.TEXT
        ]
        thinking = [
            "".join(self._blocks[i].parts)
            for i in self._order
            if self._blocks[i].kind is BlockKind.THINKING
        ]

        finish_reason = FinishReason.from_provider(self.finish_reason)
        if self.finish_reason is None and self._tool_calls:
            finish_reason = FinishReason.TOOL_CALLS

        return ChatResponse(
            id=self.id,
            model=self.model,
            content="".join(text) if text else None,
            finish_reason=finish_reason,
            tool_calls=tuple(self._tool_calls),
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            thinking="".join(thinking) if thinking else None,
        )

    def _apply_usage(self, usage: Usage | None) -> None:
        if usage is None:
            return
        if usage.prompt_tokens is not None:
            self.prompt_tokens = usage.prompt_tokens
        if usage.completion_tokens is not None:
            self.completion_tokens = usage.completion_tokens

    def _promote_tool_call(self, block: _Block) -> None:
        if not block.tool_name:
            raise ProtocolError("Tool-use block closed without a tool name")
        arguments = "".join(block.parts) or "{}"
        call_id = block.tool_id or f"call_{uuid.uuid4().hex[:12]}"
        self._tool_calls.append(ToolCall(id=call_id, name=block.tool_name, arguments=arguments))
