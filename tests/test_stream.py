"""Tests for folding stream events into a ChatResponse."""

import pytest

from agentrun.errors import ProtocolError, ProviderError
from agentrun.llm.client import ChatResponse, FinishReason, ToolCall
from agentrun.llm.stream import (
    BlockKind,
    ContentBlockStart,
    ContentBlockStop,
    Delta,
    DeltaKind,
    MessageDelta,
    MessageStart,
    MessageStop,
    StreamAccumulator,
    StreamError,
    Usage,
)


def fold(events) -> ChatResponse:
    accumulator = StreamAccumulator()
    for event in events:
        accumulator.apply(event)
    return accumulator.build()


def framed(*events) -> list:
    return [MessageStart(), *events, MessageStop()]


def started() -> StreamAccumulator:
    accumulator = StreamAccumulator()
    accumulator.apply(MessageStart())
    return accumulator


def test_text_block_reconstruction():
    """Test that text deltas concatenate into the assistant content."""
    response = fold(
        framed(
            ContentBlockStart(index=0, block_kind=BlockKind.TEXT),
            Delta(index=0, kind=DeltaKind.TEXT, payload="Hel"),
            Delta(index=0, kind=DeltaKind.TEXT, payload="lo"),
            ContentBlockStop(index=0),
        )
    )

    assert response.content == "Hello"
    assert response.finish_reason == FinishReason.STOP
    assert response.tool_calls == ()


def test_full_message_with_thinking_and_tool_use():
    """Test a message mixing thinking, text and a tool call."""
    response = fold(
        [
            MessageStart(id="msg_1", model="claude-test", usage=Usage(prompt_tokens=11)),
            ContentBlockStart(index=0, block_kind=BlockKind.THINKING),
            Delta(index=0, kind=DeltaKind.THINKING, payload="2+2 "),
            Delta(index=0, kind=DeltaKind.THINKING, payload="is easy"),
            ContentBlockStop(index=0),
            ContentBlockStart(index=1, block_kind=BlockKind.TEXT),
            Delta(index=1, kind=DeltaKind.TEXT, payload="Let me check."),
            ContentBlockStop(index=1),
            ContentBlockStart(index=2, block_kind=BlockKind.TOOL_USE, tool_name="calculator", tool_id="toolu_1"),
            Delta(index=2, kind=DeltaKind.TOOL_INPUT_JSON, payload='{"operation": "add", '),
            Delta(index=2, kind=DeltaKind.TOOL_INPUT_JSON, payload='"a": 2, "b": 2}'),
            ContentBlockStop(index=2),
            MessageDelta(finish_reason="tool_use", usage=Usage(completion_tokens=30)),
            MessageStop(),
        ]
    )

    assert response.id == "msg_1"
    assert response.model == "claude-test"
    assert response.thinking == "2+2 is easy"
    assert response.content == "Let me check."
    assert response.finish_reason == FinishReason.TOOL_CALLS
    assert response.tool_calls == (
        ToolCall(id="toolu_1", name="calculator", arguments='{"operation": "add", "a": 2, "b": 2}'),
    )
    assert response.tool_calls[0].parsed_arguments() == {"operation": "add", "a": 2, "b": 2}
    assert response.prompt_tokens == 11
    assert response.completion_tokens == 30
    assert response.total_tokens == 41


def test_tool_call_without_arguments_or_id():
    """Test that empty argument text becomes {} and a missing id is generated."""
    response = fold(
        framed(
            ContentBlockStart(index=0, block_kind=BlockKind.TOOL_USE, tool_name="get_current_time"),
            ContentBlockStop(index=0),
        )
    )

    (call,) = response.tool_calls
    assert call.arguments == "{}"
    assert call.id.startswith("call_")
    # No finish reason reported, but a tool call exists
    assert response.finish_reason == FinishReason.TOOL_CALLS


def test_open_tool_block_is_not_promoted():
    """Test that a tool block only becomes a ToolCall once it stops."""
    accumulator = started()
    accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TOOL_USE, tool_name="x", tool_id="t"))
    accumulator.apply(Delta(index=0, kind=DeltaKind.TOOL_INPUT_JSON, payload="{}"))

    assert accumulator._tool_calls == []


def test_truncated_stream_with_open_block_is_protocol_error():
    """Test that a body cut off inside a tool block is not a finished response."""
    accumulator = started()
    accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TOOL_USE, tool_name="x", tool_id="t"))
    accumulator.apply(Delta(index=0, kind=DeltaKind.TOOL_INPUT_JSON, payload='{"a": '))

    with pytest.raises(ProtocolError, match="before message stop"):
        accumulator.build()


def test_message_stop_with_open_block_is_protocol_error():
    """Test that every block must stop before the message does."""
    accumulator = started()
    accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TEXT))
    accumulator.apply(MessageStop())

    with pytest.raises(ProtocolError, match="block 0 open"):
        accumulator.build()


def test_empty_stream_is_protocol_error():
    """Test that a body with no events at all is rejected."""
    with pytest.raises(ProtocolError, match="before message stop"):
        StreamAccumulator().build()


@pytest.mark.parametrize(
    "event",
    [
        ContentBlockStart(index=0, block_kind=BlockKind.TEXT),
        Delta(index=0, kind=DeltaKind.TEXT, payload="x"),
        ContentBlockStop(index=0),
        MessageDelta(finish_reason="stop"),
        MessageStop(),
    ],
)
def test_event_before_message_start_is_protocol_error(event):
    """Test that nothing but MessageStart may open a message."""
    with pytest.raises(ProtocolError, match="before message start"):
        StreamAccumulator().apply(event)


def test_events_after_message_stop_are_protocol_errors():
    """Test that the message is sealed once it stops."""
    accumulator = started()
    accumulator.apply(MessageStop())

    with pytest.raises(ProtocolError, match="after message stop"):
        accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TEXT))
    with pytest.raises(ProtocolError, match="started twice"):
        accumulator.apply(MessageStart())


def test_last_finish_reason_wins():
    """Test the tie-break for several MessageDelta events."""
    response = fold(
        framed(
            MessageDelta(finish_reason="tool_calls"),
            MessageDelta(finish_reason=None, usage=Usage(prompt_tokens=1, completion_tokens=2)),
            MessageDelta(finish_reason="length"),
        )
    )

    assert response.finish_reason == FinishReason.LENGTH
    assert response.prompt_tokens == 1
    assert response.completion_tokens == 2


def test_block_index_can_be_reused_after_stop():
    """Test that a new block may start at an index once the previous one stopped."""
    response = fold(
        framed(
            ContentBlockStart(index=0, block_kind=BlockKind.TEXT),
            Delta(index=0, kind=DeltaKind.TEXT, payload="a"),
            ContentBlockStop(index=0),
            ContentBlockStart(index=0, block_kind=BlockKind.TEXT),
            Delta(index=0, kind=DeltaKind.TEXT, payload="b"),
            ContentBlockStop(index=0),
        )
    )

    assert response.content == "b"


def test_double_start_is_protocol_error():
    """Test that starting an open block again is rejected."""
    accumulator = started()
    accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TEXT))

    with pytest.raises(ProtocolError):
        accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TEXT))


def test_delta_for_unknown_block_is_protocol_error():
    """Test that a delta must target an open block."""
    accumulator = started()

    with pytest.raises(ProtocolError, match="not open"):
        accumulator.apply(Delta(index=3, kind=DeltaKind.TEXT, payload="x"))


def test_delta_kind_must_match_block():
    """Test that a thinking delta can't land in a text block."""
    accumulator = started()
    accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TEXT))

    with pytest.raises(ProtocolError):
        accumulator.apply(Delta(index=0, kind=DeltaKind.THINKING, payload="x"))


def test_stop_for_closed_block_is_protocol_error():
    """Test that a block stops exactly once."""
    accumulator = started()
    accumulator.apply(ContentBlockStart(index=0, block_kind=BlockKind.TEXT))
    accumulator.apply(ContentBlockStop(index=0))

    with pytest.raises(ProtocolError):
        accumulator.apply(ContentBlockStop(index=0))


def test_stream_error_raises_provider_error():
    """Test that an in-stream error surfaces the provider's message."""
    accumulator = StreamAccumulator()

    with pytest.raises(ProviderError) as exc_info:
        accumulator.apply(StreamError(message="Overloaded", error_type="overloaded_error"))

    assert str(exc_info.value) == "Overloaded"
    assert exc_info.value.error_type == "overloaded_error"


def test_duplicate_tool_ids_rejected():
    """Test that a response can't carry two calls with one id."""
    with pytest.raises(ProtocolError):
        ChatResponse(
            tool_calls=(
                ToolCall(id="same", name="a"),
                ToolCall(id="same", name="b"),
            )
        )


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("end_turn", FinishReason.STOP),
        ("stop", FinishReason.STOP),
        ("stop_sequence", FinishReason.STOP),
        ("max_tokens", FinishReason.LENGTH),
        ("length", FinishReason.LENGTH),
        ("tool_use", FinishReason.TOOL_CALLS),
        ("tool_calls", FinishReason.TOOL_CALLS),
        ("content_filter", FinishReason.ERROR),
        ("something_new", FinishReason.STOP),
        (None, FinishReason.STOP),
    ],
)
def test_finish_reason_mapping(raw, expected):
    """Test provider stop codes map onto finish reasons."""
    assert FinishReason.from_provider(raw) == expected
