"""Completion clients and the streaming pipeline."""

from .anthropic import AnthropicClient, AnthropicStreamInterpreter
from .base import BaseCompletionClient
from .client import (
    ChatRequest,
    ChatResponse,
    FinishReason,
    LLMClient,
    Message,
    Role,
    ToolCall,
)
from .factory import create_llm_client, resolve_provider
from .openai_compat import OpenAICompatibleClient, OpenAIStreamInterpreter
from .sse import LineFramer, SSEDecoder, SSEEvent
from .stream import StreamAccumulator, StreamAction
from .transport import HTTPTransport, TransportRequest, TransportResponse

__all__ = [
    "AnthropicClient",
    "AnthropicStreamInterpreter",
    "BaseCompletionClient",
    "ChatRequest",
    "ChatResponse",
    "FinishReason",
    "HTTPTransport",
    "LLMClient",
    "LineFramer",
    "Message",
    "OpenAICompatibleClient",
    "OpenAIStreamInterpreter",
    "Role",
    "SSEDecoder",
    "SSEEvent",
    "StreamAccumulator",
    "StreamAction",
    "ToolCall",
    "TransportRequest",
    "TransportResponse",
    "create_llm_client",
    "resolve_provider",
]
