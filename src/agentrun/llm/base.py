"""Shared request/response plumbing for completion clients.

Provider subclasses supply the endpoint, headers, payload shape, the
blocking-response parser and a stream interpreter. Everything else,
blocking exchange, SSE decoding, accumulation and cancellation, lives here.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from agentrun.errors import CancelledRequestError, ProtocolError, ProviderError
from agentrun.llm.client import ChatRequest, ChatResponse, OnStreamEvent
from agentrun.llm.sse import SSEDecoder
from agentrun.llm.stream import (
    StreamAccumulator,
    StreamAction,
    StreamEvent,
    StreamInterpreter,
)
from agentrun.llm.transport import HTTPTransport, TransportRequest

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def load_payload(data: str) -> dict[str, Any]:
    """Decode one SSE payload, which must be a JSON object."""
    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise ProtocolError(f"Stream payload is not a JSON object: {data!r}")
    return payload


def error_message(body: Any) -> tuple[str, str | None] | None:
    """Extract ``(message, type)`` from a provider error object, if present."""
    if not isinstance(body, dict):
        return None
    error = body.get("error")
    if error is None:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error), error.get("type")
    return str(error), None


class BaseCompletionClient:
    """Completion client over :class:`HTTPTransport`."""

    provider = "base"

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
    ):
        """Initialize the client.

        Args:
            model: Default model name, overridable per request
            api_key: Credential sent in the provider's auth header
            api_base: Endpoint base URL
            transport: Shared transport; one is created (and owned) when omitted
            timeout: Per-request timeout in seconds
            temperature: Default sampling temperature
            top_p: Default nucleus sampling value
            max_tokens: Default completion length bound
        """
        self.model = model
        self.api_key = api_key
        self.api_base = (api_base or self.default_api_base()).rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens
        self._owns_transport = transport is None
        self.transport = transport or HTTPTransport()

    @classmethod
    def default_api_base(cls) -> str:
        raise NotImplementedError

    def _url(self) -> str:
        raise NotImplementedError

    def _headers(self) -> dict[str, str]:
        raise NotImplementedError

    def _build_payload(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        raise NotImplementedError

    def _parse_response(self, data: dict[str, Any]) -> ChatResponse:
        raise NotImplementedError

    def _new_interpreter(self) -> StreamInterpreter:
        raise NotImplementedError

    def _sampling(self, request: ChatRequest) -> dict[str, Any]:
        """Sampling parameters that are set, request values over client defaults."""
        params: dict[str, Any] = {}
        temperature = request.temperature if request.temperature is not None else self.temperature
        if temperature is not None:
            params["temperature"] = temperature
        top_p = request.top_p if request.top_p is not None else self.top_p
        if top_p is not None:
            params["top_p"] = top_p
        return params

    def _transport_request(self, request: ChatRequest, stream: bool) -> TransportRequest:
        payload = self._build_payload(request, stream)
        logger.debug("%s request: %s", self.provider, json.dumps(payload, default=str))
        return TransportRequest(
            url=self._url(),
            body=payload,
            headers=self._headers(),
            timeout=self.timeout,
        )

    async def complete(self, request: ChatRequest) -> ChatResponse:
        """Perform one blocking completion.

        Raises:
            TransportError: On connection failure or timeout
            ResourceError: If no pooled connection became available
            ProtocolError: On a non-success status or unparseable body
            ProviderError: If the body carries an error object
        """
        transport_request = self._transport_request(request, stream=False)
        response = await self.transport.exchange(transport_request)

        try:
            data = json.loads(response.body) if response.body else None
        except json.JSONDecodeError as e:
            if not response.ok:
                raise ProtocolError(
                    f"HTTP {response.status} from {transport_request.url}: {response.text}",
                    status_code=response.status,
                ) from e
            raise ProtocolError(f"Unparseable response body: {e}") from e

        if not response.ok:
            error = error_message(data)
            detail = error[0] if error else response.text
            logger.error("%s request failed with HTTP %d: %s", self.provider, response.status, detail)
            raise ProtocolError(
                f"HTTP {response.status} from {transport_request.url}: {detail}",
                status_code=response.status,
            )

        if not isinstance(data, dict):
            raise ProtocolError("Response body is not a JSON object")

        error = error_message(data)
        if error is not None:
            raise ProviderError(error[0], error_type=error[1])

        logger.debug("%s response: %s", self.provider, response.text)
        try:
            return self._parse_response(data)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            raise ProtocolError(f"Malformed {self.provider} response: {e}") from e

    async def complete_stream(
        self,
        request: ChatRequest,
        on_event: OnStreamEvent | None = None,
    ) -> ChatResponse:
        """Perform a streaming completion.

        Args:
            request: Conversation and sampling parameters
            on_event: Called for every stream event in receipt order. Returning
                ``StreamAction.ABORT`` ends the exchange early.

        Returns:
            The response reassembled from the stream

        Raises:
            CancelledRequestError: If ``on_event`` aborted; the partial response is discarded
            ProtocolError: On a non-success status, or a malformed or truncated stream
            ProviderError: On an in-stream error event
        """
        transport_request = self._transport_request(request, stream=True)
        decoder = SSEDecoder()
        interpreter = self._new_interpreter()
        accumulator = StreamAccumulator()
        state = {"done": False, "cancelled": False}

        def emit(events: list[StreamEvent]) -> StreamAction:
            for event in events:
                accumulator.apply(event)
                if on_event is not None and on_event(event) is StreamAction.ABORT:
                    state["cancelled"] = True
                    return StreamAction.ABORT
            return StreamAction.CONTINUE

        def on_bytes(chunk: bytes) -> StreamAction:
            if state["done"]:
                return StreamAction.CONTINUE
            for sse in decoder.feed(chunk):
                if sse.data.strip() == DONE_SENTINEL:
                    state["done"] = True
                    return emit(interpreter.finish())
                try:
                    events = interpreter.interpret(sse)
                except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
                    raise ProtocolError(f"Malformed {self.provider} stream payload: {sse.data!r}") from e
                if emit(events) is StreamAction.ABORT:
                    return StreamAction.ABORT
            return StreamAction.CONTINUE

        await self.transport.exchange_streaming(transport_request, on_bytes)

        if not state["cancelled"]:
            decoder.close()
            if not state["done"]:
                emit(interpreter.finish(truncated=True))

        if state["cancelled"]:
            logger.debug("%s stream cancelled by callback", self.provider)
            raise CancelledRequestError("Streaming completion was cancelled by the event callback")

        return accumulator.build()

    async def close(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport:
            await self.transport.aclose()
