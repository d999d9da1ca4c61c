"""HTTP transport shared by completion clients.

One :class:`HTTPTransport` owns one ``httpx.AsyncClient`` whose connection
pool is bounded by ``max_connections``. Callers that can't get a pooled
connection within ``acquire_timeout`` seconds get a ``ResourceError`` instead
of waiting forever. Any number of clients and concurrent agent runs may share
a transport.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx

from agentrun.errors import ProtocolError, ResourceError, TransportError
from agentrun.llm.stream import StreamAction

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_ACQUIRE_TIMEOUT = 30.0
DEFAULT_MAX_CONNECTIONS = 10

OnBytes = Callable[[bytes], "StreamAction | None"]


@dataclass
class TransportRequest:
    """A POST of a JSON body."""

    url: str
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None


@dataclass
class TransportResponse:
    """A fully read response."""

    status: int
    headers: dict[str, str]
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@contextlib.contextmanager
def _map_errors(url: str) -> Iterator[None]:
    try:
        yield
    except httpx.PoolTimeout as e:
        raise ResourceError(f"No connection available for {url} within the acquire timeout") from e
    except httpx.TimeoutException as e:
        raise TransportError(f"Request to {url} timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransportError(f"Request to {url} failed: {e}") from e


class HTTPTransport:
    """Bounded-pool HTTP transport built on httpx."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        acquire_timeout: float = DEFAULT_ACQUIRE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the transport.

        Args:
            timeout: Default connect/read/write timeout in seconds
            max_connections: Size of the shared connection pool
            acquire_timeout: Seconds to wait for a pooled connection
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.timeout = timeout
        self.acquire_timeout = acquire_timeout
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, pool=acquire_timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
            transport=transport,
        )

    def _timeout(self, request: TransportRequest) -> httpx.Timeout:
        return httpx.Timeout(request.timeout or self.timeout, pool=self.acquire_timeout)

    async def exchange(self, request: TransportRequest) -> TransportResponse:
        """Send a request and read the whole body.

        Raises:
            TransportError: On connection failure or timeout
            ResourceError: If the pool stayed exhausted past the acquire timeout
        """
        with _map_errors(request.url):
            response = await self.client.post(
                request.url,
                json=request.body,
                headers=request.headers,
                timeout=self._timeout(request),
            )
        return TransportResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
        )

    async def exchange_streaming(self, request: TransportRequest, on_bytes: OnBytes) -> int:
        """Send a request and hand the body to ``on_bytes`` chunk by chunk.

        ``on_bytes`` may return ``StreamAction.ABORT`` to stop reading; the
        response is closed and the status is returned normally.

        Returns:
            The HTTP status code

        Raises:
            TransportError: On connection failure or timeout
            ResourceError: If the pool stayed exhausted past the acquire timeout
            ProtocolError: On a non-success status (the error body is included)
        """
        with _map_errors(request.url):
            async with self.client.stream(
                "POST",
                request.url,
                json=request.body,
                headers=request.headers,
                timeout=self._timeout(request),
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProtocolError(
                        f"HTTP {response.status_code} from {request.url}: {body}",
                        status_code=response.status_code,
                    )
                async for chunk in response.aiter_bytes():
                    if on_bytes(chunk) is StreamAction.ABORT:
                        logger.debug("Stream from %s aborted by callback", request.url)
                        break
                return response.status_code

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> HTTPTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
