"""Pytest configuration and shared fixtures."""

import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from agentrun.config.schema import AgentRunConfig
from agentrun.observability.hooks import set_hooks


def sse(data: dict | str, event: str | None = None) -> str:
    """Render one Server-Sent Event block."""
    payload = data if isinstance(data, str) else json.dumps(data)
    prefix = f"event: {event}\n" if event else ""
    return f"{prefix}data: {payload}\n\n"


def chunked_handler(body: bytes, size: int, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    """MockTransport handler that delivers ``body`` in ``size``-byte chunks."""

    def handler(request: httpx.Request) -> httpx.Response:
        async def chunks() -> AsyncIterator[bytes]:
            for i in range(0, len(body), size):
                yield body[i : i + size]

        return httpx.Response(
            status,
            headers={"content-type": "text/event-stream"},
            content=chunks(),
        )

    return handler


@pytest.fixture
def default_config() -> AgentRunConfig:
    """Provide a default configuration for tests."""
    return AgentRunConfig()


@pytest.fixture(autouse=True)
def reset_default_hooks():
    """Keep the process-wide hook set from leaking between tests."""
    set_hooks(None)
    yield
    set_hooks(None)
