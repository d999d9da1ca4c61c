"""Factory function for creating completion clients from configuration."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from agentrun.llm.anthropic import AnthropicClient
from agentrun.llm.openai_compat import OpenAICompatibleClient

if TYPE_CHECKING:
    from agentrun.config.schema import LLMConfig
    from agentrun.llm.base import BaseCompletionClient
    from agentrun.llm.transport import HTTPTransport

logger = logging.getLogger(__name__)


def resolve_provider(config: LLMConfig) -> str:
    """Pick the provider for a configuration.

    An explicit ``provider`` wins, then ``compatible: openai``. Otherwise a
    Claude model name or an anthropic.com endpoint selects Anthropic, and
    everything else is treated as OpenAI-compatible.
    """
    if config.provider:
        return config.provider
    if config.compatible == "openai":
        return "openai"
    if "claude" in config.model.lower():
        return "anthropic"
    if config.api_base and "anthropic.com" in config.api_base:
        return "anthropic"
    return "openai"


def create_llm_client(
    config: LLMConfig,
    transport: HTTPTransport | None = None,
) -> BaseCompletionClient:
    """Create a completion client based on configuration.

    Args:
        config: The ``llm`` configuration section.
        transport: Shared transport; the client creates its own when omitted.

    Returns:
        A client for the resolved provider.
    """
    provider = resolve_provider(config)
    logger.debug("Using %s provider for model %s", provider, config.model)

    if provider == "anthropic":
        return AnthropicClient(
            api_key=config.api_key or os.environ.get("ANTHROPIC_API_KEY", ""),
            model=config.model,
            api_base=config.api_base,
            transport=transport,
            timeout=config.timeout,
            temperature=config.temperature,
            top_p=config.top_p,
            max_tokens=config.max_tokens or 4096,
            thinking_budget=config.thinking_budget,
        )

    return OpenAICompatibleClient(
        model=config.model,
        api_key=config.api_key or os.environ.get("OPENAI_API_KEY"),
        api_base=config.api_base,
        transport=transport,
        timeout=config.timeout,
        temperature=config.temperature,
        top_p=config.top_p,
        max_tokens=config.max_tokens,
    )
