"""Provider adapters and registry factory."""

from __future__ import annotations

from typing import Optional

import httpx

from ..config import FlowpilotConfig, load_config
from .anthropic import AnthropicAdapter
from .base import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ProviderAdapter,
    ProviderError,
    ProviderNotConfiguredError,
    TokenUsage,
)
from .google import GoogleAdapter
from .openai import OpenAIAdapter
from .registry import KNOWN_PROVIDERS, ProviderConfig, ProviderRegistry


def get_provider_registry(
    config: Optional[FlowpilotConfig] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ProviderRegistry:
    """Factory function to build a provider registry from configuration."""

    return ProviderRegistry(config or load_config(), client=client)


__all__ = [
    "AnthropicAdapter",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "GoogleAdapter",
    "KNOWN_PROVIDERS",
    "OpenAIAdapter",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderError",
    "ProviderNotConfiguredError",
    "ProviderRegistry",
    "TokenUsage",
    "get_provider_registry",
]
