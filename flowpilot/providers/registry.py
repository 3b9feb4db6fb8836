"""Provider configurations and the registry that builds adapters for them."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Type

import httpx
from pydantic import BaseModel, Field

from ..config import ApiFormat, FlowpilotConfig, ProviderSettings
from ..constants import DEFAULT_REQUEST_TIMEOUT
from .anthropic import AnthropicAdapter
from .base import ProviderAdapter, ProviderNotConfiguredError
from .google import GoogleAdapter
from .openai import OpenAIAdapter

logger = logging.getLogger(__name__)


class ProviderConfig(BaseModel):
    """Resolved endpoint, auth and format details for one provider."""

    id: str
    name: str
    api_format: ApiFormat
    base_url: str
    default_model: str
    is_custom: bool = False
    requires_api_key: bool = True
    auth_header: str = "Authorization"
    auth_prefix: str = "Bearer"
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    tool_calling: bool = True


KNOWN_PROVIDERS: Dict[str, ProviderConfig] = {
    "openai": ProviderConfig(
        id="openai",
        name="OpenAI",
        api_format="openai",
        base_url="https://api.openai.com/v1",
        default_model="gpt-4o-mini",
    ),
    "anthropic": ProviderConfig(
        id="anthropic",
        name="Anthropic",
        api_format="anthropic",
        base_url="https://api.anthropic.com/v1",
        default_model="claude-3-5-sonnet-20241022",
        auth_header="x-api-key",
        auth_prefix="",
        extra_headers={"anthropic-version": "2023-06-01"},
    ),
    "google": ProviderConfig(
        id="google",
        name="Google AI",
        api_format="google",
        base_url="https://generativelanguage.googleapis.com/v1beta",
        default_model="gemini-2.0-flash",
        auth_header="x-goog-api-key",
        auth_prefix="",
    ),
    "ollama": ProviderConfig(
        id="ollama",
        name="Ollama",
        api_format="ollama",
        base_url="http://localhost:11434/v1",
        default_model="llama3.1",
        is_custom=True,
        requires_api_key=False,
    ),
    "custom": ProviderConfig(
        id="custom",
        name="Custom Endpoint",
        api_format="openai",
        base_url="",
        default_model="",
        is_custom=True,
        requires_api_key=False,
    ),
}

ADAPTERS: Dict[str, Type[ProviderAdapter]] = {
    "openai": OpenAIAdapter,
    "ollama": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "google": GoogleAdapter,
}


class ProviderRegistry:
    """Resolve provider ids into ready-to-use adapters.

    Constructed once per process and passed to the orchestrator; it owns the
    shared ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        config: Optional[FlowpilotConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config or FlowpilotConfig()
        timeout = self._config.execution.request_timeout or DEFAULT_REQUEST_TIMEOUT
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._custom_endpoints: Dict[str, str] = {}

    def provider_ids(self) -> List[str]:
        ids = list(KNOWN_PROVIDERS)
        ids.extend(p for p in self._config.providers if p not in KNOWN_PROVIDERS)
        return ids

    def settings_for(self, provider_id: str) -> ProviderSettings:
        return self._config.providers.get(provider_id) or ProviderSettings()

    def set_custom_endpoint(self, provider_id: str, base_url: str) -> None:
        self._custom_endpoints[provider_id] = base_url

    def resolve(self, provider_id: str) -> ProviderConfig:
        """Merge the known defaults for ``provider_id`` with user settings."""
        settings = self._config.providers.get(provider_id)
        known = KNOWN_PROVIDERS.get(provider_id)
        if known is None and settings is None:
            raise ProviderNotConfiguredError(f"Unknown provider: {provider_id}")

        base = known or ProviderConfig(
            id=provider_id,
            name=provider_id,
            api_format="openai",
            base_url="",
            default_model="",
            is_custom=True,
            requires_api_key=False,
        )
        if settings is None:
            resolved = base.model_copy()
        else:
            overrides = {
                "api_format": settings.api_format,
                "base_url": settings.base_url,
                "default_model": settings.model,
                "auth_header": settings.auth_header,
                "auth_prefix": settings.auth_prefix,
            }
            update = {k: v for k, v in overrides.items() if v is not None}
            update["extra_headers"] = {**base.extra_headers, **settings.extra_headers}
            update["tool_calling"] = settings.tool_calling
            resolved = base.model_copy(update=update)

        if provider_id in self._custom_endpoints:
            resolved = resolved.model_copy(
                update={"base_url": self._custom_endpoints[provider_id]}
            )
        return resolved

    def active_provider(self) -> str:
        """Return the configured active provider, else the first usable one."""
        if self._config.active_provider:
            return self._config.active_provider
        for provider_id in self._config.providers:
            if self.settings_for(provider_id).resolve_api_key(provider_id):
                logger.info(f"Using fallback provider: {provider_id}")
                return provider_id
        for provider_id in self._config.providers:
            if not self.resolve(provider_id).requires_api_key:
                return provider_id
        raise ProviderNotConfiguredError(
            "No AI provider configured. Add a provider with an API key to the configuration."
        )

    @staticmethod
    def auth_headers(provider: ProviderConfig, api_key: Optional[str]) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if api_key:
            prefix = provider.auth_prefix
            headers[provider.auth_header] = f"{prefix} {api_key}" if prefix else api_key
        headers.update(provider.extra_headers)
        return headers

    def model_for(self, provider_id: str, model: Optional[str] = None) -> str:
        resolved = model or self.resolve(provider_id).default_model
        if not resolved:
            raise ProviderNotConfiguredError(f"No model configured for provider: {provider_id}")
        return resolved

    def supports_tool_calling(self, provider_id: str) -> bool:
        return self.resolve(provider_id).tool_calling

    def adapter_for(self, provider_id: Optional[str] = None) -> ProviderAdapter:
        """Build the adapter for ``provider_id`` (default: the active provider).

        Raises:
            ProviderNotConfiguredError: Missing endpoint or API key.
        """
        provider_id = provider_id or self.active_provider()
        provider = self.resolve(provider_id)
        if not provider.base_url:
            raise ProviderNotConfiguredError(
                f"No endpoint configured for provider: {provider_id}"
            )
        api_key = self.settings_for(provider_id).resolve_api_key(provider_id)
        if provider.requires_api_key and not api_key:
            raise ProviderNotConfiguredError(
                f"No API key found for provider: {provider_id}"
            )
        adapter_cls = ADAPTERS[provider.api_format]
        return adapter_cls(
            provider_id=provider_id,
            base_url=provider.base_url,
            headers=self.auth_headers(provider, api_key),
            client=self._client,
            api_key=api_key,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
