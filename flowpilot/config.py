from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_MAX_TOOL_ITERATIONS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_TEMPERATURE,
)

ApiFormat = Literal["openai", "anthropic", "google", "ollama"]


class ProviderSettings(BaseModel):
    """User configuration for one AI provider.

    Fields left unset fall back to the matching entry in
    :data:`flowpilot.providers.registry.KNOWN_PROVIDERS`.
    """

    api_format: Optional[ApiFormat] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    api_key_env: Optional[str] = None
    auth_header: Optional[str] = None
    auth_prefix: Optional[str] = None
    extra_headers: Dict[str, str] = Field(default_factory=dict)
    tool_calling: bool = True

    def resolve_api_key(self, provider_id: str) -> Optional[str]:
        """Return the configured key, else the value of its environment variable."""
        if self.api_key:
            return self.api_key
        env_name = self.api_key_env or f"{provider_id.upper()}_API_KEY"
        return os.getenv(env_name)


class ExecutionSettings(BaseModel):
    """Defaults applied to every orchestrator round-trip."""

    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    working_directory: str = "."
    system_prompt: Optional[str] = None


class FlowpilotConfig(BaseModel):
    """Top-level configuration model."""

    active_provider: Optional[str] = None
    providers: Dict[str, ProviderSettings] = Field(default_factory=dict)
    execution: ExecutionSettings = ExecutionSettings()
    database_url: Optional[str] = None


def load_config(path: Optional[str] = None) -> FlowpilotConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWPILOT_CONFIG env
            variable or 'flowpilot.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWPILOT_CONFIG", "flowpilot.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowpilotConfig(**data)
    else:
        config = FlowpilotConfig()

    env_db_url = os.getenv("FLOWPILOT_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_provider = os.getenv("FLOWPILOT_PROVIDER")
    if env_provider:
        config.active_provider = env_provider
    return config
