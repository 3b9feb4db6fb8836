"""Uniform request/response types shared by every provider adapter."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Literal, Optional

import httpx
from pydantic import BaseModel, Field

from ..cancellation import CancellationToken, guarded
from ..contracts import FlowpilotError, TokenUsage, ToolCall
from ..tools.definitions import ToolDefinition

logger = logging.getLogger(__name__)


class ProviderError(FlowpilotError):
    """Non-2xx response or transport failure talking to a provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


class ProviderNotConfiguredError(FlowpilotError):
    """No usable provider, endpoint or API key is configured."""


class ChatMessage(BaseModel):
    """Provider-neutral conversation entry.

    ``tool`` entries answer the assistant tool call named by ``tool_call_id``;
    ``tool_name`` is kept because some wire formats address results by name.
    """

    role: Literal["user", "assistant", "tool", "system"]
    content: str = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None


class ChatRequest(BaseModel):
    model: str
    messages: List[ChatMessage] = Field(default_factory=list)
    system_prompt: Optional[str] = None
    tools: List[ToolDefinition] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 4096


class ChatResponse(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None
    provider: Optional[str] = None
    model: Optional[str] = None


class ProviderAdapter(metaclass=abc.ABCMeta):
    """Translate :class:`ChatRequest` into one wire-format family and back."""

    api_format: str = ""

    def __init__(
        self,
        provider_id: str,
        base_url: str,
        headers: Dict[str, str],
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
    ) -> None:
        self.provider_id = provider_id
        self.base_url = base_url.rstrip("/")
        self.headers = headers
        self.api_key = api_key
        self._client = client

    @abc.abstractmethod
    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Return the JSON body for ``request``."""
        raise NotImplementedError

    @abc.abstractmethod
    def endpoint(self, request: ChatRequest) -> str:
        """Return the URL the request is posted to."""
        raise NotImplementedError

    @abc.abstractmethod
    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        """Normalize a decoded response body."""
        raise NotImplementedError

    async def chat(
        self, request: ChatRequest, cancellation: Optional[CancellationToken] = None
    ) -> ChatResponse:
        """Send ``request`` and return the normalized response.

        Raises:
            ProviderError: On transport failure or a non-2xx status.
            ExecutionCancelled: If ``cancellation`` fires before the reply.
        """
        payload = self.build_payload(request)
        url = self.endpoint(request)
        logger.debug(
            f"POST {url} provider={self.provider_id} model={request.model} "
            f"messages={len(request.messages)} tools={len(request.tools)}"
        )
        try:
            response = await guarded(
                self._client.post(url, json=payload, headers=self.headers),
                cancellation,
            )
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"Request to {self.provider_id} failed: {exc}", provider=self.provider_id
            ) from exc

        if response.status_code >= 400:
            raise ProviderError(
                self._error_message(response),
                status_code=response.status_code,
                provider=self.provider_id,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(
                f"Invalid JSON from {self.provider_id}",
                status_code=response.status_code,
                provider=self.provider_id,
            ) from exc

        result = self.parse_response(data)
        result.provider = self.provider_id
        result.model = request.model
        return result

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        return f"API error: {response.status_code}"
