"""Chat-completions with function calling (OpenAI, Ollama, LM Studio, vLLM...)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from ..contracts import ToolCall
from .base import ChatMessage, ChatRequest, ChatResponse, ProviderAdapter, TokenUsage

logger = logging.getLogger(__name__)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        logger.warning(f"Tool call arguments are not valid JSON: {raw!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


class OpenAIAdapter(ProviderAdapter):
    api_format = "openai"

    def endpoint(self, request: ChatRequest) -> str:
        return f"{self.base_url}/chat/completions"

    @staticmethod
    def convert_history(history: List[ChatMessage]) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        for msg in history:
            if msg.role in ("user", "system"):
                messages.append({"role": msg.role, "content": msg.content})
            elif msg.role == "assistant":
                entry: Dict[str, Any] = {"role": "assistant", "content": msg.content}
                if msg.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments),
                            },
                        }
                        for tc in msg.tool_calls
                    ]
                messages.append(entry)
            elif msg.role == "tool":
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": msg.tool_call_id,
                        "content": msg.content,
                    }
                )
        return messages

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        messages: List[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(self.convert_history(request.messages))

        body: Dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in request.tools
            ]
            body["tool_choice"] = "auto"
        return body

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        tool_calls = [
            ToolCall(
                id=tc.get("id") or f"call_{index}",
                name=tc["function"]["name"],
                arguments=_parse_arguments(tc["function"].get("arguments")),
            )
            for index, tc in enumerate(message.get("tool_calls") or [])
        ]
        usage = data.get("usage")
        return ChatResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            token_usage=(
                TokenUsage(
                    input_tokens=usage.get("prompt_tokens", 0),
                    output_tokens=usage.get("completion_tokens", 0),
                )
                if usage
                else None
            ),
        )
