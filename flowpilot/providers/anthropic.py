"""System + messages + tool_use format (Anthropic Messages API)."""

from __future__ import annotations

from typing import Any, Dict, List

from ..contracts import ToolCall
from .base import ChatMessage, ChatRequest, ChatResponse, ProviderAdapter, TokenUsage


class AnthropicAdapter(ProviderAdapter):
    api_format = "anthropic"

    def endpoint(self, request: ChatRequest) -> str:
        return f"{self.base_url}/messages"

    @staticmethod
    def convert_history(history: List[ChatMessage]) -> List[Dict[str, Any]]:
        """Convert history, grouping consecutive tool results into one user turn.

        The API rejects a conversation where a ``tool_use`` block is not
        answered by a ``tool_result`` in the immediately following user turn.
        """
        messages: List[Dict[str, Any]] = []
        for msg in history:
            if msg.role == "user":
                messages.append({"role": "user", "content": msg.content})
            elif msg.role == "assistant":
                content: List[Dict[str, Any]] = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls or []:
                    content.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": tc.arguments,
                        }
                    )
                if content:
                    messages.append({"role": "assistant", "content": content})
            elif msg.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id,
                    "content": msg.content,
                }
                previous = messages[-1] if messages else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    messages.append({"role": "user", "content": [block]})
        return messages

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": self.convert_history(request.messages),
        }
        if request.system_prompt:
            body["system"] = request.system_prompt
        if request.tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in request.tools
            ]
        return body

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        blocks = data.get("content") or []
        text = "\n".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        tool_calls = [
            ToolCall(id=b["id"], name=b["name"], arguments=b.get("input") or {})
            for b in blocks
            if b.get("type") == "tool_use"
        ]
        usage = data.get("usage")
        return ChatResponse(
            content=text,
            tool_calls=tool_calls,
            token_usage=(
                TokenUsage(
                    input_tokens=usage.get("input_tokens", 0),
                    output_tokens=usage.get("output_tokens", 0),
                )
                if usage
                else None
            ),
        )
