"""Contents + functionDeclarations format (Gemini generateContent)."""

from __future__ import annotations

import uuid
from typing import Any, Dict, List

from ..contracts import ToolCall
from .base import ChatMessage, ChatRequest, ChatResponse, ProviderAdapter, TokenUsage


def to_gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Render a JSON-Schema fragment with Gemini's upper-case type names."""
    converted: Dict[str, Any] = {}
    if "type" in schema:
        converted["type"] = str(schema["type"]).upper()
    if "description" in schema:
        converted["description"] = schema["description"]
    if "enum" in schema:
        converted["enum"] = list(schema["enum"])
    if "items" in schema:
        converted["items"] = to_gemini_schema(schema["items"])
    if schema.get("properties"):
        converted["properties"] = {
            key: to_gemini_schema(value) for key, value in schema["properties"].items()
        }
    if schema.get("required"):
        converted["required"] = list(schema["required"])
    return converted


class GoogleAdapter(ProviderAdapter):
    api_format = "google"

    def endpoint(self, request: ChatRequest) -> str:
        return f"{self.base_url}/models/{request.model}:generateContent"

    @staticmethod
    def convert_history(history: List[ChatMessage]) -> List[Dict[str, Any]]:
        """Convert history; function responses for one turn share a single entry.

        Gemini pairs calls and responses by function name, so every tool entry
        must carry the name of the call it answers.
        """
        contents: List[Dict[str, Any]] = []
        call_names: Dict[str, str] = {}
        for msg in history:
            if msg.role == "user":
                contents.append({"role": "user", "parts": [{"text": msg.content}]})
            elif msg.role == "assistant":
                parts: List[Dict[str, Any]] = []
                if msg.content:
                    parts.append({"text": msg.content})
                for tc in msg.tool_calls or []:
                    call_names[tc.id] = tc.name
                    parts.append({"functionCall": {"name": tc.name, "args": tc.arguments}})
                if parts:
                    contents.append({"role": "model", "parts": parts})
            elif msg.role == "tool":
                name = msg.tool_name or call_names.get(msg.tool_call_id or "", "tool")
                part = {
                    "functionResponse": {
                        "name": name,
                        "response": {"result": msg.content},
                    }
                }
                previous = contents[-1] if contents else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and all("functionResponse" in p for p in previous["parts"])
                ):
                    previous["parts"].append(part)
                else:
                    contents.append({"role": "user", "parts": [part]})
        return contents

    def build_payload(self, request: ChatRequest) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "contents": self.convert_history(request.messages),
            "generationConfig": {
                "temperature": request.temperature,
                "maxOutputTokens": request.max_tokens,
            },
        }
        if request.system_prompt:
            body["systemInstruction"] = {"parts": [{"text": request.system_prompt}]}
        if request.tools:
            body["tools"] = [
                {
                    "functionDeclarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters": to_gemini_schema(tool.parameters),
                        }
                        for tool in request.tools
                    ]
                }
            ]
        return body

    def parse_response(self, data: Dict[str, Any]) -> ChatResponse:
        candidates = data.get("candidates") or [{}]
        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p["text"] for p in parts if p.get("text"))
        tool_calls = [
            ToolCall(
                id=f"call_{uuid.uuid4().hex[:12]}",
                name=p["functionCall"]["name"],
                arguments=p["functionCall"].get("args") or {},
            )
            for p in parts
            if p.get("functionCall")
        ]
        usage = data.get("usageMetadata")
        return ChatResponse(
            content=text,
            tool_calls=tool_calls,
            token_usage=(
                TokenUsage(
                    input_tokens=usage.get("promptTokenCount", 0),
                    output_tokens=usage.get("candidatesTokenCount", 0),
                )
                if usage
                else None
            ),
        )
