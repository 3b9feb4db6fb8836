"""Shared fakes for executor and orchestrator tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

import flowpilot.persistence as persistence
from flowpilot.cancellation import CancellationToken
from flowpilot.config import ExecutionSettings
from flowpilot.contracts import ToolCall, ToolResult, Workflow
from flowpilot.orchestrator import ChatOptions, OrchestratorResult
from flowpilot.providers.base import ChatMessage, ChatRequest, ChatResponse, TokenUsage
from flowpilot.tools.definitions import ToolDefinition
from flowpilot.tools.registry import ToolRegistry

Reply = Union[str, OrchestratorResult, Exception, Callable[[str], Any]]


class ScriptedOrchestrator:
    """Stand-in for ToolCallingOrchestrator that replays canned step outputs."""

    def __init__(self, replies: Optional[List[Reply]] = None, default: str = "ok") -> None:
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def run(
        self,
        message: str,
        history: Optional[List[ChatMessage]] = None,
        options: Optional[ChatOptions] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> OrchestratorResult:
        self.calls.append(
            {"message": message, "history": list(history or []), "options": options}
        )
        reply: Reply = self.replies.pop(0) if self.replies else self.default
        if callable(reply) and not isinstance(reply, OrchestratorResult):
            reply = reply(message)
            if asyncio.iscoroutine(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, OrchestratorResult):
            return reply
        return OrchestratorResult(content=str(reply))


class FakeAdapter:
    """Provider adapter returning queued responses and recording requests."""

    def __init__(self, responses: List[ChatResponse]) -> None:
        self.responses = list(responses)
        self.requests: List[ChatRequest] = []

    async def chat(
        self, request: ChatRequest, cancellation: Optional[CancellationToken] = None
    ) -> ChatResponse:
        self.requests.append(request.model_copy(deep=True))
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        if not self.responses:
            return ChatResponse(content="done")
        return self.responses.pop(0)


class FakeProviders:
    """Duck-typed ProviderRegistry exposing a single fake adapter."""

    def __init__(self, adapter: FakeAdapter, tool_calling: bool = True) -> None:
        self.adapter = adapter
        self.tool_calling = tool_calling

    def active_provider(self) -> str:
        return "fake"

    def adapter_for(self, provider_id: Optional[str] = None) -> FakeAdapter:
        return self.adapter

    def model_for(self, provider_id: str, model: Optional[str] = None) -> str:
        return model or "fake-model"

    def supports_tool_calling(self, provider_id: str) -> bool:
        return self.tool_calling

    async def aclose(self) -> None:
        return None


def tool_call_response(*calls: ToolCall, content: str = "") -> ChatResponse:
    return ChatResponse(
        content=content,
        tool_calls=list(calls),
        token_usage=TokenUsage(input_tokens=10, output_tokens=5),
    )


def echo_registry() -> ToolRegistry:
    """Registry with an ``echo`` tool, a ``boom`` tool that raises and ``write_file``."""
    registry = ToolRegistry()

    async def echo(args: Dict[str, Any]) -> Any:
        return args.get("text", "")

    async def boom(args: Dict[str, Any]) -> Any:
        raise RuntimeError("tool exploded")

    async def write_file(args: Dict[str, Any]) -> Any:
        return f"File written successfully: {args['path']}"

    registry.register(
        ToolDefinition(
            name="echo",
            description="Echo text back",
            parameters={
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"],
            },
        ),
        echo,
    )
    registry.register(ToolDefinition(name="boom", description="Always fails"), boom)
    registry.register(
        ToolDefinition(
            name="write_file",
            description="Pretend to write a file",
            parameters={
                "type": "object",
                "properties": {"path": {"type": "string"}, "content": {"type": "string"}},
                "required": ["path"],
            },
        ),
        write_file,
    )
    return registry


def make_workflow(*steps: Dict[str, Any], **extra: Any) -> Workflow:
    data = {"id": extra.pop("id", "wf"), "name": extra.pop("name", "Test workflow")}
    data["steps"] = list(steps)
    data.update(extra)
    return Workflow.model_validate(data)


@pytest.fixture
def scripted_orchestrator():
    return ScriptedOrchestrator


@pytest.fixture
def fakes():
    """Namespace of fake collaborators and builders."""

    class _Fakes:
        ScriptedOrchestrator = ScriptedOrchestrator
        FakeAdapter = FakeAdapter
        FakeProviders = FakeProviders
        tool_call_response = staticmethod(tool_call_response)
        echo_registry = staticmethod(echo_registry)
        make_workflow = staticmethod(make_workflow)
        settings = ExecutionSettings()

    return _Fakes


@pytest.fixture
def tool_result():
    def _make(output: str, name: str = "write_file", success: bool = True) -> ToolResult:
        return ToolResult(tool_call_id="c1", tool_name=name, success=success, output=output)

    return _make


@pytest.fixture(autouse=True)
def _reset_repository(monkeypatch):
    monkeypatch.delenv("FLOWPILOT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("FLOWPILOT_CONFIG", raising=False)
    monkeypatch.delenv("FLOWPILOT_PROVIDER", raising=False)
    persistence._repository_instance = None
    yield
    persistence._repository_instance = None
