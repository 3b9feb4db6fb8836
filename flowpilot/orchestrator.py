"""The bounded ask-model / run-tools / feed-back loop behind every step."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from .cancellation import CancellationToken
from .config import ExecutionSettings
from .constants import MAX_ITERATIONS_MESSAGE, SUMMARY_REQUEST
from .contracts import ToolCall, ToolResult
from .providers.base import ChatMessage, ChatRequest, ChatResponse, ProviderAdapter, TokenUsage
from .providers.registry import ProviderRegistry
from .tools.definitions import ToolDefinition
from .tools.executor import ToolExecutor
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


class DirectToolCall(BaseModel):
    """A tool the user picked explicitly, run without asking the model."""

    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ChatOptions(BaseModel):
    """Per-call overrides and progress callbacks for :meth:`ToolCallingOrchestrator.run`."""

    session_id: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    allowed_tools: Optional[List[str]] = None
    direct_tool_call: Optional[DirectToolCall] = None
    on_tool_start: Optional[Callable[[ToolCall], Any]] = None
    on_tool_complete: Optional[Callable[[ToolResult], Any]] = None
    on_status_update: Optional[Callable[[str], Any]] = None


class OrchestratorResult(BaseModel):
    content: str
    tool_results: List[ToolResult] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


def build_system_prompt(
    provider_id: str,
    model: str,
    working_directory: str,
    tools: List[ToolDefinition],
    instructions: Optional[str] = None,
) -> str:
    """Compose the system prompt sent with every round-trip."""
    lines = [
        "You are Flowpilot, an AI assistant that completes workflow steps precisely and safely.",
        f"You are running on {provider_id} ({model}).",
        "",
        f"WORKING DIRECTORY: {working_directory}",
    ]
    if tools:
        lines += ["", "AVAILABLE TOOLS:"]
        lines += [f"- {tool.name}: {tool.description}" for tool in tools]
        lines += [
            "",
            "Use tools to verify information instead of guessing.",
            "Keep going until the task is resolved, then answer concisely.",
        ]
    if instructions:
        lines += ["", "USER INSTRUCTIONS:", instructions]
    return "\n".join(lines)


async def _notify(callback: Optional[Callable[[Any], Any]], payload: Any) -> None:
    if callback is None:
        return
    outcome = callback(payload)
    if inspect.isawaitable(outcome):
        await outcome


class ToolCallingOrchestrator:
    """Drive one step's conversation until the model stops requesting tools.

    Holds no state between calls to :meth:`run`; every step gets a fresh
    bounded loop.
    """

    def __init__(
        self,
        providers: ProviderRegistry,
        tools: ToolRegistry,
        settings: Optional[ExecutionSettings] = None,
    ) -> None:
        self.providers = providers
        self.tools = tools
        self.settings = settings or ExecutionSettings()
        self.executor = ToolExecutor(tools)

    async def run(
        self,
        message: str,
        history: Optional[List[ChatMessage]] = None,
        options: Optional[ChatOptions] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> OrchestratorResult:
        """Run the tool-calling loop for ``message``.

        Raises:
            ProviderError: Transport or HTTP failure talking to the provider.
            ExecutionCancelled: ``cancellation`` fired at a call boundary.
        """
        options = options or ChatOptions()
        if options.direct_tool_call is not None:
            return await self._run_direct(options, cancellation)

        provider_id = options.provider or self.providers.active_provider()
        adapter = self.providers.adapter_for(provider_id)
        model = self.providers.model_for(provider_id, options.model)

        tools: List[ToolDefinition] = []
        if self.providers.supports_tool_calling(provider_id):
            tools = self.tools.definitions(options.allowed_tools)
        else:
            await _notify(options.on_status_update, f"Model {model} may not support tool calling")

        system_prompt = build_system_prompt(
            provider_id,
            model,
            self.settings.working_directory,
            tools,
            options.system_prompt or self.settings.system_prompt,
        )
        conversation: List[ChatMessage] = list(history or [])
        if message:
            conversation.append(ChatMessage(role="user", content=message))

        tool_results: List[ToolResult] = []
        usage = TokenUsage()
        max_iterations = self.settings.max_tool_iterations

        for iteration in range(1, max_iterations + 1):
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            await _notify(options.on_status_update, f"Processing (iteration {iteration})...")

            response = await self._chat(
                adapter, model, conversation, system_prompt, tools, options, cancellation
            )
            if response.token_usage is not None:
                usage = usage + response.token_usage

            if not response.tool_calls:
                content = response.content
                if not content.strip() and tool_results:
                    logger.info("Model returned no text after tool calls; requesting a summary")
                    summary = await self._chat(
                        adapter,
                        model,
                        conversation + [ChatMessage(role="user", content=SUMMARY_REQUEST)],
                        system_prompt,
                        [],
                        options,
                        cancellation,
                    )
                    if summary.token_usage is not None:
                        usage = usage + summary.token_usage
                    content = summary.content
                return OrchestratorResult(content=content, tool_results=tool_results, token_usage=usage)

            conversation.append(
                ChatMessage(
                    role="assistant", content=response.content, tool_calls=response.tool_calls
                )
            )
            for call in response.tool_calls:
                if cancellation is not None:
                    cancellation.raise_if_cancelled()
                await _notify(options.on_tool_start, call)
                await _notify(options.on_status_update, f"Executing {call.name}...")
                if options.allowed_tools is not None and call.name not in options.allowed_tools:
                    logger.warning(f"Model requested tool outside the allowed set: {call.name}")
                    result = ToolResult(
                        tool_call_id=call.id,
                        tool_name=call.name,
                        success=False,
                        error=f"Tool not allowed: {call.name}",
                    )
                else:
                    result = await self.executor.execute(call, options.session_id)
                tool_results.append(result)
                await _notify(options.on_tool_complete, result)
                conversation.append(
                    ChatMessage(
                        role="tool",
                        content=result.output if result.success else f"Error: {result.error}",
                        tool_call_id=call.id,
                        tool_name=call.name,
                    )
                )

        logger.warning(f"Tool loop stopped after {max_iterations} iterations")
        return OrchestratorResult(
            content=MAX_ITERATIONS_MESSAGE, tool_results=tool_results, token_usage=usage
        )

    async def _chat(
        self,
        adapter: ProviderAdapter,
        model: str,
        conversation: List[ChatMessage],
        system_prompt: str,
        tools: List[ToolDefinition],
        options: ChatOptions,
        cancellation: Optional[CancellationToken],
    ) -> ChatResponse:
        request = ChatRequest(
            model=model,
            messages=conversation,
            system_prompt=system_prompt,
            tools=tools,
            temperature=(
                options.temperature if options.temperature is not None else self.settings.temperature
            ),
            max_tokens=options.max_tokens or self.settings.max_tokens,
        )
        response = await adapter.chat(request, cancellation)
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        return response

    async def _run_direct(
        self, options: ChatOptions, cancellation: Optional[CancellationToken]
    ) -> OrchestratorResult:
        direct = options.direct_tool_call
        call = ToolCall(id=f"direct-{direct.name}", name=direct.name, arguments=direct.arguments)
        if cancellation is not None:
            cancellation.raise_if_cancelled()
        await _notify(options.on_tool_start, call)
        await _notify(options.on_status_update, f"Executing {call.name}...")
        result = await self.executor.execute(call, options.session_id)
        await _notify(options.on_tool_complete, result)
        if result.success:
            content = f"Tool executed successfully: {call.name}\n\n{result.output}"
        else:
            content = f"Tool execution failed: {call.name}\n\nError: {result.error}"
        return OrchestratorResult(content=content.rstrip(), tool_results=[result])
