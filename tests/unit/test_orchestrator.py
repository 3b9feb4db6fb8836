import asyncio

import pytest

from flowpilot.cancellation import CancellationToken, ExecutionCancelled
from flowpilot.config import ExecutionSettings
from flowpilot.constants import MAX_ITERATIONS_MESSAGE, SUMMARY_REQUEST
from flowpilot.contracts import ToolCall
from flowpilot.orchestrator import (
    ChatOptions,
    DirectToolCall,
    ToolCallingOrchestrator,
    build_system_prompt,
)
from flowpilot.providers.base import ChatMessage, ChatResponse, ProviderError, TokenUsage


def _orchestrator(fakes, responses, tool_calling=True, settings=None):
    adapter = fakes.FakeAdapter(responses)
    providers = fakes.FakeProviders(adapter, tool_calling=tool_calling)
    orchestrator = ToolCallingOrchestrator(
        providers, fakes.echo_registry(), settings or ExecutionSettings()
    )
    return orchestrator, adapter


@pytest.mark.asyncio
async def test_plain_answer_ends_loop(fakes):
    orchestrator, adapter = _orchestrator(
        fakes, [ChatResponse(content="hi there", token_usage=TokenUsage(input_tokens=3, output_tokens=2))]
    )

    result = await orchestrator.run("hello")

    assert result.content == "hi there"
    assert result.tool_results == []
    assert result.token_usage.total_tokens == 5
    assert len(adapter.requests) == 1
    request = adapter.requests[0]
    assert [(m.role, m.content) for m in request.messages] == [("user", "hello")]
    assert {t.name for t in request.tools} == {"echo", "boom", "write_file"}


@pytest.mark.asyncio
async def test_tool_results_are_fed_back(fakes):
    call = ToolCall(id="call-1", name="echo", arguments={"text": "ping"})
    orchestrator, adapter = _orchestrator(
        fakes,
        [fakes.tool_call_response(call), ChatResponse(content="Echoed ping")],
    )

    result = await orchestrator.run("please echo")

    assert result.content == "Echoed ping"
    assert len(result.tool_results) == 1
    assert result.tool_results[0].success is True
    assert result.tool_results[0].output == "ping"

    follow_up = adapter.requests[1].messages
    assert [m.role for m in follow_up] == ["user", "assistant", "tool"]
    assert follow_up[1].tool_calls[0].id == "call-1"
    assert follow_up[2].tool_call_id == "call-1"
    assert follow_up[2].content == "ping"


@pytest.mark.asyncio
async def test_tools_run_sequentially_in_order(fakes):
    calls = [
        ToolCall(id="a", name="echo", arguments={"text": "first"}),
        ToolCall(id="b", name="boom", arguments={}),
        ToolCall(id="c", name="echo", arguments={"text": "third"}),
    ]
    started = []
    orchestrator, adapter = _orchestrator(
        fakes, [fakes.tool_call_response(*calls), ChatResponse(content="done")]
    )

    result = await orchestrator.run("go", options=ChatOptions(on_tool_start=lambda c: started.append(c.id)))

    assert started == ["a", "b", "c"]
    assert [r.tool_call_id for r in result.tool_results] == ["a", "b", "c"]
    assert [r.success for r in result.tool_results] == [True, False, True]
    tool_messages = [m for m in adapter.requests[1].messages if m.role == "tool"]
    assert tool_messages[1].content == "Error: tool exploded"


@pytest.mark.asyncio
async def test_unknown_tool_is_reported_to_model(fakes):
    call = ToolCall(id="x", name="teleport", arguments={})
    orchestrator, adapter = _orchestrator(
        fakes, [fakes.tool_call_response(call), ChatResponse(content="Sorry")]
    )

    result = await orchestrator.run("teleport me")

    assert result.tool_results[0].success is False
    assert "Unknown tool: teleport" in adapter.requests[1].messages[-1].content


@pytest.mark.asyncio
async def test_iteration_ceiling(fakes):
    responses = [
        fakes.tool_call_response(ToolCall(id=f"c{i}", name="echo", arguments={"text": str(i)}))
        for i in range(12)
    ]
    orchestrator, adapter = _orchestrator(fakes, responses)

    result = await orchestrator.run("loop forever")

    assert result.content == MAX_ITERATIONS_MESSAGE
    assert len(result.tool_results) == 10
    assert len(adapter.requests) == 10
    assert result.token_usage.input_tokens == 100


@pytest.mark.asyncio
async def test_empty_answer_after_tools_forces_summary(fakes):
    call = ToolCall(id="c1", name="echo", arguments={"text": "x"})
    orchestrator, adapter = _orchestrator(
        fakes,
        [
            fakes.tool_call_response(call),
            ChatResponse(content="   "),
            ChatResponse(content="I echoed x."),
        ],
    )

    result = await orchestrator.run("do it")

    assert result.content == "I echoed x."
    summary_request = adapter.requests[-1]
    assert summary_request.messages[-1].content == SUMMARY_REQUEST
    assert summary_request.tools == []


@pytest.mark.asyncio
async def test_empty_answer_without_tools_is_returned(fakes):
    orchestrator, adapter = _orchestrator(fakes, [ChatResponse(content="")])

    result = await orchestrator.run("say nothing")

    assert result.content == ""
    assert len(adapter.requests) == 1


@pytest.mark.asyncio
async def test_direct_tool_call_skips_model(fakes):
    orchestrator, adapter = _orchestrator(fakes, [])

    result = await orchestrator.run(
        "ignored",
        options=ChatOptions(direct_tool_call=DirectToolCall(name="echo", arguments={"text": "hey"})),
    )

    assert adapter.requests == []
    assert "Tool executed successfully" in result.content
    assert "echo" in result.content
    assert "hey" in result.content
    assert len(result.tool_results) == 1


@pytest.mark.asyncio
async def test_direct_tool_call_failure_banner(fakes):
    orchestrator, _ = _orchestrator(fakes, [])

    result = await orchestrator.run(
        "", options=ChatOptions(direct_tool_call=DirectToolCall(name="boom"))
    )

    assert "Tool execution failed" in result.content
    assert "tool exploded" in result.content
    assert result.tool_results[0].success is False


@pytest.mark.asyncio
async def test_allowed_tools_filter_schema(fakes):
    orchestrator, adapter = _orchestrator(fakes, [ChatResponse(content="ok")])

    await orchestrator.run("hi", options=ChatOptions(allowed_tools=["echo"]))

    assert [t.name for t in adapter.requests[0].tools] == ["echo"]


@pytest.mark.asyncio
async def test_disallowed_tool_call_is_refused(fakes):
    call = ToolCall(id="w1", name="write_file", arguments={"path": "/etc/x", "content": "x"})
    orchestrator, adapter = _orchestrator(
        fakes, [fakes.tool_call_response(call), ChatResponse(content="I cannot write files")]
    )

    result = await orchestrator.run("write it", options=ChatOptions(allowed_tools=["echo"]))

    assert [t.name for t in adapter.requests[0].tools] == ["echo"]
    assert len(result.tool_results) == 1
    refused = result.tool_results[0]
    assert refused.success is False
    assert refused.error == "Tool not allowed: write_file"
    assert refused.output == ""
    tool_message = adapter.requests[1].messages[-1]
    assert tool_message.tool_call_id == "w1"
    assert tool_message.content == "Error: Tool not allowed: write_file"
    assert result.content == "I cannot write files"


@pytest.mark.asyncio
async def test_no_tools_sent_without_tool_calling_support(fakes):
    updates = []
    orchestrator, adapter = _orchestrator(fakes, [ChatResponse(content="ok")], tool_calling=False)

    await orchestrator.run("hi", options=ChatOptions(on_status_update=updates.append))

    assert adapter.requests[0].tools == []
    assert any("may not support tool calling" in u for u in updates)


@pytest.mark.asyncio
async def test_history_and_settings_are_used(fakes):
    settings = ExecutionSettings(temperature=0.1, max_tokens=256, system_prompt="Be terse.")
    orchestrator, adapter = _orchestrator(fakes, [ChatResponse(content="ok")], settings=settings)
    history = [
        ChatMessage(role="user", content="earlier"),
        ChatMessage(role="assistant", content="earlier answer"),
    ]

    await orchestrator.run("now", history, ChatOptions(model="custom-model", max_tokens=99))

    request = adapter.requests[0]
    assert [m.content for m in request.messages] == ["earlier", "earlier answer", "now"]
    assert request.model == "custom-model"
    assert request.temperature == 0.1
    assert request.max_tokens == 99
    assert "Be terse." in request.system_prompt


@pytest.mark.asyncio
async def test_status_updates_and_tool_callbacks(fakes):
    updates, completed = [], []
    call = ToolCall(id="c1", name="echo", arguments={"text": "x"})
    orchestrator, _ = _orchestrator(
        fakes, [fakes.tool_call_response(call), ChatResponse(content="done")]
    )

    async def on_complete(result):
        completed.append(result.tool_call_id)

    await orchestrator.run(
        "go",
        options=ChatOptions(on_status_update=updates.append, on_tool_complete=on_complete),
    )

    assert updates == [
        "Processing (iteration 1)...",
        "Executing echo...",
        "Processing (iteration 2)...",
    ]
    assert completed == ["c1"]


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_request(fakes):
    orchestrator, adapter = _orchestrator(fakes, [ChatResponse(content="never")])
    token = CancellationToken()
    token.cancel()

    with pytest.raises(ExecutionCancelled):
        await orchestrator.run("hi", cancellation=token)

    assert adapter.requests == []


@pytest.mark.asyncio
async def test_cancellation_between_tool_calls(fakes):
    token = CancellationToken()
    calls = [
        ToolCall(id="a", name="echo", arguments={"text": "1"}),
        ToolCall(id="b", name="echo", arguments={"text": "2"}),
    ]
    orchestrator, _ = _orchestrator(fakes, [fakes.tool_call_response(*calls)])

    def stop_after_first(result):
        token.cancel()

    with pytest.raises(ExecutionCancelled):
        await orchestrator.run(
            "go", options=ChatOptions(on_tool_complete=stop_after_first), cancellation=token
        )


@pytest.mark.asyncio
async def test_provider_errors_propagate(fakes):
    class FailingAdapter(fakes.FakeAdapter):
        async def chat(self, request, cancellation=None):
            raise ProviderError("API error: 500", status_code=500, provider="fake")

    adapter = FailingAdapter([])
    orchestrator = ToolCallingOrchestrator(fakes.FakeProviders(adapter), fakes.echo_registry())

    with pytest.raises(ProviderError, match="API error: 500"):
        await orchestrator.run("hi")


def test_build_system_prompt_lists_tools(fakes):
    tools = fakes.echo_registry().definitions(["echo"])

    prompt = build_system_prompt("openai", "gpt-4o-mini", "/work", tools, "Answer in French.")

    assert "openai (gpt-4o-mini)" in prompt
    assert "WORKING DIRECTORY: /work" in prompt
    assert "- echo: Echo text back" in prompt
    assert prompt.endswith("Answer in French.")


@pytest.mark.asyncio
async def test_guard_abandons_slow_call():
    token = CancellationToken()

    async def slow():
        await asyncio.sleep(10)
        return "too late"

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel("user")

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(ExecutionCancelled):
        await asyncio.wait_for(token.guard(slow()), timeout=2)
    await canceller
