import json
from pathlib import Path

import httpx
import pytest

from flowpilot.config import ExecutionSettings, FlowpilotConfig, ProviderSettings
from flowpilot.contracts import ExecutionNotFoundError, ExecutionStatus, WorkflowNotFoundError
from flowpilot.events import EventDispatcher, EventType
from flowpilot.persistence import SQLiteExecutionRepository
from flowpilot.providers import ProviderRegistry
from flowpilot.service import WorkflowService

FIXTURES = Path(__file__).resolve().parent.parent / "fixtures" / "workflows"


def _reply(content):
    return httpx.Response(
        200,
        json={
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {"prompt_tokens": 5, "completion_tokens": 5},
        },
    )


def _tool_call(name, arguments):
    return httpx.Response(
        200,
        json={
            "choices": [
                {
                    "message": {
                        "role": "assistant",
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "tc-1",
                                "type": "function",
                                "function": {"name": name, "arguments": json.dumps(arguments)},
                            }
                        ],
                    }
                }
            ],
            "usage": {"prompt_tokens": 5, "completion_tokens": 5},
        },
    )


class FakeOpenAI:
    """Answers each step of the fixture workflows based on the latest message."""

    def __init__(self):
        self.bodies = []
        self.headers = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        self.headers.append(request.headers)
        last = body["messages"][-1]
        if last["role"] == "tool":
            return _reply("Brief written to brief.md")
        text = last["content"]
        if text.startswith("List five"):
            return _reply("1. Tides follow the moon.")
        if text.startswith("Are these notes accurate?"):
            return _reply('{"decision": true}')
        if text.startswith("Write a short brief"):
            return _tool_call("write_file", {"path": "brief.md", "content": "# Tides"})
        if text.startswith("Run the"):
            return _reply(f"{text} passed")
        return _reply("ok")

    def body_for(self, prefix):
        for body in self.bodies:
            last = body["messages"][-1]
            if last["role"] == "user" and last["content"].startswith(prefix):
                return body
        raise AssertionError(f"No request starting with {prefix!r}")


@pytest.fixture
def fake_openai():
    return FakeOpenAI()


@pytest.fixture
def service(tmp_path, fake_openai):
    config = FlowpilotConfig(
        active_provider="openai",
        providers={"openai": ProviderSettings(api_key="sk-test", model="gpt-test")},
        execution=ExecutionSettings(working_directory=str(tmp_path)),
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_openai))
    service = WorkflowService(
        config,
        providers=ProviderRegistry(config, client=client),
        repository=SQLiteExecutionRepository(tmp_path / "runs.db"),
    )
    service.load_directory(FIXTURES)
    return service


@pytest.mark.asyncio
async def test_research_workflow_end_to_end(service, fake_openai, tmp_path):
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.subscribe(None, lambda event: seen.append(event.event_type))

    context = await service.run("research", {"topic": "tides"}, dispatcher=dispatcher)
    await service.aclose()

    assert context.status == ExecutionStatus.COMPLETED, context.error
    assert context.variables["notes"] == "1. Tides follow the moon."
    assert context.variables["audience"] == "engineers"
    assert context.step_results["check"].decision_result is True
    brief = tmp_path / "brief.md"
    assert brief.read_text() == "# Tides"
    assert context.step_results["write"].generated_files == [str(brief)]
    assert context.step_results["write"].output == "Brief written to brief.md"

    gather = fake_openai.body_for("List five")
    assert gather["model"] == "gpt-test"
    assert gather["messages"][-1]["content"] == "List five key facts about tides for engineers."
    assert fake_openai.headers[0]["authorization"] == "Bearer sk-test"
    write = fake_openai.body_for("Write a short brief")
    assert [t["function"]["name"] for t in write["tools"]] == ["write_file"]
    check = fake_openai.body_for("Are these notes accurate?")
    assert '"decision"' in check["messages"][-1]["content"]

    assert seen[-1] == EventType.WORKFLOW_COMPLETE
    assert seen.count(EventType.STEP_COMPLETE) == 3

    stored = await SQLiteExecutionRepository(tmp_path / "runs.db").load(context.execution_id)
    assert stored.status == ExecutionStatus.COMPLETED
    assert set(stored.step_results) == {"gather", "check", "write"}


@pytest.mark.asyncio
async def test_paused_execution_resumes_after_reload(service, fake_openai):
    context = await service.run("checklist")

    assert context.status == ExecutionStatus.PAUSED
    assert context.current_step_id == "report"
    assert context.step_results["each"].output == "Run the test check passed"
    prompts = [b["messages"][-1]["content"] for b in fake_openai.bodies]
    assert "Run the lint check" in prompts
    assert "Run the test check" in prompts

    restarted = WorkflowService(
        service.config, providers=service.providers, repository=service.repository
    )
    restarted.load_directory(FIXTURES)
    assert restarted.list_active() == []
    reloaded = await restarted.get_execution(context.execution_id)
    assert reloaded.status == ExecutionStatus.PAUSED

    finished = await restarted.resume_execution(context.execution_id, "All checks green")
    await service.aclose()

    assert finished.status == ExecutionStatus.COMPLETED
    assert finished.step_results["report"].output == "All checks green"
    assert restarted.list_active() == []
    listed = await service.list_executions("checklist")
    assert [c.status for c in listed] == [ExecutionStatus.COMPLETED]


@pytest.mark.asyncio
async def test_active_executions_are_released_when_finished(service):
    paused = await service.run("checklist")

    assert [c.execution_id for c in service.list_active()] == [paused.execution_id]
    assert service.get_executor(paused.execution_id) is not None

    finished = await service.resume_execution(paused.execution_id, "done")

    assert finished.status == ExecutionStatus.COMPLETED
    assert service.list_active() == []
    assert service.get_executor(paused.execution_id) is None

    completed = await service.run("research", {"topic": "tides"})
    await service.aclose()

    assert completed.status == ExecutionStatus.COMPLETED
    assert service.list_active() == []


@pytest.mark.asyncio
async def test_cancel_live_and_persisted_executions(service):
    live = await service.run("checklist")

    cancelled = await service.cancel_execution(live.execution_id)

    assert cancelled.status == ExecutionStatus.CANCELLED
    assert service.list_active() == []
    stored = await service.get_execution(live.execution_id)
    assert stored.status == ExecutionStatus.CANCELLED

    other = await service.run("checklist")
    restarted = WorkflowService(
        service.config, providers=service.providers, repository=service.repository
    )
    from_store = await restarted.cancel_execution(other.execution_id)
    assert from_store.status == ExecutionStatus.CANCELLED
    assert from_store.completed_at is not None
    stored = await service.get_execution(other.execution_id)
    assert stored.status == ExecutionStatus.CANCELLED

    again = await restarted.cancel_execution(other.execution_id)
    await service.aclose()

    assert again.status == ExecutionStatus.CANCELLED
    assert again.completed_at == from_store.completed_at


@pytest.mark.asyncio
async def test_unknown_ids_raise(service):
    with pytest.raises(WorkflowNotFoundError):
        await service.run("nope")
    with pytest.raises(ExecutionNotFoundError):
        await service.get_execution("exec-missing")
    with pytest.raises(ExecutionNotFoundError):
        await service.cancel_execution("exec-missing")
    with pytest.raises(ExecutionNotFoundError):
        await service.resume_execution("exec-missing", "hello")
    await service.aclose()
