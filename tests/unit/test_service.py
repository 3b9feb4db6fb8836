import pytest

from flowpilot.config import FlowpilotConfig
from flowpilot.contracts import ExecutionStatus, WorkflowNotFoundError
from flowpilot.persistence import InMemoryExecutionRepository
from flowpilot.service import WorkflowService


@pytest.fixture
def service(fakes):
    service = WorkflowService(FlowpilotConfig(), repository=InMemoryExecutionRepository())
    service.register_workflow(
        fakes.make_workflow(
            {"id": "1", "order": 1, "prompt": "one"},
            {"id": "2", "order": 2, "prompt": "two"},
            {"id": "ask", "order": 3, "prompt": "anything else?", "inputRequest": {"enabled": True}},
        )
    )
    return service


@pytest.mark.asyncio
async def test_cancel_execution_stops_a_step_in_flight(service, fakes):
    async def cancel_from_outside(message):
        [active] = service.list_active()
        assert active.current_step_id == "1"
        await service.cancel_execution(active.execution_id)
        return "too late"

    service.orchestrator = fakes.ScriptedOrchestrator([cancel_from_outside])

    context = await service.run("wf")

    assert context.status == ExecutionStatus.CANCELLED
    assert context.step_results == {}
    assert len(service.orchestrator.calls) == 1
    assert service.list_active() == []
    stored = await service.get_execution(context.execution_id)
    assert stored.status == ExecutionStatus.CANCELLED


@pytest.mark.asyncio
async def test_resume_uses_the_live_executor(service, fakes):
    service.orchestrator = fakes.ScriptedOrchestrator(["a", "b"])
    paused = await service.run("wf")
    executor = service.get_executor(paused.execution_id)

    finished = await service.resume_execution(paused.execution_id, "nothing")

    assert finished is executor.context
    assert finished.status == ExecutionStatus.COMPLETED
    assert finished.step_results["ask"].output == "nothing"
    assert service.list_active() == []


@pytest.mark.asyncio
async def test_failed_runs_are_released(service, fakes):
    service.orchestrator = fakes.ScriptedOrchestrator([RuntimeError("provider down")])

    context = await service.run("wf")

    assert context.status == ExecutionStatus.FAILED
    assert service.list_active() == []


@pytest.mark.asyncio
async def test_resume_needs_the_workflow_definition(fakes):
    repository = InMemoryExecutionRepository()
    first = WorkflowService(FlowpilotConfig(), repository=repository)
    first.register_workflow(
        fakes.make_workflow({"id": "ask", "order": 1, "inputRequest": {"enabled": True}})
    )
    paused = await first.run("wf")
    await first.aclose()

    second = WorkflowService(FlowpilotConfig(), repository=repository)
    with pytest.raises(WorkflowNotFoundError):
        await second.resume_execution(paused.execution_id, "hello")
    assert second.list_active() == []
    await second.aclose()
