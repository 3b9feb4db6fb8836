"""Command line interface for running flowpilot workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from flowpilot.config import load_config
from flowpilot.contracts import (
    ExecutionContext,
    ExecutionNotFoundError,
    ExecutionStatus,
    FlowpilotError,
)
from flowpilot.events import (
    EventDispatcher,
    ExecutionEvent,
    StatusUpdateEvent,
    StepCompleteEvent,
    StepStartEvent,
    WaitingForInputEvent,
    WorkflowFailedEvent,
)
from flowpilot.library import WorkflowDefinitionError, load_workflow, validate_workflow
from flowpilot.orchestrator import ChatOptions, DirectToolCall
from flowpilot.persistence import get_repository
from flowpilot.service import WorkflowService

app = typer.Typer(help="CLI for flowpilot workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for running and checking workflows")
execution_app = typer.Typer(help="Commands for inspecting and controlling executions")
tool_app = typer.Typer(help="Commands for inspecting and calling tools")

app.add_typer(workflow_app, name="workflow")
app.add_typer(execution_app, name="execution")
app.add_typer(tool_app, name="tool")

_state: Dict[str, Any] = {"config_path": None}


@app.callback()
def main(
    config: Optional[Path] = typer.Option(None, help="Path to a flowpilot YAML config"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """flowpilot CLI entry point."""
    _state["config_path"] = str(config) if config else None
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_vars(pairs: List[str]) -> Dict[str, Any]:
    variables: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise typer.BadParameter(f"Expected key=value, got: {pair}")
        key, raw = pair.split("=", 1)
        try:
            variables[key] = json.loads(raw)
        except ValueError:
            variables[key] = raw
    return variables


def _describe(event: ExecutionEvent) -> Optional[str]:
    if isinstance(event, StepStartEvent):
        return f"> {event.step.name or event.step.id}"
    if isinstance(event, StepCompleteEvent):
        return f"< {event.step.id}: {event.result.output}"
    if isinstance(event, StatusUpdateEvent):
        return f"  {event.message}"
    if isinstance(event, WorkflowFailedEvent):
        return f"! failed: {event.error}"
    if isinstance(event, WaitingForInputEvent):
        return None
    return f"= {event.event_type.value}"


@workflow_app.command("run")
def workflow_run(
    workflow_path: Path,
    var: List[str] = typer.Option([], "--var", help="Variable as key=value (repeatable)"),
    provider: Optional[str] = typer.Option(None, help="Provider id to use"),
    model: Optional[str] = typer.Option(None, help="Model name override"),
) -> None:
    """
    Run a workflow definition file to completion.

    Steps that request input prompt on the terminal; confirmation gates ask
    for a yes/no answer.

    Example:
        flowpilot workflow run ./workflows/review.yaml --var topic=testing
    """
    try:
        workflow = load_workflow(workflow_path)
    except WorkflowDefinitionError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    variables = _parse_vars(var)

    async def _run() -> ExecutionContext:
        config = load_config(_state["config_path"])
        if provider:
            config.active_provider = provider
        service = WorkflowService(config)
        service.register_workflow(workflow)
        dispatcher = EventDispatcher()
        dispatcher.subscribe(None, _echo_event)
        try:
            executor = await service.create_executor(
                workflow.id,
                variables,
                dispatcher=dispatcher,
                chat_options=ChatOptions(model=model),
            )
            context = await executor.start()
            while context.status == ExecutionStatus.PAUSED:
                if context.awaiting_confirmation:
                    approved = typer.confirm("Continue to the next step?", default=True)
                    context = await executor.confirm(approved)
                else:
                    step = workflow.get_step(context.current_step_id)
                    placeholder = None
                    if step is not None and step.input_request is not None:
                        placeholder = step.input_request.placeholder
                    context = await executor.resume(typer.prompt(placeholder or "Input"))
            return context
        finally:
            await service.aclose()

    context = asyncio.run(_run())
    typer.echo(f"Execution {context.execution_id}: {context.status.value}")
    if context.status == ExecutionStatus.FAILED:
        raise typer.Exit(code=1)


def _repository():
    path = _state["config_path"]
    return get_repository(config=load_config(path)) if path else get_repository()


def _echo_event(event: ExecutionEvent) -> None:
    line = _describe(event)
    if line is not None:
        typer.echo(line)


@workflow_app.command("validate")
def workflow_validate(workflow_path: Path) -> None:
    """Check a workflow file for broken step references and unreachable steps."""
    try:
        workflow = load_workflow(workflow_path)
    except WorkflowDefinitionError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    problems = validate_workflow(workflow)
    if not problems:
        typer.echo(f"Workflow {workflow.id} is valid ({len(workflow.steps)} steps)")
        return
    for problem in problems:
        typer.secho(f"- {problem}", fg=typer.colors.YELLOW)
    raise typer.Exit(code=1)


@execution_app.command("list")
def execution_list(
    workflow_id: Optional[str] = typer.Option(None, "--workflow", help="Filter by workflow id"),
) -> None:
    """
    List persisted executions with their status.

    Example:
        flowpilot execution list --workflow review
        # Output: exec-1718000000000-a1b2c3d4e    review    completed
    """
    repo = _repository()
    executions = asyncio.run(repo.list_executions(workflow_id))
    if not executions:
        typer.echo("No executions found")
        return
    for ctx in executions:
        typer.echo(f"{ctx.execution_id}\t{ctx.workflow_id}\t{ctx.status.value}")


@execution_app.command("show")
def execution_show(execution_id: str) -> None:
    """Show the status, variables and step results of one execution."""
    repo = _repository()
    ctx = asyncio.run(repo.load(execution_id))
    if ctx is None:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(f"Execution {ctx.execution_id}: {ctx.status.value}")
    typer.echo(f"Workflow: {ctx.workflow_id}")
    if ctx.error:
        typer.echo(f"Error: {ctx.error}")
    if ctx.variables:
        typer.echo(f"Variables: {json.dumps(ctx.variables, default=str)}")
    for step_id, result in ctx.step_results.items():
        flag = "ok" if result.success else "failed"
        typer.echo(f"- {step_id}: {flag} ({result.duration_ms}ms)")


@execution_app.command("cancel")
def execution_cancel(execution_id: str) -> None:
    """Mark a paused or running execution as cancelled."""

    async def _cancel() -> ExecutionContext:
        service = WorkflowService(load_config(_state["config_path"]), repository=_repository())
        try:
            return await service.cancel_execution(execution_id)
        finally:
            await service.aclose()

    try:
        ctx = asyncio.run(_cancel())
    except ExecutionNotFoundError:
        typer.echo("Execution not found")
        raise typer.Exit(code=1)
    typer.echo(f"Execution {ctx.execution_id}: {ctx.status.value}")


@execution_app.command("resume")
def execution_resume(
    execution_id: str,
    user_input: str = typer.Argument(..., help="Text recorded as the paused step's output"),
    workflow_path: Path = typer.Option(
        ..., "--file", "-f", help="Workflow definition the execution was started from"
    ),
) -> None:
    """
    Continue an execution that is paused on an input request.

    Example:
        flowpilot execution resume exec-1718000000000-a1b2c3d4e "Looks good" -f checklist.json
    """
    try:
        workflow = load_workflow(workflow_path)
    except WorkflowDefinitionError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _resume() -> ExecutionContext:
        service = WorkflowService(load_config(_state["config_path"]), repository=_repository())
        service.register_workflow(workflow)
        dispatcher = EventDispatcher()
        dispatcher.subscribe(None, _echo_event)
        try:
            return await service.resume_execution(execution_id, user_input, dispatcher=dispatcher)
        finally:
            await service.aclose()

    try:
        ctx = asyncio.run(_resume())
    except FlowpilotError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Execution {ctx.execution_id}: {ctx.status.value}")
    if ctx.status == ExecutionStatus.FAILED:
        raise typer.Exit(code=1)


@tool_app.command("list")
def tool_list() -> None:
    """List the tools advertised to providers."""
    service = WorkflowService(load_config(_state["config_path"]))
    try:
        for definition in service.tools.definitions():
            typer.echo(f"{definition.name} - {definition.description}")
    finally:
        asyncio.run(service.aclose())


@tool_app.command("call")
def tool_call(
    name: str,
    args: str = typer.Option("{}", "--args", help="Tool arguments as a JSON object"),
) -> None:
    """
    Run a single tool directly, without asking a model.

    Example:
        flowpilot tool call list_directory --args '{"path": "."}'
    """
    try:
        arguments = json.loads(args)
    except ValueError as exc:
        raise typer.BadParameter(f"--args is not valid JSON: {exc}")
    if not isinstance(arguments, dict):
        raise typer.BadParameter("--args must be a JSON object")

    async def _call():
        service = WorkflowService(load_config(_state["config_path"]))
        try:
            return await service.orchestrator.run(
                "",
                options=ChatOptions(
                    direct_tool_call=DirectToolCall(name=name, arguments=arguments)
                ),
            )
        finally:
            await service.aclose()

    try:
        result = asyncio.run(_call())
    except FlowpilotError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(result.content)
    if not all(r.success for r in result.tool_results):
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
