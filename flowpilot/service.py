"""Entry point tying definitions, registries, persistence and executors together."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import FlowpilotConfig, load_config
from .contracts import (
    ExecutionContext,
    ExecutionNotFoundError,
    ExecutionStatus,
    Workflow,
    WorkflowNotFoundError,
)
from .events import EventDispatcher, EventType, ExecutionEvent
from .executor import WorkflowExecutor
from .library import load_workflow, load_workflows
from .orchestrator import ChatOptions, ToolCallingOrchestrator
from .persistence import ExecutionRepository, get_repository
from .providers.registry import ProviderRegistry
from .tools.collaborators import LocalCollaborators
from .tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = (
    EventType.WORKFLOW_COMPLETE,
    EventType.WORKFLOW_FAILED,
    EventType.EXECUTION_CANCELLED,
)


class WorkflowService:
    """Hold workflow definitions and start executions for them.

    Registries are constructed once here and injected into every
    orchestrator and executor the service creates. Executors stay registered
    by execution id until their run reaches a terminal status.
    """

    def __init__(
        self,
        config: Optional[FlowpilotConfig] = None,
        providers: Optional[ProviderRegistry] = None,
        tools: Optional[ToolRegistry] = None,
        repository: Optional[ExecutionRepository] = None,
    ) -> None:
        self.config = config or load_config()
        self.providers = providers or ProviderRegistry(self.config)
        self.tools = tools or ToolRegistry.with_collaborators(
            LocalCollaborators(self.config.execution.working_directory)
        )
        self.repository = repository or get_repository(config=self.config)
        self.orchestrator = ToolCallingOrchestrator(
            self.providers, self.tools, self.config.execution
        )
        self._workflows: Dict[str, Workflow] = {}
        self._active: Dict[str, WorkflowExecutor] = {}

    # ------------------------------------------------------------------
    # Definitions
    def register_workflow(self, workflow: Workflow) -> Workflow:
        self._workflows[workflow.id] = workflow
        return workflow

    def load_workflow_file(self, path: str | Path) -> Workflow:
        return self.register_workflow(load_workflow(path))

    def load_directory(self, directory: str | Path) -> List[Workflow]:
        loaded = load_workflows(directory)
        for workflow in loaded.values():
            self.register_workflow(workflow)
        return list(loaded.values())

    def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    def list_workflows(self) -> List[Workflow]:
        return list(self._workflows.values())

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(
        self, workflow_id: str, variables: Optional[Dict[str, Any]] = None
    ) -> ExecutionContext:
        """Create and persist a running context positioned on the first step."""
        workflow = self.get_workflow(workflow_id)
        context = ExecutionContext.for_workflow(workflow, variables)
        logger.info(f"Created execution {context.execution_id} for workflow {workflow_id}")
        try:
            await self.repository.save(context)
        except Exception as exc:
            logger.warning(f"Failed to persist execution {context.execution_id}: {exc}")
        return context

    async def create_executor(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        dispatcher: Optional[EventDispatcher] = None,
        chat_options: Optional[ChatOptions] = None,
    ) -> WorkflowExecutor:
        context = await self.create_execution(workflow_id, variables)
        return self._track(
            self.get_workflow(workflow_id), context, dispatcher, chat_options
        )

    async def run(
        self,
        workflow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        dispatcher: Optional[EventDispatcher] = None,
        chat_options: Optional[ChatOptions] = None,
    ) -> ExecutionContext:
        """Start a new execution and run it until it finishes or pauses."""
        executor = await self.create_executor(workflow_id, variables, dispatcher, chat_options)
        return await executor.start()

    def get_executor(self, execution_id: str) -> Optional[WorkflowExecutor]:
        return self._active.get(execution_id)

    def list_active(self) -> List[ExecutionContext]:
        """Snapshots of the executions this service is still driving."""
        return [executor.context.snapshot() for executor in self._active.values()]

    async def cancel_execution(
        self, execution_id: str, reason: str = "cancelled by user"
    ) -> ExecutionContext:
        """Cancel a live or persisted execution.

        A live run abandons its in-flight provider call. A persisted run that
        no executor holds is marked cancelled in the repository. Finished runs
        are returned unchanged.

        Raises:
            ExecutionNotFoundError: Neither live nor persisted.
        """
        executor = self._active.get(execution_id)
        if executor is not None:
            await executor.cancel(reason)
            return executor.context

        context = await self.get_execution(execution_id)
        if context.status.is_terminal:
            logger.warning(f"Execution {execution_id} already {context.status.value}")
            return context
        context.finish(ExecutionStatus.CANCELLED)
        await self.repository.save(context)
        return context

    async def resume_execution(
        self,
        execution_id: str,
        user_input: str,
        dispatcher: Optional[EventDispatcher] = None,
        chat_options: Optional[ChatOptions] = None,
    ) -> ExecutionContext:
        """Answer the input request an execution is paused on and continue it.

        The executor is rebuilt from the repository when this service is not
        already holding it.
        """
        executor = await self._executor_for(execution_id, dispatcher, chat_options)
        return await executor.resume(user_input)

    async def confirm_execution(
        self,
        execution_id: str,
        approved: bool,
        dispatcher: Optional[EventDispatcher] = None,
        chat_options: Optional[ChatOptions] = None,
    ) -> ExecutionContext:
        """Answer the confirmation gate an execution is paused on."""
        executor = await self._executor_for(execution_id, dispatcher, chat_options)
        return await executor.confirm(approved)

    async def get_execution(self, execution_id: str) -> ExecutionContext:
        context = await self.repository.load(execution_id)
        if context is None:
            raise ExecutionNotFoundError(f"Execution not found: {execution_id}")
        return context

    async def list_executions(self, workflow_id: Optional[str] = None) -> List[ExecutionContext]:
        return await self.repository.list_executions(workflow_id)

    async def aclose(self) -> None:
        await self.providers.aclose()

    async def _executor_for(
        self,
        execution_id: str,
        dispatcher: Optional[EventDispatcher],
        chat_options: Optional[ChatOptions],
    ) -> WorkflowExecutor:
        executor = self._active.get(execution_id)
        if executor is not None:
            return executor
        context = await self.get_execution(execution_id)
        workflow = self.get_workflow(context.workflow_id)
        logger.info(f"Restoring execution {execution_id} from the repository")
        return self._track(workflow, context, dispatcher, chat_options)

    def _track(
        self,
        workflow: Workflow,
        context: ExecutionContext,
        dispatcher: Optional[EventDispatcher],
        chat_options: Optional[ChatOptions],
    ) -> WorkflowExecutor:
        executor = WorkflowExecutor(
            workflow,
            context,
            self.orchestrator,
            repository=self.repository,
            dispatcher=dispatcher,
            chat_options=chat_options,
        )
        if context.status.is_terminal:
            return executor
        execution_id = context.execution_id
        self._active[execution_id] = executor

        def _release(event: ExecutionEvent) -> None:
            if event.context.execution_id != execution_id:
                return
            if self._active.get(execution_id) is executor:
                del self._active[execution_id]
                logger.debug(f"Execution {execution_id} released ({event.event_type.value})")
            for unsubscribe in subscriptions:
                unsubscribe()

        subscriptions = [
            executor.dispatcher.subscribe(event_type, _release)
            for event_type in _TERMINAL_EVENTS
        ]
        return executor
