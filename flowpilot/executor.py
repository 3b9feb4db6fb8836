"""Step state machine that walks a workflow graph one step at a time."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional, Set, Type

from .cancellation import CancellationToken, ExecutionCancelled
from .constants import DECISION_INSTRUCTION
from .contracts import (
    ExecutionContext,
    ExecutionStatus,
    LoopCycleError,
    LoopState,
    StepResult,
    TokenUsage,
    ToolResult,
    Workflow,
    WorkflowStep,
)
from .events import (
    BaseExecutionEvent,
    EventDispatcher,
    EventType,
    ExecutionCancelledEvent,
    Listener,
    StatusUpdateEvent,
    StepCompleteEvent,
    StepStartEvent,
    WaitingForInputEvent,
    WorkflowCompleteEvent,
    WorkflowFailedEvent,
)
from .orchestrator import ChatOptions, ToolCallingOrchestrator
from .parsing import detect_generated_files, evaluate_decision, parse_output, render_prompt
from .persistence.repository import ExecutionRepository
from .providers.base import ChatMessage

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """Run one :class:`ExecutionContext` through its workflow.

    The executor exclusively owns ``context``; listeners receive deep-copied
    snapshots through ``dispatcher``. A run pauses for input-request steps and
    confirmation gates, and continues through :meth:`resume` and
    :meth:`confirm` respectively.
    """

    def __init__(
        self,
        workflow: Workflow,
        context: ExecutionContext,
        orchestrator: ToolCallingOrchestrator,
        repository: Optional[ExecutionRepository] = None,
        dispatcher: Optional[EventDispatcher] = None,
        chat_options: Optional[ChatOptions] = None,
    ) -> None:
        self.workflow = workflow
        self.context = context
        self.orchestrator = orchestrator
        self.repository = repository
        self.dispatcher = dispatcher or EventDispatcher()
        self.chat_options = chat_options or ChatOptions()
        self._cancellation = CancellationToken()
        self._persist_lock = asyncio.Lock()

    @property
    def status(self) -> ExecutionStatus:
        return self.context.status

    @property
    def cancelled(self) -> bool:
        return self._cancellation.cancelled

    def on(self, event_type: Optional[EventType], listener: Listener):
        """Shortcut for ``dispatcher.subscribe``."""
        return self.dispatcher.subscribe(event_type, listener)

    async def start(self) -> ExecutionContext:
        """Run from ``context.current_step_id`` until finished or paused."""
        if self.context.status.is_terminal:
            logger.warning(
                f"Execution {self.context.execution_id} already {self.context.status.value}"
            )
            return self.context
        logger.info(
            f"Starting workflow {self.workflow.id} execution={self.context.execution_id}"
        )
        self.context.status = ExecutionStatus.RUNNING
        await self._run_loop()
        return self.context

    async def resume(self, user_input: str) -> ExecutionContext:
        """Record ``user_input`` as the output of the step awaiting input and continue."""
        if self.context.status not in (ExecutionStatus.PAUSED, ExecutionStatus.RUNNING):
            logger.warning(
                f"Cannot resume execution {self.context.execution_id} "
                f"with status {self.context.status.value}"
            )
            return self.context
        if self.context.awaiting_confirmation:
            logger.warning("Execution is waiting for confirmation, not input; use confirm()")
            return self.context

        self.context.status = ExecutionStatus.RUNNING
        step = self.workflow.get_step(self.context.current_step_id)
        if step is None:
            await self._fail(f"Step not found: {self.context.current_step_id}")
            return self.context

        try:
            if await self.handle_step_completion(
                step, user_input, prompt=render_prompt(step.prompt, self.context.variables)
            ):
                await self._run_loop()
        except ExecutionCancelled:
            return self.context
        except Exception as exc:
            if not self.cancelled:
                logger.exception(f"Step {step.id} failed while resuming")
                await self._fail(str(exc))
        return self.context

    async def confirm(self, approved: bool) -> ExecutionContext:
        """Answer a confirmation gate: continue when approved, cancel otherwise."""
        if not self.context.awaiting_confirmation:
            logger.warning(
                f"Execution {self.context.execution_id} is not waiting for confirmation"
            )
            return self.context
        if not approved:
            logger.info(f"Confirmation rejected for execution {self.context.execution_id}")
            await self.cancel("confirmation rejected")
            return self.context

        self.context.awaiting_confirmation = False
        self.context.status = ExecutionStatus.RUNNING
        await self._run_loop()
        return self.context

    async def cancel(self, reason: str = "cancelled by user") -> None:
        """Stop the run and abandon any in-flight provider call.

        The cancelled state is persisted before this returns; nothing is
        recorded or persisted for the run afterwards.
        """
        self._cancellation.cancel(reason)
        if self.context.status.is_terminal:
            return
        self.context.finish(ExecutionStatus.CANCELLED)
        self._emit(ExecutionCancelledEvent)
        await self._persist(force=True)

    async def _run_loop(self) -> None:
        while (
            self.context.current_step_id
            and self.context.status == ExecutionStatus.RUNNING
            and not self.cancelled
        ):
            step = self.workflow.get_step(self.context.current_step_id)
            if step is None:
                logger.error(f"Step not found: {self.context.current_step_id}")
                await self._fail(f"Step not found: {self.context.current_step_id}")
                return

            self._emit(StepStartEvent, step=step)

            if step.input_request is not None and step.input_request.enabled:
                self.context.status = ExecutionStatus.PAUSED
                logger.info(f"Waiting for input on step {step.id}")
                await self._persist()
                self._emit(
                    WaitingForInputEvent,
                    step=step,
                    kind="input",
                    placeholder=step.input_request.placeholder,
                )
                return

            try:
                if not await self._execute_step(step):
                    return
            except ExecutionCancelled:
                logger.info(f"Step {step.id} abandoned after cancellation")
                return
            except Exception as exc:
                if self.cancelled:
                    return
                logger.exception(f"Step {step.id} failed")
                await self._fail(str(exc))
                return

        if (
            self.context.current_step_id is None
            and self.context.status == ExecutionStatus.RUNNING
            and not self.cancelled
        ):
            self.context.finish(ExecutionStatus.COMPLETED)
            await self._persist()
            self._emit(WorkflowCompleteEvent)

    async def _execute_step(self, step: WorkflowStep) -> bool:
        started = time.monotonic()
        prompt = render_prompt(step.prompt, self.context.variables)
        if step.decision is not None:
            prompt += DECISION_INSTRUCTION

        result = await self.orchestrator.run(
            prompt, self._history(), self._step_options(step), self._cancellation
        )
        self._cancellation.raise_if_cancelled()

        decision_result = evaluate_decision(result.content) if step.decision else None
        generated_files = detect_generated_files(
            result.content, step.output_format, result.tool_results
        )
        return await self.handle_step_completion(
            step,
            result.content,
            decision_result=decision_result,
            generated_files=generated_files,
            tool_results=result.tool_results,
            prompt=prompt,
            duration_ms=int((time.monotonic() - started) * 1000),
            token_usage=result.token_usage,
        )

    async def handle_step_completion(
        self,
        step: WorkflowStep,
        output: str,
        decision_result: Optional[bool] = None,
        generated_files: Optional[List[str]] = None,
        tool_results: Optional[List[ToolResult]] = None,
        prompt: Optional[str] = None,
        duration_ms: int = 0,
        token_usage: Optional[TokenUsage] = None,
    ) -> bool:
        """Record ``step``'s result and move ``current_step_id`` to its successor.

        Returns ``False`` when the run should stop here (confirmation gate).
        """
        self._cancellation.raise_if_cancelled()

        if step.output_var:
            self.context.variables[step.output_var] = parse_output(output, step.output_format)

        result = StepResult(
            step_id=step.id,
            success=True,
            output=output,
            prompt=prompt,
            duration_ms=duration_ms,
            decision_result=decision_result,
            generated_files=generated_files or None,
            tool_results=tool_results or [],
            token_usage=token_usage,
        )
        self.context.step_results[step.id] = result
        logger.info(f"Step {step.id} completed in {duration_ms}ms")
        self._emit(StepCompleteEvent, step=step, result=result)

        next_id = self.resolve_next_step(step, decision_result)
        self.context.current_step_id = next_id

        if step.requires_confirmation and next_id is not None:
            self.context.status = ExecutionStatus.PAUSED
            self.context.awaiting_confirmation = True
            await self._persist()
            self._emit(WaitingForInputEvent, step=step, kind="confirmation")
            return False

        next_step = self.workflow.get_step(next_id)
        if next_step is not None:
            self._emit(StepStartEvent, step=next_step)
        await self._persist()
        return True

    def resolve_next_step(
        self, step: WorkflowStep, decision_result: Optional[bool] = None
    ) -> Optional[str]:
        """Pick the successor of ``step``, advancing or opening loops as needed."""
        if step.decision is not None:
            next_id = (
                step.decision.true_branch if decision_result else step.decision.false_branch
            )
        else:
            next_id = step.next_step

        loop = self.context.loop_state
        if loop is not None and loop.step_id == step.id:
            loop.current_index += 1
            if loop.current_index < len(loop.items):
                self.context.variables[loop.item_var] = loop.items[loop.current_index]
                return step.id
            logger.info(f"Loop over step {step.id} finished after {len(loop.items)} items")
            self.context.loop_state = None
            if next_id == step.id:
                next_id = step.next_step

        if next_id is None:
            following = self.workflow.next_in_order(step)
            next_id = following.id if following else None

        if next_id is not None and next_id != step.id:
            next_id = self._enter_loop(next_id, set())
        return next_id

    def _enter_loop(self, target_id: str, seen: Set[str]) -> Optional[str]:
        target = self.workflow.get_step(target_id)
        if target is None or target.loop is None:
            return target_id
        if target_id in seen:
            raise LoopCycleError(
                f"Loop skip cycle: steps {', '.join(sorted(seen))} all have empty collections"
            )
        seen.add(target_id)

        source = target.loop.source
        items: Any = self.context.variables.get(source)

        if isinstance(items, (list, tuple)) and len(items) > 0:
            self.context.loop_state = LoopState(
                step_id=target.id, items=list(items), current_index=0, item_var=target.loop.item_var
            )
            self.context.variables[target.loop.item_var] = items[0]
            logger.info(f"Loop initialised on step {target.id} with {len(items)} items")
            return target.id

        logger.info(f"Skipping loop step {target.id}: '{source}' is empty or not a list")
        skip_to = target.next_step
        if skip_to is None:
            following = self.workflow.next_in_order(target)
            skip_to = following.id if following else None
        if skip_to is None:
            return None
        return self._enter_loop(skip_to, seen)

    def _history(self) -> List[ChatMessage]:
        history: List[ChatMessage] = []
        for step in self.workflow.ordered_steps():
            result = self.context.step_results.get(step.id)
            if result is None or not result.success:
                continue
            history.append(ChatMessage(role="user", content=result.prompt or step.prompt))
            history.append(ChatMessage(role="assistant", content=result.output))
        return history

    def _step_options(self, step: WorkflowStep) -> ChatOptions:
        base = self.chat_options
        caller_status = base.on_status_update

        def forward_status(message: str) -> Any:
            self._emit(StatusUpdateEvent, message=message)
            if caller_status is not None:
                return caller_status(message)
            return None

        return base.model_copy(
            update={
                "session_id": base.session_id or f"wf-exec-{self.context.execution_id}",
                "allowed_tools": (
                    step.allowed_tools if step.allowed_tools is not None else base.allowed_tools
                ),
                "on_status_update": forward_status,
            }
        )

    async def _fail(self, message: str) -> None:
        self.context.finish(ExecutionStatus.FAILED, error=message)
        await self._persist()
        self._emit(WorkflowFailedEvent, error=message)

    def _emit(self, event_cls: Type[BaseExecutionEvent], **payload: Any) -> None:
        self.dispatcher.emit(event_cls(context=self.context.snapshot(), **payload))

    async def _persist(self, force: bool = False) -> None:
        if self.repository is None:
            return
        if self.cancelled and not force:
            return
        async with self._persist_lock:
            try:
                await self.repository.save(self.context.snapshot())
            except Exception as exc:
                logger.warning(
                    f"Failed to persist execution {self.context.execution_id}: {exc}"
                )
