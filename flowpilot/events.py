"""Typed execution events and the dispatcher that delivers them."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from .contracts import ExecutionContext, StepResult, WorkflowStep

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    STEP_START = "step_start"
    STEP_COMPLETE = "step_complete"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_FAILED = "workflow_failed"
    WAITING_FOR_INPUT = "waiting_for_input"
    EXECUTION_CANCELLED = "execution_cancelled"
    STATUS_UPDATE = "status_update"


class BaseExecutionEvent(BaseModel):
    """Common fields: every event carries a snapshot of the execution context."""

    event_type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context: ExecutionContext


class StepStartEvent(BaseExecutionEvent):
    event_type: Literal[EventType.STEP_START] = EventType.STEP_START
    step: WorkflowStep


class StepCompleteEvent(BaseExecutionEvent):
    event_type: Literal[EventType.STEP_COMPLETE] = EventType.STEP_COMPLETE
    step: WorkflowStep
    result: StepResult


class WorkflowCompleteEvent(BaseExecutionEvent):
    event_type: Literal[EventType.WORKFLOW_COMPLETE] = EventType.WORKFLOW_COMPLETE


class WorkflowFailedEvent(BaseExecutionEvent):
    event_type: Literal[EventType.WORKFLOW_FAILED] = EventType.WORKFLOW_FAILED
    error: str


class WaitingForInputEvent(BaseExecutionEvent):
    """Emitted when the run pauses for the user.

    ``kind`` is ``"input"`` for an input-request step and ``"confirmation"``
    when a completed step requires approval before advancing.
    """

    event_type: Literal[EventType.WAITING_FOR_INPUT] = EventType.WAITING_FOR_INPUT
    step: WorkflowStep
    kind: Literal["input", "confirmation"] = "input"
    placeholder: Optional[str] = None


class ExecutionCancelledEvent(BaseExecutionEvent):
    event_type: Literal[EventType.EXECUTION_CANCELLED] = EventType.EXECUTION_CANCELLED


class StatusUpdateEvent(BaseExecutionEvent):
    event_type: Literal[EventType.STATUS_UPDATE] = EventType.STATUS_UPDATE
    message: str


ExecutionEvent = Union[
    StepStartEvent,
    StepCompleteEvent,
    WorkflowCompleteEvent,
    WorkflowFailedEvent,
    WaitingForInputEvent,
    ExecutionCancelledEvent,
    StatusUpdateEvent,
]

Listener = Callable[[ExecutionEvent], None]


class EventDispatcher:
    """Deliver events in emission order to per-type and catch-all listeners."""

    def __init__(self) -> None:
        self._listeners: Dict[Optional[EventType], List[Listener]] = {}

    def subscribe(
        self, event_type: Optional[EventType], listener: Listener
    ) -> Callable[[], None]:
        """Register ``listener`` for ``event_type`` (``None`` means every event).

        Returns a callable that removes the subscription.
        """
        self._listeners.setdefault(event_type, []).append(listener)

        def _unsubscribe() -> None:
            listeners = self._listeners.get(event_type, [])
            if listener in listeners:
                listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: ExecutionEvent) -> None:
        targets = list(self._listeners.get(event.event_type, [])) + list(
            self._listeners.get(None, [])
        )
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    f"Listener failed while handling {event.event_type.value}"
                )
