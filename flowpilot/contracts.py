"""Core data contracts for flowpilot workflows and executions."""

from __future__ import annotations

import logging
import random
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class FlowpilotError(Exception):
    """Base class for flowpilot errors."""


class WorkflowNotFoundError(FlowpilotError):
    """Raised when a workflow id is not known."""


class StepNotFoundError(FlowpilotError):
    """Raised when a step id does not exist in its workflow."""


class ExecutionNotFoundError(FlowpilotError):
    """Raised when an execution id is not known."""


class LoopCycleError(FlowpilotError):
    """Skipping empty loop steps led back to a loop step already skipped."""


class _Definition(BaseModel):
    """Definition models accept both snake_case and camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class DecisionNode(_Definition):
    """Branch taken after a step based on its boolean outcome."""

    condition: str = ""
    true_branch: Optional[str] = None
    false_branch: Optional[str] = None


class StepLoop(_Definition):
    """Re-run a step once per item of a collection variable."""

    source: str
    item_var: str
    type: Literal["foreach"] = "foreach"


class InputRequest(_Definition):
    """Pause before the step and use the user's text as its output."""

    enabled: bool = False
    placeholder: Optional[str] = None


class WorkflowVariable(_Definition):
    """Variable declared by a workflow, optionally with a default value."""

    name: str
    type: Literal["string", "number", "boolean", "select"] = "string"
    description: str = ""
    required: bool = False
    default: Any = Field(default=None, alias="defaultValue")
    options: List[str] = Field(default_factory=list)


class WorkflowStep(_Definition):
    """One node in a workflow's step graph."""

    id: str
    name: str = ""
    order: int = 0
    prompt: str = ""
    decision: Optional[DecisionNode] = None
    next_step: Optional[str] = None
    loop: Optional[StepLoop] = None
    input_request: Optional[InputRequest] = None
    output_format: Literal["text", "json", "file"] = "text"
    output_var: Optional[str] = None
    requires_confirmation: bool = False
    allowed_tools: Optional[List[str]] = None


class Workflow(_Definition):
    """Immutable workflow definition. Steps reference each other by id."""

    id: str
    name: str
    description: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)
    variables: List[WorkflowVariable] = Field(default_factory=list)

    def get_step(self, step_id: Optional[str]) -> Optional[WorkflowStep]:
        """Return the step with ``step_id`` or ``None``."""
        if step_id is None:
            return None
        return next((s for s in self.steps if s.id == step_id), None)

    def ordered_steps(self) -> List[WorkflowStep]:
        return sorted(self.steps, key=lambda s: s.order)

    def first_step(self) -> Optional[WorkflowStep]:
        """Return the step with ``order == 1``, else the lowest ordered one."""
        first = next((s for s in self.steps if s.order == 1), None)
        if first is None and self.steps:
            first = self.ordered_steps()[0]
        return first

    def next_in_order(self, step: WorkflowStep) -> Optional[WorkflowStep]:
        """Return the step with the smallest order greater than ``step.order``."""
        later = [s for s in self.steps if s.order > step.order]
        return min(later, key=lambda s: s.order) if later else None

    def default_variables(self) -> Dict[str, Any]:
        return {v.name: v.default for v in self.variables if v.default is not None}


class ToolCall(BaseModel):
    """A structured request from the model to run a named tool."""

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


class ToolResult(BaseModel):
    """Normalized outcome of a single tool execution."""

    tool_call_id: str
    tool_name: Optional[str] = None
    success: bool
    output: str = ""
    error: Optional[str] = None
    duration_ms: int = 0


class StepResult(BaseModel):
    """Result recorded for the latest visit of a step."""

    step_id: str
    success: bool = True
    output: str = ""
    prompt: Optional[str] = None
    error: Optional[str] = None
    duration_ms: int = 0
    decision_result: Optional[bool] = None
    generated_files: Optional[List[str]] = None
    tool_results: List[ToolResult] = Field(default_factory=list)
    token_usage: Optional[TokenUsage] = None


class LoopState(BaseModel):
    """Progress through the collection of the currently looping step."""

    step_id: str
    items: List[Any]
    current_index: int = 0
    item_var: str


class ExecutionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


def new_execution_id() -> str:
    """Return an id of the form ``exec-<epoch ms>-<9 random chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"exec-{int(time.time() * 1000)}-{suffix}"


class ExecutionContext(BaseModel):
    """The mutable, persisted run state of one workflow invocation."""

    workflow_id: str
    execution_id: str = Field(default_factory=new_execution_id)
    current_step_id: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    step_results: Dict[str, StepResult] = Field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    loop_state: Optional[LoopState] = None
    awaiting_confirmation: bool = False
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @classmethod
    def for_workflow(
        cls, workflow: Workflow, variables: Optional[Dict[str, Any]] = None
    ) -> "ExecutionContext":
        """Create a running context positioned on the workflow's first step.

        Declared defaults are applied for variables the caller did not supply.
        """
        merged = workflow.default_variables()
        merged.update(variables or {})
        first = workflow.first_step()
        return cls(
            workflow_id=workflow.id,
            current_step_id=first.id if first else None,
            variables=merged,
        )

    def finish(self, status: ExecutionStatus, error: Optional[str] = None) -> None:
        """Move to a terminal status and stamp ``completed_at``."""
        self.status = status
        self.current_step_id = None
        self.loop_state = None
        self.awaiting_confirmation = False
        self.completed_at = datetime.now(timezone.utc)
        if error is not None:
            self.error = error
        logger.info(f"Execution {self.execution_id} finished with status={status.value}")

    def snapshot(self) -> "ExecutionContext":
        """Deep copy handed to listeners so they cannot mutate the live run."""
        return self.model_copy(deep=True)

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "ExecutionContext":
        return cls.model_validate_json(data)
