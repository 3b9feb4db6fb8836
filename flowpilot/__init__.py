"""flowpilot: AI workflow execution with tool-calling orchestration."""

from .cancellation import CancellationToken, ExecutionCancelled
from .config import FlowpilotConfig, load_config
from .contracts import (
    ExecutionContext,
    ExecutionStatus,
    FlowpilotError,
    StepResult,
    Workflow,
    WorkflowStep,
)
from .events import EventDispatcher, EventType
from .executor import WorkflowExecutor
from .orchestrator import ChatOptions, DirectToolCall, OrchestratorResult, ToolCallingOrchestrator
from .persistence import get_repository
from .providers import ProviderError, ProviderRegistry, get_provider_registry
from .service import WorkflowService
from .tools import LocalCollaborators, ToolExecutor, ToolRegistry

__version__ = "0.1.0"
__all__ = [
    "CancellationToken",
    "ChatOptions",
    "DirectToolCall",
    "EventDispatcher",
    "EventType",
    "ExecutionCancelled",
    "ExecutionContext",
    "ExecutionStatus",
    "FlowpilotConfig",
    "FlowpilotError",
    "LocalCollaborators",
    "OrchestratorResult",
    "ProviderError",
    "ProviderRegistry",
    "StepResult",
    "ToolCallingOrchestrator",
    "ToolExecutor",
    "ToolRegistry",
    "Workflow",
    "WorkflowExecutor",
    "WorkflowService",
    "WorkflowStep",
    "get_provider_registry",
    "get_repository",
    "load_config",
]
