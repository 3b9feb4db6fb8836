"""Tool definitions, registry and executor."""

from .collaborators import AgentInvoker, LocalCollaborators, ToolCollaborators
from .definitions import CORE_TOOLS, ToolDefinition
from .executor import ToolExecutor, format_output
from .registry import ToolHandler, ToolOutcome, ToolRegistry

__all__ = [
    "AgentInvoker",
    "CORE_TOOLS",
    "LocalCollaborators",
    "ToolCollaborators",
    "ToolDefinition",
    "ToolExecutor",
    "ToolHandler",
    "ToolOutcome",
    "ToolRegistry",
    "format_output",
]
