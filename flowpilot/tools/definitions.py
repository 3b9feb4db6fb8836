"""Tool schemas advertised to providers.

A :class:`ToolDefinition` is the single source of truth; each provider adapter
renders it into its own native declaration shape.
"""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field


class ToolDefinition(BaseModel):
    """Name, description and JSON-Schema (object) parameters of a tool."""

    name: str
    description: str
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def properties(self) -> Dict[str, Any]:
        return self.parameters.get("properties", {})

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []))


def _schema(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


CORE_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        name="shell",
        description=(
            "Execute a shell command and return its output. Use for running "
            "terminal commands, scripts, or system operations."
        ),
        parameters=_schema(
            {
                "command": {"type": "string", "description": "The shell command to execute"},
                "workdir": {"type": "string", "description": "Working directory for command execution"},
                "timeout_ms": {"type": "number", "description": "Timeout in milliseconds (default: 30000)"},
            },
            ["command"],
        ),
    ),
    ToolDefinition(
        name="read_file",
        description="Read the contents of a file. Can read entire file or specific line ranges.",
        parameters=_schema(
            {
                "path": {"type": "string", "description": "Path to the file to read"},
                "start_line": {"type": "number", "description": "Starting line number (1-indexed)"},
                "end_line": {"type": "number", "description": "Ending line number (inclusive)"},
            },
            ["path"],
        ),
    ),
    ToolDefinition(
        name="write_file",
        description="Write content to a file. Can overwrite or append to existing files.",
        parameters=_schema(
            {
                "path": {"type": "string", "description": "Path to the file to write"},
                "content": {"type": "string", "description": "Content to write to the file"},
                "mode": {"type": "string", "description": "Write mode: 'overwrite' (default) or 'append'"},
            },
            ["path", "content"],
        ),
    ),
    ToolDefinition(
        name="list_directory",
        description="List contents of a directory with file types and sizes.",
        parameters=_schema(
            {
                "path": {"type": "string", "description": "Path to the directory to list"},
                "depth": {"type": "number", "description": "Maximum depth to traverse (default: 1)"},
                "include_hidden": {"type": "boolean", "description": "Include hidden files (default: false)"},
            },
            ["path"],
        ),
    ),
    ToolDefinition(
        name="search_files",
        description="Search for files by name pattern or content.",
        parameters=_schema(
            {
                "pattern": {"type": "string", "description": "Search pattern (glob for filenames, regex for content)"},
                "path": {"type": "string", "description": "Directory to search in (default: current directory)"},
                "search_type": {"type": "string", "description": "Type of search: 'filename' or 'content'"},
                "max_results": {"type": "number", "description": "Maximum results to return (default: 100)"},
            },
            ["pattern"],
        ),
    ),
    ToolDefinition(
        name="web_search",
        description=(
            "Search the web. Use this for general knowledge, news, or documentation lookups."
        ),
        parameters=_schema(
            {
                "query": {"type": "string", "description": "The search query."},
                "num_results": {"type": "number", "description": "Number of results to return (default: 5, max: 10)"},
                "search_type": {
                    "type": "string",
                    "description": 'Type of search: "general", "news", "docs"',
                    "enum": ["general", "news", "docs"],
                },
            },
            ["query"],
        ),
    ),
    ToolDefinition(
        name="invoke_agent",
        description=(
            "Invoke a specialized agent to handle a specific task and return its answer."
        ),
        parameters=_schema(
            {
                "agent_id": {"type": "string", "description": "ID of the agent to invoke"},
                "message": {"type": "string", "description": "Message or task for the agent"},
                "context": {"type": "object", "description": "Additional context for the agent (optional)"},
            },
            ["agent_id", "message"],
        ),
    ),
    ToolDefinition(
        name="message_search",
        description="Search through bookmarked messages to retrieve context from previous conversations.",
        parameters=_schema(
            {
                "query": {"type": "string", "description": "Search query to find in bookmarked messages."},
                "limit": {"type": "number", "description": "Maximum number of results to return (default: 10, max: 50)"},
            },
            ["query"],
        ),
    ),
]
