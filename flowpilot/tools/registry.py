"""Map tool names to their definitions and async handlers."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from ..constants import FILE_WRITTEN_MARKER
from .collaborators import ToolCollaborators
from .definitions import CORE_TOOLS, ToolDefinition

logger = logging.getLogger(__name__)


class ToolOutcome(BaseModel):
    """Explicit handler result for tools that can fail without raising."""

    success: bool = True
    data: Any = None
    error: Optional[str] = None


ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


class ToolRegistry:
    """Registry of tools the model may call."""

    def __init__(self) -> None:
        self._definitions: Dict[str, ToolDefinition] = {}
        self._handlers: Dict[str, ToolHandler] = {}

    def register(self, definition: ToolDefinition, handler: ToolHandler) -> None:
        if definition.name in self._definitions:
            logger.warning(f"Replacing tool handler: {definition.name}")
        self._definitions[definition.name] = definition
        self._handlers[definition.name] = handler

    def names(self) -> List[str]:
        return list(self._definitions)

    def get_definition(self, name: str) -> Optional[ToolDefinition]:
        return self._definitions.get(name)

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        return self._handlers.get(name)

    def definitions(self, allowed: Optional[Iterable[str]] = None) -> List[ToolDefinition]:
        """Return registered definitions, restricted to ``allowed`` if given."""
        if allowed is None:
            return list(self._definitions.values())
        allowed_names = set(allowed)
        return [d for d in self._definitions.values() if d.name in allowed_names]

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    @classmethod
    def with_collaborators(cls, collaborators: ToolCollaborators) -> "ToolRegistry":
        """Build a registry with every core tool wired to ``collaborators``."""
        registry = cls()
        handlers = _core_handlers(collaborators)
        for definition in CORE_TOOLS:
            registry.register(definition, handlers[definition.name])
        return registry


def _int_arg(arguments: Dict[str, Any], key: str) -> Optional[int]:
    value = arguments.get(key)
    return int(value) if value is not None else None


def _core_handlers(c: ToolCollaborators) -> Dict[str, ToolHandler]:
    async def shell(args: Dict[str, Any]) -> Any:
        result = await c.run_shell(
            args["command"], args.get("workdir"), _int_arg(args, "timeout_ms")
        )
        exit_code = result.get("exit_code")
        if exit_code not in (0, None):
            return ToolOutcome(
                success=False,
                data=result,
                error=f"Command exited with code {exit_code}: {result.get('stderr', '')}".strip(),
            )
        return result

    async def read_file(args: Dict[str, Any]) -> Any:
        return await c.read_file(
            args["path"], _int_arg(args, "start_line"), _int_arg(args, "end_line")
        )

    async def write_file(args: Dict[str, Any]) -> Any:
        path = await c.write_file(
            args["path"], args["content"], append=args.get("mode") == "append"
        )
        return f"{FILE_WRITTEN_MARKER}{path}"

    async def list_directory(args: Dict[str, Any]) -> Any:
        return await c.list_directory(
            args["path"],
            depth=_int_arg(args, "depth") or 1,
            include_hidden=bool(args.get("include_hidden", False)),
        )

    async def search_files(args: Dict[str, Any]) -> Any:
        return await c.search_files(
            args["pattern"],
            path=args.get("path"),
            search_type=args.get("search_type") or "filename",
            max_results=_int_arg(args, "max_results") or 100,
        )

    async def web_search(args: Dict[str, Any]) -> Any:
        num_results = min(_int_arg(args, "num_results") or 5, 10)
        return await c.web_search(
            args["query"], num_results, args.get("search_type") or "general"
        )

    async def invoke_agent(args: Dict[str, Any]) -> Any:
        result = await c.invoke_agent(args["agent_id"], args["message"], args.get("context"))
        if isinstance(result, dict) and result.get("success") is False:
            return ToolOutcome(success=False, data=result, error=result.get("error"))
        return result

    async def message_search(args: Dict[str, Any]) -> Any:
        limit = min(_int_arg(args, "limit") or 10, 50)
        results = await c.search_bookmarks(args["query"], limit)
        return {"query": args["query"], "results": results, "total_results": len(results)}

    return {
        "shell": shell,
        "read_file": read_file,
        "write_file": write_file,
        "list_directory": list_directory,
        "search_files": search_files,
        "web_search": web_search,
        "invoke_agent": invoke_agent,
        "message_search": message_search,
    }
