"""Run one tool call against the registry and normalize the outcome."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

from ..contracts import ToolCall, ToolResult
from .registry import ToolOutcome, ToolRegistry

logger = logging.getLogger(__name__)


def format_output(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    return json.dumps(data, indent=2, default=str)


class ToolExecutor:
    """Execute tool calls; never raises for handler failures."""

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def execute(self, call: ToolCall, session_id: Optional[str] = None) -> ToolResult:
        """Run ``call`` and return a :class:`ToolResult`.

        Unknown tools, missing required arguments and handler exceptions all
        come back as ``success=False`` with ``error`` set.
        """
        started = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        handler = self.registry.get_handler(call.name)
        definition = self.registry.get_definition(call.name)
        if handler is None or definition is None:
            logger.warning(f"Unknown tool requested: {call.name}")
            return ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=False,
                output=f"Unknown tool: {call.name}",
                error=f"Unknown tool: {call.name}",
                duration_ms=elapsed(),
            )

        missing = [key for key in definition.required if call.arguments.get(key) is None]
        if missing:
            return ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=False,
                error=f"Missing required argument(s): {', '.join(missing)}",
                duration_ms=elapsed(),
            )

        logger.info(f"Executing tool {call.name} (session={session_id or '-'})")
        try:
            raw = await handler(call.arguments)
        except Exception as exc:
            logger.error(f"Tool {call.name} failed: {exc}")
            return ToolResult(
                tool_call_id=call.id,
                tool_name=call.name,
                success=False,
                error=str(exc) or exc.__class__.__name__,
                duration_ms=elapsed(),
            )

        outcome = raw if isinstance(raw, ToolOutcome) else ToolOutcome(data=raw)
        output = format_output(outcome.data)
        if not outcome.success and not output:
            output = outcome.error or ""
        logger.debug(f"Tool {call.name} finished success={outcome.success}")
        return ToolResult(
            tool_call_id=call.id,
            tool_name=call.name,
            success=outcome.success,
            output=output,
            error=None if outcome.success else (outcome.error or "Tool execution failed"),
            duration_ms=elapsed(),
        )
