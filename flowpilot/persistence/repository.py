"""Repository abstraction for execution state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import ExecutionContext


class ExecutionRepository(Protocol):
    """Protocol for execution state persistence backends."""

    async def save(self, context: ExecutionContext) -> None:
        """Insert or replace the stored state of ``context.execution_id``."""

    async def load(self, execution_id: str) -> ExecutionContext | None:
        """Retrieve the last saved state of an execution."""

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionContext]:
        """Return saved executions, newest first, optionally for one workflow."""
