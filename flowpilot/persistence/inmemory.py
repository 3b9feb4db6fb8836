"""In-memory implementation of the execution repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..contracts import ExecutionContext
from .repository import ExecutionRepository


class InMemoryExecutionRepository(ExecutionRepository):
    """Store execution state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, ExecutionContext] = {}

    async def save(self, context: ExecutionContext) -> None:
        self._executions[context.execution_id] = context.model_copy(deep=True)

    async def load(self, execution_id: str) -> ExecutionContext | None:
        stored = self._executions.get(execution_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionContext]:
        items = [
            c.model_copy(deep=True)
            for c in self._executions.values()
            if workflow_id is None or c.workflow_id == workflow_id
        ]
        return sorted(items, key=lambda c: c.started_at, reverse=True)
