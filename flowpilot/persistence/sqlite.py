"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Optional

from ..contracts import ExecutionContext
from .repository import ExecutionRepository


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                context TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    # ------------------------------------------------------------------
    # Repository API
    async def save(self, context: ExecutionContext) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO executions (execution_id, workflow_id, status, started_at, context)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(execution_id) DO UPDATE SET
                status = excluded.status,
                context = excluded.context
            """,
            context.execution_id,
            context.workflow_id,
            context.status.value,
            context.started_at.isoformat(),
            context.to_json(),
        )

    async def load(self, execution_id: str) -> ExecutionContext | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT context FROM executions WHERE execution_id = ?",
            execution_id,
        )
        if not row:
            return None
        return ExecutionContext.from_json(row["context"])

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionContext]:
        if workflow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT context FROM executions ORDER BY started_at DESC",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT context FROM executions WHERE workflow_id = ? ORDER BY started_at DESC",
                workflow_id,
            )
        return [ExecutionContext.from_json(r["context"]) for r in rows]

    def close(self) -> None:
        self._conn.close()
