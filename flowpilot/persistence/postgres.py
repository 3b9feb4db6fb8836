"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from typing import Optional

import asyncpg

from ..contracts import ExecutionContext
from .repository import ExecutionRepository


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                context JSONB NOT NULL
            )
            """
        )

    @staticmethod
    def _decode(value: str | dict) -> ExecutionContext:
        # asyncpg returns JSONB as text unless a codec is registered
        if isinstance(value, str):
            return ExecutionContext.from_json(value)
        return ExecutionContext.model_validate(value)

    # ------------------------------------------------------------------
    async def save(self, context: ExecutionContext) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO executions (execution_id, workflow_id, status, started_at, context)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (execution_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    context = EXCLUDED.context
                """,
                context.execution_id,
                context.workflow_id,
                context.status.value,
                context.started_at,
                json.dumps(context.model_dump(mode="json")),
            )
        finally:
            await conn.close()

    async def load(self, execution_id: str) -> ExecutionContext | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT context FROM executions WHERE execution_id = $1",
                execution_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._decode(row["context"])

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionContext]:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch(
                    "SELECT context FROM executions ORDER BY started_at DESC"
                )
            else:
                rows = await conn.fetch(
                    "SELECT context FROM executions WHERE workflow_id = $1 ORDER BY started_at DESC",
                    workflow_id,
                )
        finally:
            await conn.close()
        return [self._decode(r["context"]) for r in rows]
