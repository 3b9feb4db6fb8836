"""Persistence layer for flowpilot executions."""

from __future__ import annotations

import os
from typing import Optional

from ..config import FlowpilotConfig, load_config
from .inmemory import InMemoryExecutionRepository
from .postgres import PostgresExecutionRepository
from .repository import ExecutionRepository
from .sqlite import SQLiteExecutionRepository

_repository_instance: ExecutionRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[FlowpilotConfig] = None
) -> ExecutionRepository:
    """Factory function to obtain an execution repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``FLOWPILOT_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("FLOWPILOT_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or getattr(config, "database_url", None)
    )

    if not database_url:
        _repository_instance = InMemoryExecutionRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteExecutionRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        _repository_instance = PostgresExecutionRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "ExecutionRepository",
    "InMemoryExecutionRepository",
    "PostgresExecutionRepository",
    "SQLiteExecutionRepository",
    "get_repository",
]
