"""
MigrationTaskRepository - durable mirror of migration tasks.

The task registry owns the canonical in-memory task while it is active;
every registry mutation is written here afterwards. Once a task leaves
memory (eviction or process restart) this store is the source of truth.

Implementations:
    - SQLAlchemyMigrationTaskRepository: SQL storage via SQLAlchemy async
      (sqlite+aiosqlite or mysql+aiomysql), table ``migration_tasks``
    - InMemoryMigrationTaskRepository: dictionary storage for tests

Usage:
    >>> from sqlalchemy.ext.asyncio import create_async_engine
    >>> engine = create_async_engine("sqlite+aiosqlite:///tasks.db")
    >>> repo = SQLAlchemyMigrationTaskRepository(engine)
    >>> await repo.initialize()
    >>> await repo.create(task)
    >>> tasks = await repo.list_all()  # newest first
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from batchmigrate.migrations import get_statements
from batchmigrate.models import (
    DataSourceConfig,
    MigrationTask,
    TableMigrationResult,
    TaskStatus,
)
from batchmigrate.observability import Tracer, create_tracer
from batchmigrate.observability.attributes import ATTR_DB_SYSTEM, ATTR_TASK_ID
from batchmigrate.repositories._connection import execute_with_connection

_COLUMNS = """
    task_id, source_config, target_config, `databases`, `tables`,
    status, progress, total_rows, migrated_rows, failed_rows,
    current_table, batch_size, create_schema, truncate_target,
    only_sync_schema, start_time, end_time, error_message,
    table_results, created_at, updated_at
"""


@runtime_checkable
class MigrationTaskRepository(Protocol):
    """
    Protocol for migration task persistence.

    Records are never deleted by the engine.
    """

    async def create(self, task: MigrationTask) -> None:
        """
        Persist a new task.

        Args:
            task: Task to store (normally in PENDING)
        """
        ...

    async def get(self, task_id: str) -> MigrationTask | None:
        """
        Get a task by ID.

        Returns:
            The stored task or None if not found
        """
        ...

    async def save(self, task: MigrationTask) -> None:
        """
        Overwrite the mutable state of an existing task.

        Args:
            task: Task snapshot to store
        """
        ...

    async def list_all(self) -> list[MigrationTask]:
        """
        List every stored task.

        Returns:
            Tasks ordered newest first by creation time
        """
        ...


def _results_to_json(results: list[TableMigrationResult]) -> str:
    return json.dumps([r.to_dict() for r in results])


def _results_from_json(data: str | None) -> list[TableMigrationResult]:
    if not data:
        return []
    return [TableMigrationResult.from_dict(item) for item in json.loads(data)]


class SQLAlchemyMigrationTaskRepository:
    """
    SQL implementation of MigrationTaskRepository.

    Endpoint configs are stored as opaque JSON text; the database list,
    the table list and the per-table results as JSON arrays.

    Timestamps are stored as ISO-8601 text on SQLite and as naive UTC
    DATETIME values elsewhere; both are returned as aware UTC datetimes.

    Example:
        >>> repo = SQLAlchemyMigrationTaskRepository(engine)
        >>> await repo.create(task)
        >>> stored = await repo.get(task.task_id)
        >>> stored.status
        <TaskStatus.PENDING: 'pending'>
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the repository.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        engine = conn if isinstance(conn, AsyncEngine) else conn.engine
        self._dialect = engine.dialect.name

    @property
    def dialect(self) -> str:
        return self._dialect

    async def initialize(self) -> None:
        """Create the migration_tasks table if it does not exist."""
        backend = "sqlite" if self._dialect == "sqlite" else "mysql"
        async with execute_with_connection(self._conn) as conn:
            for statement in get_statements(backend):
                await conn.execute(text(statement))

    def _dump_time(self, value: datetime | None) -> Any:
        if value is None:
            return None
        value = value.astimezone(UTC)
        if self._dialect == "sqlite":
            return value.isoformat(timespec="microseconds")
        return value.replace(tzinfo=None)

    @staticmethod
    def _load_time(value: Any) -> datetime | None:
        if value is None or value == "":
            return None
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    def _params(self, task: MigrationTask) -> dict[str, Any]:
        return {
            "task_id": task.task_id,
            "source_config": task.source_config.to_json(),
            "target_config": task.target_config.to_json(),
            "databases": json.dumps(task.databases),
            "tables": json.dumps(task.tables),
            "status": task.status.value,
            "progress": task.progress,
            "total_rows": task.total_rows,
            "migrated_rows": task.migrated_rows,
            "failed_rows": task.failed_rows,
            "current_table": task.current_table,
            "batch_size": task.batch_size,
            "create_schema": int(task.create_schema),
            "truncate_target": int(task.truncate_target),
            "only_sync_schema": int(task.only_sync_schema),
            "start_time": self._dump_time(task.start_time),
            "end_time": self._dump_time(task.end_time),
            "error_message": task.error_message,
            "table_results": _results_to_json(task.table_results),
            "created_at": self._dump_time(task.created_at),
            "updated_at": self._dump_time(task.updated_at),
        }

    def _row_to_task(self, row: Any) -> MigrationTask:
        return MigrationTask(
            task_id=row["task_id"],
            source_config=DataSourceConfig.from_json(row["source_config"]),
            target_config=DataSourceConfig.from_json(row["target_config"]),
            databases=json.loads(row["databases"] or "[]"),
            tables=json.loads(row["tables"] or "[]"),
            batch_size=int(row["batch_size"]),
            create_schema=bool(row["create_schema"]),
            truncate_target=bool(row["truncate_target"]),
            only_sync_schema=bool(row["only_sync_schema"]),
            status=TaskStatus(row["status"]),
            progress=float(row["progress"]),
            total_rows=int(row["total_rows"]),
            migrated_rows=int(row["migrated_rows"]),
            failed_rows=int(row["failed_rows"]),
            current_table=row["current_table"] or "",
            start_time=self._load_time(row["start_time"]),
            end_time=self._load_time(row["end_time"]),
            error_message=row["error_message"] or "",
            table_results=_results_from_json(row["table_results"]),
            created_at=self._load_time(row["created_at"]) or datetime.now(UTC),
            updated_at=self._load_time(row["updated_at"]) or datetime.now(UTC),
        )

    async def create(self, task: MigrationTask) -> None:
        with self._tracer.span(
            "batchmigrate.task_repo.create",
            {ATTR_TASK_ID: task.task_id, ATTR_DB_SYSTEM: self._dialect},
        ):
            query = text(f"""
                INSERT INTO migration_tasks ({_COLUMNS})
                VALUES (
                    :task_id, :source_config, :target_config, :databases, :tables,
                    :status, :progress, :total_rows, :migrated_rows, :failed_rows,
                    :current_table, :batch_size, :create_schema, :truncate_target,
                    :only_sync_schema, :start_time, :end_time, :error_message,
                    :table_results, :created_at, :updated_at
                )
            """)  # nosec B608
            async with execute_with_connection(self._conn) as conn:
                await conn.execute(query, self._params(task))

    async def get(self, task_id: str) -> MigrationTask | None:
        with self._tracer.span(
            "batchmigrate.task_repo.get",
            {ATTR_TASK_ID: task_id, ATTR_DB_SYSTEM: self._dialect},
        ):
            query = text(f"""
                SELECT {_COLUMNS}
                FROM migration_tasks
                WHERE task_id = :task_id
            """)  # nosec B608
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"task_id": task_id})
                row = result.mappings().fetchone()

            if row is None:
                return None
            return self._row_to_task(row)

    async def save(self, task: MigrationTask) -> None:
        with self._tracer.span(
            "batchmigrate.task_repo.save",
            {ATTR_TASK_ID: task.task_id, ATTR_DB_SYSTEM: self._dialect},
        ):
            query = text("""
                UPDATE migration_tasks
                SET status = :status,
                    progress = :progress,
                    total_rows = :total_rows,
                    migrated_rows = :migrated_rows,
                    failed_rows = :failed_rows,
                    current_table = :current_table,
                    start_time = :start_time,
                    end_time = :end_time,
                    error_message = :error_message,
                    table_results = :table_results,
                    updated_at = :updated_at
                WHERE task_id = :task_id
            """)
            params = self._params(task)
            params["updated_at"] = self._dump_time(datetime.now(UTC))
            async with execute_with_connection(self._conn) as conn:
                await conn.execute(query, params)

    async def list_all(self) -> list[MigrationTask]:
        with self._tracer.span(
            "batchmigrate.task_repo.list_all",
            {ATTR_DB_SYSTEM: self._dialect},
        ):
            query = text(f"""
                SELECT {_COLUMNS}
                FROM migration_tasks
                ORDER BY created_at DESC, id DESC
            """)  # nosec B608
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query)
                rows = result.mappings().fetchall()

            return [self._row_to_task(row) for row in rows]


class InMemoryMigrationTaskRepository:
    """
    In-memory implementation of MigrationTaskRepository for testing.

    Stores independent copies, so later mutations of a caller's task
    object never leak into storage.
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        enable_tracing: bool = False,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._tasks: dict[str, MigrationTask] = {}
        self._lock: asyncio.Lock = asyncio.Lock()

    async def create(self, task: MigrationTask) -> None:
        async with self._lock:
            if task.task_id in self._tasks:
                raise ValueError(f"migration task already exists: {task.task_id}")
            self._tasks[task.task_id] = task.snapshot()

    async def get(self, task_id: str) -> MigrationTask | None:
        async with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task else None

    async def save(self, task: MigrationTask) -> None:
        async with self._lock:
            if task.task_id not in self._tasks:
                return
            stored = task.snapshot()
            stored.updated_at = datetime.now(UTC)
            self._tasks[task.task_id] = stored

    async def list_all(self) -> list[MigrationTask]:
        async with self._lock:
            tasks = [t.snapshot() for t in self._tasks.values()]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def clear(self) -> None:
        """Remove all stored tasks. Useful for test cleanup."""
        async with self._lock:
            self._tasks.clear()


__all__ = [
    "MigrationTaskRepository",
    "SQLAlchemyMigrationTaskRepository",
    "InMemoryMigrationTaskRepository",
]
