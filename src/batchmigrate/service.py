"""
MigrationService - the external surface of the migration engine.

Lifecycle operations (create, start, cancel, progress, listing) raise
configuration and lifecycle errors synchronously. Errors during a
task's execution are recorded on the task and read back through
``get_progress``.

Running work:
    ``start_task`` spawns one asyncio task per migration and returns
    immediately. Each running migration is tracked as a TaskHandle that
    pairs the asyncio task with its cancellation event; ``cancel_task``
    sets the event so the execution unit stops at its next check.

Usage:
    >>> service = MigrationService(InMemoryMigrationTaskRepository())
    >>> task = await service.create_task(request)
    >>> await service.start_task(task.task_id)
    >>> await service.wait_for_task(task.task_id)
    >>> progress = await service.get_progress(task.task_id)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass

from batchmigrate.datasources.factory import DataSourceFactory
from batchmigrate.datasources.interface import DataSource
from batchmigrate.exceptions import InvalidConfigError, TaskNotFoundError
from batchmigrate.models import (
    CompareResult,
    DataSourceConfig,
    MigrationProgress,
    MigrationRequest,
    MigrationSettings,
    MigrationSummary,
    MigrationTask,
    TableCompareResult,
    TaskStatus,
)
from batchmigrate.observability import (
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_TASK_ID,
    Tracer,
    create_tracer,
)
from batchmigrate.orchestrator import MigrationOrchestrator
from batchmigrate.progress import to_progress
from batchmigrate.registry import TaskRegistry
from batchmigrate.repositories.task import MigrationTaskRepository

logger = logging.getLogger(__name__)


@dataclass
class TaskHandle:
    """A running migration: its asyncio task and its cancellation event."""

    task: asyncio.Task[None]
    cancel_event: asyncio.Event

    def done(self) -> bool:
        return self.task.done()


class MigrationService:
    """
    Creates, runs, cancels and reports on migration tasks.

    Example:
        >>> service = MigrationService(
        ...     SQLAlchemyMigrationTaskRepository(engine),
        ...     settings=MigrationSettings(default_batch_size=500),
        ... )
        >>> task = await service.create_task(MigrationRequest(
        ...     source_config=DataSourceConfig(type="mysql", host="db1", port=3306),
        ...     target_config=DataSourceConfig(type="mysql", host="db2", port=3306),
        ...     database="shop",
        ...     create_schema=True,
        ... ))
        >>> await service.start_task(task.task_id)
    """

    def __init__(
        self,
        repository: MigrationTaskRepository,
        *,
        settings: MigrationSettings | None = None,
        factory: DataSourceFactory | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool | None = None,
    ) -> None:
        """
        Initialize the service.

        Args:
            repository: Durable task storage
            settings: Engine settings
            factory: Data source factory (built from settings if omitted)
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing;
                defaults to ``settings.enable_tracing``
        """
        self._settings = settings or MigrationSettings()
        if enable_tracing is None:
            enable_tracing = self._settings.enable_tracing
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

        self._factory = factory or DataSourceFactory(
            self._settings,
            tracer=tracer,
            enable_tracing=self._enable_tracing,
        )
        self._registry = TaskRegistry(
            repository,
            retain_finished=self._settings.retain_finished_tasks,
            tracer=tracer,
            enable_tracing=self._enable_tracing,
        )
        self._orchestrator = MigrationOrchestrator(
            self._registry,
            self._factory,
            self._settings,
            tracer=tracer,
            enable_tracing=self._enable_tracing,
        )
        self._handles: dict[str, TaskHandle] = {}

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    @property
    def factory(self) -> DataSourceFactory:
        return self._factory

    # =========================================================================
    # Task lifecycle
    # =========================================================================

    async def create_task(self, request: MigrationRequest) -> MigrationTask:
        """
        Validate a request and register a new PENDING task.

        Raises:
            InvalidConfigError: If the source type, target type or
                database list is empty
        """
        if not request.source_config.type:
            raise InvalidConfigError("source type is required", field="source_config.type")
        if not request.target_config.type:
            raise InvalidConfigError("target type is required", field="target_config.type")
        databases = request.database_names()
        if not databases:
            raise InvalidConfigError("at least one database is required", field="database")

        batch_size = request.batch_size
        if batch_size <= 0:
            batch_size = self._settings.default_batch_size

        task = MigrationTask(
            task_id=str(uuid.uuid4()),
            source_config=request.source_config,
            target_config=request.target_config,
            databases=databases,
            tables=list(request.tables),
            batch_size=batch_size,
            create_schema=request.create_schema,
            truncate_target=request.truncate_target,
            only_sync_schema=request.only_sync_schema,
        )

        with self._tracer.span("batchmigrate.service.create_task", {ATTR_TASK_ID: task.task_id}):
            registered = await self._registry.register(task)

        logger.info(
            "Created migration task %s: %s -> %s, databases=%s, tables=%d",
            task.task_id,
            request.source_config.type,
            request.target_config.type,
            databases,
            len(task.tables),
        )
        return registered

    async def start_task(self, task_id: str) -> MigrationTask:
        """
        Move a task to RUNNING and run it in the background.

        Returns immediately with the RUNNING snapshot.

        Raises:
            TaskNotFoundError: If the task is unknown
            TaskRunningError: If the task is already running
            TaskCompletedError: If the task already completed
            TaskStateError: If the task failed or was cancelled
        """
        with self._tracer.span("batchmigrate.service.start_task", {ATTR_TASK_ID: task_id}):
            snapshot = await self._registry.transition(task_id, TaskStatus.RUNNING)

            cancel_event = asyncio.Event()
            task = asyncio.create_task(
                self._run(task_id, cancel_event),
                name=f"migration_{task_id}",
            )
            self._handles[task_id] = TaskHandle(task=task, cancel_event=cancel_event)
            logger.info("Started migration task %s", task_id)
            return snapshot

    async def _run(self, task_id: str, cancel_event: asyncio.Event) -> None:
        try:
            await self._orchestrator.execute(task_id, cancel_event)
        finally:
            self._handles.pop(task_id, None)

    async def cancel_task(self, task_id: str) -> MigrationTask:
        """
        Cancel a PENDING or RUNNING task.

        The status is set first; a running execution unit is then
        signalled and stops at its next table or page boundary.

        Raises:
            TaskNotFoundError: If the task is unknown
            TaskStateError: If the task is already finished
        """
        with self._tracer.span("batchmigrate.service.cancel_task", {ATTR_TASK_ID: task_id}):
            snapshot = await self._registry.transition(task_id, TaskStatus.CANCELLED)
            handle = self._handles.get(task_id)
            if handle is not None:
                handle.cancel_event.set()
            logger.info("Cancelled migration task %s", task_id)
            return snapshot

    async def get_task(self, task_id: str) -> MigrationTask:
        """
        Snapshot of a task from memory or storage.

        Raises:
            TaskNotFoundError: If the task is unknown
        """
        task = await self._registry.load(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def get_progress(self, task_id: str) -> MigrationProgress:
        """
        Progress of a task, preferring the in-memory state.

        Raises:
            TaskNotFoundError: If the task is unknown
        """
        return to_progress(await self.get_task(task_id))

    async def get_summary(self, task_id: str) -> MigrationSummary:
        """
        Per-table outcome of a task.

        Raises:
            TaskNotFoundError: If the task is unknown
        """
        return MigrationSummary.from_task(await self.get_task(task_id))

    async def list_tasks(self) -> list[MigrationTask]:
        """All tasks, newest first."""
        return await self._registry.list_all()

    async def wait_for_task(self, task_id: str, timeout: float | None = None) -> MigrationTask:
        """
        Wait for the background execution of a task to end.

        Returns immediately when the task is not running in this process.

        Raises:
            TaskNotFoundError: If the task is unknown
            asyncio.TimeoutError: If the timeout expires first
        """
        handle = self._handles.get(task_id)
        if handle is not None:
            await asyncio.wait_for(asyncio.shield(handle.task), timeout)
        return await self.get_task(task_id)

    def is_running(self, task_id: str) -> bool:
        handle = self._handles.get(task_id)
        return handle is not None and not handle.done()

    async def close(self, timeout: float = 5.0) -> None:
        """
        Stop all running work.

        Signals every running task, waits up to ``timeout`` seconds for
        them to stop, then cancels the stragglers.
        """
        handles = list(self._handles.values())
        if not handles:
            return
        for handle in handles:
            handle.cancel_event.set()

        _, pending = await asyncio.wait([h.task for h in handles], timeout=timeout)
        for task in pending:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._handles.clear()

    # =========================================================================
    # Stateless probes
    # =========================================================================

    @contextlib.asynccontextmanager
    async def _open(self, config: DataSourceConfig) -> AsyncIterator[DataSource]:
        source = self._factory.create(config.type)
        try:
            await source.connect(config)
            yield source
        finally:
            await source.close()

    async def test_connection(self, config: DataSourceConfig) -> None:
        """
        Connect and ping a data source.

        Raises:
            UnsupportedDataSourceError: If the type has no implementation
            ConnectionFailedError: If the connection or ping fails
        """
        with self._tracer.span(
            "batchmigrate.service.test_connection",
            {ATTR_DB_SYSTEM: config.type, ATTR_DB_NAME: config.database},
        ):
            async with self._open(config) as source:
                await source.test_connection()

    async def list_databases(self, config: DataSourceConfig) -> list[str]:
        async with self._open(config) as source:
            return await source.list_databases()

    async def list_tables(self, config: DataSourceConfig, database: str) -> list[str]:
        async with self._open(config) as source:
            return await source.list_tables(database)

    async def compare(
        self,
        source_config: DataSourceConfig,
        target_config: DataSourceConfig,
        database: str,
        tables: list[str] | None = None,
    ) -> CompareResult:
        """
        Compare table sets and row counts of one database on both sides.

        Read-only. Row counts are reported only for tables that exist on
        that side; tables default to every source table.

        Raises:
            DataSourceError: If either side cannot be opened or listed
        """
        with self._tracer.span(
            "batchmigrate.service.compare",
            {ATTR_DB_NAME: database},
        ):
            async with self._open(source_config) as source, self._open(target_config) as target:
                source_tables = set(await source.list_tables(database))
                target_tables = set(await self._list_tables_or_empty(target, database))

                names = tables if tables else sorted(source_tables)
                results = []
                for name in names:
                    table = name.partition(".")[2] if "." in name else name
                    in_source = table in source_tables
                    in_target = table in target_tables
                    results.append(
                        TableCompareResult(
                            table=table,
                            exists_in_source=in_source,
                            exists_in_target=in_target,
                            row_count_source=(
                                await source.get_row_count(database, table) if in_source else 0
                            ),
                            row_count_target=(
                                await target.get_row_count(database, table) if in_target else 0
                            ),
                        )
                    )

            return CompareResult(
                table_count_equal=len(source_tables) == len(target_tables),
                table_count_source=len(source_tables),
                table_count_target=len(target_tables),
                tables=results,
            )

    @staticmethod
    async def _list_tables_or_empty(source: DataSource, database: str) -> list[str]:
        # A target that has never been migrated to has no database yet
        if database not in await source.list_databases():
            return []
        return await source.list_tables(database)


__all__ = [
    "MigrationService",
    "TaskHandle",
]
