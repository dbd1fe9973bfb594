"""
MigrationOrchestrator - drives one migration task end to end.

Execution of a task:
    1. Build the source and target data sources through the factory
    2. Connect both (creating a missing target database on the way)
    3. Test both connections
    4. Resolve the tables to migrate
    5. Sum source row counts (best effort)
    6. Migrate tables sequentially, reporting progress at each boundary
    7. Mark the task COMPLETED, even when some tables failed

Task-level FAILED is reserved for pre-flight errors (factory, connect,
ping, table listing) and unexpected exceptions. Cancellation is
cooperative: the cancel event is checked between tables and before every
page, and a cancelled task is never moved to another status.
"""

from __future__ import annotations

import asyncio
import logging

from batchmigrate.datasources.factory import DataSourceFactory
from batchmigrate.datasources.interface import DataSource
from batchmigrate.exceptions import (
    DatabaseNotFoundError,
    DataSourceError,
    TaskNotFoundError,
    TaskStateError,
)
from batchmigrate.models import MigrationSettings, MigrationTask, TaskStatus
from batchmigrate.observability import (
    ATTR_TASK_ID,
    ATTR_TASK_TABLE_COUNT,
    Tracer,
    create_tracer,
)
from batchmigrate.pipeline import TableMigrator
from batchmigrate.progress import ProgressReporter
from batchmigrate.registry import TaskRegistry

logger = logging.getLogger(__name__)


class PreflightError(Exception):
    """Internal signal carrying the task-level failure message of a pre-flight step."""


def split_table_name(name: str) -> tuple[str, str] | None:
    """
    Split ``database.table`` into its parts.

    Returns:
        (database, table), or None when either part is missing
    """
    database, sep, table = name.partition(".")
    database, table = database.strip(), table.strip()
    if not sep or not database or not table:
        return None
    return database, table


class MigrationOrchestrator:
    """
    Runs migration tasks registered in a TaskRegistry.

    The orchestrator never raises out of ``execute`` for task-level
    problems; outcomes are recorded on the task.

    Example:
        >>> orchestrator = MigrationOrchestrator(registry, DataSourceFactory())
        >>> await orchestrator.execute(task_id, asyncio.Event())
    """

    def __init__(
        self,
        registry: TaskRegistry,
        factory: DataSourceFactory,
        settings: MigrationSettings | None = None,
        *,
        migrator: TableMigrator | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            registry: Registry owning the tasks
            factory: Data source factory
            settings: Engine settings
            migrator: Table migrator (created from settings if omitted)
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._registry = registry
        self._factory = factory
        self._settings = settings or MigrationSettings()
        self._migrator = migrator or TableMigrator(
            self._settings,
            tracer=self._tracer,
            enable_tracing=self._enable_tracing,
        )

    async def execute(self, task_id: str, cancel_event: asyncio.Event | None = None) -> None:
        """
        Run a task that the caller already moved to RUNNING.

        Args:
            task_id: Task to run
            cancel_event: Cooperative cancellation signal
        """
        cancel_event = cancel_event or asyncio.Event()
        sources: list[DataSource] = []

        with self._tracer.span("batchmigrate.orchestrator.execute", {ATTR_TASK_ID: task_id}):
            try:
                await self._run(task_id, cancel_event, sources)
            except PreflightError as e:
                logger.error("Task %s failed: %s", task_id, e)
                await self._finish(task_id, TaskStatus.FAILED, str(e))
            except asyncio.CancelledError:
                logger.info("Execution of task %s interrupted", task_id)
                raise
            except Exception as e:
                logger.exception("Task %s failed unexpectedly", task_id)
                await self._finish(task_id, TaskStatus.FAILED, f"Task failed unexpectedly: {e}")
            finally:
                for source in sources:
                    await self._close_quietly(source)

    async def _run(
        self,
        task_id: str,
        cancel_event: asyncio.Event,
        sources: list[DataSource],
    ) -> None:
        task = await self._registry.load(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        source = self._create_data_source(task.source_config.type, "source")
        sources.append(source)
        target = self._create_data_source(task.target_config.type, "target")
        sources.append(target)

        await self._connect_source(source, task)
        await self._connect_target(target, task)

        try:
            await source.test_connection()
        except DataSourceError as e:
            raise PreflightError(f"Source connection test failed: {e}") from e
        try:
            await target.test_connection()
        except DataSourceError as e:
            raise PreflightError(f"Target connection test failed: {e}") from e

        tables = await self._resolve_tables(task, source)
        reporter = ProgressReporter(self._registry, task_id, len(tables))
        await reporter.set_total_rows(await self._count_rows(source, tables))

        with self._tracer.span(
            "batchmigrate.orchestrator.migrate_tables",
            {ATTR_TASK_ID: task_id, ATTR_TASK_TABLE_COUNT: len(tables)},
        ):
            for index, (database, table) in enumerate(tables):
                if cancel_event.is_set():
                    logger.info("Task %s cancelled before %s.%s", task_id, database, table)
                    return

                await reporter.table_started(index, f"{database}.{table}")
                result = await self._migrator.migrate_table(
                    task,
                    source,
                    target,
                    database,
                    table,
                    cancel_event=cancel_event,
                    on_batch=reporter.batch_written,
                )
                await reporter.table_finished(result)

        if cancel_event.is_set():
            logger.info("Task %s cancelled", task_id)
            return

        await self._finish(task_id, TaskStatus.COMPLETED)
        logger.info(
            "Task %s completed: %d tables, migrated=%d failed=%d",
            task_id,
            len(tables),
            reporter.migrated_rows,
            reporter.failed_rows,
        )

    def _create_data_source(self, type_tag: str, role: str) -> DataSource:
        try:
            return self._factory.create(type_tag)
        except DataSourceError as e:
            raise PreflightError(f"Failed to create {role} data source: {e}") from e

    async def _connect_source(self, source: DataSource, task: MigrationTask) -> None:
        try:
            await source.connect(task.source_config)
        except DataSourceError as e:
            raise PreflightError(f"Failed to connect source: {e}") from e

    async def _connect_target(self, target: DataSource, task: MigrationTask) -> None:
        config = task.target_config
        try:
            await target.connect(config)
            return
        except DatabaseNotFoundError as e:
            logger.info("Target database %s missing, creating it", e.database)
        except DataSourceError as e:
            raise PreflightError(f"Failed to connect target: {e}") from e

        try:
            await target.create_database_if_not_exists(config.database)
        except DataSourceError as e:
            raise PreflightError(f"Failed to connect target: {e}") from e
        try:
            await target.connect(config)
        except DataSourceError as e:
            raise PreflightError(f"Failed to connect target after create db: {e}") from e

    async def _resolve_tables(
        self,
        task: MigrationTask,
        source: DataSource,
    ) -> list[tuple[str, str]]:
        """
        Resolve the (database, table) pairs of a task.

        An explicit table list is used as given; otherwise every table of
        the first declared database is migrated. Malformed names are
        skipped.
        """
        if task.tables:
            names = list(task.tables)
        else:
            database = task.databases[0]
            try:
                names = [f"{database}.{t}" for t in await source.list_tables(database)]
            except DataSourceError as e:
                raise PreflightError(f"Failed to list tables: {e}") from e

        resolved: list[tuple[str, str]] = []
        for name in names:
            parts = split_table_name(name)
            if parts is None:
                logger.error("Skipping malformed table name %r (expected database.table)", name)
                continue
            resolved.append(parts)
        return resolved

    async def _count_rows(self, source: DataSource, tables: list[tuple[str, str]]) -> int:
        total = 0
        for database, table in tables:
            try:
                total += await source.get_row_count(database, table)
            except DataSourceError as e:
                logger.warning("Failed to count rows of %s.%s: %s", database, table, e)
        return total

    async def _finish(
        self,
        task_id: str,
        status: TaskStatus,
        error_message: str | None = None,
    ) -> None:
        try:
            await self._registry.transition(task_id, status, error_message=error_message)
        except TaskStateError as e:
            # Cancelled while running; the terminal status stands
            logger.info(
                "Task %s not moved to %s: already %s",
                task_id,
                status.value,
                e.current_status.value,
            )
        except TaskNotFoundError:
            logger.error("Task %s disappeared before it could be marked %s", task_id, status.value)

    @staticmethod
    async def _close_quietly(source: DataSource) -> None:
        try:
            await source.close()
        except Exception:
            logger.warning("Failed to close %s data source", source.type_name, exc_info=True)


__all__ = [
    "MigrationOrchestrator",
    "split_table_name",
]
