"""
TableMigrator - migrates one table from a source to a target data source.

For a single (database, table) pair the migrator:
    1. Ensures the target database exists (on every table)
    2. Reconciles the target table: create when absent and allowed,
       drop and recreate when truncation is requested
    3. Stops after the structure when only the schema is synced
    4. Counts source rows
    5. Copies rows page by page with offset pagination
    6. Retries transient batch write failures after reconnecting the target
    7. Reports a per-table result

A table's failure is captured in its TableMigrationResult and never
raised; only unexpected (non data source) exceptions propagate.

Pagination:
    Pages are requested with LIMIT/OFFSET and no ORDER BY. The scan
    assumes the source ordering is stable; concurrent writes to the
    source table can cause rows to be skipped or copied twice. The row
    count taken before the copy bounds the scan, so N rows at batch size
    B take ceil(N/B) reads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from batchmigrate.datasources.interface import DataSource
from batchmigrate.exceptions import DataSourceError, TableNotFoundError, TransientWriteError
from batchmigrate.models import (
    MigrationSettings,
    MigrationTask,
    ReadOptions,
    Row,
    TableMigrationResult,
    TableSchema,
    WriteOptions,
)
from batchmigrate.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_NAME,
    ATTR_OFFSET,
    ATTR_RETRY_COUNT,
    ATTR_TABLE_NAME,
    ATTR_TASK_ID,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

MISSING_TABLE_MESSAGE = "target table missing and createSchema disabled"
CANCELLED_MESSAGE = "migration cancelled"

BatchCallback = Callable[[TableMigrationResult], Awaitable[None]]


class TableMigrator:
    """
    Copies the structure and rows of one table.

    Example:
        >>> migrator = TableMigrator(MigrationSettings())
        >>> result = await migrator.migrate_table(task, source, target, "shop", "orders")
        >>> result.success, result.migrated_rows
        (True, 2500)
    """

    def __init__(
        self,
        settings: MigrationSettings | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the migrator.

        Args:
            settings: Engine settings (default batch size, retry limit)
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._settings = settings or MigrationSettings()

    def batch_size_for(self, task: MigrationTask) -> int:
        return task.batch_size if task.batch_size > 0 else self._settings.default_batch_size

    async def migrate_table(
        self,
        task: MigrationTask,
        source: DataSource,
        target: DataSource,
        database: str,
        table: str,
        cancel_event: asyncio.Event | None = None,
        on_batch: BatchCallback | None = None,
    ) -> TableMigrationResult:
        """
        Migrate one table.

        Args:
            task: Task supplying the policy flags and batch size
            source: Connected source data source
            target: Connected target data source
            database: Database holding the table on both sides
            table: Table name
            cancel_event: Checked before every page; when set, the copy
                stops and the table is reported as not successful
            on_batch: Awaited with the running result after every page

        Returns:
            TableMigrationResult; ``success`` is True only when no step
            failed and no row failed
        """
        batch_size = self.batch_size_for(task)
        result = TableMigrationResult(
            database=database,
            table_name=table,
            start_time=datetime.now(UTC),
        )

        with self._tracer.span(
            "batchmigrate.pipeline.migrate_table",
            {
                ATTR_TASK_ID: task.task_id,
                ATTR_DB_NAME: database,
                ATTR_TABLE_NAME: table,
                ATTR_BATCH_SIZE: batch_size,
            },
        ):
            logger.info("Migrating table %s.%s", database, table)
            try:
                error = await self._prepare_target(task, source, target, database, table)
                if error:
                    result.error_message = error
                    return result

                if task.only_sync_schema:
                    result.success = True
                    logger.info("Schema synced for %s.%s (rows skipped)", database, table)
                    return result

                try:
                    result.total_rows = await source.get_row_count(database, table)
                except DataSourceError as e:
                    result.error_message = f"Failed to get row count: {e}"
                    logger.error("Failed to get row count of %s.%s: %s", database, table, e)
                    return result

                await self._copy_rows(
                    task,
                    source,
                    target,
                    database,
                    table,
                    batch_size,
                    result,
                    cancel_event,
                    on_batch,
                )

                result.success = result.failed_rows == 0 and not result.error_message
                if result.success:
                    logger.info(
                        "Table %s.%s migrated: %d rows",
                        database,
                        table,
                        result.migrated_rows,
                    )
                else:
                    logger.error(
                        "Table %s.%s finished with errors: migrated=%d failed=%d error=%s",
                        database,
                        table,
                        result.migrated_rows,
                        result.failed_rows,
                        result.error_message or "-",
                    )
                return result
            finally:
                result.end_time = datetime.now(UTC)

    async def _prepare_target(
        self,
        task: MigrationTask,
        source: DataSource,
        target: DataSource,
        database: str,
        table: str,
    ) -> str:
        """
        Ensure the target database and table are ready.

        Returns:
            An error message, or an empty string when the copy may proceed
        """
        try:
            await target.create_database_if_not_exists(database)
        except DataSourceError as e:
            logger.error("Failed to create target database %s: %s", database, e)
            return f"Failed to create target database: {e}"

        try:
            schema = await source.get_table_schema(database, table)
        except DataSourceError as e:
            logger.error("Failed to get source schema of %s.%s: %s", database, table, e)
            return f"Failed to get source table schema: {e}"

        try:
            await target.get_table_schema(database, table)
            exists = True
        except TableNotFoundError:
            exists = False
        except DataSourceError as e:
            logger.error("Failed to inspect target table %s.%s: %s", database, table, e)
            return f"Failed to inspect target table: {e}"

        if not exists:
            if not task.create_schema:
                logger.error(
                    "Target table %s.%s missing and createSchema disabled", database, table
                )
                return MISSING_TABLE_MESSAGE
            try:
                await self._create_target_table(source, target, database, table, schema)
            except DataSourceError as e:
                logger.error("Failed to create target table %s.%s: %s", database, table, e)
                return f"Failed to create target table: {e}"
            logger.info("Created target table %s.%s", database, table)
        elif task.truncate_target:
            try:
                await target.drop_table(database, table)
                await self._create_target_table(source, target, database, table, schema)
            except DataSourceError as e:
                logger.error("Failed to truncate target table %s.%s: %s", database, table, e)
                return f"Failed to truncate target table: {e}"
            logger.info("Recreated target table %s.%s", database, table)

        return ""

    async def _create_target_table(
        self,
        source: DataSource,
        target: DataSource,
        database: str,
        table: str,
        schema: TableSchema,
    ) -> None:
        if source.supports_native_ddl_copy(target):
            ddl = await source.get_create_table_ddl(database, table)
            await target.create_table_from_ddl(database, table, ddl)
        else:
            await target.create_table(database, schema)

    async def _copy_rows(
        self,
        task: MigrationTask,
        source: DataSource,
        target: DataSource,
        database: str,
        table: str,
        batch_size: int,
        result: TableMigrationResult,
        cancel_event: asyncio.Event | None,
        on_batch: BatchCallback | None,
    ) -> None:
        offset = 0
        write_options = WriteOptions(batch_size=batch_size, truncate=task.truncate_target)

        while offset < result.total_rows:
            if cancel_event is not None and cancel_event.is_set():
                result.error_message = CANCELLED_MESSAGE
                logger.info("Copy of %s.%s cancelled at offset %d", database, table, offset)
                return

            with self._tracer.span(
                "batchmigrate.pipeline.copy_batch",
                {ATTR_TABLE_NAME: table, ATTR_OFFSET: offset, ATTR_BATCH_SIZE: batch_size},
            ):
                try:
                    rows = await source.read_rows(
                        database, table, ReadOptions(offset=offset, limit=batch_size)
                    )
                except DataSourceError as e:
                    result.error_message = f"Failed to read rows: {e}"
                    logger.error(
                        "Failed to read %s.%s at offset %d: %s", database, table, offset, e
                    )
                    return

                if not rows:
                    return

                if await self._write_with_retry(target, database, table, rows, write_options):
                    result.migrated_rows += len(rows)
                else:
                    result.failed_rows += len(rows)

            if on_batch is not None:
                await on_batch(result)

            if len(rows) < batch_size:
                return
            offset += len(rows)

    async def _write_with_retry(
        self,
        target: DataSource,
        database: str,
        table: str,
        rows: list[Row],
        options: WriteOptions,
    ) -> bool:
        """
        Write one page, reconnecting the target on transient failures.

        Returns:
            True when the page was written, False when its rows failed
        """
        retries = 0
        while True:
            try:
                await target.write_rows(database, table, rows, options)
                return True
            except TransientWriteError as e:
                if retries >= self._settings.write_retry_limit:
                    logger.error(
                        "Batch write to %s.%s failed after %d retries: %s",
                        database,
                        table,
                        retries,
                        e,
                    )
                    return False
                retries += 1
                logger.warning(
                    "Transient write failure on %s.%s, reconnecting (retry %d/%d): %s",
                    database,
                    table,
                    retries,
                    self._settings.write_retry_limit,
                    e,
                )
                if not await self._reconnect(target, retries):
                    return False
            except DataSourceError as e:
                logger.error(
                    "Batch write to %s.%s failed (%d rows): %s", database, table, len(rows), e
                )
                return False

    async def _reconnect(self, target: DataSource, attempt: int) -> bool:
        config = target.config
        if config is None:
            logger.error("Cannot reconnect target: no configuration recorded")
            return False
        with self._tracer.span(
            "batchmigrate.pipeline.reconnect_target", {ATTR_RETRY_COUNT: attempt}
        ):
            try:
                await target.close()
                await target.connect(config)
            except DataSourceError as e:
                logger.error("Failed to reconnect target: %s", e)
                return False
        return True


__all__ = [
    "TableMigrator",
    "MISSING_TABLE_MESSAGE",
    "CANCELLED_MESSAGE",
]
