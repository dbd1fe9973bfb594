"""
ProgressReporter - turns in-flight counters into queryable task state.

Percent progress moves at table boundaries (``index / table_count``);
row counters move after every batch. All updates go through the task
registry, which ignores them once a task is no longer running.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from batchmigrate.models import MigrationProgress, MigrationTask, TableMigrationResult, TaskStatus
from batchmigrate.registry import TaskRegistry

logger = logging.getLogger(__name__)


def compute_progress(completed_tables: int, table_count: int) -> float:
    """Percentage of tables processed, clamped to [0, 100]."""
    if table_count <= 0:
        return 0.0
    return min(100.0, max(0.0, completed_tables / table_count * 100.0))


def estimate_remaining_seconds(task: MigrationTask, now: datetime | None = None) -> float | None:
    """
    Project the remaining run time from the observed row rate.

    Returns:
        0.0 for completed tasks, None when no rate is known yet or the
        task is not running
    """
    if task.status == TaskStatus.COMPLETED:
        return 0.0
    if task.status != TaskStatus.RUNNING or task.start_time is None:
        return None

    processed = task.migrated_rows + task.failed_rows
    elapsed = ((now or datetime.now(UTC)) - task.start_time).total_seconds()
    if processed <= 0 or elapsed <= 0:
        return None
    rate = processed / elapsed
    remaining = max(0, task.total_rows - processed)
    return remaining / rate


def to_progress(task: MigrationTask) -> MigrationProgress:
    """Build the queryable progress snapshot of a task."""
    return MigrationProgress(
        task_id=task.task_id,
        status=task.status,
        progress=task.progress,
        total_rows=task.total_rows,
        migrated_rows=task.migrated_rows,
        failed_rows=task.failed_rows,
        current_table=task.current_table,
        start_time=task.start_time,
        end_time=task.end_time,
        error_message=task.error_message,
        estimated_remaining_seconds=estimate_remaining_seconds(task),
    )


class ProgressReporter:
    """
    Pushes the counters of one running task to the registry.

    Example:
        >>> reporter = ProgressReporter(registry, task_id, table_count=4)
        >>> await reporter.table_started(0, "shop.orders")
        >>> await reporter.batch_written(result)
        >>> await reporter.table_finished(result)
    """

    def __init__(self, registry: TaskRegistry, task_id: str, table_count: int) -> None:
        self._registry = registry
        self._task_id = task_id
        self._table_count = table_count
        self._migrated_rows = 0
        self._failed_rows = 0

    @property
    def migrated_rows(self) -> int:
        return self._migrated_rows

    @property
    def failed_rows(self) -> int:
        return self._failed_rows

    async def set_total_rows(self, total_rows: int) -> None:
        await self._registry.update_progress(self._task_id, total_rows=total_rows)

    async def table_started(self, index: int, qualified_name: str) -> None:
        await self._registry.update_progress(
            self._task_id,
            progress=compute_progress(index, self._table_count),
            current_table=qualified_name,
        )

    async def batch_written(self, result: TableMigrationResult) -> None:
        """Publish cumulative counters including the table in flight."""
        await self._registry.update_progress(
            self._task_id,
            migrated_rows=self._migrated_rows + result.migrated_rows,
            failed_rows=self._failed_rows + result.failed_rows,
        )

    async def table_finished(self, result: TableMigrationResult) -> None:
        self._migrated_rows += result.migrated_rows
        self._failed_rows += result.failed_rows
        await self._registry.record_table_result(self._task_id, result)
        await self._registry.update_progress(
            self._task_id,
            migrated_rows=self._migrated_rows,
            failed_rows=self._failed_rows,
        )
        logger.debug(
            "Task %s: %s done (migrated=%d failed=%d)",
            self._task_id,
            result.qualified_name,
            self._migrated_rows,
            self._failed_rows,
        )
