"""
TaskRegistry - authoritative in-memory index of migration tasks.

The registry owns the canonical MigrationTask objects while they are in
memory and exposes them only through lifecycle operations; callers get
snapshots, never the live objects.

Concurrency:
    The map lock is held only for dictionary access and mutation, never
    across I/O. Every mutation is mirrored to the repository afterwards
    under a separate mirror lock, which keeps persisted writes in the
    same order as the in-memory mutations. Mirror failures are logged
    and swallowed so a storage hiccup never fails a running task.

Cancellation safety:
    Progress and table-result updates are applied only while a task is
    RUNNING, and terminal statuses are never left. A task cancelled while
    its execution unit is still running therefore stays cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime

from batchmigrate.exceptions import (
    TaskCompletedError,
    TaskNotFoundError,
    TaskRunningError,
    TaskStateError,
)
from batchmigrate.models import MigrationTask, TableMigrationResult, TaskStatus
from batchmigrate.observability import (
    ATTR_TASK_ID,
    ATTR_TASK_STATUS,
    Tracer,
    create_tracer,
)
from batchmigrate.repositories.task import MigrationTaskRepository

logger = logging.getLogger(__name__)


class TaskRegistry:
    """
    Concurrency-safe registry of migration tasks, mirrored to storage.

    Example:
        >>> registry = TaskRegistry(InMemoryMigrationTaskRepository())
        >>> await registry.register(task)
        >>> await registry.transition(task.task_id, TaskStatus.RUNNING)
        >>> await registry.update_progress(task.task_id, progress=50.0, migrated_rows=10)
        True
    """

    def __init__(
        self,
        repository: MigrationTaskRepository,
        *,
        retain_finished: bool = True,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the registry.

        Args:
            repository: Durable mirror of the tasks
            retain_finished: Keep tasks in memory after they reach a
                terminal status. When False they are evicted and later
                served from the repository.
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._repository = repository
        self._retain_finished = retain_finished
        self._tasks: dict[str, MigrationTask] = {}
        self._lock = asyncio.Lock()
        self._mirror_lock = asyncio.Lock()

    @property
    def repository(self) -> MigrationTaskRepository:
        return self._repository

    async def register(self, task: MigrationTask) -> MigrationTask:
        """
        Persist a new task and add it to the registry.

        The repository write happens first; if it fails, the task is not
        registered and the error propagates to the caller.

        Returns:
            Snapshot of the registered task
        """
        with self._tracer.span(
            "batchmigrate.registry.register",
            {ATTR_TASK_ID: task.task_id, ATTR_TASK_STATUS: task.status.value},
        ):
            await self._repository.create(task)
            async with self._lock:
                self._tasks[task.task_id] = task.snapshot()
                return self._tasks[task.task_id].snapshot()

    async def get(self, task_id: str) -> MigrationTask | None:
        """Snapshot of an in-memory task, or None."""
        async with self._lock:
            task = self._tasks.get(task_id)
            return task.snapshot() if task else None

    async def load(self, task_id: str) -> MigrationTask | None:
        """
        Snapshot of a task from memory, else from the repository.

        A task found only in the repository is rehydrated into memory
        unless it is finished and finished tasks are not retained.
        """
        task = await self.get(task_id)
        if task is not None:
            return task

        stored = await self._repository.get(task_id)
        if stored is None:
            return None
        if stored.status.is_terminal and not self._retain_finished:
            return stored

        async with self._lock:
            # A concurrent caller may have rehydrated it already
            current = self._tasks.setdefault(task_id, stored)
            return current.snapshot()

    async def transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        *,
        error_message: str | None = None,
    ) -> MigrationTask:
        """
        Move a task to a new status.

        RUNNING stamps the start time; terminal statuses stamp the end
        time. COMPLETED also pins progress to 100 and clears the current
        table.

        Returns:
            Snapshot after the transition

        Raises:
            TaskNotFoundError: If the task is unknown
            TaskRunningError: If starting a task that is already running
            TaskCompletedError: If starting a task that already completed
            TaskStateError: For any other illegal transition
        """
        with self._tracer.span(
            "batchmigrate.registry.transition",
            {ATTR_TASK_ID: task_id, ATTR_TASK_STATUS: new_status.value},
        ):
            loaded = await self.load(task_id)
            if loaded is None:
                raise TaskNotFoundError(task_id)

            async with self._lock:
                task = self._tasks.get(task_id)
                if task is None:
                    # Evicted tasks are terminal, so no transition out of them is legal
                    self._check_transition(loaded, new_status)
                    raise TaskNotFoundError(task_id)
                self._check_transition(task, new_status)

                now = datetime.now(UTC)
                task.status = new_status
                if new_status == TaskStatus.RUNNING:
                    task.start_time = now
                    task.end_time = None
                    task.error_message = ""
                if new_status.is_terminal:
                    task.end_time = now
                if new_status == TaskStatus.COMPLETED:
                    task.progress = 100.0
                    task.current_table = ""
                if error_message is not None:
                    task.error_message = error_message
                task.updated_at = now
                snapshot = task.snapshot()

            logger.info("Task %s transitioned to %s", task_id, new_status.value)
            await self._mirror(snapshot)
            if new_status.is_terminal and not self._retain_finished:
                await self.evict(task_id)
            return snapshot

    @staticmethod
    def _check_transition(task: MigrationTask, new_status: TaskStatus) -> None:
        current = task.status
        if current.can_transition_to(new_status):
            return
        if new_status == TaskStatus.RUNNING:
            if current == TaskStatus.RUNNING:
                raise TaskRunningError(task.task_id, current)
            if current == TaskStatus.COMPLETED:
                raise TaskCompletedError(task.task_id, current)
            raise TaskStateError(
                f"cannot start task with status: {current.value}",
                task_id=task.task_id,
                current_status=current,
                operation="start",
            )
        if new_status == TaskStatus.CANCELLED:
            raise TaskStateError(
                f"cannot cancel task with status: {current.value}",
                task_id=task.task_id,
                current_status=current,
                operation="cancel",
            )
        raise TaskStateError(
            f"invalid status transition: {current.value} -> {new_status.value}",
            task_id=task.task_id,
            current_status=current,
            operation="transition",
        )

    async def update_progress(
        self,
        task_id: str,
        *,
        progress: float | None = None,
        migrated_rows: int | None = None,
        failed_rows: int | None = None,
        total_rows: int | None = None,
        current_table: str | None = None,
    ) -> bool:
        """
        Update the runtime counters of a RUNNING task.

        Returns:
            False (and nothing is changed) when the task is unknown or no
            longer RUNNING
        """
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.RUNNING:
                return False
            if progress is not None:
                task.progress = min(100.0, max(0.0, progress))
            if migrated_rows is not None:
                task.migrated_rows = migrated_rows
            if failed_rows is not None:
                task.failed_rows = failed_rows
            if total_rows is not None:
                task.total_rows = total_rows
            if current_table is not None:
                task.current_table = current_table
            task.updated_at = datetime.now(UTC)
            snapshot = task.snapshot()

        await self._mirror(snapshot)
        return True

    async def record_table_result(self, task_id: str, result: TableMigrationResult) -> bool:
        """
        Append a finished table's result to a RUNNING task.

        Returns:
            False when the task is unknown or no longer RUNNING
        """
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != TaskStatus.RUNNING:
                return False
            task.table_results.append(result)
            task.updated_at = datetime.now(UTC)
            snapshot = task.snapshot()

        await self._mirror(snapshot)
        return True

    async def evict(self, task_id: str) -> bool:
        """Drop a task from memory; storage is untouched."""
        async with self._lock:
            return self._tasks.pop(task_id, None) is not None

    async def list_active(self) -> list[MigrationTask]:
        """Snapshots of in-memory tasks that are not finished."""
        async with self._lock:
            return [t.snapshot() for t in self._tasks.values() if not t.status.is_terminal]

    async def list_all(self) -> list[MigrationTask]:
        """
        Every known task, newest first.

        Stored tasks are overlaid with their in-memory state, which is
        never older than the mirrored copy.
        """
        stored = await self._repository.list_all()
        async with self._lock:
            live = {task_id: t.snapshot() for task_id, t in self._tasks.items()}

        tasks = [live.pop(t.task_id, t) for t in stored]
        tasks.extend(live.values())
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    async def _mirror(self, snapshot: MigrationTask) -> None:
        async with self._mirror_lock:
            try:
                await self._repository.save(snapshot)
            except Exception:
                logger.warning(
                    "Failed to persist state of task %s (status=%s)",
                    snapshot.task_id,
                    snapshot.status.value,
                    exc_info=True,
                )
