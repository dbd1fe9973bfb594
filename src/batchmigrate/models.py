"""
Data models for the batch migration engine.

Enums:
    - TaskStatus: Task lifecycle states
    - DataSourceType: Declared data source technology tags

Configuration:
    - DataSourceConfig: Connection settings for one endpoint
    - MigrationRequest: Caller input for creating a task
    - MigrationSettings: Engine-wide tunables

Core Models:
    - MigrationTask: One declared migration and its runtime state
    - ColumnInfo / TableSchema: Generic table structure
    - ReadOptions / WriteOptions: Paging and batching options
    - TableMigrationResult: Outcome of migrating one table
    - MigrationProgress: Queryable progress snapshot
    - MigrationSummary: Per-task aggregation of table results
    - TableCompareResult / CompareResult: Read-only source/target diff
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

Row = dict[str, Any]
"""A single row: column name to scalar value (str, number, bool, bytes or None)."""

DEFAULT_BATCH_SIZE = 1000


class TaskStatus(Enum):
    """
    Task lifecycle states.

    State machine transitions:
        PENDING -> RUNNING -> COMPLETED
            |         |
            |         +----> FAILED (configuration, connection or unexpected error)
            |         |
            +---------+----> CANCELLED (operator-initiated)

    Terminal states (COMPLETED, FAILED, CANCELLED) never transition again.
    """

    PENDING = "pending"
    """Task created but not started."""

    RUNNING = "running"
    """Task is being executed."""

    COMPLETED = "completed"
    """Task ran to the end; individual tables may still have failed."""

    FAILED = "failed"
    """Task could not run (configuration, connection or unexpected error)."""

    CANCELLED = "cancelled"
    """Task was cancelled by an operator."""

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal (final) status.

        Returns:
            True for COMPLETED, FAILED and CANCELLED.
        """
        return self in (
            TaskStatus.COMPLETED,
            TaskStatus.FAILED,
            TaskStatus.CANCELLED,
        )

    @property
    def is_cancellable(self) -> bool:
        """True for PENDING and RUNNING."""
        return self in (TaskStatus.PENDING, TaskStatus.RUNNING)

    def can_transition_to(self, target: TaskStatus) -> bool:
        """
        Check if transition to target status is valid.

        Args:
            target: The target status to transition to.

        Returns:
            True if the transition is valid.
        """
        valid_transitions: dict[TaskStatus, set[TaskStatus]] = {
            TaskStatus.PENDING: {TaskStatus.RUNNING, TaskStatus.CANCELLED},
            TaskStatus.RUNNING: {
                TaskStatus.COMPLETED,
                TaskStatus.FAILED,
                TaskStatus.CANCELLED,
            },
        }
        return target in valid_transitions.get(self, set())


class DataSourceType(Enum):
    """
    Declared data source technology tags.

    Only MYSQL and MEMORY have implementations; the others are recognised
    tags for which the factory reports an unsupported type.
    """

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    MONGODB = "mongodb"
    MINIO = "minio"
    MEMORY = "memory"


class DataSourceConfig(BaseModel):
    """
    Connection settings for one data source endpoint.

    The type is kept as the raw tag so that unknown tags reach the
    factory and fail there with UnsupportedDataSourceError instead of
    failing validation.

    Attributes:
        type: Technology tag (e.g., "mysql").
        host: Server host name.
        port: Server port.
        database: Default database for the connection (may be empty).
        username: Login user.
        password: Login password.
        ssl_mode: Optional SSL mode hint for drivers that support it.
        charset: Connection charset; empty means the driver default.
        timeout: Connect timeout in seconds; 0 means the driver default.

    Example:
        >>> cfg = DataSourceConfig(type="mysql", host="db1", port=3306, username="root")
        >>> DataSourceConfig.from_json(cfg.to_json()) == cfg
        True
    """

    model_config = ConfigDict(frozen=True)

    type: str = ""
    host: str = ""
    port: int = 0
    database: str = ""
    username: str = ""
    password: str = ""
    ssl_mode: str = ""
    charset: str = ""
    timeout: float = 0.0

    def to_json(self) -> str:
        """Serialize to the opaque text form stored with a task."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> DataSourceConfig:
        """Parse the text form produced by to_json()."""
        return cls.model_validate_json(data)

    def with_database(self, database: str) -> DataSourceConfig:
        """Return a copy pointing at another default database."""
        return self.model_copy(update={"database": database})

    def safe_dict(self) -> dict[str, Any]:
        """Dictionary form with the password masked, for logs."""
        data = self.model_dump()
        if data.get("password"):
            data["password"] = "****"
        return data


class MigrationRequest(BaseModel):
    """
    Caller input for creating a migration task.

    ``database`` accepts a comma separated string or a list of names.
    Database names are also harvested from ``database.table`` entries in
    ``tables``.

    Example:
        >>> req = MigrationRequest(
        ...     source_config=src,
        ...     target_config=tgt,
        ...     database="shop, crm",
        ...     tables=["shop.orders"],
        ...     create_schema=True,
        ... )
        >>> req.database_names()
        ['shop', 'crm']
    """

    source_config: DataSourceConfig = Field(default_factory=DataSourceConfig)
    target_config: DataSourceConfig = Field(default_factory=DataSourceConfig)
    database: str | list[str] = ""
    tables: list[str] = Field(default_factory=list)
    batch_size: int = 0
    create_schema: bool = False
    truncate_target: bool = False
    only_sync_schema: bool = False

    @field_validator("tables")
    @classmethod
    def _strip_tables(cls, value: list[str]) -> list[str]:
        return [t.strip() for t in value if t and t.strip()]

    def database_names(self) -> list[str]:
        """
        Resolve the distinct database names named by the request.

        Returns:
            Names in first-seen order, from ``database`` first and then
            from qualified ``tables`` entries.
        """
        if isinstance(self.database, str):
            declared = self.database.split(",")
        else:
            declared = list(self.database)

        names: list[str] = []
        for name in declared:
            name = name.strip()
            if name and name not in names:
                names.append(name)

        for table in self.tables:
            db_name, sep, _ = table.partition(".")
            db_name = db_name.strip()
            if sep and db_name and db_name not in names:
                names.append(db_name)
        return names


@dataclass(frozen=True)
class MigrationSettings:
    """
    Engine-wide settings.

    Attributes:
        default_batch_size: Batch size used when a request gives none (default 1000).
        write_retry_limit: Reconnect-and-retry attempts for a transient
            batch write failure (default 3).
        retain_finished_tasks: Keep finished tasks in the in-memory registry.
            When False they are evicted and served from storage.
        pool_size: Connection pool size for SQL data sources (default 10).
        max_overflow: Extra connections allowed above pool_size (default 90).
        pool_recycle_seconds: Recycle pooled connections after this many
            seconds (default 3600).
        enable_tracing: Whether components create OpenTelemetry spans.

    Example:
        >>> settings = MigrationSettings(default_batch_size=500)
        >>> settings.write_retry_limit
        3
    """

    default_batch_size: int = DEFAULT_BATCH_SIZE
    write_retry_limit: int = 3
    retain_finished_tasks: bool = True
    pool_size: int = 10
    max_overflow: int = 90
    pool_recycle_seconds: int = 3600
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.default_batch_size < 1:
            raise ValueError(f"default_batch_size must be >= 1, got {self.default_batch_size}")
        if self.write_retry_limit < 0:
            raise ValueError(f"write_retry_limit must be >= 0, got {self.write_retry_limit}")
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")
        if self.max_overflow < 0:
            raise ValueError(f"max_overflow must be >= 0, got {self.max_overflow}")


@dataclass(frozen=True)
class ColumnInfo:
    """
    One column of a table schema.

    Attributes:
        name: Column name.
        type: Full column type as the engine reports it (e.g., "varchar(64)").
        is_nullable: Whether NULL is allowed.
        default_value: Default expression, verbatim; empty for none.
        comment: Column comment.
    """

    name: str
    type: str
    is_nullable: bool = True
    default_value: str = ""
    comment: str = ""


@dataclass(frozen=True)
class TableSchema:
    """
    Generic table structure used to detect existence and to build a
    CREATE TABLE when native DDL copy is unavailable.
    """

    name: str
    columns: list[ColumnInfo] = field(default_factory=list)
    indexes: list[str] = field(default_factory=list)
    comment: str = ""

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


@dataclass(frozen=True)
class ReadOptions:
    """
    Options for a paginated read.

    ``where`` is a raw predicate passed through unparsed; callers are
    responsible for its safety.
    """

    offset: int = 0
    limit: int = DEFAULT_BATCH_SIZE
    where: str = ""


@dataclass(frozen=True)
class WriteOptions:
    """Options for a batched write."""

    batch_size: int = DEFAULT_BATCH_SIZE
    truncate: bool = False


@dataclass
class TableMigrationResult:
    """
    Outcome of migrating one table.

    Attributes:
        database: Database the table lives in.
        table_name: Table name.
        success: True when no step failed and no row failed.
        total_rows: Source row count at the start of the copy.
        migrated_rows: Rows written to the target.
        failed_rows: Rows in batches that could not be written.
        error_message: Reason for failure, if any.
        start_time: When processing of the table started.
        end_time: When processing of the table ended.
    """

    database: str
    table_name: str
    success: bool = False
    total_rows: int = 0
    migrated_rows: int = 0
    failed_rows: int = 0
    error_message: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.database}.{self.table_name}"

    @property
    def duration_seconds(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "database": self.database,
            "table_name": self.table_name,
            "success": self.success,
            "total_rows": self.total_rows,
            "migrated_rows": self.migrated_rows,
            "failed_rows": self.failed_rows,
            "error_message": self.error_message,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TableMigrationResult:
        start = data.get("start_time")
        end = data.get("end_time")
        return cls(
            database=data.get("database", ""),
            table_name=data.get("table_name", ""),
            success=bool(data.get("success", False)),
            total_rows=int(data.get("total_rows", 0)),
            migrated_rows=int(data.get("migrated_rows", 0)),
            failed_rows=int(data.get("failed_rows", 0)),
            error_message=data.get("error_message", "") or "",
            start_time=datetime.fromisoformat(start) if start else None,
            end_time=datetime.fromisoformat(end) if end else None,
        )


@dataclass
class MigrationTask:
    """
    One declared migration request and its runtime state.

    The registry owns the canonical instance while a task is in memory;
    callers only ever receive snapshots.

    Attributes:
        task_id: Globally unique identifier (immutable).
        source_config: Source endpoint.
        target_config: Target endpoint.
        databases: One or more database names to migrate.
        tables: Optional explicit ``database.table`` list; empty means
            every table of the first database.
        batch_size: Rows per read/write round-trip.
        create_schema: Create target tables that are missing.
        truncate_target: Drop and recreate existing target tables first.
        only_sync_schema: Create structure only, copy no rows.
        status: Current lifecycle status.
        progress: Percentage in [0, 100].
        total_rows: Sum of source row counts (best effort).
        migrated_rows: Rows written so far.
        failed_rows: Rows in failed batches so far.
        current_table: Qualified name of the table being processed.
        start_time: When the task entered RUNNING.
        end_time: When the task reached a terminal status.
        error_message: Last task-level error.
        table_results: Results of finished tables, in processing order.
        created_at: Creation timestamp (drives newest-first listing).
        updated_at: Last mutation timestamp.
    """

    task_id: str
    source_config: DataSourceConfig
    target_config: DataSourceConfig
    databases: list[str]
    tables: list[str] = field(default_factory=list)
    batch_size: int = DEFAULT_BATCH_SIZE
    create_schema: bool = False
    truncate_target: bool = False
    only_sync_schema: bool = False
    status: TaskStatus = TaskStatus.PENDING
    progress: float = 0.0
    total_rows: int = 0
    migrated_rows: int = 0
    failed_rows: int = 0
    current_table: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    error_message: str = ""
    table_results: list[TableMigrationResult] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def snapshot(self) -> MigrationTask:
        """Return an independent deep copy."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class MigrationProgress:
    """
    Queryable progress snapshot of a task.

    Attributes:
        task_id: ID of the task.
        status: Current status.
        progress: Percentage in [0, 100].
        total_rows: Sum of source row counts.
        migrated_rows: Rows written so far.
        failed_rows: Rows in failed batches so far.
        current_table: Table being processed, empty when idle.
        start_time: When the task started.
        end_time: When the task finished.
        error_message: Last task-level error.
        estimated_remaining_seconds: Rate-based projection, None if unknown.
    """

    task_id: str
    status: TaskStatus
    progress: float
    total_rows: int
    migrated_rows: int
    failed_rows: int
    current_table: str = ""
    start_time: datetime | None = None
    end_time: datetime | None = None
    error_message: str = ""
    estimated_remaining_seconds: float | None = None

    @property
    def rows_remaining(self) -> int:
        return max(0, self.total_rows - self.migrated_rows - self.failed_rows)


@dataclass(frozen=True)
class MigrationSummary:
    """
    Aggregated outcome of a task, built from its table results.

    A COMPLETED task may still have failed tables; inspect
    ``failed_tables`` and ``failed_rows``.
    """

    task_id: str
    status: TaskStatus
    total_tables: int
    success_tables: int
    failed_tables: int
    total_rows: int
    migrated_rows: int
    failed_rows: int
    start_time: datetime | None
    end_time: datetime | None
    duration_seconds: float
    table_results: list[TableMigrationResult]
    error_message: str = ""

    @classmethod
    def from_task(cls, task: MigrationTask) -> MigrationSummary:
        results = list(task.table_results)
        success = sum(1 for r in results if r.success)
        duration = 0.0
        if task.start_time is not None:
            end = task.end_time or datetime.now(UTC)
            duration = (end - task.start_time).total_seconds()
        return cls(
            task_id=task.task_id,
            status=task.status,
            total_tables=len(results),
            success_tables=success,
            failed_tables=len(results) - success,
            total_rows=task.total_rows,
            migrated_rows=task.migrated_rows,
            failed_rows=task.failed_rows,
            start_time=task.start_time,
            end_time=task.end_time,
            duration_seconds=duration,
            table_results=results,
            error_message=task.error_message,
        )


@dataclass(frozen=True)
class TableCompareResult:
    """Existence and row counts of one table on both sides."""

    table: str
    exists_in_source: bool
    exists_in_target: bool
    row_count_source: int = 0
    row_count_target: int = 0

    @property
    def row_counts_equal(self) -> bool:
        return self.row_count_source == self.row_count_target


@dataclass(frozen=True)
class CompareResult:
    """Read-only diff between a source and a target database."""

    table_count_equal: bool
    table_count_source: int
    table_count_target: int
    tables: list[TableCompareResult] = field(default_factory=list)
