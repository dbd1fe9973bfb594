"""
Exceptions raised by the batchmigrate engine.

Exception Hierarchy:
    BatchMigrateError (base)
    +-- InvalidConfigError
    +-- DataSourceError
    |   +-- UnsupportedDataSourceError
    |   +-- ConnectionFailedError
    |   |   +-- DatabaseNotFoundError
    |   +-- TableNotFoundError
    |   +-- InvalidSchemaError
    |   +-- TransientWriteError
    +-- TaskNotFoundError
    +-- TaskStateError
        +-- TaskRunningError
        +-- TaskCompletedError

Every exception carries an ErrorClassification with a stable error code
and a recoverability category. Lifecycle and configuration errors are
raised synchronously to the caller; errors during task execution are
recorded on the task instead of being raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from batchmigrate.models import TaskStatus


class ErrorRecoverability(Enum):
    """
    Recoverability classification for engine errors.

    Attributes:
        RECOVERABLE: Caller can fix the input or state and try again.
        TRANSIENT: Temporary failure that may succeed on retry.
        FATAL: Unrecoverable for the operation that raised it.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing an error type.

    Attributes:
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
    """

    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


class BatchMigrateError(Exception):
    """
    Base exception for all batchmigrate errors.

    Attributes:
        message: Human-readable error description.
        task_id: The ID of the task involved, if applicable.
        classification: Error classification metadata.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="BATCHMIGRATE_ERROR",
        category="general",
        suggested_action="Review the engine logs for details",
    )

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        self.message = message
        self.task_id = task_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.task_id:
            return f"{self.message} task_id={self.task_id}"
        return self.message

    @property
    def classification(self) -> ErrorClassification:
        return self._default_classification

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def is_transient(self) -> bool:
        return self.classification.recoverability.should_retry

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for API responses and logging.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "task_id": self.task_id,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class InvalidConfigError(BatchMigrateError):
    """
    Raised when a request is missing required fields.

    Source type, target type and at least one database name are required
    to create a task.
    """

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INVALID_CONFIG",
        category="config",
        suggested_action="Provide source type, target type and at least one database",
    )

    def __init__(self, message: str = "invalid configuration", *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class DataSourceError(BatchMigrateError):
    """
    Raised when a data source operation fails.

    Attributes:
        operation: Name of the data source operation that failed.
    """

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="DATA_SOURCE_ERROR",
        category="datasource",
        suggested_action="Inspect the underlying driver error",
    )

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


class UnsupportedDataSourceError(DataSourceError):
    """Raised by the factory when no implementation exists for a type tag."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNSUPPORTED_DATA_SOURCE",
        category="datasource",
        suggested_action="Use one of the registered data source types",
    )

    def __init__(self, source_type: str) -> None:
        self.source_type = source_type
        super().__init__(f"unsupported data source type: {source_type}", operation="create")


class ConnectionFailedError(DataSourceError):
    """Raised when connecting to or pinging a data source fails."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="CONNECTION_FAILED",
        category="connectivity",
        suggested_action="Check host, port, credentials and network reachability",
    )

    def __init__(self, message: str = "connection failed") -> None:
        super().__init__(message, operation="connect")


class DatabaseNotFoundError(ConnectionFailedError):
    """Raised when the configured database does not exist on the server."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="DATABASE_NOT_FOUND",
        category="connectivity",
        suggested_action="Create the database or point the config at an existing one",
    )

    def __init__(self, database: str) -> None:
        self.database = database
        super().__init__(f"Unknown database '{database}'")


class TableNotFoundError(DataSourceError):
    """Raised when introspecting a table that does not exist."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TABLE_NOT_FOUND",
        category="schema",
        suggested_action="Enable createSchema or create the table beforehand",
    )

    def __init__(self, database: str, table: str) -> None:
        self.database = database
        self.table = table
        super().__init__(f"table not found: {database}.{table}", operation="get_table_schema")


class InvalidSchemaError(DataSourceError):
    """Raised when a table schema is empty or malformed on create."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_SCHEMA",
        category="schema",
        suggested_action="Ensure the source schema has at least one column",
    )

    def __init__(self, message: str = "invalid table schema") -> None:
        super().__init__(message, operation="create_table")


class TransientWriteError(DataSourceError):
    """
    Raised when a batch write fails with a connection-level error.

    The pipeline reconnects the target and resends the same batch when
    it sees this error.
    """

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="TRANSIENT_WRITE",
        category="connectivity",
        suggested_action="Retried automatically after reconnecting the target",
    )

    def __init__(self, message: str) -> None:
        super().__init__(message, operation="write_rows")


class TaskNotFoundError(BatchMigrateError):
    """Raised when a task ID is unknown to both the registry and storage."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="TASK_NOT_FOUND",
        category="lookup",
        suggested_action="Verify the task ID is correct and the task was created",
    )

    def __init__(self, task_id: str) -> None:
        super().__init__(f"migration task not found: {task_id}", task_id=task_id)


class TaskStateError(BatchMigrateError):
    """
    Raised when an operation is invalid for the task's current status.

    Attributes:
        current_status: Status of the task when the operation was attempted.
        operation: The operation that was attempted.
    """

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="TASK_STATE_ERROR",
        category="state",
        suggested_action="Check the task status before retrying the operation",
    )

    def __init__(
        self,
        message: str,
        task_id: str,
        current_status: TaskStatus,
        operation: str | None = None,
    ) -> None:
        self.current_status = current_status
        self.operation = operation
        super().__init__(message, task_id=task_id)


class TaskRunningError(TaskStateError):
    """Raised when starting a task that is already running."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TASK_RUNNING",
        category="state",
        suggested_action="Wait for the task to finish or cancel it",
    )

    def __init__(self, task_id: str, current_status: TaskStatus) -> None:
        super().__init__(
            "migration task is running",
            task_id=task_id,
            current_status=current_status,
            operation="start",
        )


class TaskCompletedError(TaskStateError):
    """Raised when starting a task that has already completed."""

    _default_classification = ErrorClassification(
        recoverability=ErrorRecoverability.FATAL,
        error_code="TASK_COMPLETED",
        category="state",
        suggested_action="Create a new task to migrate again",
    )

    def __init__(self, task_id: str, current_status: TaskStatus) -> None:
        super().__init__(
            "migration task is completed",
            task_id=task_id,
            current_status=current_status,
            operation="start",
        )


__all__ = [
    "ErrorRecoverability",
    "ErrorClassification",
    "BatchMigrateError",
    "InvalidConfigError",
    "DataSourceError",
    "UnsupportedDataSourceError",
    "ConnectionFailedError",
    "DatabaseNotFoundError",
    "TableNotFoundError",
    "InvalidSchemaError",
    "TransientWriteError",
    "TaskNotFoundError",
    "TaskStateError",
    "TaskRunningError",
    "TaskCompletedError",
]
