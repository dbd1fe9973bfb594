"""
batchmigrate - Cross-database batch migration engine for Python.

This library provides:
- Long-running, cancellable migration tasks with progress reporting
- Paginated table copy with transient write retry
- Schema reconciliation: native DDL copy or generic CREATE TABLE
- MySQL (SQLAlchemy async + aiomysql) and in-memory data sources
- Task persistence via SQLAlchemy (SQLite or MySQL) or in memory
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("batchmigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Data sources
from batchmigrate.datasources import (
    DataSource,
    DataSourceFactory,
    InMemoryDataSource,
    MySQLDataSource,
)

# Exceptions
from batchmigrate.exceptions import (
    BatchMigrateError,
    ConnectionFailedError,
    DatabaseNotFoundError,
    DataSourceError,
    ErrorClassification,
    ErrorRecoverability,
    InvalidConfigError,
    InvalidSchemaError,
    TableNotFoundError,
    TaskCompletedError,
    TaskNotFoundError,
    TaskRunningError,
    TaskStateError,
    TransientWriteError,
    UnsupportedDataSourceError,
)

# Models
from batchmigrate.models import (
    ColumnInfo,
    CompareResult,
    DataSourceConfig,
    DataSourceType,
    MigrationProgress,
    MigrationRequest,
    MigrationSettings,
    MigrationSummary,
    MigrationTask,
    ReadOptions,
    Row,
    TableCompareResult,
    TableMigrationResult,
    TableSchema,
    TaskStatus,
    WriteOptions,
)

# Engine
from batchmigrate.orchestrator import MigrationOrchestrator
from batchmigrate.pipeline import TableMigrator
from batchmigrate.progress import ProgressReporter
from batchmigrate.registry import TaskRegistry

# Repositories
from batchmigrate.repositories import (
    InMemoryMigrationTaskRepository,
    MigrationTaskRepository,
    SQLAlchemyMigrationTaskRepository,
)
from batchmigrate.service import MigrationService, TaskHandle

__all__ = [
    "__version__",
    # Service
    "MigrationService",
    "TaskHandle",
    # Engine
    "MigrationOrchestrator",
    "TableMigrator",
    "ProgressReporter",
    "TaskRegistry",
    # Data sources
    "DataSource",
    "DataSourceFactory",
    "MySQLDataSource",
    "InMemoryDataSource",
    # Repositories
    "MigrationTaskRepository",
    "SQLAlchemyMigrationTaskRepository",
    "InMemoryMigrationTaskRepository",
    # Models
    "TaskStatus",
    "DataSourceType",
    "DataSourceConfig",
    "MigrationRequest",
    "MigrationSettings",
    "MigrationTask",
    "ColumnInfo",
    "TableSchema",
    "ReadOptions",
    "WriteOptions",
    "Row",
    "TableMigrationResult",
    "MigrationProgress",
    "MigrationSummary",
    "TableCompareResult",
    "CompareResult",
    # Exceptions
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
