"""
Standard span attributes for batchmigrate.

Attribute keys shared by every component so traces from the registry,
the pipeline and the data sources line up. Database attributes follow
the OpenTelemetry semantic conventions.

Example:
    >>> from batchmigrate.observability.attributes import ATTR_TASK_ID, ATTR_TABLE_NAME
    >>>
    >>> with tracer.span(
    ...     "batchmigrate.pipeline.migrate_table",
    ...     {ATTR_TASK_ID: task.task_id, ATTR_TABLE_NAME: "orders"},
    ... ):
    ...     pass
"""

# =============================================================================
# Task Attributes
# =============================================================================

ATTR_TASK_ID = "batchmigrate.task.id"
"""Unique identifier of the migration task (UUID string)."""

ATTR_TASK_STATUS = "batchmigrate.task.status"
"""Task status value (e.g., 'running')."""

ATTR_TASK_TABLE_COUNT = "batchmigrate.task.table_count"
"""Number of tables resolved for a task (integer)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'mysql', 'sqlite')."""

ATTR_DB_NAME = "db.name"
"""Database (schema) name."""

ATTR_SERVER_ADDRESS = "server.address"
"""Host name of the database server."""

ATTR_SERVER_PORT = "server.port"
"""Port of the database server (integer)."""

# =============================================================================
# Table / Batch Attributes
# =============================================================================

ATTR_TABLE_NAME = "batchmigrate.table.name"
"""Name of the table being processed."""

ATTR_BATCH_SIZE = "batchmigrate.batch.size"
"""Configured rows per read/write round-trip (integer)."""

ATTR_ROW_COUNT = "batchmigrate.row.count"
"""Number of rows in an operation (integer)."""

ATTR_OFFSET = "batchmigrate.read.offset"
"""Offset of a paginated read (integer)."""

# =============================================================================
# Retry Attributes
# =============================================================================

ATTR_RETRY_COUNT = "batchmigrate.retry.count"
"""Number of retries performed (integer)."""
