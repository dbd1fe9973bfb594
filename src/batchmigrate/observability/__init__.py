"""
Observability utilities for batchmigrate.

Tracing and standard attribute definitions shared by the registry, the
pipeline, the orchestrator and the data sources.

Example:
    >>> from batchmigrate.observability import create_tracer
    >>>
    >>> class MyComponent:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from batchmigrate.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_OFFSET,
    ATTR_RETRY_COUNT,
    ATTR_ROW_COUNT,
    ATTR_SERVER_ADDRESS,
    ATTR_SERVER_PORT,
    ATTR_TABLE_NAME,
    ATTR_TASK_ID,
    ATTR_TASK_STATUS,
    ATTR_TASK_TABLE_COUNT,
)
from batchmigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer (composition-based API)
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes - Task
    "ATTR_TASK_ID",
    "ATTR_TASK_STATUS",
    "ATTR_TASK_TABLE_COUNT",
    # Attributes - Database
    "ATTR_DB_SYSTEM",
    "ATTR_DB_NAME",
    "ATTR_SERVER_ADDRESS",
    "ATTR_SERVER_PORT",
    # Attributes - Table / Batch
    "ATTR_TABLE_NAME",
    "ATTR_BATCH_SIZE",
    "ATTR_ROW_COUNT",
    "ATTR_OFFSET",
    # Attributes - Retry
    "ATTR_RETRY_COUNT",
]
