"""
Shared test fixtures for the batchmigrate library.

This module provides reusable test doubles and helpers:
- Config helpers (memory_config)
- Schema and row builders (make_schema, make_rows, seed_table)
- Data source doubles (RecordingDataSource, FlakyDataSource,
  BrokenCountDataSource, ExplodingDataSource)

Usage:
    from tests.fixtures import FlakyDataSource, memory_config, seed_table
"""

from tests.fixtures.datasources import (
    MEMORY_PORT,
    SOURCE_HOST,
    TARGET_HOST,
    BrokenCountDataSource,
    ExplodingDataSource,
    FlakyDataSource,
    RecordingDataSource,
    make_rows,
    make_schema,
    memory_config,
    seed_table,
)

__all__ = [
    "MEMORY_PORT",
    "SOURCE_HOST",
    "TARGET_HOST",
    "memory_config",
    "make_schema",
    "make_rows",
    "seed_table",
    "RecordingDataSource",
    "FlakyDataSource",
    "BrokenCountDataSource",
    "ExplodingDataSource",
]
