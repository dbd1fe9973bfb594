"""
Data source test doubles and seeding helpers.

The doubles extend InMemoryDataSource so they honour every data source
contract while recording calls or injecting failures. Their counters
live on the class because the factory instantiates data sources itself;
call ``reset()`` between tests (the autouse fixture in conftest does).
"""

from __future__ import annotations

from batchmigrate.datasources.in_memory import InMemoryDataSource, InMemoryServer
from batchmigrate.exceptions import DataSourceError, TransientWriteError
from batchmigrate.models import (
    ColumnInfo,
    DataSourceConfig,
    ReadOptions,
    Row,
    TableSchema,
    WriteOptions,
)

MEMORY_PORT = 3306
SOURCE_HOST = "source-db"
TARGET_HOST = "target-db"


def memory_config(host: str, database: str = "", type_tag: str = "memory") -> DataSourceConfig:
    """Config pointing at an in-memory server."""
    return DataSourceConfig(type=type_tag, host=host, port=MEMORY_PORT, database=database)


def make_schema(name: str) -> TableSchema:
    """A two-column table: ``id`` (NOT NULL) and ``name``."""
    return TableSchema(
        name=name,
        columns=[
            ColumnInfo(name="id", type="int", is_nullable=False, comment="primary id"),
            ColumnInfo(name="name", type="varchar(64)", default_value="anon"),
        ],
        indexes=["PRIMARY"],
        comment=f"{name} table",
    )


def make_rows(count: int, start: int = 1) -> list[Row]:
    return [{"id": i, "name": f"row-{i}"} for i in range(start, start + count)]


def seed_table(server: InMemoryServer, database: str, table: str, count: int) -> None:
    """Create ``database.table`` on a server with ``count`` rows."""
    server.add_table(database, make_schema(table), make_rows(count))


class RecordingDataSource(InMemoryDataSource):
    """Records every read and write call."""

    type_name = "recording"

    reads: list[ReadOptions] = []
    writes: list[int] = []
    connects: int = 0

    @classmethod
    def reset(cls) -> None:
        cls.reads = []
        cls.writes = []
        cls.connects = 0

    async def connect(self, config: DataSourceConfig) -> None:
        type(self).connects += 1
        await super().connect(config)

    async def read_rows(self, database: str, table: str, options: ReadOptions) -> list[Row]:
        type(self).reads.append(options)
        return await super().read_rows(database, table, options)

    async def write_rows(
        self,
        database: str,
        table: str,
        rows: list[Row],
        options: WriteOptions,
    ) -> None:
        type(self).writes.append(len(rows))
        await super().write_rows(database, table, rows, options)


class FlakyDataSource(RecordingDataSource):
    """
    Fails the next ``transient_failures`` writes with a connection error,
    then fails the next ``permanent_failures`` writes with a
    non-transient error.
    """

    type_name = "flaky"

    transient_failures: int = 0
    permanent_failures: int = 0
    fail_reconnect: bool = False

    @classmethod
    def reset(cls) -> None:
        super().reset()
        cls.transient_failures = 0
        cls.permanent_failures = 0
        cls.fail_reconnect = False

    async def connect(self, config: DataSourceConfig) -> None:
        if type(self).fail_reconnect and type(self).connects > 0:
            type(self).connects += 1
            raise DataSourceError("reconnect refused", operation="connect")
        await super().connect(config)

    async def write_rows(
        self,
        database: str,
        table: str,
        rows: list[Row],
        options: WriteOptions,
    ) -> None:
        cls = type(self)
        if cls.transient_failures > 0:
            cls.transient_failures -= 1
            cls.writes.append(len(rows))
            raise TransientWriteError("write: broken pipe")
        if cls.permanent_failures > 0:
            cls.permanent_failures -= 1
            cls.writes.append(len(rows))
            raise DataSourceError("Duplicate entry '1' for key 'PRIMARY'", operation="write_rows")
        await super().write_rows(database, table, rows, options)


class BrokenCountDataSource(InMemoryDataSource):
    """Fails every row count."""

    type_name = "broken_count"

    async def get_row_count(self, database: str, table: str) -> int:
        raise DataSourceError("count failed", operation="get_row_count")


class ExplodingDataSource(InMemoryDataSource):
    """Raises a programming error while listing tables."""

    type_name = "exploding"

    async def list_tables(self, database: str) -> list[str]:
        raise RuntimeError("boom")
