"""
DataSource interface for batchmigrate.

A DataSource is an implementation-agnostic handle to one database
technology. The orchestration core only ever talks to this interface,
so new engines plug in through the factory without touching it.

Classes:
- DataSource: Abstract base class for data source implementations
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from batchmigrate.models import (
    DataSourceConfig,
    ReadOptions,
    Row,
    TableSchema,
    WriteOptions,
)


class DataSource(ABC):
    """
    Abstract base class for data sources.

    Each concrete implementation owns exactly one live connection or pool,
    created by ``connect`` and released by ``close``. ``close`` must be
    safe to call more than once and before ``connect`` ever succeeded.

    Native DDL copy is an optional capability: implementations that can
    reproduce a table's exact creation statement on a peer of the same
    technology override ``supports_native_ddl_copy``,
    ``get_create_table_ddl`` and ``create_table_from_ddl``.
    """

    type_name: str = ""
    """Technology tag this implementation serves."""

    @property
    @abstractmethod
    def config(self) -> DataSourceConfig | None:
        """Configuration passed to the last ``connect`` call, if any."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True between a successful ``connect`` and ``close``."""
        pass

    @abstractmethod
    async def connect(self, config: DataSourceConfig) -> None:
        """
        Open the connection or pool.

        Args:
            config: Endpoint configuration

        Raises:
            DatabaseNotFoundError: If the configured database does not exist
            ConnectionFailedError: If the server cannot be reached or refuses login
        """
        pass

    @abstractmethod
    async def test_connection(self) -> None:
        """
        Ping the server.

        Raises:
            ConnectionFailedError: If not connected or the ping fails
        """
        pass

    @abstractmethod
    async def list_databases(self) -> list[str]:
        """List database names visible to the login."""
        pass

    @abstractmethod
    async def list_tables(self, database: str) -> list[str]:
        """List base table names of a database (unqualified)."""
        pass

    @abstractmethod
    async def get_table_schema(self, database: str, table: str) -> TableSchema:
        """
        Introspect a table.

        Raises:
            TableNotFoundError: If the table does not exist
        """
        pass

    @abstractmethod
    async def read_rows(self, database: str, table: str, options: ReadOptions) -> list[Row]:
        """
        Read one page of rows.

        Ordering is whatever the engine returns; no ORDER BY is applied.

        Args:
            database: Database name
            table: Table name
            options: Offset, limit and optional raw predicate

        Returns:
            At most ``options.limit`` rows
        """
        pass

    @abstractmethod
    async def write_rows(
        self,
        database: str,
        table: str,
        rows: list[Row],
        options: WriteOptions,
    ) -> None:
        """
        Insert rows, chunked by ``options.batch_size``.

        Raises:
            TransientWriteError: On connection-level failures worth retrying
            DataSourceError: On any other failure (e.g., constraint violations)
        """
        pass

    @abstractmethod
    async def create_table(self, database: str, schema: TableSchema) -> None:
        """
        Create a table from the generic schema model.

        Raises:
            InvalidSchemaError: If the schema has no columns
        """
        pass

    @abstractmethod
    async def create_database_if_not_exists(self, database: str) -> None:
        """Create a database; a no-op when it already exists."""
        pass

    @abstractmethod
    async def drop_table(self, database: str, table: str) -> None:
        """Drop a table if it exists."""
        pass

    @abstractmethod
    async def get_row_count(self, database: str, table: str) -> int:
        """Count rows of a table."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the connection or pool. Idempotent."""
        pass

    def supports_native_ddl_copy(self, other: DataSource) -> bool:
        """
        Whether DDL can be copied verbatim between this source and ``other``.

        Args:
            other: The peer data source (the target when called on a source)

        Returns:
            False unless the implementation overrides it
        """
        return False

    async def get_create_table_ddl(self, database: str, table: str) -> str:
        """Return the exact creation statement of a table."""
        raise NotImplementedError(f"{type(self).__name__} does not support native DDL copy")

    async def create_table_from_ddl(self, database: str, table: str, ddl: str) -> None:
        """Execute a creation statement copied from a peer, rewritten for ``database``."""
        raise NotImplementedError(f"{type(self).__name__} does not support native DDL copy")

    async def __aenter__(self) -> DataSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
