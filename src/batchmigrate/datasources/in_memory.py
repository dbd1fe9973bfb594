"""
In-memory data source implementation.

Useful for testing, development and dry runs. Not suitable for production
as all data is lost when the process terminates.

Servers are process-wide and keyed by ``host:port``: two data sources
configured with the same endpoint see the same databases, exactly like
two connections to one MySQL server. A data source configured with an
endpoint that was never registered fails to connect.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass, field

from batchmigrate.datasources.interface import DataSource
from batchmigrate.exceptions import (
    ConnectionFailedError,
    DatabaseNotFoundError,
    DataSourceError,
    InvalidSchemaError,
    TableNotFoundError,
    TransientWriteError,
)
from batchmigrate.models import (
    ColumnInfo,
    DataSourceConfig,
    MigrationSettings,
    ReadOptions,
    Row,
    TableSchema,
    WriteOptions,
)
from batchmigrate.observability import (
    ATTR_DB_NAME,
    ATTR_DB_SYSTEM,
    ATTR_OFFSET,
    ATTR_ROW_COUNT,
    ATTR_SERVER_ADDRESS,
    ATTR_TABLE_NAME,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)


@dataclass
class InMemoryTable:
    """A table held by an in-memory server."""

    schema: TableSchema
    rows: list[Row] = field(default_factory=list)


@dataclass
class InMemoryServer:
    """
    Shared state of one in-memory endpoint.

    Attributes:
        address: ``host:port`` key of the server.
        databases: Database name to table name to table.
        reachable: When False, connects are refused.
    """

    address: str
    databases: dict[str, dict[str, InMemoryTable]] = field(default_factory=dict)
    reachable: bool = True
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def create_database(self, database: str) -> None:
        self.databases.setdefault(database, {})

    def add_table(
        self,
        database: str,
        schema: TableSchema,
        rows: list[Row] | None = None,
    ) -> InMemoryTable:
        """Create (or replace) a table with optional seed rows."""
        table = InMemoryTable(schema=schema, rows=[dict(r) for r in rows or []])
        self.databases.setdefault(database, {})[schema.name] = table
        return table

    def table(self, database: str, name: str) -> InMemoryTable:
        try:
            return self.databases[database][name]
        except KeyError:
            raise TableNotFoundError(database, name) from None


_servers: dict[str, InMemoryServer] = {}


def _address(host: str, port: int) -> str:
    return f"{host}:{port}"


def register_server(host: str, port: int) -> InMemoryServer:
    """Create the server for an endpoint, or return the existing one."""
    address = _address(host, port)
    server = _servers.get(address)
    if server is None:
        server = InMemoryServer(address=address)
        _servers[address] = server
    return server


def get_server(host: str, port: int) -> InMemoryServer | None:
    return _servers.get(_address(host, port))


def clear_servers() -> None:
    """Forget every registered server."""
    _servers.clear()


def _schema_to_ddl(database: str, schema: TableSchema) -> str:
    return json.dumps(
        {
            "database": database,
            "table": schema.name,
            "comment": schema.comment,
            "indexes": list(schema.indexes),
            "columns": [
                {
                    "name": c.name,
                    "type": c.type,
                    "is_nullable": c.is_nullable,
                    "default_value": c.default_value,
                    "comment": c.comment,
                }
                for c in schema.columns
            ],
        },
        sort_keys=True,
    )


def _ddl_to_schema(ddl: str) -> TableSchema:
    try:
        data = json.loads(ddl)
        return TableSchema(
            name=data["table"],
            columns=[ColumnInfo(**c) for c in data["columns"]],
            indexes=list(data.get("indexes", [])),
            comment=data.get("comment", ""),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidSchemaError(f"malformed table definition: {e}") from e


class InMemoryDataSource(DataSource):
    """
    In-memory implementation of DataSource.

    DDL is represented as a JSON document describing the table; native
    DDL copy between two in-memory data sources copies that document and
    replaces its database qualifier.

    Example:
        >>> server = register_server("mem-src", 1)
        >>> server.add_table("shop", TableSchema("orders", [ColumnInfo("id", "int")]),
        ...                  rows=[{"id": 1}])
        >>> source = InMemoryDataSource()
        >>> await source.connect(DataSourceConfig(type="memory", host="mem-src", port=1))
        >>> await source.get_row_count("shop", "orders")
        1
    """

    type_name = "memory"

    def __init__(
        self,
        *,
        settings: MigrationSettings | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._settings = settings or MigrationSettings()
        self._server: InMemoryServer | None = None
        self._config: DataSourceConfig | None = None

    @property
    def config(self) -> DataSourceConfig | None:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._server is not None

    @property
    def server(self) -> InMemoryServer | None:
        return self._server

    def _require_server(self) -> InMemoryServer:
        if self._server is None:
            raise ConnectionFailedError("in-memory data source is not connected")
        return self._server

    async def connect(self, config: DataSourceConfig) -> None:
        with self._tracer.span(
            "batchmigrate.memory.connect",
            {ATTR_DB_SYSTEM: "memory", ATTR_SERVER_ADDRESS: _address(config.host, config.port)},
        ):
            self._config = config
            self._server = None

            server = get_server(config.host, config.port)
            if server is None or not server.reachable:
                raise ConnectionFailedError(
                    f"connection refused: {_address(config.host, config.port)}"
                )
            if config.database and config.database not in server.databases:
                raise DatabaseNotFoundError(config.database)
            self._server = server

    async def test_connection(self) -> None:
        server = self._require_server()
        if not server.reachable:
            raise ConnectionFailedError(f"server unreachable: {server.address}")

    async def close(self) -> None:
        self._server = None

    async def list_databases(self) -> list[str]:
        server = self._require_server()
        async with server.lock:
            return sorted(server.databases)

    async def list_tables(self, database: str) -> list[str]:
        server = self._require_server()
        async with server.lock:
            return sorted(server.databases.get(database, {}))

    async def get_table_schema(self, database: str, table: str) -> TableSchema:
        server = self._require_server()
        async with server.lock:
            return copy.deepcopy(server.table(database, table).schema)

    async def get_row_count(self, database: str, table: str) -> int:
        server = self._require_server()
        async with server.lock:
            return len(server.table(database, table).rows)

    async def read_rows(self, database: str, table: str, options: ReadOptions) -> list[Row]:
        with self._tracer.span(
            "batchmigrate.memory.read_rows",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_DB_NAME: database,
                ATTR_TABLE_NAME: table,
                ATTR_OFFSET: options.offset,
            },
        ):
            if options.where:
                raise DataSourceError(
                    "raw predicates are not supported by the in-memory engine",
                    operation="read_rows",
                )
            server = self._require_server()
            async with server.lock:
                rows = server.table(database, table).rows
                page = rows[options.offset : options.offset + options.limit]
                return [dict(r) for r in page]

    async def write_rows(
        self,
        database: str,
        table: str,
        rows: list[Row],
        options: WriteOptions,
    ) -> None:
        if not rows:
            return

        with self._tracer.span(
            "batchmigrate.memory.write_rows",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_DB_NAME: database,
                ATTR_TABLE_NAME: table,
                ATTR_ROW_COUNT: len(rows),
            },
        ):
            server = self._server
            if server is None or not server.reachable:
                raise TransientWriteError("invalid connection")

            async with server.lock:
                target = server.table(database, table)
                columns = target.schema.column_names
                projected = [{c: row.get(c) for c in columns} for row in rows]
                for column in target.schema.columns:
                    if column.is_nullable:
                        continue
                    if any(r[column.name] is None for r in projected):
                        raise DataSourceError(
                            f"column '{column.name}' cannot be null",
                            operation="write_rows",
                        )
                target.rows.extend(projected)

    async def create_table(self, database: str, schema: TableSchema) -> None:
        if schema is None or not schema.columns:
            raise InvalidSchemaError()
        server = self._require_server()
        async with server.lock:
            if schema.name in server.databases.get(database, {}):
                raise DataSourceError(
                    f"table '{schema.name}' already exists", operation="create_table"
                )
            server.add_table(database, copy.deepcopy(schema))
        logger.debug("Created in-memory table %s.%s", database, schema.name)

    async def create_database_if_not_exists(self, database: str) -> None:
        if not database:
            raise DataSourceError("database name is empty", operation="create_database")
        server = self._server
        if server is None:
            # Server-level operation; allowed before the configured database exists
            if self._config is None:
                raise ConnectionFailedError("cannot create database: no configuration available")
            server = get_server(self._config.host, self._config.port)
            if server is None or not server.reachable:
                raise ConnectionFailedError(
                    f"connection refused: {_address(self._config.host, self._config.port)}"
                )
        async with server.lock:
            server.create_database(database)

    async def drop_table(self, database: str, table: str) -> None:
        server = self._require_server()
        async with server.lock:
            server.databases.get(database, {}).pop(table, None)

    def supports_native_ddl_copy(self, other: DataSource) -> bool:
        return isinstance(other, InMemoryDataSource)

    async def get_create_table_ddl(self, database: str, table: str) -> str:
        server = self._require_server()
        async with server.lock:
            return _schema_to_ddl(database, server.table(database, table).schema)

    async def create_table_from_ddl(self, database: str, table: str, ddl: str) -> None:
        schema = _ddl_to_schema(ddl)
        if schema.name != table:
            raise InvalidSchemaError(f"definition is for table '{schema.name}', not '{table}'")
        await self.create_table(database, schema)
