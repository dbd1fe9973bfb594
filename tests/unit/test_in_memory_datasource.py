"""
Unit tests for InMemoryDataSource.

Tests cover:
- Connection handling, unreachable endpoints and missing databases
- Idempotent close and database creation
- Introspection, paging reads and column-projected writes
- Native DDL copy between in-memory servers
"""

import pytest

from batchmigrate.datasources.in_memory import InMemoryDataSource, InMemoryServer, get_server
from batchmigrate.exceptions import (
    ConnectionFailedError,
    DatabaseNotFoundError,
    DataSourceError,
    InvalidSchemaError,
    TableNotFoundError,
    TransientWriteError,
)
from batchmigrate.models import ReadOptions, TableSchema, WriteOptions
from tests.fixtures import make_rows, make_schema, memory_config, seed_table


async def connected(host: str, database: str = "") -> InMemoryDataSource:
    source = InMemoryDataSource(enable_tracing=False)
    await source.connect(memory_config(host, database))
    return source


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_to_registered_server(self, source_server: InMemoryServer) -> None:
        source = await connected("source-db")
        assert source.is_connected
        assert source.server is source_server
        await source.test_connection()

    @pytest.mark.asyncio
    async def test_unregistered_endpoint_is_refused(self) -> None:
        source = InMemoryDataSource(enable_tracing=False)
        with pytest.raises(ConnectionFailedError, match="connection refused"):
            await source.connect(memory_config("nowhere"))
        assert not source.is_connected
        assert source.config is not None

    @pytest.mark.asyncio
    async def test_unreachable_server(self, source_server: InMemoryServer) -> None:
        source_server.reachable = False
        with pytest.raises(ConnectionFailedError):
            await connected("source-db")

    @pytest.mark.asyncio
    async def test_missing_database(self, source_server: InMemoryServer) -> None:
        with pytest.raises(DatabaseNotFoundError):
            await connected("source-db", "nope")

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_safe_before_connect(self) -> None:
        source = InMemoryDataSource(enable_tracing=False)
        await source.close()
        await source.close()
        assert not source.is_connected

    @pytest.mark.asyncio
    async def test_operations_require_connection(self) -> None:
        source = InMemoryDataSource(enable_tracing=False)
        with pytest.raises(ConnectionFailedError):
            await source.list_databases()


class TestDatabases:
    @pytest.mark.asyncio
    async def test_create_database_is_idempotent(self, target_server: InMemoryServer) -> None:
        """Ensuring a database twice never errors and never duplicates it."""
        target = await connected("target-db")

        await target.create_database_if_not_exists("shop")
        await target.create_database_if_not_exists("shop")

        assert await target.list_databases() == ["shop"]

    @pytest.mark.asyncio
    async def test_create_database_does_not_drop_tables(
        self, target_server: InMemoryServer
    ) -> None:
        seed_table(target_server, "shop", "orders", 3)
        target = await connected("target-db")

        await target.create_database_if_not_exists("shop")

        assert await target.get_row_count("shop", "orders") == 3

    @pytest.mark.asyncio
    async def test_create_database_before_connect(self, target_server: InMemoryServer) -> None:
        target = InMemoryDataSource(enable_tracing=False)
        with pytest.raises(DatabaseNotFoundError):
            await target.connect(memory_config("target-db", "shop"))

        await target.create_database_if_not_exists("shop")
        await target.connect(memory_config("target-db", "shop"))

        assert "shop" in target_server.databases

    @pytest.mark.asyncio
    async def test_empty_database_name(self, target_server: InMemoryServer) -> None:
        target = await connected("target-db")
        with pytest.raises(DataSourceError):
            await target.create_database_if_not_exists("")


class TestTables:
    @pytest.mark.asyncio
    async def test_list_tables_and_schema(self, source_server: InMemoryServer) -> None:
        seed_table(source_server, "shop", "orders", 1)
        seed_table(source_server, "shop", "customers", 1)
        source = await connected("source-db")

        assert await source.list_tables("shop") == ["customers", "orders"]
        assert await source.list_tables("missing") == []
        schema = await source.get_table_schema("shop", "orders")
        assert schema.column_names == ["id", "name"]

    @pytest.mark.asyncio
    async def test_missing_table(self, source_server: InMemoryServer) -> None:
        source = await connected("source-db")
        with pytest.raises(TableNotFoundError):
            await source.get_table_schema("shop", "orders")

    @pytest.mark.asyncio
    async def test_create_table_requires_columns(self, target_server: InMemoryServer) -> None:
        target = await connected("target-db")
        with pytest.raises(InvalidSchemaError):
            await target.create_table("shop", TableSchema(name="empty"))

    @pytest.mark.asyncio
    async def test_create_existing_table_fails(self, target_server: InMemoryServer) -> None:
        seed_table(target_server, "shop", "orders", 0)
        target = await connected("target-db")
        with pytest.raises(DataSourceError, match="already exists"):
            await target.create_table("shop", make_schema("orders"))

    @pytest.mark.asyncio
    async def test_drop_table(self, target_server: InMemoryServer) -> None:
        seed_table(target_server, "shop", "orders", 2)
        target = await connected("target-db")

        await target.drop_table("shop", "orders")
        await target.drop_table("shop", "orders")

        assert await target.list_tables("shop") == []


class TestReadWrite:
    @pytest.mark.asyncio
    async def test_paging(self, source_server: InMemoryServer) -> None:
        seed_table(source_server, "shop", "orders", 25)
        source = await connected("source-db")

        first = await source.read_rows("shop", "orders", ReadOptions(offset=0, limit=10))
        last = await source.read_rows("shop", "orders", ReadOptions(offset=20, limit=10))
        beyond = await source.read_rows("shop", "orders", ReadOptions(offset=30, limit=10))

        assert [r["id"] for r in first] == list(range(1, 11))
        assert len(last) == 5
        assert beyond == []

    @pytest.mark.asyncio
    async def test_raw_predicate_unsupported(self, source_server: InMemoryServer) -> None:
        seed_table(source_server, "shop", "orders", 1)
        source = await connected("source-db")
        with pytest.raises(DataSourceError):
            await source.read_rows("shop", "orders", ReadOptions(where="id > 1"))

    @pytest.mark.asyncio
    async def test_write_projects_onto_target_columns(self, target_server: InMemoryServer) -> None:
        """Missing keys become NULL and unknown keys are dropped."""
        seed_table(target_server, "shop", "orders", 0)
        target = await connected("target-db")

        await target.write_rows(
            "shop",
            "orders",
            [{"id": 1, "extra": "x"}, {"id": 2, "name": b"raw"}],
            WriteOptions(),
        )

        assert target_server.table("shop", "orders").rows == [
            {"id": 1, "name": None},
            {"id": 2, "name": b"raw"},
        ]

    @pytest.mark.asyncio
    async def test_not_null_violation(self, target_server: InMemoryServer) -> None:
        seed_table(target_server, "shop", "orders", 0)
        target = await connected("target-db")
        with pytest.raises(DataSourceError) as exc_info:
            await target.write_rows("shop", "orders", [{"name": "x"}], WriteOptions())
        assert not isinstance(exc_info.value, TransientWriteError)
        assert target_server.table("shop", "orders").rows == []

    @pytest.mark.asyncio
    async def test_write_after_server_drop_is_transient(
        self, target_server: InMemoryServer
    ) -> None:
        seed_table(target_server, "shop", "orders", 0)
        target = await connected("target-db")
        target_server.reachable = False

        with pytest.raises(TransientWriteError):
            await target.write_rows("shop", "orders", make_rows(1), WriteOptions())

    @pytest.mark.asyncio
    async def test_reads_return_copies(self, source_server: InMemoryServer) -> None:
        seed_table(source_server, "shop", "orders", 1)
        source = await connected("source-db")

        rows = await source.read_rows("shop", "orders", ReadOptions())
        rows[0]["name"] = "changed"

        assert source_server.table("shop", "orders").rows[0]["name"] == "row-1"


class TestNativeDDLCopy:
    @pytest.mark.asyncio
    async def test_copy_preserves_schema(
        self,
        source_server: InMemoryServer,
        target_server: InMemoryServer,
    ) -> None:
        seed_table(source_server, "shop", "orders", 3)
        source = await connected("source-db")
        target = await connected("target-db")
        await target.create_database_if_not_exists("shop")

        assert source.supports_native_ddl_copy(target)
        ddl = await source.get_create_table_ddl("shop", "orders")
        await target.create_table_from_ddl("shop", "orders", ddl)

        assert await target.get_table_schema("shop", "orders") == make_schema("orders")
        assert await target.get_row_count("shop", "orders") == 0

    @pytest.mark.asyncio
    async def test_definition_for_other_table_rejected(
        self,
        source_server: InMemoryServer,
        target_server: InMemoryServer,
    ) -> None:
        seed_table(source_server, "shop", "orders", 0)
        source = await connected("source-db")
        target = await connected("target-db")
        ddl = await source.get_create_table_ddl("shop", "orders")

        with pytest.raises(InvalidSchemaError):
            await target.create_table_from_ddl("shop", "customers", ddl)

    @pytest.mark.asyncio
    async def test_malformed_definition(self, target_server: InMemoryServer) -> None:
        target = await connected("target-db")
        with pytest.raises(InvalidSchemaError):
            await target.create_table_from_ddl("shop", "orders", "CREATE TABLE `orders` (...)")

    def test_servers_are_shared_by_endpoint(self, source_server: InMemoryServer) -> None:
        assert get_server("source-db", 3306) is source_server
        assert get_server("source-db", 3307) is None
