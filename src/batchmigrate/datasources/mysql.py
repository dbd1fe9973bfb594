"""
MySQL data source implementation.

Uses a SQLAlchemy async engine over the aiomysql driver. Each instance
owns one connection pool, created on ``connect`` and disposed on
``close``.

MySQL-specific behaviour:
- Tables are introspected through information_schema
- Native DDL copy uses SHOW CREATE TABLE and rewrites the qualifier
- Connection-level write failures surface as TransientWriteError
- A missing database on connect surfaces as DatabaseNotFoundError
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

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
    ATTR_SERVER_PORT,
    ATTR_TABLE_NAME,
    Tracer,
    create_tracer,
)

logger = logging.getLogger(__name__)

DEFAULT_CHARSET = "utf8mb4"

# MySQL client/server error numbers
ER_BAD_DB_ERROR = 1049
ER_NO_SUCH_TABLE = 1146
CR_SERVER_GONE_ERROR = 2006
CR_SERVER_LOST = 2013
CR_SERVER_LOST_EXTENDED = 2055

_TRANSIENT_ERRNOS = frozenset({CR_SERVER_GONE_ERROR, CR_SERVER_LOST, CR_SERVER_LOST_EXTENDED})
_TRANSIENT_MARKERS = (
    "broken pipe",
    "invalid connection",
    "server has gone away",
    "lost connection",
    "connection reset",
)

# Default expressions that must not be quoted when rebuilding a column
_DEFAULT_KEYWORDS = frozenset(
    {"NULL", "CURRENT_TIMESTAMP", "CURRENT_TIMESTAMP()", "NOW()", "CURRENT_DATE", "CURRENT_TIME"}
)

# Same pattern text() uses to find :name bind parameters
_BIND_MARKER = re.compile(r"(?<![:\w\\]):(\w+)(?![:\w])")


def quote_identifier(name: str) -> str:
    """Quote a MySQL identifier with backticks."""
    return "`" + name.replace("`", "``") + "`"


def qualified_name(database: str, table: str) -> str:
    return f"{quote_identifier(database)}.{quote_identifier(table)}"


def escape_bind_markers(sql: str) -> str:
    """Escape :name sequences so text() keeps them as literal SQL."""
    return _BIND_MARKER.sub(r"\\:\1", sql)


def _quote_literal(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


def _format_default(value: str) -> str:
    """Render an information_schema default as a DDL expression."""
    upper = value.upper()
    if upper in _DEFAULT_KEYWORDS or upper.startswith("CURRENT_TIMESTAMP("):
        return value
    if value.startswith("(") and value.endswith(")"):
        # Expression defaults (MySQL 8.0.13+) are reported with parentheses
        return value
    try:
        float(value)
    except ValueError:
        return _quote_literal(value)
    return value


def _errno(exc: BaseException) -> int | None:
    orig = getattr(exc, "orig", None)
    args = getattr(orig, "args", None)
    if args and isinstance(args[0], int):
        return args[0]
    return None


def is_transient_error(exc: BaseException) -> bool:
    """
    Check whether a driver error is a connection-level failure.

    Args:
        exc: Exception raised by SQLAlchemy or the driver

    Returns:
        True for invalidated connections, lost/gone servers and
        broken pipes; False for statement-level errors such as
        constraint violations.
    """
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if _errno(exc) in _TRANSIENT_ERRNOS:
        return True
    if isinstance(exc, (BrokenPipeError, ConnectionResetError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def rewrite_ddl_qualifier(ddl: str, table: str, database: str) -> str:
    """
    Qualify the table name of a SHOW CREATE TABLE statement.

    SHOW CREATE TABLE emits ``CREATE TABLE `t` (...)``; the first such
    occurrence becomes ``CREATE TABLE `db`.`t` (...)``. Column types,
    defaults and comments are left untouched.
    """
    return ddl.replace(
        f"CREATE TABLE {quote_identifier(table)}",
        f"CREATE TABLE {qualified_name(database, table)}",
        1,
    )


class MySQLDataSource(DataSource):
    """
    MySQL implementation of DataSource.

    Example:
        >>> source = MySQLDataSource()
        >>> await source.connect(DataSourceConfig(
        ...     type="mysql", host="db1", port=3306,
        ...     username="root", password="secret", database="shop",
        ... ))
        >>> await source.get_row_count("shop", "orders")
        2500
        >>> await source.close()
    """

    type_name = "mysql"

    def __init__(
        self,
        *,
        settings: MigrationSettings | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize an unconnected MySQL data source.

        Args:
            settings: Engine settings (pool sizing); defaults if omitted
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._settings = settings or MigrationSettings()
        self._engine: AsyncEngine | None = None
        self._config: DataSourceConfig | None = None

    @property
    def config(self) -> DataSourceConfig | None:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    # =========================================================================
    # Connection management
    # =========================================================================

    def _build_url(self, config: DataSourceConfig, *, with_database: bool = True) -> URL:
        return URL.create(
            "mysql+aiomysql",
            username=config.username or None,
            password=config.password or None,
            host=config.host or "localhost",
            port=config.port or 3306,
            database=(config.database or None) if with_database else None,
            query={"charset": config.charset or DEFAULT_CHARSET},
        )

    def _create_engine(
        self, config: DataSourceConfig, *, with_database: bool = True
    ) -> AsyncEngine:
        connect_args: dict[str, Any] = {}
        if config.timeout > 0:
            connect_args["connect_timeout"] = int(config.timeout)
        return create_async_engine(
            self._build_url(config, with_database=with_database),
            pool_size=self._settings.pool_size,
            max_overflow=self._settings.max_overflow,
            pool_recycle=self._settings.pool_recycle_seconds,
            pool_pre_ping=True,
            connect_args=connect_args,
        )

    async def connect(self, config: DataSourceConfig) -> None:
        with self._tracer.span(
            "batchmigrate.mysql.connect",
            {
                ATTR_DB_SYSTEM: "mysql",
                ATTR_SERVER_ADDRESS: config.host,
                ATTR_SERVER_PORT: config.port,
                ATTR_DB_NAME: config.database,
            },
        ):
            self._config = config
            await self.close()

            engine = self._create_engine(config)
            try:
                async with engine.connect() as conn:
                    await conn.execute(text("SELECT 1"))
            except (SQLAlchemyError, OSError) as e:
                await engine.dispose()
                if _errno(e) == ER_BAD_DB_ERROR or "unknown database" in str(e).lower():
                    raise DatabaseNotFoundError(config.database) from e
                raise ConnectionFailedError(f"failed to connect to MySQL: {e}") from e

            self._engine = engine
            logger.debug("Connected to MySQL %s:%s/%s", config.host, config.port, config.database)

    async def test_connection(self) -> None:
        if self._engine is None:
            raise ConnectionFailedError()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise ConnectionFailedError(f"MySQL ping failed: {e}") from e

    async def close(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.dispose()

    @asynccontextmanager
    async def _connection(
        self,
        operation: str,
        *,
        transactional: bool = False,
    ) -> AsyncIterator[AsyncConnection]:
        """Yield a pooled connection, translating driver errors."""
        if self._engine is None:
            raise ConnectionFailedError(f"cannot {operation}: MySQL data source is not connected")
        try:
            if transactional:
                async with self._engine.begin() as conn:
                    yield conn
            else:
                async with self._engine.connect() as conn:
                    yield conn
        except DataSourceError:
            raise
        except (SQLAlchemyError, OSError) as e:
            raise DataSourceError(f"failed to {operation}: {e}", operation=operation) from e

    # =========================================================================
    # Introspection
    # =========================================================================

    async def list_databases(self) -> list[str]:
        with self._tracer.span("batchmigrate.mysql.list_databases", {ATTR_DB_SYSTEM: "mysql"}):
            async with self._connection("list databases") as conn:
                result = await conn.execute(text("SHOW DATABASES"))
                return [row[0] for row in result.fetchall()]

    async def list_tables(self, database: str) -> list[str]:
        with self._tracer.span(
            "batchmigrate.mysql.list_tables",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database},
        ):
            query = text("""
                SELECT table_name
                FROM information_schema.tables
                WHERE table_schema = :database
                  AND table_type = 'BASE TABLE'
                ORDER BY table_name
            """)
            async with self._connection("list tables") as conn:
                result = await conn.execute(query, {"database": database})
                return [row[0] for row in result.fetchall()]

    async def get_table_schema(self, database: str, table: str) -> TableSchema:
        with self._tracer.span(
            "batchmigrate.mysql.get_table_schema",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database, ATTR_TABLE_NAME: table},
        ):
            params = {"database": database, "table": table}
            async with self._connection("get table schema") as conn:
                result = await conn.execute(
                    text("""
                        SELECT table_comment
                        FROM information_schema.tables
                        WHERE table_schema = :database AND table_name = :table
                    """),
                    params,
                )
                table_row = result.fetchone()
                if table_row is None:
                    raise TableNotFoundError(database, table)

                result = await conn.execute(
                    text("""
                        SELECT column_name, column_type, is_nullable,
                               column_default, column_comment
                        FROM information_schema.columns
                        WHERE table_schema = :database AND table_name = :table
                        ORDER BY ordinal_position
                    """),
                    params,
                )
                columns = [
                    ColumnInfo(
                        name=row[0],
                        type=row[1],
                        is_nullable=row[2] == "YES",
                        default_value="" if row[3] is None else str(row[3]),
                        comment=row[4] or "",
                    )
                    for row in result.fetchall()
                ]

                result = await conn.execute(
                    text("""
                        SELECT DISTINCT index_name
                        FROM information_schema.statistics
                        WHERE table_schema = :database AND table_name = :table
                        ORDER BY index_name
                    """),
                    params,
                )
                indexes = [row[0] for row in result.fetchall()]

            return TableSchema(
                name=table,
                columns=columns,
                indexes=indexes,
                comment=table_row[0] or "",
            )

    async def _get_column_names(
        self, conn: AsyncConnection, database: str, table: str
    ) -> list[str]:
        result = await conn.execute(
            text("""
                SELECT column_name
                FROM information_schema.columns
                WHERE table_schema = :database AND table_name = :table
                ORDER BY ordinal_position
            """),
            {"database": database, "table": table},
        )
        columns = [row[0] for row in result.fetchall()]
        if not columns:
            raise TableNotFoundError(database, table)
        return columns

    async def get_row_count(self, database: str, table: str) -> int:
        with self._tracer.span(
            "batchmigrate.mysql.get_row_count",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database, ATTR_TABLE_NAME: table},
        ):
            query = text(f"SELECT COUNT(*) FROM {qualified_name(database, table)}")  # nosec B608
            async with self._connection("get row count") as conn:
                result = await conn.execute(query)
                count = int(result.scalar_one())
            logger.debug("Row count of %s.%s: %d", database, table, count)
            return count

    # =========================================================================
    # Data movement
    # =========================================================================

    async def read_rows(self, database: str, table: str, options: ReadOptions) -> list[Row]:
        with self._tracer.span(
            "batchmigrate.mysql.read_rows",
            {
                ATTR_DB_SYSTEM: "mysql",
                ATTR_DB_NAME: database,
                ATTR_TABLE_NAME: table,
                ATTR_OFFSET: options.offset,
                ATTR_ROW_COUNT: options.limit,
            },
        ):
            sql = f"SELECT * FROM {qualified_name(database, table)}"
            if options.where:
                # Raw predicate is passed through as given by the caller
                sql += f" WHERE {escape_bind_markers(options.where)}"
            sql += " LIMIT :limit OFFSET :offset"

            async with self._connection("read rows") as conn:
                result = await conn.execute(
                    text(sql),  # nosec B608
                    {"limit": options.limit, "offset": options.offset},
                )
                return [dict(row) for row in result.mappings().fetchall()]

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
            "batchmigrate.mysql.write_rows",
            {
                ATTR_DB_SYSTEM: "mysql",
                ATTR_DB_NAME: database,
                ATTR_TABLE_NAME: table,
                ATTR_ROW_COUNT: len(rows),
            },
        ):
            if self._engine is None:
                raise TransientWriteError("invalid connection: MySQL data source is not connected")

            batch_size = options.batch_size if options.batch_size > 0 else len(rows)
            try:
                async with self._engine.begin() as conn:
                    columns = await self._get_column_names(conn, database, table)
                    column_list = ", ".join(quote_identifier(c) for c in columns)

                    for start in range(0, len(rows), batch_size):
                        batch = rows[start : start + batch_size]
                        params: dict[str, Any] = {}
                        groups = []
                        for i, row in enumerate(batch):
                            names = []
                            for j, column in enumerate(columns):
                                name = f"p{i}_{j}"
                                params[name] = row.get(column)
                                names.append(f":{name}")
                            groups.append("(" + ", ".join(names) + ")")

                        stmt = text(
                            f"INSERT INTO {qualified_name(database, table)} "  # nosec B608
                            f"({column_list}) VALUES {', '.join(groups)}"
                        )
                        await conn.execute(stmt, params)
            except TableNotFoundError:
                raise
            except (SQLAlchemyError, OSError) as e:
                if is_transient_error(e):
                    raise TransientWriteError(f"failed to write batch rows: {e}") from e
                raise DataSourceError(
                    f"failed to write batch rows: {e}", operation="write_rows"
                ) from e

    # =========================================================================
    # DDL
    # =========================================================================

    async def create_table(self, database: str, schema: TableSchema) -> None:
        if schema is None or not schema.columns:
            raise InvalidSchemaError()

        with self._tracer.span(
            "batchmigrate.mysql.create_table",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database, ATTR_TABLE_NAME: schema.name},
        ):
            column_defs = []
            for column in schema.columns:
                definition = f"{quote_identifier(column.name)} {column.type}"
                if not column.is_nullable:
                    definition += " NOT NULL"
                if column.default_value:
                    definition += f" DEFAULT {_format_default(column.default_value)}"
                if column.comment:
                    definition += f" COMMENT {_quote_literal(column.comment)}"
                column_defs.append(definition)

            ddl = "CREATE TABLE {} (\n  {}\n)".format(
                qualified_name(database, schema.name),
                ",\n  ".join(column_defs),
            )
            if schema.comment:
                ddl += f" COMMENT={_quote_literal(schema.comment)}"

            async with self._connection("create table", transactional=True) as conn:
                await conn.execute(text(escape_bind_markers(ddl)))

    async def create_database_if_not_exists(self, database: str) -> None:
        if not database:
            raise DataSourceError("database name is empty", operation="create_database")

        with self._tracer.span(
            "batchmigrate.mysql.create_database",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database},
        ):
            statement = text(
                f"CREATE DATABASE IF NOT EXISTS {quote_identifier(database)} "
                "CHARACTER SET 'utf8mb4' COLLATE 'utf8mb4_general_ci'"
            )
            if self._engine is not None:
                async with self._connection("create database", transactional=True) as conn:
                    await conn.execute(statement)
                return

            # Not connected (e.g. the configured database is missing):
            # use a temporary server-level engine.
            if self._config is None:
                raise ConnectionFailedError("cannot create database: no configuration available")
            engine = self._create_engine(self._config, with_database=False)
            try:
                async with engine.begin() as conn:
                    await conn.execute(statement)
            except (SQLAlchemyError, OSError) as e:
                raise DataSourceError(
                    f"failed to create database {database}: {e}", operation="create_database"
                ) from e
            finally:
                await engine.dispose()

    async def drop_table(self, database: str, table: str) -> None:
        with self._tracer.span(
            "batchmigrate.mysql.drop_table",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database, ATTR_TABLE_NAME: table},
        ):
            async with self._connection("drop table", transactional=True) as conn:
                await conn.execute(text(f"DROP TABLE IF EXISTS {qualified_name(database, table)}"))

    def supports_native_ddl_copy(self, other: DataSource) -> bool:
        return isinstance(other, MySQLDataSource)

    async def get_create_table_ddl(self, database: str, table: str) -> str:
        with self._tracer.span(
            "batchmigrate.mysql.show_create_table",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database, ATTR_TABLE_NAME: table},
        ):
            try:
                async with self._connection("get table DDL") as conn:
                    result = await conn.execute(
                        text(f"SHOW CREATE TABLE {qualified_name(database, table)}")
                    )
                    row = result.fetchone()
            except DataSourceError as e:
                if e.__cause__ is not None and _errno(e.__cause__) == ER_NO_SUCH_TABLE:
                    raise TableNotFoundError(database, table) from e
                raise
            if row is None:
                raise TableNotFoundError(database, table)
            return str(row[1])

    async def create_table_from_ddl(self, database: str, table: str, ddl: str) -> None:
        with self._tracer.span(
            "batchmigrate.mysql.create_table_from_ddl",
            {ATTR_DB_SYSTEM: "mysql", ATTR_DB_NAME: database, ATTR_TABLE_NAME: table},
        ):
            statement = rewrite_ddl_qualifier(ddl, table, database)
            async with self._connection("create table on target", transactional=True) as conn:
                await conn.execute(text(escape_bind_markers(statement)))
