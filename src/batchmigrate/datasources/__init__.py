"""
Data sources for batchmigrate.

- DataSource: abstract capability interface
- DataSourceFactory: type tag to implementation resolution
- MySQLDataSource: SQLAlchemy async + aiomysql implementation
- InMemoryDataSource: in-process implementation for tests and dry runs
"""

from batchmigrate.datasources.factory import DataSourceFactory
from batchmigrate.datasources.in_memory import (
    InMemoryDataSource,
    InMemoryServer,
    InMemoryTable,
    clear_servers,
    get_server,
    register_server,
)
from batchmigrate.datasources.interface import DataSource
from batchmigrate.datasources.mysql import (
    MySQLDataSource,
    is_transient_error,
    rewrite_ddl_qualifier,
)

__all__ = [
    "DataSource",
    "DataSourceFactory",
    "MySQLDataSource",
    "InMemoryDataSource",
    "InMemoryServer",
    "InMemoryTable",
    "register_server",
    "get_server",
    "clear_servers",
    "is_transient_error",
    "rewrite_ddl_qualifier",
]
