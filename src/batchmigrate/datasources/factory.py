"""
Factory resolving data source type tags to implementations.

Unsupported tags fail here, before any network I/O.
"""

from __future__ import annotations

import logging

from batchmigrate.datasources.in_memory import InMemoryDataSource
from batchmigrate.datasources.interface import DataSource
from batchmigrate.datasources.mysql import MySQLDataSource
from batchmigrate.exceptions import UnsupportedDataSourceError
from batchmigrate.models import DataSourceType, MigrationSettings
from batchmigrate.observability import Tracer

logger = logging.getLogger(__name__)

DEFAULT_IMPLEMENTATIONS: dict[str, type[DataSource]] = {
    DataSourceType.MYSQL.value: MySQLDataSource,
    DataSourceType.MEMORY.value: InMemoryDataSource,
}


class DataSourceFactory:
    """
    Builds unconnected DataSource instances from type tags.

    Tags are matched case-insensitively. Additional engines are added
    with ``register`` without touching the orchestrator.

    Example:
        >>> factory = DataSourceFactory()
        >>> source = factory.create("mysql")
        >>> factory.create("mongodb")
        Traceback (most recent call last):
        ...
        UnsupportedDataSourceError: unsupported data source type: mongodb
    """

    def __init__(
        self,
        settings: MigrationSettings | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._settings = settings or MigrationSettings()
        self._tracer = tracer
        self._enable_tracing = enable_tracing
        self._implementations: dict[str, type[DataSource]] = dict(DEFAULT_IMPLEMENTATIONS)

    def register(self, type_tag: str | DataSourceType, implementation: type[DataSource]) -> None:
        """
        Register (or replace) the implementation for a type tag.

        Args:
            type_tag: Tag as found in DataSourceConfig.type
            implementation: DataSource subclass accepting the standard
                keyword arguments (settings, tracer, enable_tracing)
        """
        key = self._normalize(type_tag)
        if key in self._implementations:
            logger.debug("Replacing data source implementation for %r", key)
        self._implementations[key] = implementation

    def supported_types(self) -> list[str]:
        return sorted(self._implementations)

    def create(self, type_tag: str | DataSourceType) -> DataSource:
        """
        Create an unconnected data source.

        Raises:
            UnsupportedDataSourceError: If no implementation is registered
        """
        key = self._normalize(type_tag)
        implementation = self._implementations.get(key)
        if implementation is None:
            raise UnsupportedDataSourceError(key or "<empty>")
        return implementation(
            settings=self._settings,
            tracer=self._tracer,
            enable_tracing=self._enable_tracing,
        )

    @staticmethod
    def _normalize(type_tag: str | DataSourceType) -> str:
        if isinstance(type_tag, DataSourceType):
            return type_tag.value
        return type_tag.strip().lower()
