"""
Shared pytest fixtures for the batchmigrate library tests.

This module provides:
- In-memory server fixtures (source_server, target_server)
- Engine component fixtures (settings, task_repository, registry, service)
- Task factory fixture (task_factory)
- SQLite fixtures (sqlite_engine, sqlite_task_repository)

In-memory servers and the data source doubles keep process-wide state;
the autouse ``reset_in_memory_state`` fixture clears it around every test.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Generator
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from batchmigrate.datasources.in_memory import InMemoryServer, clear_servers, register_server
from batchmigrate.models import MigrationSettings, MigrationTask
from batchmigrate.registry import TaskRegistry
from batchmigrate.repositories.task import (
    InMemoryMigrationTaskRepository,
    SQLAlchemyMigrationTaskRepository,
)
from batchmigrate.service import MigrationService
from tests.fixtures import (
    MEMORY_PORT,
    SOURCE_HOST,
    TARGET_HOST,
    BrokenCountDataSource,
    ExplodingDataSource,
    FlakyDataSource,
    RecordingDataSource,
    memory_config,
)

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


# =============================================================================
# In-Memory State
# =============================================================================


@pytest.fixture(autouse=True)
def reset_in_memory_state() -> Generator[None, None, None]:
    """Clear in-memory servers and double counters before and after each test."""
    clear_servers()
    RecordingDataSource.reset()
    FlakyDataSource.reset()
    yield
    clear_servers()


@pytest.fixture
def source_server() -> InMemoryServer:
    """An in-memory server acting as migration source."""
    return register_server(SOURCE_HOST, MEMORY_PORT)


@pytest.fixture
def target_server() -> InMemoryServer:
    """An in-memory server acting as migration target."""
    return register_server(TARGET_HOST, MEMORY_PORT)


# =============================================================================
# Engine Components
# =============================================================================


@pytest.fixture
def settings() -> MigrationSettings:
    """Settings with tracing disabled."""
    return MigrationSettings(enable_tracing=False)


@pytest.fixture
def task_repository() -> InMemoryMigrationTaskRepository:
    return InMemoryMigrationTaskRepository()


@pytest.fixture
def registry(task_repository: InMemoryMigrationTaskRepository) -> TaskRegistry:
    return TaskRegistry(task_repository, enable_tracing=False)


@pytest_asyncio.fixture
async def service(
    task_repository: InMemoryMigrationTaskRepository,
    settings: MigrationSettings,
) -> AsyncGenerator[MigrationService, None]:
    """
    Provide a MigrationService backed by the in-memory repository.

    The data source doubles are registered under their type names, so a
    config with ``type="flaky"`` builds a FlakyDataSource.
    """
    svc = MigrationService(task_repository, settings=settings)
    for double in (RecordingDataSource, FlakyDataSource, BrokenCountDataSource, ExplodingDataSource):
        svc.factory.register(double.type_name, double)
    yield svc
    await svc.close()


@pytest.fixture
def task_factory() -> Callable[..., MigrationTask]:
    """
    Factory for MigrationTask instances between the two in-memory servers.

    Usage:
        def test_something(task_factory):
            task = task_factory(tables=["shop.orders"], batch_size=10)
    """
    counter = {"n": 0}

    def _create(**overrides: Any) -> MigrationTask:
        counter["n"] += 1
        fields: dict[str, Any] = {
            "task_id": f"task-{counter['n']}",
            "source_config": memory_config(SOURCE_HOST),
            "target_config": memory_config(TARGET_HOST),
            "databases": ["shop"],
            "batch_size": 1000,
        }
        fields.update(overrides)
        return MigrationTask(**fields)

    return _create


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """
    Provide an in-memory SQLite AsyncEngine.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sqlite_task_repository(
    sqlite_engine: AsyncEngine,
) -> SQLAlchemyMigrationTaskRepository:
    """SQL task repository on SQLite with the schema created."""
    repo = SQLAlchemyMigrationTaskRepository(sqlite_engine, enable_tracing=False)
    await repo.initialize()
    return repo
