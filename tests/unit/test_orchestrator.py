"""
Unit tests for MigrationOrchestrator.

Tests cover:
- Table resolution (explicit list, first database, malformed names)
- Task-level failures of the pre-flight steps
- Missing target database creation
- Per-table failures leaving the task COMPLETED
- Unexpected exceptions
- Cancellation before and during execution
"""

import asyncio

import pytest

from batchmigrate.datasources.factory import DataSourceFactory
from batchmigrate.models import TaskStatus
from batchmigrate.orchestrator import MigrationOrchestrator, split_table_name
from batchmigrate.pipeline import MISSING_TABLE_MESSAGE
from tests.fixtures import (
    BrokenCountDataSource,
    ExplodingDataSource,
    RecordingDataSource,
    memory_config,
    seed_table,
)


@pytest.fixture
def orchestrator(registry, settings) -> MigrationOrchestrator:
    factory = DataSourceFactory(settings, enable_tracing=False)
    for double in (RecordingDataSource, BrokenCountDataSource, ExplodingDataSource):
        factory.register(double.type_name, double)
    return MigrationOrchestrator(registry, factory, settings, enable_tracing=False)


@pytest.fixture
def run_task(registry, orchestrator):
    """Register a task, move it to RUNNING and execute it to the end."""

    async def _run(task, cancel_event: asyncio.Event | None = None):
        await registry.register(task)
        await registry.transition(task.task_id, TaskStatus.RUNNING)
        await orchestrator.execute(task.task_id, cancel_event)
        return await registry.load(task.task_id)

    return _run


class TestSplitTableName:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("shop.orders", ("shop", "orders")),
            (" shop . orders ", ("shop", "orders")),
            ("shop.orders.archive", ("shop", "orders.archive")),
            ("orders", None),
            (".orders", None),
            ("shop.", None),
        ],
    )
    def test_split(self, name: str, expected) -> None:
        assert split_table_name(name) == expected


class TestTableResolution:
    @pytest.mark.asyncio
    async def test_all_tables_of_first_database(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        seed_table(source_server, "shop", "orders", 5)
        seed_table(source_server, "shop", "customers", 3)
        seed_table(source_server, "crm", "leads", 2)

        task = await run_task(task_factory(databases=["shop", "crm"], create_schema=True))

        assert task.status == TaskStatus.COMPLETED
        assert task.progress == 100.0
        assert [r.qualified_name for r in task.table_results] == [
            "shop.customers",
            "shop.orders",
        ]
        assert task.total_rows == 8
        assert task.migrated_rows == 8
        assert "crm" not in target_server.databases

    @pytest.mark.asyncio
    async def test_explicit_tables_skip_malformed_names(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        seed_table(source_server, "shop", "orders", 5)
        seed_table(source_server, "crm", "leads", 2)

        task = await run_task(
            task_factory(tables=["crm.leads", "orders", "shop.orders"], create_schema=True)
        )

        assert task.status == TaskStatus.COMPLETED
        assert [r.qualified_name for r in task.table_results] == ["crm.leads", "shop.orders"]
        assert len(target_server.table("crm", "leads").rows) == 2

    @pytest.mark.asyncio
    async def test_empty_database(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        source_server.create_database("shop")

        task = await run_task(task_factory())

        assert task.status == TaskStatus.COMPLETED
        assert task.table_results == []
        assert task.progress == 100.0


class TestPreflightFailures:
    @pytest.mark.asyncio
    async def test_unsupported_source_type(self, run_task, target_server, task_factory) -> None:
        task = await run_task(
            task_factory(source_config=memory_config("source-db", type_tag="mongodb"))
        )

        assert task.status == TaskStatus.FAILED
        assert task.error_message.startswith("Failed to create source data source")
        assert "mongodb" in task.error_message
        assert task.end_time is not None

    @pytest.mark.asyncio
    async def test_unreachable_source(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        source_server.reachable = False

        task = await run_task(task_factory())

        assert task.status == TaskStatus.FAILED
        assert task.error_message.startswith("Failed to connect source")

    @pytest.mark.asyncio
    async def test_unreachable_target(self, run_task, source_server, task_factory) -> None:
        seed_table(source_server, "shop", "orders", 1)

        task = await run_task(task_factory())

        assert task.status == TaskStatus.FAILED
        assert task.error_message.startswith("Failed to connect target")

    @pytest.mark.asyncio
    async def test_missing_target_database_is_created(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        seed_table(source_server, "shop", "orders", 3)

        task = await run_task(
            task_factory(target_config=memory_config("target-db", "shop"), create_schema=True)
        )

        assert task.status == TaskStatus.COMPLETED
        assert task.migrated_rows == 3
        assert "shop" in target_server.databases

    @pytest.mark.asyncio
    async def test_unexpected_exception(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        task = await run_task(
            task_factory(source_config=memory_config("source-db", type_tag="exploding"))
        )

        assert task.status == TaskStatus.FAILED
        assert task.error_message == "Task failed unexpectedly: boom"


class TestTableFailures:
    @pytest.mark.asyncio
    async def test_missing_target_table_fails_only_that_table(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        seed_table(source_server, "shop", "orders", 2500)
        seed_table(source_server, "shop", "refunds", 10)
        seed_table(target_server, "shop", "orders", 0)

        task = await run_task(task_factory(tables=["shop.orders", "shop.refunds"]))

        assert task.status == TaskStatus.COMPLETED
        assert task.migrated_rows == 2500
        orders, refunds = task.table_results
        assert orders.success and orders.migrated_rows == 2500
        assert not refunds.success
        assert refunds.error_message == MISSING_TABLE_MESSAGE

    @pytest.mark.asyncio
    async def test_row_count_failure(
        self, run_task, source_server, target_server, task_factory
    ) -> None:
        seed_table(source_server, "shop", "orders", 4)

        task = await run_task(
            task_factory(
                source_config=memory_config("source-db", type_tag="broken_count"),
                create_schema=True,
            )
        )

        assert task.status == TaskStatus.COMPLETED
        assert task.total_rows == 0
        assert task.table_results[0].error_message.startswith("Failed to get row count")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_first_table(
        self, registry, orchestrator, source_server, target_server, task_factory
    ) -> None:
        seed_table(source_server, "shop", "orders", 5)
        task = task_factory(
            source_config=memory_config("source-db", type_tag="recording"), create_schema=True
        )
        await registry.register(task)
        await registry.transition(task.task_id, TaskStatus.RUNNING)
        await registry.transition(task.task_id, TaskStatus.CANCELLED)
        cancel_event = asyncio.Event()
        cancel_event.set()

        await orchestrator.execute(task.task_id, cancel_event)

        stored = await registry.load(task.task_id)
        assert stored.status == TaskStatus.CANCELLED
        assert stored.table_results == []
        assert RecordingDataSource.reads == []

    @pytest.mark.asyncio
    async def test_cancelled_status_survives_late_completion(
        self, registry, orchestrator, source_server, target_server, task_factory
    ) -> None:
        """A cancel landing mid-table leaves the task CANCELLED."""
        seed_table(source_server, "shop", "orders", 30)
        task = task_factory(batch_size=10, create_schema=True)
        await registry.register(task)
        await registry.transition(task.task_id, TaskStatus.RUNNING)
        cancel_event = asyncio.Event()

        original = orchestrator._migrator.migrate_table

        async def cancel_then_migrate(*args, **kwargs):
            await registry.transition(task.task_id, TaskStatus.CANCELLED)
            cancel_event.set()
            return await original(*args, **kwargs)

        orchestrator._migrator.migrate_table = cancel_then_migrate

        await orchestrator.execute(task.task_id, cancel_event)

        stored = await registry.load(task.task_id)
        assert stored.status == TaskStatus.CANCELLED
        assert stored.migrated_rows == 0
