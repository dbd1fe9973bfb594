"""
Unit tests for batchmigrate data models.

Tests cover:
- TaskStatus terminal states and transition table
- DataSourceConfig JSON round trip and password masking
- MigrationRequest database name resolution
- MigrationSettings validation
- TableMigrationResult serialization
- MigrationSummary aggregation
"""

from datetime import UTC, datetime, timedelta

import pytest

from batchmigrate.models import (
    CompareResult,
    DataSourceConfig,
    MigrationProgress,
    MigrationRequest,
    MigrationSettings,
    MigrationSummary,
    MigrationTask,
    TableCompareResult,
    TableMigrationResult,
    TaskStatus,
)


class TestTaskStatus:
    """Tests for the task lifecycle enum."""

    @pytest.mark.parametrize(
        "status",
        [TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED],
    )
    def test_terminal_statuses(self, status: TaskStatus) -> None:
        """Finished statuses are terminal and allow no transition."""
        assert status.is_terminal
        assert not status.is_cancellable
        for target in TaskStatus:
            assert not status.can_transition_to(target)

    def test_pending_transitions(self) -> None:
        assert TaskStatus.PENDING.can_transition_to(TaskStatus.RUNNING)
        assert TaskStatus.PENDING.can_transition_to(TaskStatus.CANCELLED)
        assert not TaskStatus.PENDING.can_transition_to(TaskStatus.COMPLETED)
        assert not TaskStatus.PENDING.can_transition_to(TaskStatus.FAILED)

    def test_running_transitions(self) -> None:
        assert TaskStatus.RUNNING.can_transition_to(TaskStatus.COMPLETED)
        assert TaskStatus.RUNNING.can_transition_to(TaskStatus.FAILED)
        assert TaskStatus.RUNNING.can_transition_to(TaskStatus.CANCELLED)
        assert not TaskStatus.RUNNING.can_transition_to(TaskStatus.RUNNING)
        assert not TaskStatus.RUNNING.can_transition_to(TaskStatus.PENDING)

    def test_cancellable_statuses(self) -> None:
        assert TaskStatus.PENDING.is_cancellable
        assert TaskStatus.RUNNING.is_cancellable


class TestDataSourceConfig:
    """Tests for DataSourceConfig."""

    def test_json_round_trip_is_field_for_field_equal(self) -> None:
        """Serializing to the persisted text form and back preserves every field."""
        config = DataSourceConfig(
            type="mysql",
            host="db1.internal",
            port=3307,
            database="shop",
            username="migrator",
            password="s3cr:et\"'",
            ssl_mode="required",
            charset="utf8mb4",
            timeout=7.5,
        )

        restored = DataSourceConfig.from_json(config.to_json())

        assert restored == config
        assert restored.model_dump() == config.model_dump()

    def test_round_trip_with_defaults(self) -> None:
        config = DataSourceConfig(type="memory")
        assert DataSourceConfig.from_json(config.to_json()) == config

    def test_config_is_frozen(self) -> None:
        config = DataSourceConfig(type="mysql")
        with pytest.raises(Exception):
            config.host = "other"  # type: ignore[misc]

    def test_with_database_returns_copy(self) -> None:
        config = DataSourceConfig(type="mysql", database="a")
        other = config.with_database("b")
        assert other.database == "b"
        assert config.database == "a"

    def test_safe_dict_masks_password(self) -> None:
        config = DataSourceConfig(type="mysql", password="secret")
        assert config.safe_dict()["password"] == "****"

    def test_safe_dict_leaves_empty_password(self) -> None:
        assert DataSourceConfig(type="mysql").safe_dict()["password"] == ""

    def test_unknown_type_is_accepted(self) -> None:
        """Unknown tags survive validation so the factory can reject them."""
        assert DataSourceConfig(type="oracle").type == "oracle"


class TestMigrationRequest:
    """Tests for database name resolution on requests."""

    def test_comma_separated_databases(self) -> None:
        request = MigrationRequest(database="shop, crm ,,billing")
        assert request.database_names() == ["shop", "crm", "billing"]

    def test_list_of_databases(self) -> None:
        request = MigrationRequest(database=["shop", "shop", "crm"])
        assert request.database_names() == ["shop", "crm"]

    def test_databases_harvested_from_tables(self) -> None:
        request = MigrationRequest(database="shop", tables=["crm.users", "shop.orders"])
        assert request.database_names() == ["shop", "crm"]

    def test_only_tables(self) -> None:
        request = MigrationRequest(tables=["crm.users"])
        assert request.database_names() == ["crm"]

    def test_no_databases(self) -> None:
        assert MigrationRequest().database_names() == []

    def test_tables_are_stripped(self) -> None:
        request = MigrationRequest(tables=[" shop.orders ", "", "  "])
        assert request.tables == ["shop.orders"]


class TestMigrationSettings:
    """Tests for MigrationSettings validation."""

    def test_defaults(self) -> None:
        settings = MigrationSettings()
        assert settings.default_batch_size == 1000
        assert settings.write_retry_limit == 3
        assert settings.retain_finished_tasks is True

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError, match="default_batch_size"):
            MigrationSettings(default_batch_size=0)

    def test_rejects_negative_retry_limit(self) -> None:
        with pytest.raises(ValueError, match="write_retry_limit"):
            MigrationSettings(write_retry_limit=-1)

    def test_zero_retry_limit_allowed(self) -> None:
        assert MigrationSettings(write_retry_limit=0).write_retry_limit == 0


class TestTableMigrationResult:
    """Tests for TableMigrationResult."""

    def test_dict_round_trip(self) -> None:
        start = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        result = TableMigrationResult(
            database="shop",
            table_name="orders",
            success=False,
            total_rows=10,
            migrated_rows=7,
            failed_rows=3,
            error_message="boom",
            start_time=start,
            end_time=start + timedelta(seconds=4),
        )

        restored = TableMigrationResult.from_dict(result.to_dict())

        assert restored == result
        assert restored.duration_seconds == 4.0
        assert restored.qualified_name == "shop.orders"

    def test_duration_without_times(self) -> None:
        assert TableMigrationResult(database="a", table_name="b").duration_seconds == 0.0


class TestMigrationTask:
    def test_snapshot_is_independent(self, task_factory) -> None:
        task = task_factory()
        task.table_results.append(TableMigrationResult(database="shop", table_name="a"))

        snapshot = task.snapshot()
        snapshot.table_results.clear()
        snapshot.migrated_rows = 99

        assert len(task.table_results) == 1
        assert task.migrated_rows == 0


class TestMigrationSummary:
    def test_from_task_counts_tables(self, task_factory) -> None:
        start = datetime(2024, 1, 1, tzinfo=UTC)
        task = task_factory(
            status=TaskStatus.COMPLETED,
            migrated_rows=2500,
            failed_rows=0,
            start_time=start,
            end_time=start + timedelta(seconds=10),
            table_results=[
                TableMigrationResult(database="shop", table_name="a", success=True),
                TableMigrationResult(database="shop", table_name="b", success=False),
            ],
        )

        summary = MigrationSummary.from_task(task)

        assert summary.total_tables == 2
        assert summary.success_tables == 1
        assert summary.failed_tables == 1
        assert summary.duration_seconds == 10.0
        assert summary.status == TaskStatus.COMPLETED


class TestProgressAndCompare:
    def test_rows_remaining_never_negative(self) -> None:
        progress = MigrationProgress(
            task_id="t",
            status=TaskStatus.RUNNING,
            progress=50.0,
            total_rows=10,
            migrated_rows=8,
            failed_rows=5,
        )
        assert progress.rows_remaining == 0

    def test_compare_row_counts_equal(self) -> None:
        table = TableCompareResult("orders", True, True, 5, 5)
        result = CompareResult(True, 1, 1, [table])
        assert result.tables[0].row_counts_equal


def test_task_defaults(task_factory) -> None:
    """New tasks start pending with zero progress."""
    task: MigrationTask = task_factory()
    assert task.status == TaskStatus.PENDING
    assert task.progress == 0.0
    assert task.created_at.tzinfo is not None
