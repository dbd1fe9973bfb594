"""
Basic Usage Example

This example demonstrates the migration engine end to end:
- Registering in-memory source and target servers
- Creating, starting and waiting for a migration task
- Reading progress and the per-table summary
- Comparing source and target after the run

The in-memory data source stands in for MySQL; swapping the config
``type`` to "mysql" (with real host/credentials) runs the same flow
against MySQL servers.

Run with: python examples/basic_usage.py
"""

import asyncio
import logging

from batchmigrate import (
    ColumnInfo,
    DataSourceConfig,
    InMemoryMigrationTaskRepository,
    MigrationRequest,
    MigrationService,
    MigrationSettings,
    TableSchema,
)
from batchmigrate.datasources import register_server

# =============================================================================
# Step 1: Prepare the servers
# =============================================================================
# In-memory servers are keyed by host:port, like real database servers.


def seed_source() -> None:
    source = register_server("source-db", 3306)
    register_server("target-db", 3306)

    orders = TableSchema(
        name="orders",
        columns=[
            ColumnInfo(name="id", type="bigint", is_nullable=False),
            ColumnInfo(name="customer", type="varchar(64)"),
            ColumnInfo(name="total", type="decimal(10,2)", default_value="0"),
        ],
        indexes=["PRIMARY"],
    )
    customers = TableSchema(
        name="customers",
        columns=[
            ColumnInfo(name="id", type="bigint", is_nullable=False),
            ColumnInfo(name="name", type="varchar(64)"),
        ],
    )
    source.add_table(
        "shop",
        orders,
        [{"id": i, "customer": f"c{i % 7}", "total": i * 1.5} for i in range(1, 2501)],
    )
    source.add_table("shop", customers, [{"id": i, "name": f"c{i}"} for i in range(7)])


# =============================================================================
# Step 2: Run a migration
# =============================================================================


async def main():
    """Demonstrate a full migration between two servers."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    print("=" * 60)
    print("Batch Migration Basic Usage Example")
    print("=" * 60)

    seed_source()
    source_config = DataSourceConfig(type="memory", host="source-db", port=3306)
    target_config = DataSourceConfig(type="memory", host="target-db", port=3306)

    service = MigrationService(
        InMemoryMigrationTaskRepository(),
        settings=MigrationSettings(default_batch_size=1000, enable_tracing=False),
    )

    print("\n1. Checking connections")
    await service.test_connection(source_config)
    await service.test_connection(target_config)
    print(f"   Source databases: {await service.list_databases(source_config)}")

    print("\n2. Creating the task")
    task = await service.create_task(
        MigrationRequest(
            source_config=source_config,
            target_config=target_config,
            database="shop",
            create_schema=True,
        )
    )
    print(f"   Task {task.task_id} is {task.status.value}")

    print("\n3. Running")
    await service.start_task(task.task_id)
    await service.wait_for_task(task.task_id, timeout=30)

    progress = await service.get_progress(task.task_id)
    print(f"   Status: {progress.status.value}, progress {progress.progress:.0f}%")
    print(f"   Rows migrated: {progress.migrated_rows}/{progress.total_rows}")

    print("\n4. Summary")
    summary = await service.get_summary(task.task_id)
    for result in summary.table_results:
        state = "ok" if result.success else f"failed ({result.error_message})"
        print(f"   {result.qualified_name}: {result.migrated_rows} rows, {state}")

    print("\n5. Comparing source and target")
    comparison = await service.compare(source_config, target_config, "shop")
    for table in comparison.tables:
        print(
            f"   {table.table}: source={table.row_count_source} "
            f"target={table.row_count_target} equal={table.row_counts_equal}"
        )

    await service.close()
    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
