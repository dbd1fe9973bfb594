"""
Repositories for persisted migration task state.
"""

from batchmigrate.repositories._connection import execute_with_connection
from batchmigrate.repositories.task import (
    InMemoryMigrationTaskRepository,
    MigrationTaskRepository,
    SQLAlchemyMigrationTaskRepository,
)

__all__ = [
    "MigrationTaskRepository",
    "SQLAlchemyMigrationTaskRepository",
    "InMemoryMigrationTaskRepository",
    "execute_with_connection",
]
