"""
Database schema for persisted migration tasks.

Tables:
    - migration_tasks: one row per task, never deleted by the engine

Supported backends:
    - sqlite: used for local runs and the test-suite (sqlite+aiosqlite)
    - mysql: production storage (mysql+aiomysql)

Usage:
    from batchmigrate.migrations import get_schema, get_statements

    # Raw DDL text
    sql = get_schema("mysql")

    # Execute statement by statement (drivers accept one per call)
    async with engine.begin() as conn:
        for statement in get_statements("sqlite"):
            await conn.execute(text(statement))
"""

from pathlib import Path
from typing import Literal

# Supported database backends
BackendName = Literal["sqlite", "mysql"]

_SCHEMAS_DIR = Path(__file__).parent / "schemas"


def list_backends() -> list[str]:
    """Return the backends a schema is shipped for."""
    return sorted(p.stem for p in _SCHEMAS_DIR.glob("*.sql"))


def get_schema(backend: BackendName = "sqlite") -> str:
    """
    Load the migration_tasks DDL for a backend.

    Args:
        backend: The database backend ("sqlite" or "mysql")

    Returns:
        SQL schema definition as a string

    Raises:
        ValueError: If no schema is shipped for the backend
    """
    path = _SCHEMAS_DIR / f"{backend}.sql"
    if not path.exists():
        raise ValueError(
            f"No schema available for backend '{backend}'. Available backends: {list_backends()}"
        )
    return path.read_text()


def get_statements(backend: BackendName = "sqlite") -> list[str]:
    """
    Split the schema of a backend into individual statements.

    Comment lines are dropped; statements are returned without the
    trailing semicolon.
    """
    lines = [
        line for line in get_schema(backend).splitlines() if not line.lstrip().startswith("--")
    ]
    return [s.strip() for s in "\n".join(lines).split(";") if s.strip()]


__all__ = [
    "BackendName",
    "get_schema",
    "get_statements",
    "list_backends",
]
