"""Integration test fixtures.

Applies the issue-table and import-log migrations against an ephemeral
PostgreSQL database provided by pytest-postgresql.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = sorted((PROJECT_ROOT / "migrations").glob("*.sql"))

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    Each test gets a fresh database so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Row factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_row():
    """Factory: complete export row for ticket PROJ-<n>; kwargs override headers."""

    def _make(n: int, **kwargs) -> dict:
        row = {
            "Issue key": f"PROJ-{n}",
            "Issue id": str(10000 + n),
            "Summary": f"Ticket {n}",
            "Status": "To Do",
            "Priority": "Medium",
            "Project key": "PROJ",
            "Assignee": "Alice Smith",
            "Created": "12/Mar/24 10:15 AM",
            "Updated": "13/Mar/24 09:00 AM",
            "Sprint": "Sprint 1",
            "Story Points": "3",
        }
        row.update(kwargs)
        return row

    return _make
