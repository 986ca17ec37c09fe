"""Integration test fixtures.

Applies the migrations against an ephemeral PostgreSQL database provided
by pytest-postgresql, then seeds one unit and a small advancement catalog.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_troop_core.sql",
]

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


@pytest.fixture(autouse=True)
def _require_postgres_binaries():
    if shutil.which("pg_ctl") is None and shutil.which("pg_config") is None:
        pytest.skip("PostgreSQL server binaries not installed")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (connection, dsn) with the schema applied.

    Each test gets a fresh schema via function scope so tests are isolated.
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
# Seed data
# ---------------------------------------------------------------------------

CATALOG_RANKS = [("scout", "Scout", 1), ("tenderfoot", "Tenderfoot", 2)]
CATALOG_RANK_REQUIREMENTS = {"tenderfoot": ["1a", "1b", "2a"], "scout": ["1a", "2"]}
CATALOG_BADGE_REQUIREMENTS = {"Camping": ["1", "2(1)", "3"]}


def _returning_id(conn: psycopg.Connection, query: str, params: tuple) -> str:
    return str(conn.execute(query, params).fetchone()[0])


@pytest.fixture
def seeded(db_conn):
    """Insert one troop and the reference catalog; return ids keyed by name."""
    conn, _ = db_conn
    ids: dict[str, str] = {}
    ids["unit"] = _returning_id(
        conn,
        "INSERT INTO units (unit_type, unit_number, council) VALUES ('troop', '42', %s) RETURNING id",
        ("Great Lakes Council",),
    )
    for code, name, order in CATALOG_RANKS:
        ids[code] = _returning_id(
            conn,
            "INSERT INTO bsa_ranks (code, name, display_order, requirement_version_year) "
            "VALUES (%s, %s, %s, 2022) RETURNING id",
            (code, name, order),
        )
        for n, number in enumerate(CATALOG_RANK_REQUIREMENTS[code]):
            ids[f"{code}:{number}"] = _returning_id(
                conn,
                "INSERT INTO bsa_rank_requirements (rank_id, version_year, requirement_number, display_order) "
                "VALUES (%s, 2022, %s, %s) RETURNING id",
                (ids[code], number, n),
            )
    for name, numbers in CATALOG_BADGE_REQUIREMENTS.items():
        ids[name] = _returning_id(
            conn,
            "INSERT INTO bsa_merit_badges (code, name, requirement_version_year) "
            "VALUES (%s, %s, 2024) RETURNING id",
            (name.lower(), name),
        )
        for n, number in enumerate(numbers):
            ids[f"{name}:{number}"] = _returning_id(
                conn,
                "INSERT INTO bsa_merit_badge_requirements "
                "(merit_badge_id, version_year, requirement_number, display_order) "
                "VALUES (%s, 2024, %s, %s) RETURNING id",
                (ids[name], number, n),
            )
    conn.commit()
    return ids
