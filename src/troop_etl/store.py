"""troop_etl.store

The persistence seam for staging and execution.

Staging only reads; the executor reads and writes.  Both go through the
``Store`` protocol, which has two implementations:

  PostgresStore  psycopg connection against the schema in migrations/
  MemoryStore    dict-backed tables with the same uniqueness constraints,
                 used by unit tests and dry-run previews without a database

Rows are plain dicts keyed by column name.  Constraint violations surface
as exceptions from the write methods; callers isolate them per entity
inside ``savepoint()``.
"""

from __future__ import annotations

import copy
import itertools
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from troop_etl.normalize import normalize_name

log = logging.getLogger(__name__)

COMPLETE_STATUSES = frozenset({"completed", "approved", "awarded"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Raised by a store when a read or write cannot be completed."""


class ConstraintViolation(StoreError):
    """Raised when a write would break a uniqueness or foreign-key rule."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class Store(Protocol):
    # People and groups
    def find_scout_by_member_id(self, unit_id: str, member_id: str) -> dict[str, Any] | None: ...
    def find_profile_by_member_id(self, member_id: str) -> dict[str, Any] | None: ...
    def find_profile_by_email(self, email: str) -> dict[str, Any] | None: ...
    def list_patrols(self, unit_id: str) -> list[dict[str, Any]]: ...
    def find_membership(self, unit_id: str, profile_id: str) -> dict[str, Any] | None: ...
    def list_guardian_links(self, scout_id: str) -> list[dict[str, Any]]: ...
    def list_trainings(self, profile_id: str) -> list[dict[str, Any]]: ...

    def insert_patrol(self, unit_id: str, name: str, display_order: int) -> str: ...
    def insert_profile(self, values: dict[str, Any]) -> str: ...
    def update_profile(self, profile_id: str, values: dict[str, Any]) -> None: ...
    def insert_membership(self, unit_id: str, profile_id: str, role: str) -> str: ...
    def insert_scout(self, unit_id: str, values: dict[str, Any]) -> str: ...
    def update_scout(self, scout_id: str, values: dict[str, Any]) -> None: ...
    def insert_scout_account(self, scout_id: str, unit_id: str) -> str: ...
    def insert_guardian_link(
        self, scout_id: str, profile_id: str, relationship: str | None, is_primary: bool,
    ) -> str: ...
    def insert_training(
        self, profile_id: str, unit_id: str, code: str, name: str, expires_at: date | None,
    ) -> str: ...

    # Reference catalog
    def list_ranks(self) -> list[dict[str, Any]]: ...
    def list_merit_badges(self) -> list[dict[str, Any]]: ...
    def list_rank_requirements(self) -> list[dict[str, Any]]: ...
    def list_merit_badge_requirements(self) -> list[dict[str, Any]]: ...

    # Advancement progress
    def list_rank_progress(self, scout_id: str) -> list[dict[str, Any]]: ...
    def list_badge_progress(self, scout_id: str) -> list[dict[str, Any]]: ...
    def list_rank_requirement_progress(self, rank_progress_id: str) -> list[dict[str, Any]]: ...
    def list_badge_requirement_progress(self, badge_progress_id: str) -> list[dict[str, Any]]: ...

    def insert_rank_progress(self, values: dict[str, Any]) -> str: ...
    def update_rank_progress(self, progress_id: str, values: dict[str, Any]) -> None: ...
    def insert_badge_progress(self, values: dict[str, Any]) -> str: ...
    def update_badge_progress(self, progress_id: str, values: dict[str, Any]) -> None: ...
    def insert_rank_requirement_progress(self, values: dict[str, Any]) -> str: ...
    def update_rank_requirement_progress(self, row_id: str, values: dict[str, Any]) -> None: ...
    def insert_badge_requirement_progress(self, values: dict[str, Any]) -> str: ...
    def update_badge_requirement_progress(self, row_id: str, values: dict[str, Any]) -> None: ...

    def log_requirement_mismatch(self, values: dict[str, Any]) -> None: ...

    def savepoint(self, name: str) -> Any: ...


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

class PostgresStore:
    """Store backed by one psycopg connection; the caller owns commit/rollback."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    @classmethod
    def connect(cls, dsn: str, statement_timeout_ms: int | None = None) -> "PostgresStore":
        conn = psycopg.connect(dsn, autocommit=False)
        if statement_timeout_ms:
            conn.execute(
                sql.SQL("SET statement_timeout = {}").format(sql.Literal(int(statement_timeout_ms)))
            )
            # Session setting; keep it out of the rollback done after staging
            conn.commit()
        return cls(conn)

    # -- helpers ------------------------------------------------------------

    def _one(self, query: str, params: tuple) -> dict[str, Any] | None:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return _stringify_ids(row) if row else None

    def _all(self, query: str, params: tuple = ()) -> list[dict[str, Any]]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [_stringify_ids(r) for r in rows]

    def _insert(self, table: str, values: dict[str, Any]) -> str:
        cols = list(values)
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING id").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
        )
        row = self.conn.execute(query, [values[c] for c in cols]).fetchone()
        return str(row[0])

    def _update(self, table: str, row_id: str, values: dict[str, Any]) -> None:
        if not values:
            return
        cols = list(values)
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s").format(
            sql.Identifier(table),
            sql.SQL(", ").join(
                sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder()) for c in cols
            ),
        )
        self.conn.execute(query, [values[c] for c in cols] + [row_id])

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        sp = sql.Identifier(name)
        self.conn.execute(sql.SQL("SAVEPOINT {}").format(sp))
        try:
            yield
        except Exception:
            self.conn.execute(sql.SQL("ROLLBACK TO SAVEPOINT {}").format(sp))
            raise
        self.conn.execute(sql.SQL("RELEASE SAVEPOINT {}").format(sp))

    # -- people and groups --------------------------------------------------

    def find_scout_by_member_id(self, unit_id: str, member_id: str) -> dict[str, Any] | None:
        return self._one(
            """
            SELECT id, first_name, last_name, bsa_member_id, patrol_id, is_active
            FROM scouts
            WHERE unit_id = %s AND bsa_member_id = %s
            ORDER BY is_active DESC, created_at ASC
            LIMIT 1
            """,
            (unit_id, member_id),
        )

    def find_profile_by_member_id(self, member_id: str) -> dict[str, Any] | None:
        return self._one(
            "SELECT id, first_name, last_name, email, bsa_member_id FROM profiles "
            "WHERE bsa_member_id = %s ORDER BY created_at ASC LIMIT 1",
            (member_id,),
        )

    def find_profile_by_email(self, email: str) -> dict[str, Any] | None:
        return self._one(
            "SELECT id, first_name, last_name, email, bsa_member_id FROM profiles "
            "WHERE lower(email) = lower(%s) ORDER BY created_at ASC LIMIT 1",
            (email,),
        )

    def list_patrols(self, unit_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, name, display_order FROM patrols WHERE unit_id = %s ORDER BY display_order",
            (unit_id,),
        )

    def find_membership(self, unit_id: str, profile_id: str) -> dict[str, Any] | None:
        return self._one(
            "SELECT id, role, status FROM unit_memberships WHERE unit_id = %s AND profile_id = %s",
            (unit_id, profile_id),
        )

    def list_guardian_links(self, scout_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, profile_id, relationship, is_primary FROM scout_guardians WHERE scout_id = %s",
            (scout_id,),
        )

    def list_trainings(self, profile_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, training_code, expires_at FROM adult_trainings WHERE profile_id = %s",
            (profile_id,),
        )

    def insert_patrol(self, unit_id: str, name: str, display_order: int) -> str:
        return self._insert(
            "patrols", {"unit_id": unit_id, "name": name, "display_order": display_order},
        )

    def insert_profile(self, values: dict[str, Any]) -> str:
        return self._insert("profiles", values)

    def update_profile(self, profile_id: str, values: dict[str, Any]) -> None:
        self._update("profiles", profile_id, values)

    def insert_membership(self, unit_id: str, profile_id: str, role: str) -> str:
        return self._insert(
            "unit_memberships",
            {"unit_id": unit_id, "profile_id": profile_id, "role": role, "status": "active"},
        )

    def insert_scout(self, unit_id: str, values: dict[str, Any]) -> str:
        return self._insert("scouts", {"unit_id": unit_id, **values})

    def update_scout(self, scout_id: str, values: dict[str, Any]) -> None:
        self._update("scouts", scout_id, values)

    def insert_scout_account(self, scout_id: str, unit_id: str) -> str:
        return self._insert(
            "scout_accounts",
            {"scout_id": scout_id, "unit_id": unit_id, "billing_balance": 0, "funds_balance": 0},
        )

    def insert_guardian_link(
        self, scout_id: str, profile_id: str, relationship: str | None, is_primary: bool,
    ) -> str:
        return self._insert(
            "scout_guardians",
            {
                "scout_id": scout_id,
                "profile_id": profile_id,
                "relationship": relationship,
                "is_primary": is_primary,
            },
        )

    def insert_training(
        self, profile_id: str, unit_id: str, code: str, name: str, expires_at: date | None,
    ) -> str:
        return self._insert(
            "adult_trainings",
            {
                "profile_id": profile_id,
                "unit_id": unit_id,
                "training_code": code,
                "training_name": name,
                "expires_at": expires_at,
            },
        )

    # -- reference catalog --------------------------------------------------

    def list_ranks(self) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, code, name, display_order, requirement_version_year "
            "FROM bsa_ranks ORDER BY display_order"
        )

    def list_merit_badges(self) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, code, name, requirement_version_year, is_active "
            "FROM bsa_merit_badges ORDER BY name"
        )

    def list_rank_requirements(self) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, rank_id, version_year, requirement_number "
            "FROM bsa_rank_requirements ORDER BY rank_id, version_year, display_order"
        )

    def list_merit_badge_requirements(self) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, merit_badge_id, version_year, requirement_number, "
            "scoutbook_requirement_number "
            "FROM bsa_merit_badge_requirements "
            "ORDER BY merit_badge_id, version_year, display_order"
        )

    # -- advancement progress -----------------------------------------------

    def list_rank_progress(self, scout_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, scout_id, rank_id, status, awarded_at "
            "FROM scout_rank_progress WHERE scout_id = %s",
            (scout_id,),
        )

    def list_badge_progress(self, scout_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, scout_id, merit_badge_id, status, awarded_at, requirement_version_year "
            "FROM scout_merit_badge_progress WHERE scout_id = %s",
            (scout_id,),
        )

    def list_rank_requirement_progress(self, rank_progress_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, requirement_id, status, completed_at "
            "FROM scout_rank_requirement_progress WHERE scout_rank_progress_id = %s",
            (rank_progress_id,),
        )

    def list_badge_requirement_progress(self, badge_progress_id: str) -> list[dict[str, Any]]:
        return self._all(
            "SELECT id, requirement_id, status, completed_at "
            "FROM scout_merit_badge_requirement_progress "
            "WHERE scout_merit_badge_progress_id = %s",
            (badge_progress_id,),
        )

    def insert_rank_progress(self, values: dict[str, Any]) -> str:
        return self._insert("scout_rank_progress", values)

    def update_rank_progress(self, progress_id: str, values: dict[str, Any]) -> None:
        self._update("scout_rank_progress", progress_id, values)

    def insert_badge_progress(self, values: dict[str, Any]) -> str:
        return self._insert("scout_merit_badge_progress", values)

    def update_badge_progress(self, progress_id: str, values: dict[str, Any]) -> None:
        self._update("scout_merit_badge_progress", progress_id, values)

    def insert_rank_requirement_progress(self, values: dict[str, Any]) -> str:
        return self._insert("scout_rank_requirement_progress", values)

    def update_rank_requirement_progress(self, row_id: str, values: dict[str, Any]) -> None:
        self._update("scout_rank_requirement_progress", row_id, values)

    def insert_badge_requirement_progress(self, values: dict[str, Any]) -> str:
        return self._insert("scout_merit_badge_requirement_progress", values)

    def update_badge_requirement_progress(self, row_id: str, values: dict[str, Any]) -> None:
        self._update("scout_merit_badge_requirement_progress", row_id, values)

    def log_requirement_mismatch(self, values: dict[str, Any]) -> None:
        self._insert("import_requirement_mismatches", values)


def _stringify_ids(row: dict[str, Any]) -> dict[str, Any]:
    """UUID columns → str so ids compare equal across both stores."""
    out = dict(row)
    for key, value in row.items():
        if (key == "id" or key.endswith("_id")) and value is not None and not isinstance(value, str):
            out[key] = str(value)
    return out


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

# table → tuple of columns that must be unique together (None values exempt)
_UNIQUE_KEYS: dict[str, list[tuple[str, ...]]] = {
    "profiles": [("bsa_member_id",)],
    "unit_memberships": [("unit_id", "profile_id")],
    "patrols": [("unit_id", "name_key")],
    "scouts": [("unit_id", "bsa_member_id")],
    "scout_accounts": [("scout_id",)],
    "scout_guardians": [("scout_id", "profile_id")],
    "adult_trainings": [("profile_id", "training_code")],
    "bsa_ranks": [("code",)],
    "bsa_merit_badges": [("name",)],
    "bsa_rank_requirements": [("rank_id", "version_year", "requirement_number")],
    "bsa_merit_badge_requirements": [("merit_badge_id", "version_year", "requirement_number")],
    "scout_rank_progress": [("scout_id", "rank_id")],
    "scout_merit_badge_progress": [("scout_id", "merit_badge_id")],
    "scout_rank_requirement_progress": [("scout_rank_progress_id", "requirement_id")],
    "scout_merit_badge_requirement_progress": [
        ("scout_merit_badge_progress_id", "requirement_id"),
    ],
    "import_requirement_mismatches": [],
}

# child table.column → parent table
_FOREIGN_KEYS: dict[tuple[str, str], str] = {
    ("unit_memberships", "profile_id"): "profiles",
    ("scouts", "patrol_id"): "patrols",
    ("scout_accounts", "scout_id"): "scouts",
    ("scout_guardians", "scout_id"): "scouts",
    ("scout_guardians", "profile_id"): "profiles",
    ("adult_trainings", "profile_id"): "profiles",
    ("scout_rank_progress", "scout_id"): "scouts",
    ("scout_rank_progress", "rank_id"): "bsa_ranks",
    ("scout_merit_badge_progress", "scout_id"): "scouts",
    ("scout_merit_badge_progress", "merit_badge_id"): "bsa_merit_badges",
    ("scout_rank_requirement_progress", "scout_rank_progress_id"): "scout_rank_progress",
    ("scout_rank_requirement_progress", "requirement_id"): "bsa_rank_requirements",
    ("scout_merit_badge_requirement_progress", "scout_merit_badge_progress_id"):
        "scout_merit_badge_progress",
    ("scout_merit_badge_requirement_progress", "requirement_id"): "bsa_merit_badge_requirements",
}


class MemoryStore:
    """Dict-backed Store.  Ids are deterministic ("scouts-1", "scouts-2", ...)."""

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {t: {} for t in _UNIQUE_KEYS}
        self._ids = itertools.count(1)

    # -- helpers ------------------------------------------------------------

    def insert(self, table: str, values: dict[str, Any]) -> str:
        """Insert a row after checking uniqueness and foreign keys."""
        row = dict(values)
        if table == "patrols":
            row["name_key"] = normalize_name(row.get("name"))
        for (child, column), parent in _FOREIGN_KEYS.items():
            if child == table and row.get(column) is not None:
                if row[column] not in self.tables[parent]:
                    raise ConstraintViolation(
                        f"{table}.{column} references missing {parent} row {row[column]}"
                    )
        for key in _UNIQUE_KEYS[table]:
            wanted = tuple(row.get(c) for c in key)
            if any(v is None for v in wanted):
                continue
            for existing in self.tables[table].values():
                if tuple(existing.get(c) for c in key) == wanted:
                    raise ConstraintViolation(
                        f"duplicate key on {table} ({', '.join(key)})={wanted}"
                    )
        row_id = f"{table}-{next(self._ids)}"
        row["id"] = row_id
        row.setdefault("created_at", datetime.utcnow())
        self.tables[table][row_id] = row
        return row_id

    def update(self, table: str, row_id: str, values: dict[str, Any]) -> None:
        if row_id not in self.tables[table]:
            raise StoreError(f"{table} row {row_id} not found")
        self.tables[table][row_id].update(values)

    def rows(self, table: str, **where: Any) -> list[dict[str, Any]]:
        return [
            dict(r) for r in self.tables[table].values()
            if all(r.get(k) == v for k, v in where.items())
        ]

    def _first(self, table: str, **where: Any) -> dict[str, Any] | None:
        found = self.rows(table, **where)
        return found[0] if found else None

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        snapshot = copy.deepcopy(self.tables)
        try:
            yield
        except Exception:
            log.debug("rolling back to savepoint %s", name)
            self.tables = snapshot
            raise

    # -- people and groups --------------------------------------------------

    def find_scout_by_member_id(self, unit_id: str, member_id: str) -> dict[str, Any] | None:
        return self._first("scouts", unit_id=unit_id, bsa_member_id=member_id)

    def find_profile_by_member_id(self, member_id: str) -> dict[str, Any] | None:
        return self._first("profiles", bsa_member_id=member_id)

    def find_profile_by_email(self, email: str) -> dict[str, Any] | None:
        wanted = email.lower()
        for row in self.tables["profiles"].values():
            if (row.get("email") or "").lower() == wanted:
                return dict(row)
        return None

    def list_patrols(self, unit_id: str) -> list[dict[str, Any]]:
        return sorted(self.rows("patrols", unit_id=unit_id), key=lambda r: r["display_order"])

    def find_membership(self, unit_id: str, profile_id: str) -> dict[str, Any] | None:
        return self._first("unit_memberships", unit_id=unit_id, profile_id=profile_id)

    def list_guardian_links(self, scout_id: str) -> list[dict[str, Any]]:
        return self.rows("scout_guardians", scout_id=scout_id)

    def list_trainings(self, profile_id: str) -> list[dict[str, Any]]:
        return self.rows("adult_trainings", profile_id=profile_id)

    def insert_patrol(self, unit_id: str, name: str, display_order: int) -> str:
        return self.insert(
            "patrols",
            {"unit_id": unit_id, "name": name, "display_order": display_order, "is_active": True},
        )

    def insert_profile(self, values: dict[str, Any]) -> str:
        return self.insert("profiles", values)

    def update_profile(self, profile_id: str, values: dict[str, Any]) -> None:
        self.update("profiles", profile_id, values)

    def insert_membership(self, unit_id: str, profile_id: str, role: str) -> str:
        return self.insert(
            "unit_memberships",
            {"unit_id": unit_id, "profile_id": profile_id, "role": role, "status": "active"},
        )

    def insert_scout(self, unit_id: str, values: dict[str, Any]) -> str:
        return self.insert("scouts", {"unit_id": unit_id, "is_active": True, **values})

    def update_scout(self, scout_id: str, values: dict[str, Any]) -> None:
        self.update("scouts", scout_id, values)

    def insert_scout_account(self, scout_id: str, unit_id: str) -> str:
        return self.insert(
            "scout_accounts",
            {"scout_id": scout_id, "unit_id": unit_id, "billing_balance": 0, "funds_balance": 0},
        )

    def insert_guardian_link(
        self, scout_id: str, profile_id: str, relationship: str | None, is_primary: bool,
    ) -> str:
        return self.insert(
            "scout_guardians",
            {
                "scout_id": scout_id,
                "profile_id": profile_id,
                "relationship": relationship,
                "is_primary": is_primary,
            },
        )

    def insert_training(
        self, profile_id: str, unit_id: str, code: str, name: str, expires_at: date | None,
    ) -> str:
        return self.insert(
            "adult_trainings",
            {
                "profile_id": profile_id,
                "unit_id": unit_id,
                "training_code": code,
                "training_name": name,
                "expires_at": expires_at,
            },
        )

    # -- reference catalog --------------------------------------------------

    def list_ranks(self) -> list[dict[str, Any]]:
        return sorted(self.rows("bsa_ranks"), key=lambda r: r.get("display_order") or 0)

    def list_merit_badges(self) -> list[dict[str, Any]]:
        return sorted(self.rows("bsa_merit_badges"), key=lambda r: r["name"])

    def list_rank_requirements(self) -> list[dict[str, Any]]:
        return self.rows("bsa_rank_requirements")

    def list_merit_badge_requirements(self) -> list[dict[str, Any]]:
        return self.rows("bsa_merit_badge_requirements")

    # -- advancement progress -----------------------------------------------

    def list_rank_progress(self, scout_id: str) -> list[dict[str, Any]]:
        return self.rows("scout_rank_progress", scout_id=scout_id)

    def list_badge_progress(self, scout_id: str) -> list[dict[str, Any]]:
        return self.rows("scout_merit_badge_progress", scout_id=scout_id)

    def list_rank_requirement_progress(self, rank_progress_id: str) -> list[dict[str, Any]]:
        return self.rows("scout_rank_requirement_progress", scout_rank_progress_id=rank_progress_id)

    def list_badge_requirement_progress(self, badge_progress_id: str) -> list[dict[str, Any]]:
        return self.rows(
            "scout_merit_badge_requirement_progress",
            scout_merit_badge_progress_id=badge_progress_id,
        )

    def insert_rank_progress(self, values: dict[str, Any]) -> str:
        return self.insert("scout_rank_progress", values)

    def update_rank_progress(self, progress_id: str, values: dict[str, Any]) -> None:
        self.update("scout_rank_progress", progress_id, values)

    def insert_badge_progress(self, values: dict[str, Any]) -> str:
        return self.insert("scout_merit_badge_progress", values)

    def update_badge_progress(self, progress_id: str, values: dict[str, Any]) -> None:
        self.update("scout_merit_badge_progress", progress_id, values)

    def insert_rank_requirement_progress(self, values: dict[str, Any]) -> str:
        return self.insert("scout_rank_requirement_progress", values)

    def update_rank_requirement_progress(self, row_id: str, values: dict[str, Any]) -> None:
        self.update("scout_rank_requirement_progress", row_id, values)

    def insert_badge_requirement_progress(self, values: dict[str, Any]) -> str:
        return self.insert("scout_merit_badge_requirement_progress", values)

    def update_badge_requirement_progress(self, row_id: str, values: dict[str, Any]) -> None:
        self.update("scout_merit_badge_requirement_progress", row_id, values)

    def log_requirement_mismatch(self, values: dict[str, Any]) -> None:
        self.insert("import_requirement_mismatches", values)
