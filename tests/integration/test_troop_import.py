"""Integration tests for the troop import pipeline.

These tests run against an ephemeral PostgreSQL database with the schema
applied and a small catalog seeded (see conftest.py).
"""

from __future__ import annotations

import json
from pathlib import Path

import psycopg
import pytest
from click.testing import CliRunner

from troop_etl.import_troop_csv import main
from troop_etl.store import PostgresStore

PROJECT_ROOT = Path(__file__).parent.parent.parent
ALIASES_PATH = PROJECT_ROOT / "config" / "merit_badge_aliases.yml"

ADVANCEMENT_CSV = "\n".join([
    "BSA Member ID,First Name,Middle Name,Last Name,Advancement Type,Advancement,"
    "Version,Date Completed,Approved,Awarded,MarkedCompletedDate,Awarded Date",
    "123,Alex,,Doe,Rank,Tenderfoot,2022,01/10/2023,1,1,,01/15/2023",
    "123,Alex,,Doe,Tenderfoot Rank Requirements,1a,2022,01/05/2023,1,0,,",
    "123,Alex,,Doe,Merit Badges,Camping MB,2024,,1,1,,03/01/2024",
    "123,Alex,,Doe,Camping Merit Badge Requirements,2b[1],2024,02/01/2024,1,0,,",
    "999,Nora,,New,Rank,Tenderfoot,2022,,1,1,,02/02/2024",
]) + "\n"

ROSTER_CSV = "\n".join([
    "Unit Roster Report",
    "ADULT MEMBERS",
    "Unit Number,Council,District,First Name,Last Name,BSA Number,Email,Positions,Training,Expiration Date",
    "Troop 42,Great Lakes Council 272,North,Jane,Doe,111111,Jane.Doe@Example.com,Scoutmaster,"
    "Y01 Safeguarding Youth Training,05/01/2026",
    "Troop 42,Great Lakes Council 272,North,Pat,Parent,333333,pat@example.com,,,",
    "",
    "YOUTH MEMBERS",
    "Unit Number,First Name,Last Name,BSA Number,Patrol,Parent/Guardian Name,Relationship,Email",
    "Troop 42,Alex,Doe,444444,Hawk Patrol,Jane Doe,(111111) - Mother - Guardian,jane.doe@example.com",
    "Troop 42,Sam,Roe,555555,hawk patrol,,,",
]) + "\n"


def _count(conn: psycopg.Connection, table: str) -> int:
    return conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]


def _insert_scout(conn: psycopg.Connection, unit_id: str, member_id: str) -> str:
    row = conn.execute(
        "INSERT INTO scouts (unit_id, first_name, last_name, bsa_member_id) "
        "VALUES (%s, 'Alex', 'Doe', %s) RETURNING id",
        (unit_id, member_id),
    ).fetchone()
    conn.commit()
    return str(row[0])


def _invoke(dsn: str, unit_id: str, tmp_path: Path, *args: str):
    return CliRunner().invoke(main, [
        "--db-dsn", dsn,
        "--unit-id", unit_id,
        "--report-dir", str(tmp_path / "reports"),
        *args,
    ])


@pytest.fixture
def advancement_csv(tmp_path: Path) -> Path:
    path = tmp_path / "advancement.csv"
    path.write_text(ADVANCEMENT_CSV)
    return path


@pytest.fixture
def roster_csv(tmp_path: Path) -> Path:
    path = tmp_path / "roster.csv"
    path.write_text(ROSTER_CSV)
    return path


# ---------------------------------------------------------------------------
# PostgresStore
# ---------------------------------------------------------------------------

class TestPostgresStore:
    def test_savepoint_rolls_back_one_entity(self, db_conn, seeded):
        conn, _ = db_conn
        store = PostgresStore(conn)
        store.insert_scout(seeded["unit"], {"first_name": "A", "last_name": "B", "bsa_member_id": "1"})
        with pytest.raises(psycopg.errors.UniqueViolation):
            with store.savepoint("dup"):
                store.insert_scout(seeded["unit"], {"first_name": "C", "last_name": "D", "bsa_member_id": "1"})
        store.insert_scout(seeded["unit"], {"first_name": "E", "last_name": "F", "bsa_member_id": "2"})
        conn.commit()
        assert _count(conn, "scouts") == 2

    def test_profile_lookup_by_email_ignores_case(self, db_conn):
        conn, _ = db_conn
        store = PostgresStore(conn)
        pid = store.insert_profile({"first_name": "Jane", "last_name": "Doe", "email": "Jane@Example.com"})
        assert store.find_profile_by_email("jane@example.com")["id"] == pid

    def test_catalog_rows_have_string_ids(self, db_conn, seeded):
        conn, _ = db_conn
        ranks = PostgresStore(conn).list_ranks()
        assert [r["code"] for r in ranks] == ["scout", "tenderfoot"]
        assert ranks[1]["id"] == seeded["tenderfoot"]


# ---------------------------------------------------------------------------
# Advancement CLI
# ---------------------------------------------------------------------------

class TestAdvancementCli:
    def test_import_selected_scouts(self, db_conn, seeded, advancement_csv, tmp_path):
        conn, dsn = db_conn
        scout_id = _insert_scout(conn, seeded["unit"], "123")

        result = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--csv-path", str(advancement_csv),
            "--aliases-path", str(ALIASES_PATH),
            "--select-all",
        )
        assert result.exit_code == 0, result.output
        assert "Committed." in result.output

        rank = conn.execute(
            "SELECT status, awarded_at FROM scout_rank_progress WHERE scout_id = %s", (scout_id,),
        ).fetchone()
        assert rank[0] == "awarded"
        assert str(rank[1]) == "2023-01-15"
        req = conn.execute(
            "SELECT r.requirement_id::text, r.status FROM scout_merit_badge_requirement_progress r "
            "JOIN scout_merit_badge_progress p ON p.id = r.scout_merit_badge_progress_id "
            "WHERE p.scout_id = %s",
            (scout_id,),
        ).fetchall()
        assert req == [(seeded["Camping:2(1)"], "completed")]
        # 999 is not in the unit and advancement imports do not create scouts
        assert _count(conn, "scouts") == 1

        reports = list((tmp_path / "reports").glob("*.json"))
        assert len(reports) == 1
        counters = json.loads(reports[0].read_text())["counters"]
        assert counters["scouts_skipped"] == 1
        assert counters["warnings"][0]["kind"] == "scout_not_found"

    def test_replay_skips_duplicates(self, db_conn, seeded, advancement_csv, tmp_path):
        conn, dsn = db_conn
        _insert_scout(conn, seeded["unit"], "123")
        args = ("--csv-path", str(advancement_csv), "--select", "123")

        assert _invoke(dsn, seeded["unit"], tmp_path, *args).exit_code == 0
        before = _count(conn, "scout_rank_requirement_progress")
        conn.commit()

        again = _invoke(dsn, seeded["unit"], tmp_path, *args)
        assert again.exit_code == 0, again.output
        assert "duplicates skipped:          4" in again.output
        assert _count(conn, "scout_rank_requirement_progress") == before

    def test_stage_only_then_staged_in(self, db_conn, seeded, advancement_csv, tmp_path):
        conn, dsn = db_conn
        _insert_scout(conn, seeded["unit"], "123")
        staged_path = tmp_path / "staged.json"

        staged = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--csv-path", str(advancement_csv),
            "--staged-out", str(staged_path),
            "--stage-only",
        )
        assert staged.exit_code == 0, staged.output
        assert _count(conn, "scout_rank_progress") == 0
        data = json.loads(staged_path.read_text())
        assert data["summary"]["matched_scouts"] == 1
        conn.commit()

        applied = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--staged-in", str(staged_path),
            "--select", "123",
        )
        assert applied.exit_code == 0, applied.output
        assert _count(conn, "scout_rank_progress") == 1

    def test_create_unmatched(self, db_conn, seeded, advancement_csv, tmp_path):
        conn, dsn = db_conn
        result = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--csv-path", str(advancement_csv),
            "--select", "999",
            "--create-unmatched",
        )
        assert result.exit_code == 0, result.output
        assert _count(conn, "scouts") == 1
        assert _count(conn, "scout_accounts") == 1

    def test_dry_run_writes_nothing(self, db_conn, seeded, advancement_csv, tmp_path):
        conn, dsn = db_conn
        _insert_scout(conn, seeded["unit"], "123")
        result = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--csv-path", str(advancement_csv), "--select-all", "--dry-run",
        )
        assert result.exit_code == 0, result.output
        assert "[dry-run] All changes rolled back." in result.output
        assert _count(conn, "scout_rank_progress") == 0

    def test_wrong_unit_in_staged_file(self, db_conn, seeded, tmp_path):
        _, dsn = db_conn
        path = tmp_path / "staged.json"
        path.write_text(json.dumps({"unit_id": "00000000-0000-0000-0000-000000000000", "scouts": []}))
        result = _invoke(dsn, seeded["unit"], tmp_path, "--staged-in", str(path), "--select-all")
        assert result.exit_code == 1

    def test_requires_an_input(self, db_conn, seeded, tmp_path):
        _, dsn = db_conn
        assert _invoke(dsn, seeded["unit"], tmp_path).exit_code == 1


# ---------------------------------------------------------------------------
# Roster CLI
# ---------------------------------------------------------------------------

class TestRosterCli:
    def test_import_roster(self, db_conn, seeded, roster_csv, tmp_path):
        conn, dsn = db_conn
        result = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--mode", "roster", "--csv-path", str(roster_csv), "--select-all",
        )
        assert result.exit_code == 0, result.output

        assert _count(conn, "profiles") == 2
        assert _count(conn, "unit_memberships") == 2
        assert _count(conn, "scouts") == 2
        assert _count(conn, "scout_accounts") == 2
        assert _count(conn, "patrols") == 1
        assert _count(conn, "adult_trainings") == 1

        link = conn.execute(
            "SELECT p.bsa_member_id, g.relationship, g.is_primary FROM scout_guardians g "
            "JOIN profiles p ON p.id = g.profile_id JOIN scouts s ON s.id = g.scout_id "
            "WHERE s.bsa_member_id = '444444'"
        ).fetchone()
        assert link == ("111111", "Mother", True)
        role = conn.execute(
            "SELECT m.role FROM unit_memberships m JOIN profiles p ON p.id = m.profile_id "
            "WHERE p.bsa_member_id = '111111'"
        ).fetchone()[0]
        assert role == "leader"
        position = conn.execute(
            "SELECT position FROM profiles WHERE bsa_member_id = %s", ("111111",)
        ).fetchone()[0]
        assert position == "Scoutmaster"

    def test_roster_replay_is_stable(self, db_conn, seeded, roster_csv, tmp_path):
        conn, dsn = db_conn
        args = ("--mode", "roster", "--csv-path", str(roster_csv), "--select-all")
        assert _invoke(dsn, seeded["unit"], tmp_path, *args).exit_code == 0
        again = _invoke(dsn, seeded["unit"], tmp_path, *args)
        assert again.exit_code == 0, again.output
        assert _count(conn, "profiles") == 2
        assert _count(conn, "scout_guardians") == 1
        assert _count(conn, "patrols") == 1

    def test_stage_only_writes_review_file(self, db_conn, seeded, roster_csv, tmp_path):
        conn, dsn = db_conn
        out = tmp_path / "roster_staged.json"
        result = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--mode", "roster", "--csv-path", str(roster_csv),
            "--staged-out", str(out), "--stage-only",
        )
        assert result.exit_code == 0, result.output
        data = json.loads(out.read_text())
        assert data["summary"]["adults_create"] == 2
        assert data["new_patrols"] == ["Hawk Patrol"]
        assert data["unit_metadata"]["council"] == "Great Lakes Council"
        assert _count(conn, "profiles") == 0

    def test_windows_1252_export_is_decoded(self, db_conn, seeded, tmp_path):
        _, dsn = db_conn
        path = tmp_path / "roster_cp1252.csv"
        path.write_bytes(ROSTER_CSV.replace("Jane,Doe", "Jos\u00e9,Doe").encode("cp1252"))
        out = tmp_path / "roster_staged.json"
        result = _invoke(
            dsn, seeded["unit"], tmp_path,
            "--mode", "roster", "--csv-path", str(path),
            "--staged-out", str(out), "--stage-only",
        )
        assert result.exit_code == 0, result.output
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["adults"][0]["full_name"] == "Jos\u00e9 Doe"

    def test_staged_in_rejected_for_roster(self, db_conn, seeded, tmp_path):
        _, dsn = db_conn
        path = tmp_path / "x.json"
        path.write_text("{}")
        result = _invoke(dsn, seeded["unit"], tmp_path, "--mode", "roster", "--staged-in", str(path))
        assert result.exit_code == 1
