"""troop_etl.import_troop_csv

Unified CLI entrypoint for troop CSV imports.

Modes (--mode):
  advancement  import a troop-wide advancement export (default)
  roster       import a unit roster export (adults, youth, guardians)

Each run parses the export, stages it against the database (read-only), and
then imports the selected members.  --stage-only stops after staging so the
staged JSON (--staged-out) can be reviewed; an advancement review file can
be fed back with --staged-in.

Usage (advancement, review first):
    python -m troop_etl.import_troop_csv \\
        --mode advancement \\
        --db-dsn "$DB_DSN" \\
        --unit-id "$UNIT_ID" \\
        --csv-path "exports/troop_advancement.csv" \\
        --staged-out "artifacts/staged/advancement.json" \\
        --stage-only

Usage (advancement, import reviewed selection):
    python -m troop_etl.import_troop_csv \\
        --mode advancement \\
        --db-dsn "$DB_DSN" \\
        --unit-id "$UNIT_ID" \\
        --staged-in "artifacts/staged/advancement.json" \\
        --select 123456789 --select 987654321 \\
        --completed-by "$PROFILE_ID"

Usage (roster):
    python -m troop_etl.import_troop_csv \\
        --mode roster \\
        --db-dsn "$DB_DSN" \\
        --unit-id "$UNIT_ID" \\
        --csv-path "exports/roster.csv" \\
        --select-all
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg

from troop_etl.advancement_parser import parse_troop_advancement, validate_parsed_data
from troop_etl.catalog import (
    DEFAULT_ALIASES_PATH,
    AliasMapValidationError,
    BadgeAliasMap,
    default_badge_aliases,
    load_badge_aliases,
    load_catalog,
)
from troop_etl.executor import (
    build_advancement_report,
    build_roster_report,
    import_roster,
    import_staged_advancement,
)
from troop_etl.roster_parser import parse_roster, validate_roster
from troop_etl.shared import DEFAULT_REPORT_DIR, write_run_report
from troop_etl.staging import (
    StagedRoster,
    StagedTroopAdvancement,
    stage_roster,
    stage_troop_advancement,
)
from troop_etl.store import PostgresStore
from troop_etl.tabular import UnsupportedExportError, read_export_text

log = logging.getLogger(__name__)


@click.command()
@click.option(
    "--mode",
    type=click.Choice(["advancement", "roster"]),
    default="advancement",
    show_default=True,
    help="Which export is being imported",
)
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
@click.option("--unit-id", required=True, help="Target unit id")
@click.option("--csv-path", default=None, type=click.Path(), help="Export CSV to parse and stage")
@click.option("--staged-in", default=None, type=click.Path(), help="[advancement] Reviewed staged JSON to import")
@click.option("--staged-out", default=None, type=click.Path(), help="Write the staged change-set as JSON")
@click.option("--stage-only", is_flag=True, default=False, help="Stop after staging; write nothing")
@click.option("--select", "select", multiple=True, help="Member id to import, or line:N for a roster row without one (repeatable)")
@click.option("--select-all", is_flag=True, default=False, help="Import every staged member")
@click.option(
    "--create-unmatched/--no-create-unmatched",
    default=None,
    help="Create records for unmatched people (default: on for roster, off for advancement)",
)
@click.option("--completed-by", default=None, help="[advancement] Profile id recorded on completed requirements")
@click.option(
    "--initialize-requirements/--no-initialize-requirements",
    default=True,
    show_default=True,
    help="[advancement] Create not_started rows for every requirement of new progress",
)
@click.option(
    "--aliases-path",
    default=str(DEFAULT_ALIASES_PATH),
    show_default=True,
    type=click.Path(),
    help="[advancement] YAML merit badge alias map",
)
@click.option("--statement-timeout-ms", default=60_000, type=int, show_default=True)
@click.option("--dry-run", is_flag=True, default=False)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--report-dir", default=str(DEFAULT_REPORT_DIR), show_default=True, type=click.Path())
@click.option(
    "--log-level",
    default="WARNING",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
)
def main(
    mode: str,
    db_dsn: str,
    unit_id: str,
    csv_path: str | None,
    staged_in: str | None,
    staged_out: str | None,
    stage_only: bool,
    select: tuple[str, ...],
    select_all: bool,
    create_unmatched: bool | None,
    completed_by: str | None,
    initialize_requirements: bool,
    aliases_path: str,
    statement_timeout_ms: int,
    dry_run: bool,
    run_id: str | None,
    report_dir: str,
    log_level: str,
) -> None:
    """Unified troop CSV import CLI."""
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")
    _validate_flags(mode, csv_path, staged_in, run_id)

    if create_unmatched is None:
        create_unmatched = mode == "roster"

    try:
        store = PostgresStore.connect(db_dsn, statement_timeout_ms)
    except psycopg.OperationalError as exc:
        click.echo(f"[{run_id}] FATAL: cannot connect to database: {exc}", err=True)
        sys.exit(1)

    try:
        if mode == "advancement":
            _run_advancement(
                store, run_id, started_at, unit_id, csv_path, staged_in, staged_out,
                stage_only, select, select_all, create_unmatched, completed_by,
                initialize_requirements, Path(aliases_path), dry_run, Path(report_dir),
            )
        else:
            _run_roster(
                store, run_id, started_at, unit_id, csv_path, staged_out,
                stage_only, select, select_all, create_unmatched, dry_run, Path(report_dir),
            )
    finally:
        store.conn.close()


# ---------------------------------------------------------------------------
# Advancement
# ---------------------------------------------------------------------------

def _run_advancement(
    store: PostgresStore,
    run_id: str,
    started_at: str,
    unit_id: str,
    csv_path: str | None,
    staged_in: str | None,
    staged_out: str | None,
    stage_only: bool,
    select: tuple[str, ...],
    select_all: bool,
    create_unmatched: bool,
    completed_by: str | None,
    initialize_requirements: bool,
    aliases_path: Path,
    dry_run: bool,
    report_dir: Path,
) -> None:
    aliases = _load_aliases(aliases_path, run_id)
    catalog = load_catalog(store, aliases)
    click.echo(
        f"[{run_id}] Catalog: {len(catalog.ranks)} ranks, {len(catalog.badges)} merit badges"
    )

    if staged_in:
        staged = StagedTroopAdvancement.from_dict(json.loads(Path(staged_in).read_text(encoding="utf-8")))
        if staged.unit_id != unit_id:
            click.echo(
                f"[{run_id}] FATAL: staged file is for unit {staged.unit_id}, not {unit_id}",
                err=True,
            )
            sys.exit(1)
    else:
        try:
            parsed = parse_troop_advancement(read_export_text(Path(csv_path)))
        except UnsupportedExportError as exc:
            click.echo(f"[{run_id}] FATAL: {exc}", err=True)
            sys.exit(1)
        s = parsed.summary
        click.echo(
            f"[{run_id}] Parsed: {s.total_rows} rows, {s.scout_count} scouts, "
            f"{s.rank_count} ranks, {s.rank_requirement_count} rank requirements, "
            f"{s.badge_count} badges, {s.badge_requirement_count} badge requirements, "
            f"{s.duplicate_rows} duplicate rows, {len(parsed.errors)} errors"
        )
        for problem in validate_parsed_data(parsed):
            click.echo(f"[{run_id}] WARN: {problem}", err=True)
        staged = stage_troop_advancement(parsed, store, unit_id, catalog)
        store.conn.rollback()

    summary = staged.summary()
    click.echo(
        f"[{run_id}] Staged: {summary['total_scouts']} scouts "
        f"({summary['matched_scouts']} matched, {summary['unmatched_scouts']} unmatched), "
        f"{len(staged.warnings)} warnings"
    )
    if staged_out:
        _write_staged(Path(staged_out), staged, run_id)

    selected = [s.member_id for s in staged.scouts] if select_all else list(select)
    if stage_only or not selected:
        if not stage_only:
            click.echo(f"[{run_id}] No scouts selected; nothing imported.")
        write_run_report(
            run_id, started_at, "advancement", dry_run,
            {"csv_path": csv_path, "staged_in": staged_in}, staged, report_dir,
        )
        return

    result = import_staged_advancement(
        store, unit_id, staged, selected,
        create_unmatched_scouts=create_unmatched,
        completed_by=completed_by,
        initialize_requirements=initialize_requirements,
        catalog=catalog,
    )
    click.echo(build_advancement_report(result, dry_run=dry_run))
    _finish(store, run_id, dry_run)

    report_path = write_run_report(
        run_id, started_at, "advancement", dry_run,
        {"csv_path": csv_path, "staged_in": staged_in}, result, report_dir,
    )
    click.echo(f"[{run_id}] Report written to {report_path}")

    if result.failures:
        click.echo(
            f"[{run_id}] {len(result.failures)} scout(s) failed and were rolled back; "
            "exiting non-zero",
            err=True,
        )
        sys.exit(1)


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

def _run_roster(
    store: PostgresStore,
    run_id: str,
    started_at: str,
    unit_id: str,
    csv_path: str,
    staged_out: str | None,
    stage_only: bool,
    select: tuple[str, ...],
    select_all: bool,
    create_unmatched: bool,
    dry_run: bool,
    report_dir: Path,
) -> None:
    try:
        parsed = parse_roster(read_export_text(Path(csv_path)))
    except UnsupportedExportError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)

    click.echo(
        f"[{run_id}] Parsed: {len(parsed.adults)} adults, {len(parsed.scouts)} scouts, "
        f"{len(parsed.errors)} errors"
    )
    for problem in validate_roster(parsed):
        click.echo(f"[{run_id}] WARN: {problem}", err=True)

    staged = stage_roster(parsed, store, unit_id)
    store.conn.rollback()
    summary = staged.summary()
    click.echo(
        f"[{run_id}] Staged: {summary['adults_create']} adults to create, "
        f"{summary['adults_update']} to update, {summary['scouts_create']} scouts to create, "
        f"{summary['scouts_update']} to update, {summary['new_patrols']} new patrols"
    )
    if staged_out:
        _write_staged(Path(staged_out), staged, run_id)

    if stage_only or not (select_all or select):
        if not stage_only:
            click.echo(f"[{run_id}] No members selected; nothing imported.")
        write_run_report(
            run_id, started_at, "roster", dry_run, {"csv_path": csv_path}, staged, report_dir,
        )
        return

    result = import_roster(
        store, unit_id, staged,
        None if select_all else list(select),
        create_unmatched=create_unmatched,
    )
    click.echo(build_roster_report(result, dry_run=dry_run))
    _finish(store, run_id, dry_run)

    report_path = write_run_report(
        run_id, started_at, "roster", dry_run, {"csv_path": csv_path}, result, report_dir,
    )
    click.echo(f"[{run_id}] Report written to {report_path}")

    if result.failures:
        click.echo(
            f"[{run_id}] {len(result.failures)} entities failed and were rolled back; "
            "exiting non-zero",
            err=True,
        )
        sys.exit(1)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _validate_flags(mode: str, csv_path: str | None, staged_in: str | None, run_id: str) -> None:
    if mode == "roster" and staged_in:
        click.echo(f"[{run_id}] FATAL: --staged-in is only supported for --mode advancement", err=True)
        sys.exit(1)
    if not csv_path and not staged_in:
        click.echo(f"[{run_id}] FATAL: --csv-path is required", err=True)
        sys.exit(1)
    if csv_path and staged_in:
        click.echo(f"[{run_id}] FATAL: pass either --csv-path or --staged-in, not both", err=True)
        sys.exit(1)
    for path in (csv_path, staged_in):
        if path and not Path(path).exists():
            click.echo(f"[{run_id}] FATAL: file not found: {path}", err=True)
            sys.exit(1)


def _load_aliases(path: Path, run_id: str) -> BadgeAliasMap:
    if not path.exists():
        log.info("alias map %s not found; using built-in aliases", path)
        return default_badge_aliases()
    try:
        aliases = load_badge_aliases(path)
    except AliasMapValidationError as exc:
        click.echo(f"[{run_id}] FATAL: {exc}", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] Loaded {len(aliases.aliases)} badge aliases (sha256={aliases.yaml_hash[:12]})")
    return aliases


def _write_staged(path: Path, staged: StagedTroopAdvancement | StagedRoster, run_id: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(staged.to_dict(), indent=2, default=str))
    click.echo(f"[{run_id}] Staged change-set written to {path}")


def _finish(store: PostgresStore, run_id: str, dry_run: bool) -> None:
    if dry_run:
        store.conn.rollback()
        click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
    else:
        store.conn.commit()
        click.echo(f"[{run_id}] Committed.")


if __name__ == "__main__":
    main()
