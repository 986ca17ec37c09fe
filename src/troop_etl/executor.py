"""troop_etl.executor

Apply approved staged change-sets to the store.

Every scout (advancement) and every person or guardian link (roster) is
written inside its own savepoint.  A failure rolls back only that entity,
is recorded as an ``EntityFailure``, and processing continues with the next
one.  Duplicates are re-checked against the store at execution time, so
replaying an already-imported batch is a no-op.

The caller owns the transaction: commit on success, roll back on dry-run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from datetime import date
from typing import Any, Iterable

from troop_etl.catalog import (
    CatalogBadge,
    CatalogRank,
    ReferenceCatalog,
    load_catalog,
    parse_version_year,
)
from troop_etl.matching import match_profile, match_scout
from troop_etl.normalize import normalize_email, normalize_name
from troop_etl.roster_parser import ParsedAdult, ParsedScout
from troop_etl.shared import EntityFailure, ImportWarning, WarningKind, dedupe_warnings
from troop_etl.staging import (
    ChangeKind,
    StagedChange,
    StagedRoster,
    StagedScoutAdvancement,
    StagedTroopAdvancement,
    coerce_date,
)
from troop_etl.store import COMPLETE_STATUSES, Store

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class _AdvancementTally:
    ranks_imported: int = 0
    rank_requirements_imported: int = 0
    badges_imported: int = 0
    badge_requirements_imported: int = 0
    requirements_initialized: int = 0
    duplicates_skipped: int = 0
    mismatches_logged: int = 0


@dataclass
class TroopAdvancementImportResult:
    scouts_attempted: int = 0
    scouts_succeeded: int = 0
    scouts_created: int = 0
    scouts_skipped: int = 0
    ranks_imported: int = 0
    rank_requirements_imported: int = 0
    badges_imported: int = 0
    badge_requirements_imported: int = 0
    requirements_initialized: int = 0
    duplicates_skipped: int = 0
    mismatches_logged: int = 0
    warnings: list[ImportWarning] = field(default_factory=list)
    failures: list[EntityFailure] = field(default_factory=list)

    def absorb(self, tally: _AdvancementTally) -> None:
        for f in fields(tally):
            setattr(self, f.name, getattr(self, f.name) + getattr(tally, f.name))

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("warnings", "failures")
        }
        out["warnings"] = [w.to_dict() for w in self.warnings]
        out["failures"] = [f.to_dict() for f in self.failures]
        return out


@dataclass
class RosterImportResult:
    patrols_created: int = 0
    adults_imported: int = 0
    adults_updated: int = 0
    adults_skipped: int = 0
    scouts_imported: int = 0
    scouts_updated: int = 0
    scouts_skipped: int = 0
    guardians_linked: int = 0
    certifications_imported: int = 0
    entities_attempted: int = 0
    entities_succeeded: int = 0
    warnings: list[ImportWarning] = field(default_factory=list)
    failures: list[EntityFailure] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("warnings", "failures")
        }
        out["warnings"] = [w.to_dict() for w in self.warnings]
        out["failures"] = [f.to_dict() for f in self.failures]
        return out


# ---------------------------------------------------------------------------
# Advancement
# ---------------------------------------------------------------------------

def _is_duplicate(existing: dict[str, Any], incoming: date | None, date_column: str) -> bool:
    if existing.get("status") not in COMPLETE_STATUSES:
        return False
    return incoming is None or coerce_date(existing.get(date_column)) == incoming


class _ScoutWriter:
    """Writes one scout's staged changes; tallies are discarded on rollback."""

    def __init__(
        self,
        store: Store,
        unit_id: str,
        catalog: ReferenceCatalog,
        scout_id: str,
        completed_by: str | None,
        initialize_requirements: bool,
    ) -> None:
        self.store = store
        self.unit_id = unit_id
        self.catalog = catalog
        self.scout_id = scout_id
        self.completed_by = completed_by
        self.initialize_requirements = initialize_requirements
        self.tally = _AdvancementTally()
        self.ranks_by_id = {r.id: r for r in catalog.ranks}
        self.badges_by_id = {b.id: b for b in catalog.badges}
        self.rank_progress = {p["rank_id"]: p for p in store.list_rank_progress(scout_id)}
        self.badge_progress = {p["merit_badge_id"]: p for p in store.list_badge_progress(scout_id)}

    # -- ranks and badges ---------------------------------------------------

    def write_rank(self, change: StagedChange) -> None:
        if change.target_id is None:
            return
        existing = self.rank_progress.get(change.target_id)
        if existing is not None and _is_duplicate(existing, change.date, "awarded_at"):
            self.tally.duplicates_skipped += 1
            return
        values = {"status": "awarded", "awarded_at": change.date}
        if existing is not None:
            self.store.update_rank_progress(existing["id"], values)
            existing.update(values)
        else:
            row_id = self.store.insert_rank_progress(
                {"scout_id": self.scout_id, "rank_id": change.target_id, **values}
            )
            self.rank_progress[change.target_id] = {
                "id": row_id, "rank_id": change.target_id, **values,
            }
        self.tally.ranks_imported += 1

    def write_badge(self, change: StagedChange) -> None:
        if change.target_id is None:
            return
        badge = self.badges_by_id.get(change.target_id)
        existing = self.badge_progress.get(change.target_id)
        version = parse_version_year(change.version) or (badge.requirement_version_year if badge else None)
        if existing is not None and _is_duplicate(existing, change.date, "awarded_at"):
            same_version = (
                version is None
                or existing.get("requirement_version_year") in (None, version)
            )
            if same_version:
                self.tally.duplicates_skipped += 1
                return
        values = {
            "status": "awarded",
            "awarded_at": change.date,
            "requirement_version_year": version,
        }
        if existing is not None:
            self.store.update_badge_progress(existing["id"], values)
            existing.update(values)
        else:
            row_id = self.store.insert_badge_progress(
                {"scout_id": self.scout_id, "merit_badge_id": change.target_id, **values}
            )
            self.badge_progress[change.target_id] = {
                "id": row_id, "merit_badge_id": change.target_id, **values,
            }
        self.tally.badges_imported += 1

    # -- requirements -------------------------------------------------------

    def _ensure_rank_progress(self, rank: CatalogRank, version: int | None) -> dict[str, Any]:
        progress = self.rank_progress.get(rank.id)
        if progress is not None:
            return progress
        values = {"scout_id": self.scout_id, "rank_id": rank.id, "status": "in_progress"}
        row_id = self.store.insert_rank_progress(values)
        progress = {"id": row_id, **values}
        self.rank_progress[rank.id] = progress
        if self.initialize_requirements:
            for req in self.catalog.rank_requirements_for(rank, version):
                self.store.insert_rank_requirement_progress({
                    "scout_rank_progress_id": row_id,
                    "requirement_id": req.id,
                    "status": "not_started",
                })
                self.tally.requirements_initialized += 1
        return progress

    def _ensure_badge_progress(self, badge: CatalogBadge, version: int | None) -> dict[str, Any]:
        progress = self.badge_progress.get(badge.id)
        if progress is not None:
            return progress
        values = {
            "scout_id": self.scout_id,
            "merit_badge_id": badge.id,
            "status": "in_progress",
            "requirement_version_year": version if version is not None else badge.requirement_version_year,
        }
        row_id = self.store.insert_badge_progress(values)
        progress = {"id": row_id, **values}
        self.badge_progress[badge.id] = progress
        if self.initialize_requirements:
            for req in self.catalog.badge_requirements_for(badge, version):
                self.store.insert_badge_requirement_progress({
                    "scout_merit_badge_progress_id": row_id,
                    "requirement_id": req.id,
                    "status": "not_started",
                })
                self.tally.requirements_initialized += 1
        return progress

    def _log_mismatch(self, change: StagedChange, reason: str) -> None:
        self.store.log_requirement_mismatch({
            "unit_id": self.unit_id,
            "scout_id": self.scout_id,
            "requirement_kind": change.kind.value,
            "parent_code": change.code,
            "requirement_number": change.requirement_number,
            "requested_version": change.version,
            "reason": reason,
        })
        self.tally.mismatches_logged += 1

    def write_requirement(self, change: StagedChange) -> None:
        is_rank = change.kind == ChangeKind.RANK_REQUIREMENT
        if change.parent_id is None:
            self._log_mismatch(change, "unknown rank" if is_rank else "unknown merit badge")
            return
        if change.target_id is None:
            self._log_mismatch(change, "requirement not found")
            return

        if is_rank:
            rank = self.ranks_by_id.get(change.parent_id)
            if rank is None:
                self._log_mismatch(change, "unknown rank")
                return
            progress = self._ensure_rank_progress(rank, change.used_version)
            rows = {
                r["requirement_id"]: r
                for r in self.store.list_rank_requirement_progress(progress["id"])
            }
        else:
            badge = self.badges_by_id.get(change.parent_id)
            if badge is None:
                self._log_mismatch(change, "unknown merit badge")
                return
            progress = self._ensure_badge_progress(badge, change.used_version)
            rows = {
                r["requirement_id"]: r
                for r in self.store.list_badge_requirement_progress(progress["id"])
            }

        existing = rows.get(change.target_id)
        if existing is not None and _is_duplicate(existing, change.date, "completed_at"):
            self.tally.duplicates_skipped += 1
            return

        values = {
            "status": "completed",
            "completed_at": change.date,
            "completed_by": self.completed_by,
        }
        if is_rank:
            if existing is not None:
                self.store.update_rank_requirement_progress(existing["id"], values)
            else:
                self.store.insert_rank_requirement_progress({
                    "scout_rank_progress_id": progress["id"],
                    "requirement_id": change.target_id,
                    **values,
                })
            self.tally.rank_requirements_imported += 1
        else:
            if existing is not None:
                self.store.update_badge_requirement_progress(existing["id"], values)
            else:
                self.store.insert_badge_requirement_progress({
                    "scout_merit_badge_progress_id": progress["id"],
                    "requirement_id": change.target_id,
                    **values,
                })
            self.tally.badge_requirements_imported += 1


def _create_scout(store: Store, unit_id: str, staged: StagedScoutAdvancement) -> str:
    scout_id = store.insert_scout(unit_id, {
        "first_name": staged.first_name,
        "last_name": staged.last_name,
        "bsa_member_id": staged.member_id,
        "is_active": True,
    })
    store.insert_scout_account(scout_id, unit_id)
    return scout_id


def import_staged_advancement(
    store: Store,
    unit_id: str,
    staged: StagedTroopAdvancement,
    selected_member_ids: Iterable[str],
    *,
    create_unmatched_scouts: bool,
    completed_by: str | None = None,
    initialize_requirements: bool = True,
    catalog: ReferenceCatalog | None = None,
) -> TroopAdvancementImportResult:
    """Write the selected scouts' staged advancement.

    Each scout runs inside its own savepoint; a failure rolls back that
    scout alone and is reported in ``failures``.
    """
    catalog = catalog or load_catalog(store)
    selected = set(selected_member_ids)
    result = TroopAdvancementImportResult()
    warnings: list[ImportWarning] = []
    selected_names: set[str] = set()

    for idx, scout in enumerate(staged.scouts):
        if scout.member_id not in selected:
            continue
        result.scouts_attempted += 1
        selected_names.add(scout.full_name)
        try:
            with store.savepoint(f"scout_{idx}"):
                match = match_scout(store, unit_id, scout.member_id)
                created = False
                if match is not None:
                    scout_id = match.entity_id
                elif create_unmatched_scouts:
                    scout_id = _create_scout(store, unit_id, scout)
                    created = True
                else:
                    warnings.append(ImportWarning(
                        kind=WarningKind.SCOUT_NOT_FOUND,
                        message=f"Scout not found: {scout.full_name} ({scout.member_id})",
                        scout=scout.full_name,
                    ))
                    result.scouts_skipped += 1
                    log.info("skipping unmatched scout %s", scout.member_id)
                    continue

                writer = _ScoutWriter(
                    store, unit_id, catalog, scout_id, completed_by, initialize_requirements,
                )
                for change in scout.ranks:
                    writer.write_rank(change)
                for change in scout.merit_badges:
                    writer.write_badge(change)
                for change in scout.rank_requirements:
                    writer.write_requirement(change)
                for change in scout.merit_badge_requirements:
                    writer.write_requirement(change)
        except Exception as exc:
            log.warning("scout %s rolled back: %s: %s", scout.member_id, type(exc).__name__, exc)
            result.failures.append(EntityFailure(
                member_id=scout.member_id,
                name=scout.full_name,
                reason=f"{type(exc).__name__}: {exc}",
            ))
            continue

        result.scouts_succeeded += 1
        if created:
            result.scouts_created += 1
        result.absorb(writer.tally)

    staged_warnings = [w for w in staged.warnings if w.scout is None or w.scout in selected_names]
    result.warnings = dedupe_warnings(staged_warnings + warnings)
    log.info(
        "advancement import: %d/%d scouts succeeded, %d failed",
        result.scouts_succeeded, result.scouts_attempted, len(result.failures),
    )
    return result


# ---------------------------------------------------------------------------
# Roster
# ---------------------------------------------------------------------------

def _enum_value(value: Any) -> Any:
    return value.value if value is not None and hasattr(value, "value") else value


def _profile_values(adult: ParsedAdult) -> dict[str, Any]:
    values = {
        "first_name": adult.first_name,
        "last_name": adult.last_name,
        "middle_name": adult.middle_name,
        "email": adult.email,
        "phone": adult.phone,
        "address": adult.address,
        "city": adult.city,
        "state": adult.state,
        "zip": adult.zip,
        "gender": _enum_value(adult.gender),
        "position": adult.current_position,
        "bsa_member_id": adult.member_id,
        "date_joined": adult.date_joined,
        "health_form_status": _enum_value(adult.health_form_status),
        "health_form_expires": adult.health_form_expires,
        "swim_classification": _enum_value(adult.swim_classification),
        "swim_class_date": adult.swim_class_date,
    }
    return {k: v for k, v in values.items() if v is not None}


def _scout_values(scout: ParsedScout, patrol_id: str | None) -> dict[str, Any]:
    values = {
        "first_name": scout.first_name,
        "last_name": scout.last_name,
        "middle_name": scout.middle_name,
        "bsa_member_id": scout.member_id,
        "date_of_birth": scout.date_of_birth,
        "gender": _enum_value(scout.gender),
        "rank": scout.rank,
        "current_position": scout.current_position,
        "date_joined": scout.date_joined,
        "health_form_status": _enum_value(scout.health_form_status),
        "health_form_expires": scout.health_form_expires,
        "swim_classification": _enum_value(scout.swim_classification),
        "swim_class_date": scout.swim_class_date,
        "patrol_id": patrol_id,
    }
    return {k: v for k, v in values.items() if v is not None}


def _create_patrols(
    store: Store, unit_id: str, staged: StagedRoster, result: RosterImportResult,
) -> dict[str, str]:
    existing = store.list_patrols(unit_id)
    by_key = {normalize_name(p["name"]): p["id"] for p in existing}
    next_order = max((p.get("display_order") or 0 for p in existing), default=0) + 1
    for name in staged.new_patrols:
        key = normalize_name(name)
        if key in by_key:
            continue
        try:
            with store.savepoint(f"patrol_{next_order}"):
                by_key[key] = store.insert_patrol(unit_id, name, next_order)
        except Exception as exc:
            log.warning("patrol %r not created: %s", name, exc)
            result.warnings.append(ImportWarning(
                kind=WarningKind.PATROL_NOT_CREATED,
                message=f"Patrol not created: {name} ({type(exc).__name__}: {exc})",
            ))
            continue
        next_order += 1
        result.patrols_created += 1
    return by_key


def _selected(record: ParsedAdult | ParsedScout, selected: set[str] | None) -> bool:
    """People without a member id are selected as ``line:N`` (their staged line_no)."""
    if selected is None:
        return True
    if record.member_id is not None and record.member_id in selected:
        return True
    return f"line:{record.line_no}" in selected


def import_roster(
    store: Store,
    unit_id: str,
    staged: StagedRoster,
    selected_member_ids: Iterable[str] | None = None,
    *,
    create_unmatched: bool,
) -> RosterImportResult:
    """Write the staged roster: patrols, adults, scouts, then guardian links."""
    selected = set(selected_member_ids) if selected_member_ids is not None else None
    result = RosterImportResult()
    patrol_ids = _create_patrols(store, unit_id, staged, result)

    # Profiles created or matched in this batch, for the guardian pass
    profile_by_member_id: dict[str, str] = {}
    profile_by_email: dict[str, str] = {}

    for idx, person in enumerate(staged.adults):
        adult = person.record
        if not _selected(adult, selected):
            continue
        result.entities_attempted += 1
        try:
            with store.savepoint(f"adult_{idx}"):
                match = match_profile(store, adult.member_id, adult.email)
                if match is not None:
                    profile_id = match.entity_id
                    store.update_profile(profile_id, _profile_values(adult))
                    if store.find_membership(unit_id, profile_id) is None:
                        store.insert_membership(unit_id, profile_id, adult.role.value)
                    outcome = "updated"
                elif create_unmatched:
                    profile_id = store.insert_profile(_profile_values(adult))
                    store.insert_membership(unit_id, profile_id, adult.role.value)
                    outcome = "imported"
                else:
                    outcome = "skipped"
                    profile_id = None
                    result.warnings.append(ImportWarning(
                        kind=WarningKind.ADULT_NOT_FOUND,
                        message=f"Adult not found: {adult.full_name} ({adult.member_id})",
                    ))
                    log.info("skipping unmatched adult %s", adult.member_id)

                certifications = 0
                if profile_id is not None:
                    have = {t["training_code"] for t in store.list_trainings(profile_id)}
                    for cert in adult.certifications:
                        if cert.code in have:
                            continue
                        store.insert_training(profile_id, unit_id, cert.code, cert.name, cert.expires_at)
                        have.add(cert.code)
                        certifications += 1
        except Exception as exc:
            log.warning("adult line %d rolled back: %s", adult.line_no, exc)
            result.failures.append(EntityFailure(
                member_id=adult.member_id,
                name=adult.full_name,
                reason=f"{type(exc).__name__}: {exc}",
            ))
            continue

        result.entities_succeeded += 1
        result.certifications_imported += certifications
        if outcome == "updated":
            result.adults_updated += 1
        elif outcome == "imported":
            result.adults_imported += 1
        else:
            result.adults_skipped += 1
        if profile_id is not None:
            if adult.member_id:
                profile_by_member_id[adult.member_id] = profile_id
            email = normalize_email(adult.email)
            if email:
                profile_by_email[email] = profile_id

    scout_ids: dict[int, str] = {}
    for idx, person in enumerate(staged.scouts):
        scout = person.record
        if not _selected(scout, selected):
            continue
        result.entities_attempted += 1
        patrol_id = patrol_ids.get(normalize_name(scout.patrol)) if scout.patrol else None
        try:
            with store.savepoint(f"scout_{idx}"):
                match = match_scout(store, unit_id, scout.member_id)
                if match is not None:
                    scout_id = match.entity_id
                    store.update_scout(scout_id, _scout_values(scout, patrol_id))
                    outcome = "updated"
                elif create_unmatched:
                    scout_id = store.insert_scout(unit_id, {
                        **_scout_values(scout, patrol_id),
                        "is_active": True,
                    })
                    store.insert_scout_account(scout_id, unit_id)
                    outcome = "imported"
                else:
                    scout_id = None
                    outcome = "skipped"
                    result.warnings.append(ImportWarning(
                        kind=WarningKind.SCOUT_NOT_FOUND,
                        message=f"Scout not found: {scout.full_name} ({scout.member_id})",
                        scout=scout.full_name,
                    ))
                    log.info("skipping unmatched scout %s", scout.member_id)
        except Exception as exc:
            log.warning("scout line %d rolled back: %s", scout.line_no, exc)
            result.failures.append(EntityFailure(
                member_id=scout.member_id,
                name=scout.full_name,
                reason=f"{type(exc).__name__}: {exc}",
            ))
            continue

        result.entities_succeeded += 1
        if outcome == "updated":
            result.scouts_updated += 1
        elif outcome == "imported":
            result.scouts_imported += 1
        else:
            result.scouts_skipped += 1
        if scout_id is not None:
            scout_ids[idx] = scout_id

    for idx, person in enumerate(staged.scouts):
        scout_id = scout_ids.get(idx)
        if scout_id is None:
            continue
        _link_guardians(
            store, scout_id, person.record, idx,
            profile_by_member_id, profile_by_email, result,
        )

    log.info(
        "roster import: %d/%d entities succeeded, %d guardian links",
        result.entities_succeeded, result.entities_attempted, result.guardians_linked,
    )
    return result


def _resolve_guardian_profile(
    store: Store,
    member_id: str | None,
    email: str | None,
    profile_by_member_id: dict[str, str],
    profile_by_email: dict[str, str],
) -> str | None:
    if member_id:
        if member_id in profile_by_member_id:
            return profile_by_member_id[member_id]
        row = store.find_profile_by_member_id(member_id)
        return str(row["id"]) if row else None
    addr = normalize_email(email)
    if addr is None:
        return None
    if addr in profile_by_email:
        return profile_by_email[addr]
    row = store.find_profile_by_email(addr)
    return str(row["id"]) if row else None


def _link_guardians(
    store: Store,
    scout_id: str,
    scout: ParsedScout,
    scout_idx: int,
    profile_by_member_id: dict[str, str],
    profile_by_email: dict[str, str],
    result: RosterImportResult,
) -> None:
    linked = {link["profile_id"] for link in store.list_guardian_links(scout_id)}
    for g_idx, guardian in enumerate(scout.guardians):
        profile_id = _resolve_guardian_profile(
            store, guardian.member_id, guardian.email, profile_by_member_id, profile_by_email,
        )
        if profile_id is None:
            result.warnings.append(ImportWarning(
                kind=WarningKind.GUARDIAN_NOT_FOUND,
                message=f"Guardian not found: {guardian.name} of {scout.full_name}; link skipped",
                scout=scout.full_name,
            ))
            continue
        if profile_id in linked:
            continue
        try:
            with store.savepoint(f"guardian_{scout_idx}_{g_idx}"):
                store.insert_guardian_link(scout_id, profile_id, guardian.relationship, g_idx == 0)
        except Exception as exc:
            log.warning("guardian link for %s rolled back: %s", scout.full_name, exc)
            result.failures.append(EntityFailure(
                member_id=guardian.member_id,
                name=guardian.name,
                reason=f"guardian link: {type(exc).__name__}: {exc}",
            ))
            continue
        linked.add(profile_id)
        result.guardians_linked += 1


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def _append_tail(lines: list[str], title: str, items: list[str], limit: int = 20) -> None:
    if not items:
        return
    lines.append(f"\n{title} ({len(items)}):")
    for item in items[:limit]:
        lines.append(f"  {item}")
    if len(items) > limit:
        lines.append(f"  ... and {len(items) - limit} more")


def build_advancement_report(result: TroopAdvancementImportResult, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Troop Advancement Import Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  scouts attempted:            {result.scouts_attempted}",
        f"  scouts succeeded:            {result.scouts_succeeded}",
        f"  scouts created:              {result.scouts_created}",
        f"  scouts skipped:              {result.scouts_skipped}",
        f"  ranks imported:              {result.ranks_imported}",
        f"  rank requirements imported:  {result.rank_requirements_imported}",
        f"  badges imported:             {result.badges_imported}",
        f"  badge requirements imported: {result.badge_requirements_imported}",
        f"  requirements initialized:    {result.requirements_initialized}",
        f"  duplicates skipped:          {result.duplicates_skipped}",
        f"  mismatches logged:           {result.mismatches_logged}",
        f"Failures:                      {len(result.failures)}",
    ]
    _append_tail(lines, "Warnings", [f"[{w.kind.value}] {w.message}" for w in result.warnings])
    _append_tail(
        lines, "Failures",
        [f"{f.name} ({f.member_id}): {f.reason}" for f in result.failures],
    )
    return "\n".join(lines)


def build_roster_report(result: RosterImportResult, dry_run: bool = False) -> str:
    lines = [
        "=" * 60,
        "Roster Import Report",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  patrols created:         {result.patrols_created}",
        f"  adults imported:         {result.adults_imported}",
        f"  adults updated:          {result.adults_updated}",
        f"  adults skipped:          {result.adults_skipped}",
        f"  scouts imported:         {result.scouts_imported}",
        f"  scouts updated:          {result.scouts_updated}",
        f"  scouts skipped:          {result.scouts_skipped}",
        f"  guardians linked:        {result.guardians_linked}",
        f"  certifications imported: {result.certifications_imported}",
        f"  entities:                {result.entities_succeeded}/{result.entities_attempted}",
        f"Failures:                  {len(result.failures)}",
    ]
    _append_tail(lines, "Warnings", [f"[{w.kind.value}] {w.message}" for w in result.warnings])
    _append_tail(
        lines, "Failures",
        [f"{f.name} ({f.member_id}): {f.reason}" for f in result.failures],
    )
    return "\n".join(lines)
