"""troop_etl.staging

Build staged change-sets from parsed exports without writing anything.

Advancement staging classifies every incoming rank, badge, and requirement
for a scout as new, duplicate, or update against the scout's existing
progress rows.  Roster staging decides create vs update for every adult
and scout and lists the patrols that do not exist yet.

Both staged sets are plain dataclasses; the advancement set round-trips
through JSON (``to_dict`` / ``from_dict``) so a reviewed file can be fed
back to the executor.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from troop_etl.advancement_parser import ParsedScoutAdvancement, ParsedTroopAdvancement
from troop_etl.catalog import (
    CatalogBadge,
    CatalogRank,
    ReferenceCatalog,
    RequirementResolution,
    RequirementResolver,
    parse_version_year,
)
from troop_etl.matching import MatchedBy, match_profile, match_scout
from troop_etl.normalize import normalize_name
from troop_etl.roster_parser import ParsedAdult, ParsedRoster, ParsedScout, RosterUnitMetadata
from troop_etl.shared import ImportWarning, WarningKind, dedupe_warnings
from troop_etl.store import COMPLETE_STATUSES, Store


# ---------------------------------------------------------------------------
# Advancement change types
# ---------------------------------------------------------------------------

class ChangeKind(str, Enum):
    RANK = "rank"
    RANK_REQUIREMENT = "rank_requirement"
    MERIT_BADGE = "merit_badge"
    MERIT_BADGE_REQUIREMENT = "merit_badge_requirement"


class ChangeStatus(str, Enum):
    NEW = "new"
    DUPLICATE = "duplicate"
    UPDATE = "update"


class MatchStatus(str, Enum):
    MATCHED = "matched"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class StagedChange:
    """One proposed mutation.

    ``target_id`` is the catalog row the change applies to (rank, badge, or
    requirement id) and is None when the catalog has no match.  For
    requirements ``parent_id`` is the catalog rank or badge id.
    ``existing_id`` is the scout's progress row when status is not NEW.
    """

    kind: ChangeKind
    name: str
    code: str
    status: ChangeStatus
    date: date | None = None
    version: str | None = None
    requirement_number: str | None = None
    existing_id: str | None = None
    target_id: str | None = None
    parent_id: str | None = None
    used_version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "name": self.name,
            "code": self.code,
            "status": self.status.value,
            "date": self.date.isoformat() if self.date else None,
            "version": self.version,
            "requirement_number": self.requirement_number,
            "existing_id": self.existing_id,
            "target_id": self.target_id,
            "parent_id": self.parent_id,
            "used_version": self.used_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StagedChange":
        return cls(
            kind=ChangeKind(data["kind"]),
            name=data["name"],
            code=data["code"],
            status=ChangeStatus(data["status"]),
            date=date.fromisoformat(data["date"]) if data.get("date") else None,
            version=data.get("version"),
            requirement_number=data.get("requirement_number"),
            existing_id=data.get("existing_id"),
            target_id=data.get("target_id"),
            parent_id=data.get("parent_id"),
            used_version=data.get("used_version"),
        )


@dataclass
class CategoryCounts:
    new: int = 0
    duplicate: int = 0
    update: int = 0

    @property
    def total(self) -> int:
        return self.new + self.duplicate + self.update

    def add(self, status: ChangeStatus) -> None:
        if status == ChangeStatus.NEW:
            self.new += 1
        elif status == ChangeStatus.DUPLICATE:
            self.duplicate += 1
        else:
            self.update += 1

    def merge(self, other: "CategoryCounts") -> None:
        self.new += other.new
        self.duplicate += other.duplicate
        self.update += other.update

    def to_dict(self) -> dict[str, int]:
        return {"new": self.new, "duplicate": self.duplicate, "update": self.update, "total": self.total}


def fold_counts(changes: list[StagedChange]) -> CategoryCounts:
    counts = CategoryCounts()
    for change in changes:
        counts.add(change.status)
    return counts


@dataclass
class StagedScoutAdvancement:
    member_id: str
    first_name: str
    last_name: str
    scout_id: str | None
    match_status: MatchStatus
    ranks: list[StagedChange] = field(default_factory=list)
    rank_requirements: list[StagedChange] = field(default_factory=list)
    merit_badges: list[StagedChange] = field(default_factory=list)
    merit_badge_requirements: list[StagedChange] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def changes(self, kind: ChangeKind) -> list[StagedChange]:
        return {
            ChangeKind.RANK: self.ranks,
            ChangeKind.RANK_REQUIREMENT: self.rank_requirements,
            ChangeKind.MERIT_BADGE: self.merit_badges,
            ChangeKind.MERIT_BADGE_REQUIREMENT: self.merit_badge_requirements,
        }[kind]

    @property
    def counts(self) -> dict[ChangeKind, CategoryCounts]:
        return {kind: fold_counts(self.changes(kind)) for kind in ChangeKind}

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_id": self.member_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "scout_id": self.scout_id,
            "match_status": self.match_status.value,
            **{kind.value: [c.to_dict() for c in self.changes(kind)] for kind in ChangeKind},
            "counts": {kind.value: c.to_dict() for kind, c in self.counts.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StagedScoutAdvancement":
        lists = {
            kind: [StagedChange.from_dict(c) for c in data.get(kind.value, [])]
            for kind in ChangeKind
        }
        return cls(
            member_id=data["member_id"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            scout_id=data.get("scout_id"),
            match_status=MatchStatus(data["match_status"]),
            ranks=lists[ChangeKind.RANK],
            rank_requirements=lists[ChangeKind.RANK_REQUIREMENT],
            merit_badges=lists[ChangeKind.MERIT_BADGE],
            merit_badge_requirements=lists[ChangeKind.MERIT_BADGE_REQUIREMENT],
        )


@dataclass
class StagedTroopAdvancement:
    unit_id: str
    scouts: list[StagedScoutAdvancement] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[ImportWarning] = field(default_factory=list)

    @property
    def matched_scouts(self) -> int:
        return sum(1 for s in self.scouts if s.match_status == MatchStatus.MATCHED)

    @property
    def unmatched_scouts(self) -> int:
        return len(self.scouts) - self.matched_scouts

    def category_totals(self) -> dict[ChangeKind, CategoryCounts]:
        totals = {kind: CategoryCounts() for kind in ChangeKind}
        for scout in self.scouts:
            for kind, counts in scout.counts.items():
                totals[kind].merge(counts)
        return totals

    def summary(self) -> dict[str, Any]:
        return {
            "total_scouts": len(self.scouts),
            "matched_scouts": self.matched_scouts,
            "unmatched_scouts": self.unmatched_scouts,
            **{kind.value: c.to_dict() for kind, c in self.category_totals().items()},
        }

    def scout(self, member_id: str) -> StagedScoutAdvancement | None:
        for s in self.scouts:
            if s.member_id == member_id:
                return s
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "summary": self.summary(),
            "scouts": [s.to_dict() for s in self.scouts],
            "errors": list(self.errors),
            "warnings": [w.to_dict() for w in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StagedTroopAdvancement":
        return cls(
            unit_id=data["unit_id"],
            scouts=[StagedScoutAdvancement.from_dict(s) for s in data.get("scouts", [])],
            errors=list(data.get("errors", [])),
            warnings=[ImportWarning.from_dict(w) for w in data.get("warnings", [])],
        )


# ---------------------------------------------------------------------------
# Advancement staging
# ---------------------------------------------------------------------------

def coerce_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _classify_existing(
    existing: dict[str, Any] | None,
    incoming_date: date | None,
    date_column: str,
    incoming_version: int | None = None,
    version_column: str | None = None,
) -> tuple[ChangeStatus, str | None]:
    """Duplicate when complete with the same date and version, else update."""
    if existing is None:
        return ChangeStatus.NEW, None
    if existing.get("status") not in COMPLETE_STATUSES:
        return ChangeStatus.UPDATE, existing["id"]
    existing_date = coerce_date(existing.get(date_column))
    if incoming_date is not None and existing_date != incoming_date:
        return ChangeStatus.UPDATE, existing["id"]
    if version_column and incoming_version is not None:
        existing_version = existing.get(version_column)
        if existing_version is not None and existing_version != incoming_version:
            return ChangeStatus.UPDATE, existing["id"]
    return ChangeStatus.DUPLICATE, existing["id"]


class _ScoutStager:
    """Per-scout staging state: existing progress rows and their requirement rows."""

    def __init__(
        self,
        store: Store,
        catalog: ReferenceCatalog,
        resolver: RequirementResolver,
        scout_id: str | None,
        warnings: list[ImportWarning],
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.resolver = resolver
        self.scout_id = scout_id
        self.warnings = warnings
        self.rank_progress: dict[str, dict[str, Any]] = {}
        self.badge_progress: dict[str, dict[str, Any]] = {}
        self._req_rows: dict[str, dict[str, dict[str, Any]]] = {}
        if scout_id is not None:
            self.rank_progress = {p["rank_id"]: p for p in store.list_rank_progress(scout_id)}
            self.badge_progress = {
                p["merit_badge_id"]: p for p in store.list_badge_progress(scout_id)
            }

    def _requirement_rows(self, progress_id: str, is_rank: bool) -> dict[str, dict[str, Any]]:
        if progress_id not in self._req_rows:
            rows = (
                self.store.list_rank_requirement_progress(progress_id)
                if is_rank
                else self.store.list_badge_requirement_progress(progress_id)
            )
            self._req_rows[progress_id] = {r["requirement_id"]: r for r in rows}
        return self._req_rows[progress_id]

    def _warn_resolution(
        self,
        resolution: RequirementResolution,
        scout_name: str,
        number: str,
        version: str | None,
        rank: str | None = None,
        badge: str | None = None,
    ) -> None:
        if resolution.warning is None:
            return
        subject = rank or badge
        used = str(resolution.used_version) if resolution.used_version is not None else None
        if resolution.warning == WarningKind.REQUIREMENT_NOT_FOUND:
            message = f"Requirement not found: {subject} {number} (version {version or 'default'})"
        elif resolution.warning == WarningKind.VERSION_FALLBACK:
            message = f"Version {version} not in catalog for {subject}; using {used}"
        else:
            message = (
                f"Requirement {subject} {number} not in version {version or 'default'}; "
                f"matched in version {used}"
            )
        self.warnings.append(ImportWarning(
            kind=resolution.warning,
            message=message,
            scout=scout_name,
            rank=rank,
            badge=badge,
            requirement=number,
            requested_version=version,
            used_version=used,
        ))

    def stage_rank(self, item, scout_name: str) -> StagedChange:
        rank = self.catalog.find_rank(item.rank_code)
        if rank is None:
            self.warnings.append(ImportWarning(
                kind=WarningKind.REQUIREMENT_NOT_FOUND,
                message=f"Unknown rank: {item.rank_name}",
                scout=scout_name,
                rank=item.rank_name,
            ))
            return StagedChange(
                kind=ChangeKind.RANK, name=item.rank_name, code=item.rank_code,
                status=ChangeStatus.NEW, date=item.awarded_date, version=item.version,
            )
        status, existing_id = _classify_existing(
            self.rank_progress.get(rank.id), item.awarded_date, "awarded_at",
        )
        return StagedChange(
            kind=ChangeKind.RANK, name=item.rank_name, code=item.rank_code,
            status=status, date=item.awarded_date, version=item.version,
            existing_id=existing_id, target_id=rank.id,
        )

    def stage_badge(self, item, scout_name: str) -> StagedChange:
        badge = self.catalog.find_badge(item.badge_code)
        if badge is None:
            self.warnings.append(ImportWarning(
                kind=WarningKind.REQUIREMENT_NOT_FOUND,
                message=f"Unknown merit badge: {item.badge_name}",
                scout=scout_name,
                badge=item.badge_name,
            ))
            return StagedChange(
                kind=ChangeKind.MERIT_BADGE, name=item.badge_name, code=item.badge_code,
                status=ChangeStatus.NEW, date=item.awarded_date, version=item.version,
            )
        status, existing_id = _classify_existing(
            self.badge_progress.get(badge.id), item.awarded_date, "awarded_at",
            parse_version_year(item.version), "requirement_version_year",
        )
        return StagedChange(
            kind=ChangeKind.MERIT_BADGE, name=item.badge_name, code=badge.code,
            status=status, date=item.awarded_date, version=item.version,
            existing_id=existing_id, target_id=badge.id,
        )

    def _stage_requirement(
        self,
        kind: ChangeKind,
        parent: CatalogRank | CatalogBadge | None,
        progress: dict[str, Any] | None,
        code: str,
        display: str,
        number: str,
        version: str | None,
        completed: date | None,
        scout_name: str,
    ) -> StagedChange:
        name = f"{display} {number}"
        is_rank = kind == ChangeKind.RANK_REQUIREMENT
        if parent is None:
            self.warnings.append(ImportWarning(
                kind=WarningKind.REQUIREMENT_NOT_FOUND,
                message=f"Unknown {'rank' if is_rank else 'merit badge'}: {display}",
                scout=scout_name,
                rank=display if is_rank else None,
                badge=None if is_rank else display,
                requirement=number,
                requested_version=version,
            ))
            return StagedChange(
                kind=kind, name=name, code=code, status=ChangeStatus.NEW,
                date=completed, version=version, requirement_number=number,
            )

        if is_rank:
            resolution = self.resolver.resolve_rank_requirement(parent, number, version)
            self._warn_resolution(resolution, scout_name, number, version, rank=parent.name)
        else:
            resolution = self.resolver.resolve_badge_requirement(parent, number, version)
            self._warn_resolution(resolution, scout_name, number, version, badge=parent.name)

        status, existing_id = ChangeStatus.NEW, None
        if resolution.found and progress is not None:
            rows = self._requirement_rows(progress["id"], is_rank)
            status, existing_id = _classify_existing(
                rows.get(resolution.requirement.id), completed, "completed_at",
            )
        return StagedChange(
            kind=kind, name=name, code=code, status=status, date=completed,
            version=version, requirement_number=number, existing_id=existing_id,
            target_id=resolution.requirement.id if resolution.found else None,
            parent_id=parent.id, used_version=resolution.used_version,
        )

    def stage_rank_requirement(self, item, scout_name: str) -> StagedChange:
        rank = self.catalog.find_rank(item.rank_code)
        progress = self.rank_progress.get(rank.id) if rank else None
        return self._stage_requirement(
            ChangeKind.RANK_REQUIREMENT, rank, progress, item.rank_code,
            rank.name if rank else item.rank_code, item.requirement_number,
            item.version, item.completed_date, scout_name,
        )

    def stage_badge_requirement(self, item, scout_name: str) -> StagedChange:
        badge = self.catalog.find_badge(item.badge_code)
        progress = self.badge_progress.get(badge.id) if badge else None
        return self._stage_requirement(
            ChangeKind.MERIT_BADGE_REQUIREMENT, badge, progress,
            badge.code if badge else item.badge_code,
            badge.name if badge else item.badge_name, item.requirement_number,
            item.version, item.completed_date, scout_name,
        )


def stage_scout_advancement(
    parsed: ParsedScoutAdvancement,
    store: Store,
    unit_id: str,
    catalog: ReferenceCatalog,
    warnings: list[ImportWarning],
    resolver: RequirementResolver | None = None,
) -> StagedScoutAdvancement:
    match = match_scout(store, unit_id, parsed.member_id)
    scout_id = match.entity_id if match else None
    stager = _ScoutStager(
        store, catalog, resolver or RequirementResolver(catalog), scout_id, warnings,
    )
    name = parsed.full_name
    return StagedScoutAdvancement(
        member_id=parsed.member_id,
        first_name=parsed.first_name,
        last_name=parsed.last_name,
        scout_id=scout_id,
        match_status=MatchStatus.MATCHED if match else MatchStatus.UNMATCHED,
        ranks=[stager.stage_rank(r, name) for r in parsed.ranks],
        rank_requirements=[stager.stage_rank_requirement(r, name) for r in parsed.rank_requirements],
        merit_badges=[stager.stage_badge(b, name) for b in parsed.merit_badges],
        merit_badge_requirements=[
            stager.stage_badge_requirement(r, name) for r in parsed.merit_badge_requirements
        ],
    )


def stage_troop_advancement(
    parsed: ParsedTroopAdvancement,
    store: Store,
    unit_id: str,
    catalog: ReferenceCatalog,
) -> StagedTroopAdvancement:
    """Classify every parsed item against the unit's existing progress.

    Read-only.  Matched scouts sort first, then by full name.
    """
    warnings: list[ImportWarning] = []
    resolver = RequirementResolver(catalog)
    scouts = [
        stage_scout_advancement(p, store, unit_id, catalog, warnings, resolver)
        for p in parsed.scouts.values()
    ]
    scouts.sort(key=lambda s: (s.match_status != MatchStatus.MATCHED, s.full_name.lower(), s.member_id))
    return StagedTroopAdvancement(
        unit_id=unit_id,
        scouts=scouts,
        errors=list(parsed.errors),
        warnings=dedupe_warnings(warnings),
    )


# ---------------------------------------------------------------------------
# Roster staging
# ---------------------------------------------------------------------------

class PersonRole(str, Enum):
    ADULT = "adult"
    SCOUT = "scout"


class RosterAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass
class StagedPerson:
    role: PersonRole
    record: ParsedAdult | ParsedScout
    match_status: MatchStatus
    action: RosterAction
    existing_id: str | None = None
    matched_by: MatchedBy | None = None

    @property
    def member_id(self) -> str | None:
        return self.record.member_id

    @property
    def full_name(self) -> str:
        return self.record.full_name

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "role": self.role.value,
            "line_no": self.record.line_no,
            "member_id": self.member_id,
            "full_name": self.full_name,
            "match_status": self.match_status.value,
            "matched_by": self.matched_by.value if self.matched_by else None,
            "action": self.action.value,
            "existing_id": self.existing_id,
        }
        if isinstance(self.record, ParsedScout):
            out["patrol"] = self.record.patrol
            out["guardians"] = [
                {"name": g.name, "member_id": g.member_id, "relationship": g.relationship}
                for g in self.record.guardians
            ]
        else:
            out["positions"] = list(self.record.positions)
            out["role_derived"] = self.record.role.value
        return out


@dataclass
class StagedRoster:
    unit_id: str
    adults: list[StagedPerson] = field(default_factory=list)
    scouts: list[StagedPerson] = field(default_factory=list)
    new_patrols: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[ImportWarning] = field(default_factory=list)
    unit_metadata: RosterUnitMetadata = field(default_factory=RosterUnitMetadata)

    def people(self) -> list[StagedPerson]:
        return self.adults + self.scouts

    def summary(self) -> dict[str, int]:
        def count(people: list[StagedPerson], action: RosterAction) -> int:
            return sum(1 for p in people if p.action == action)

        return {
            "adults_total": len(self.adults),
            "adults_create": count(self.adults, RosterAction.CREATE),
            "adults_update": count(self.adults, RosterAction.UPDATE),
            "scouts_total": len(self.scouts),
            "scouts_create": count(self.scouts, RosterAction.CREATE),
            "scouts_update": count(self.scouts, RosterAction.UPDATE),
            "new_patrols": len(self.new_patrols),
            "guardian_references": sum(
                len(p.record.guardians) for p in self.scouts if isinstance(p.record, ParsedScout)
            ),
        }

    def to_dict(self) -> dict[str, Any]:
        meta = self.unit_metadata
        return {
            "unit_id": self.unit_id,
            "unit_metadata": {
                "unit_type": meta.unit_type.value if meta.unit_type else None,
                "unit_number": meta.unit_number,
                "unit_suffix": meta.unit_suffix,
                "council": meta.council,
                "district": meta.district,
            },
            "summary": self.summary(),
            "new_patrols": list(self.new_patrols),
            "adults": [p.to_dict() for p in self.adults],
            "scouts": [p.to_dict() for p in self.scouts],
            "errors": list(self.errors),
            "warnings": [w.to_dict() for w in self.warnings],
        }


def stage_roster(parsed: ParsedRoster, store: Store, unit_id: str) -> StagedRoster:
    """Match every roster person and list missing patrols.  Read-only."""
    staged = StagedRoster(
        unit_id=unit_id,
        errors=list(parsed.errors),
        unit_metadata=parsed.unit_metadata,
    )

    for adult in parsed.adults:
        match = match_profile(store, adult.member_id, adult.email)
        staged.adults.append(StagedPerson(
            role=PersonRole.ADULT,
            record=adult,
            match_status=MatchStatus.MATCHED if match else MatchStatus.UNMATCHED,
            action=RosterAction.UPDATE if match else RosterAction.CREATE,
            existing_id=match.entity_id if match else None,
            matched_by=match.matched_by if match else None,
        ))

    for scout in parsed.scouts:
        match = match_scout(store, unit_id, scout.member_id)
        staged.scouts.append(StagedPerson(
            role=PersonRole.SCOUT,
            record=scout,
            match_status=MatchStatus.MATCHED if match else MatchStatus.UNMATCHED,
            action=RosterAction.UPDATE if match else RosterAction.CREATE,
            existing_id=match.entity_id if match else None,
            matched_by=match.matched_by if match else None,
        ))

    known = {normalize_name(p["name"]) for p in store.list_patrols(unit_id)}
    for scout in parsed.scouts:
        key = normalize_name(scout.patrol)
        if key and key not in known:
            known.add(key)
            staged.new_patrols.append(scout.patrol)

    return staged
