"""troop_etl.catalog

Reference achievement catalog (ranks, merit badges, and their versioned
requirements) plus the rules for resolving export names and requirement
numbers against it.

Responsibilities:
  - Load and validate the merit badge alias map from YAML
    (config/merit_badge_aliases.yml)
  - Look up ranks by code and badges by normalized name, with alias fallback
  - Resolve a requirement number for a requested version, falling back to
    other catalog versions and recording why

Usage:
    from pathlib import Path
    from troop_etl.catalog import load_badge_aliases, load_catalog, RequirementResolver

    aliases = load_badge_aliases(Path("config/merit_badge_aliases.yml"))
    catalog = load_catalog(store, aliases)
    resolution = RequirementResolver(catalog).resolve_badge_requirement(
        badge, "2b[1]", "2024",
    )
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from troop_etl.normalize import normalize_badge_name, requirement_number_variants, trim
from troop_etl.shared import WarningKind

DEFAULT_ALIASES_PATH = Path("config/merit_badge_aliases.yml")

# Renamed and historical badge names → current catalog names (both normalized).
DEFAULT_BADGE_ALIASES: dict[str, str] = {
    "fish_and_wildlife_management": "fish_wildlife_management",
    "american_indian_lore": "american_indian_culture",
    "american_indian_culture": "american_indian_lore",
    "atomic_energy": "nuclear_science",
    "consumer_buying": "personal_management",
    "world_brotherhood": "citizenship_in_the_world",
    "farm_arrangement": "farm_mechanics",
    "pigeon_raising": "bird_study",
    "rabbit_raising": "animal_science",
    "nut_culture": "plant_science",
    "bee_keeping": "beekeeping",
    "life_saving": "lifesaving",
    "first_aid_to_animals": "veterinary_medicine",
    "signaling": "signs_signals_codes",
    "machinery": "farm_mechanics",
    "physical_development": "personal_fitness",
    "safety": "emergency_preparedness",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AliasMapValidationError(ValueError):
    """Raised when a YAML alias file fails schema validation."""


# ---------------------------------------------------------------------------
# Alias map
# ---------------------------------------------------------------------------

@dataclass
class BadgeAliasMap:
    aliases: dict[str, str]
    yaml_hash: str | None = None

    def get(self, code: str) -> str | None:
        return self.aliases.get(code)


def load_badge_aliases(yaml_path: Path) -> BadgeAliasMap:
    """Load and validate a badge alias map.

    The file holds a single ``aliases`` mapping of old name → current name.
    Both sides are normalized the same way export badge names are.

    Raises:
        AliasMapValidationError: malformed document.
        FileNotFoundError: the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data: Any = yaml.safe_load(raw)
    if not isinstance(data, dict) or not isinstance(data.get("aliases"), dict):
        raise AliasMapValidationError(f"{yaml_path}: expected a top-level 'aliases' mapping")
    aliases: dict[str, str] = {}
    for old, new in data["aliases"].items():
        if not isinstance(old, str) or not isinstance(new, str):
            raise AliasMapValidationError(
                f"{yaml_path}: alias entries must be strings, got {old!r}: {new!r}"
            )
        old_code = normalize_badge_name(old)
        new_code = normalize_badge_name(new)
        if not old_code or not new_code:
            raise AliasMapValidationError(f"{yaml_path}: empty alias entry {old!r}: {new!r}")
        aliases[old_code] = new_code
    return BadgeAliasMap(
        aliases=aliases,
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
    )


def default_badge_aliases() -> BadgeAliasMap:
    return BadgeAliasMap(aliases=dict(DEFAULT_BADGE_ALIASES))


# ---------------------------------------------------------------------------
# Catalog types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogRank:
    id: str
    code: str
    name: str
    requirement_version_year: int | None = None
    display_order: int = 0


@dataclass(frozen=True)
class CatalogBadge:
    id: str
    code: str
    name: str
    requirement_version_year: int | None = None
    is_active: bool = True


@dataclass(frozen=True)
class CatalogRequirement:
    id: str
    parent_id: str
    version_year: int | None
    requirement_number: str
    scoutbook_requirement_number: str | None = None


def parse_version_year(value: str | int | None) -> int | None:
    """'2024' → 2024; empty or non-numeric → None."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    v = trim(value)
    if v is None or not v.isdigit():
        return None
    return int(v)


class _RequirementIndex:
    """(parent_id, version_year) → requirement_number → requirement."""

    def __init__(self, requirements: list[CatalogRequirement]) -> None:
        self.by_parent_version: dict[tuple[str, int | None], list[CatalogRequirement]] = {}
        self._numbers: dict[tuple[str, int | None], dict[str, CatalogRequirement]] = {}
        for req in requirements:
            key = (req.parent_id, req.version_year)
            self.by_parent_version.setdefault(key, []).append(req)
            numbers = self._numbers.setdefault(key, {})
            if req.scoutbook_requirement_number:
                numbers.setdefault(req.scoutbook_requirement_number, req)
            numbers.setdefault(req.requirement_number, req)

    def versions(self, parent_id: str) -> list[int | None]:
        found = {v for (pid, v) in self.by_parent_version if pid == parent_id}
        return sorted(found, key=lambda v: (v is None, v or 0))

    def lookup(self, parent_id: str, version: int | None, number: str) -> CatalogRequirement | None:
        return self._numbers.get((parent_id, version), {}).get(number)

    def all_for(self, parent_id: str, version: int | None) -> list[CatalogRequirement]:
        return list(self.by_parent_version.get((parent_id, version), []))


@dataclass
class ReferenceCatalog:
    ranks: list[CatalogRank] = field(default_factory=list)
    badges: list[CatalogBadge] = field(default_factory=list)
    rank_requirements: list[CatalogRequirement] = field(default_factory=list)
    badge_requirements: list[CatalogRequirement] = field(default_factory=list)
    aliases: BadgeAliasMap = field(default_factory=default_badge_aliases)

    def __post_init__(self) -> None:
        self._rank_by_code = {r.code: r for r in self.ranks}
        self._badge_by_code: dict[str, CatalogBadge] = {}
        for b in self.badges:
            self._badge_by_code.setdefault(b.code, b)
        self.rank_index = _RequirementIndex(self.rank_requirements)
        self.badge_index = _RequirementIndex(self.badge_requirements)

    def find_rank(self, code: str) -> CatalogRank | None:
        return self._rank_by_code.get(code)

    def find_badge(self, code: str) -> CatalogBadge | None:
        """Direct normalized-name match, then one alias hop."""
        badge = self._badge_by_code.get(code)
        if badge is not None:
            return badge
        aliased = self.aliases.get(code)
        if aliased:
            return self._badge_by_code.get(aliased)
        return None

    def rank_requirements_for(self, rank: CatalogRank, version: int | None = None) -> list[CatalogRequirement]:
        if version is None:
            version = rank.requirement_version_year
        return self.rank_index.all_for(rank.id, version)

    def badge_requirements_for(self, badge: CatalogBadge, version: int | None = None) -> list[CatalogRequirement]:
        if version is None:
            version = badge.requirement_version_year
        return self.badge_index.all_for(badge.id, version)


def load_catalog(store: Any, aliases: BadgeAliasMap | None = None) -> ReferenceCatalog:
    """Build a ReferenceCatalog from the store's reference tables."""
    return ReferenceCatalog(
        ranks=[
            CatalogRank(
                id=str(r["id"]),
                code=r["code"],
                name=r["name"],
                requirement_version_year=r.get("requirement_version_year"),
                display_order=r.get("display_order") or 0,
            )
            for r in store.list_ranks()
        ],
        badges=[
            CatalogBadge(
                id=str(b["id"]),
                code=normalize_badge_name(b["name"]) or b.get("code"),
                name=b["name"],
                requirement_version_year=b.get("requirement_version_year"),
                is_active=b.get("is_active", True),
            )
            for b in store.list_merit_badges()
        ],
        rank_requirements=[
            CatalogRequirement(
                id=str(q["id"]),
                parent_id=str(q["rank_id"]),
                version_year=q.get("version_year"),
                requirement_number=q["requirement_number"],
            )
            for q in store.list_rank_requirements()
        ],
        badge_requirements=[
            CatalogRequirement(
                id=str(q["id"]),
                parent_id=str(q["merit_badge_id"]),
                version_year=q.get("version_year"),
                requirement_number=q["requirement_number"],
                scoutbook_requirement_number=q.get("scoutbook_requirement_number"),
            )
            for q in store.list_merit_badge_requirements()
        ],
        aliases=aliases or default_badge_aliases(),
    )


# ---------------------------------------------------------------------------
# Requirement resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RequirementResolution:
    requirement: CatalogRequirement | None
    requested_version: int | None
    used_version: int | None
    warning: WarningKind | None = None

    @property
    def found(self) -> bool:
        return self.requirement is not None


class RequirementResolver:
    """Resolve export requirement numbers against catalog versions.

    Order of attempts:
      1. The requested version (or the parent's default when none was
         given).  A requested version absent from the catalog falls back
         to the parent's default, else the nearest available version, and
         is flagged VERSION_FALLBACK.
      2. Within that version: the raw number, then its variants.
      3. Every other catalog version, nearest first (VERSION_MISMATCH).
      4. Otherwise REQUIREMENT_NOT_FOUND.
    """

    def __init__(self, catalog: ReferenceCatalog) -> None:
        self.catalog = catalog

    def resolve_rank_requirement(
        self, rank: CatalogRank, number: str, version: str | None,
    ) -> RequirementResolution:
        return self._resolve(
            self.catalog.rank_index, rank.id, rank.requirement_version_year, number, version,
        )

    def resolve_badge_requirement(
        self, badge: CatalogBadge, number: str, version: str | None,
    ) -> RequirementResolution:
        return self._resolve(
            self.catalog.badge_index, badge.id, badge.requirement_version_year, number, version,
        )

    def _resolve(
        self,
        index: _RequirementIndex,
        parent_id: str,
        default_version: int | None,
        number: str,
        version: str | None,
    ) -> RequirementResolution:
        requested = parse_version_year(version)
        available = index.versions(parent_id)
        variants = requirement_number_variants(number)

        primary, fell_back = self._primary_version(requested, default_version, available)
        if primary is not None or None in available:
            req = self._lookup(index, parent_id, primary, variants)
            if req is not None:
                return RequirementResolution(
                    requirement=req,
                    requested_version=requested,
                    used_version=primary,
                    warning=WarningKind.VERSION_FALLBACK if fell_back else None,
                )

        target = requested if requested is not None else default_version
        others = [v for v in available if v != primary]
        others.sort(key=lambda v: _distance(v, target))
        for other in others:
            req = self._lookup(index, parent_id, other, variants)
            if req is not None:
                return RequirementResolution(
                    requirement=req,
                    requested_version=requested,
                    used_version=other,
                    warning=WarningKind.VERSION_MISMATCH,
                )

        return RequirementResolution(
            requirement=None,
            requested_version=requested,
            used_version=None,
            warning=WarningKind.REQUIREMENT_NOT_FOUND,
        )

    @staticmethod
    def _primary_version(
        requested: int | None,
        default_version: int | None,
        available: list[int | None],
    ) -> tuple[int | None, bool]:
        if requested is not None and requested in available:
            return requested, False
        if requested is None:
            if default_version in available or not available:
                return default_version, False
            return _nearest(available, default_version), False
        if default_version in available:
            return default_version, True
        if not available:
            return requested, False
        return _nearest(available, requested), True

    @staticmethod
    def _lookup(
        index: _RequirementIndex,
        parent_id: str,
        version: int | None,
        variants: list[str],
    ) -> CatalogRequirement | None:
        for candidate in variants:
            req = index.lookup(parent_id, version, candidate)
            if req is not None:
                return req
        return None


def _distance(version: int | None, target: int | None) -> tuple[int, int]:
    if version is None:
        return (10_000, 0)
    if target is None:
        return (0, -version)
    # Ties prefer the newer version
    return (abs(version - target), -version)


def _nearest(available: list[int | None], target: int | None) -> int | None:
    return min(available, key=lambda v: _distance(v, target))
