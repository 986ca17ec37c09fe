"""Unit tests for troop_etl.catalog."""

from __future__ import annotations

import hashlib
import textwrap
from pathlib import Path

import pytest

from troop_etl.catalog import (
    AliasMapValidationError,
    BadgeAliasMap,
    RequirementResolver,
    load_badge_aliases,
    load_catalog,
    parse_version_year,
)
from troop_etl.shared import WarningKind


# ---------------------------------------------------------------------------
# Alias map
# ---------------------------------------------------------------------------

ALIASES_YAML = textwrap.dedent("""\
    aliases:
      Fish and Wildlife Management: Fish & Wildlife Management
      Life Saving MB: Lifesaving
""")


class TestLoadBadgeAliases:
    def test_normalizes_both_sides(self, tmp_path: Path):
        path = tmp_path / "aliases.yml"
        path.write_text(ALIASES_YAML)
        aliases = load_badge_aliases(path)
        assert aliases.aliases == {
            "fish_and_wildlife_management": "fish_wildlife_management",
            "life_saving": "lifesaving",
        }

    def test_hash(self, tmp_path: Path):
        path = tmp_path / "aliases.yml"
        path.write_text(ALIASES_YAML)
        expected = hashlib.sha256(ALIASES_YAML.encode("utf-8")).hexdigest()
        assert load_badge_aliases(path).yaml_hash == expected

    def test_missing_aliases_key(self, tmp_path: Path):
        path = tmp_path / "aliases.yml"
        path.write_text("renames: {}\n")
        with pytest.raises(AliasMapValidationError, match="aliases"):
            load_badge_aliases(path)

    def test_non_string_entry(self, tmp_path: Path):
        path = tmp_path / "aliases.yml"
        path.write_text("aliases:\n  Camping: [a, b]\n")
        with pytest.raises(AliasMapValidationError, match="strings"):
            load_badge_aliases(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_badge_aliases(tmp_path / "nope.yml")

    def test_shipped_config_loads(self):
        path = Path(__file__).parent.parent.parent / "config" / "merit_badge_aliases.yml"
        aliases = load_badge_aliases(path)
        assert aliases.get("atomic_energy") == "nuclear_science"


# ---------------------------------------------------------------------------
# Catalog lookups
# ---------------------------------------------------------------------------

class TestReferenceCatalog:
    def test_loads_ranks_and_badges(self, catalog):
        assert [r.code for r in catalog.ranks] == ["scout", "tenderfoot", "first_class"]
        assert {b.code for b in catalog.badges} == {
            "camping", "first_aid", "fish_wildlife_management",
        }

    def test_find_rank(self, catalog, catalog_ids):
        assert catalog.find_rank("tenderfoot").id == catalog_ids["tenderfoot"]
        assert catalog.find_rank("eagle") is None

    def test_find_badge_direct(self, catalog, catalog_ids):
        assert catalog.find_badge("first_aid").id == catalog_ids["First Aid"]

    def test_find_badge_via_default_alias(self, catalog, catalog_ids):
        badge = catalog.find_badge("fish_and_wildlife_management")
        assert badge.id == catalog_ids["Fish & Wildlife Management"]

    def test_find_badge_custom_alias(self, store, catalog_ids):
        catalog = load_catalog(store, BadgeAliasMap({"outdoor_living": "camping"}))
        assert catalog.find_badge("outdoor_living").id == catalog_ids["Camping"]
        assert catalog.find_badge("fish_and_wildlife_management") is None

    def test_unknown_badge(self, catalog):
        assert catalog.find_badge("underwater_basket_weaving") is None

    def test_requirements_for_default_version(self, catalog):
        rank = catalog.find_rank("tenderfoot")
        numbers = [r.requirement_number for r in catalog.rank_requirements_for(rank)]
        assert numbers == ["1a", "1b", "2a"]

    def test_requirements_for_explicit_version(self, catalog):
        badge = catalog.find_badge("camping")
        numbers = [r.requirement_number for r in catalog.badge_requirements_for(badge, 2019)]
        assert numbers == ["1", "10a"]


class TestParseVersionYear:
    def test_values(self):
        assert parse_version_year("2024") == 2024
        assert parse_version_year(2019) == 2019
        assert parse_version_year(" ") is None
        assert parse_version_year("v2") is None
        assert parse_version_year(None) is None


# ---------------------------------------------------------------------------
# Requirement resolution
# ---------------------------------------------------------------------------

class TestRequirementResolver:
    def test_exact_match(self, catalog, catalog_ids):
        rank = catalog.find_rank("tenderfoot")
        res = RequirementResolver(catalog).resolve_rank_requirement(rank, "1a", "2022")
        assert res.found
        assert res.requirement.id == catalog_ids["tenderfoot:2022:1a"]
        assert res.used_version == 2022
        assert res.warning is None

    def test_variant_match(self, catalog, catalog_ids):
        badge = catalog.find_badge("camping")
        res = RequirementResolver(catalog).resolve_badge_requirement(badge, "2b[1]", "2024")
        assert res.requirement.id == catalog_ids["Camping:2024:2(1)"]
        assert res.warning is None

    def test_requested_version_absent_falls_back(self, catalog, catalog_ids):
        rank = catalog.find_rank("tenderfoot")
        res = RequirementResolver(catalog).resolve_rank_requirement(rank, "1b", "2019")
        assert res.requirement.id == catalog_ids["tenderfoot:2022:1b"]
        assert res.requested_version == 2019
        assert res.used_version == 2022
        assert res.warning == WarningKind.VERSION_FALLBACK

    def test_found_only_in_other_version(self, catalog, catalog_ids):
        rank = catalog.find_rank("tenderfoot")
        res = RequirementResolver(catalog).resolve_rank_requirement(rank, "4a", "2022")
        assert res.requirement.id == catalog_ids["tenderfoot:2016:4a"]
        assert res.used_version == 2016
        assert res.warning == WarningKind.VERSION_MISMATCH

    def test_no_version_uses_default_then_others(self, catalog, catalog_ids):
        badge = catalog.find_badge("camping")
        res = RequirementResolver(catalog).resolve_badge_requirement(badge, "10a", None)
        assert res.requirement.id == catalog_ids["Camping:2019:10a"]
        assert res.warning == WarningKind.VERSION_MISMATCH

    def test_not_found(self, catalog):
        rank = catalog.find_rank("tenderfoot")
        res = RequirementResolver(catalog).resolve_rank_requirement(rank, "9z", "2022")
        assert not res.found
        assert res.used_version is None
        assert res.warning == WarningKind.REQUIREMENT_NOT_FOUND

    def test_parent_without_requirements(self, catalog):
        rank = catalog.find_rank("first_class")
        res = RequirementResolver(catalog).resolve_rank_requirement(rank, "1", None)
        assert res.warning == WarningKind.REQUIREMENT_NOT_FOUND
