"""Shared fixtures for unit tests: an in-memory store seeded with a small catalog."""

from __future__ import annotations

import pytest

from troop_etl.catalog import ReferenceCatalog, load_catalog
from troop_etl.store import MemoryStore

RANKS = [
    # code, name, display_order, requirement_version_year
    ("scout", "Scout", 1, 2022),
    ("tenderfoot", "Tenderfoot", 2, 2022),
    ("first_class", "First Class", 4, 2022),
]

RANK_REQUIREMENTS = {
    ("tenderfoot", 2022): ["1a", "1b", "2a"],
    ("tenderfoot", 2016): ["1a", "1b", "4a"],
    ("scout", 2022): ["1a", "2"],
}

BADGES = [
    # name, requirement_version_year
    ("Camping", 2024),
    ("First Aid", 2024),
    ("Fish & Wildlife Management", 2023),
]

BADGE_REQUIREMENTS = {
    ("Camping", 2024): ["1", "2(1)", "3"],
    ("Camping", 2019): ["1", "10a"],
    ("First Aid", 2024): ["1", "2"],
}


def seed_catalog(store: MemoryStore) -> dict[str, str]:
    """Insert the reference catalog; return {code or badge name: id}."""
    ids: dict[str, str] = {}
    for code, name, order, version in RANKS:
        ids[code] = store.insert("bsa_ranks", {
            "code": code,
            "name": name,
            "display_order": order,
            "requirement_version_year": version,
        })
    for name, version in BADGES:
        ids[name] = store.insert("bsa_merit_badges", {
            "code": name.lower().replace(" ", "_"),
            "name": name,
            "requirement_version_year": version,
            "is_active": True,
        })
    for (code, version), numbers in RANK_REQUIREMENTS.items():
        for order, number in enumerate(numbers):
            ids[f"{code}:{version}:{number}"] = store.insert("bsa_rank_requirements", {
                "rank_id": ids[code],
                "version_year": version,
                "requirement_number": number,
                "display_order": order,
            })
    for (name, version), numbers in BADGE_REQUIREMENTS.items():
        for order, number in enumerate(numbers):
            ids[f"{name}:{version}:{number}"] = store.insert("bsa_merit_badge_requirements", {
                "merit_badge_id": ids[name],
                "version_year": version,
                "requirement_number": number,
                "display_order": order,
            })
    return ids


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def catalog_ids(store: MemoryStore) -> dict[str, str]:
    return seed_catalog(store)


@pytest.fixture
def catalog(store: MemoryStore, catalog_ids: dict[str, str]) -> ReferenceCatalog:
    return load_catalog(store)
