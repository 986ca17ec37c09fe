"""Entity matching for parsed people.

The member id is authoritative: when a record carries one, only the id
lookup runs, and a miss is final.  Records without an id fall back to an
e-mail lookup.  Candidates found by different strategies are never merged.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from troop_etl.normalize import normalize_email, trim

Lookup = Callable[[str], "dict[str, Any] | None"]


class MatchedBy(str, Enum):
    MEMBER_ID = "member_id"
    EMAIL = "email"


@dataclass(frozen=True)
class Match:
    entity_id: str
    matched_by: MatchedBy


def match_person(
    member_id: str | None,
    email: str | None,
    by_member_id: Lookup,
    by_email: Lookup | None = None,
) -> Match | None:
    """Return the existing entity for a parsed person, or None."""
    mid = trim(member_id)
    if mid is not None:
        row = by_member_id(mid)
        return Match(str(row["id"]), MatchedBy.MEMBER_ID) if row else None

    addr = normalize_email(email)
    if addr is not None and by_email is not None:
        row = by_email(addr)
        if row:
            return Match(str(row["id"]), MatchedBy.EMAIL)
    return None


def match_scout(store: Any, unit_id: str, member_id: str | None) -> Match | None:
    """Scouts are matched within the unit by member id only."""
    return match_person(
        member_id,
        None,
        lambda mid: store.find_scout_by_member_id(unit_id, mid),
    )


def match_profile(store: Any, member_id: str | None, email: str | None) -> Match | None:
    return match_person(
        member_id,
        email,
        store.find_profile_by_member_id,
        store.find_profile_by_email,
    )
