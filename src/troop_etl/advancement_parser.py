"""troop_etl.advancement_parser

Parse the troop advancement export: one row per (scout, advancement item)
with a type-discriminator column ("Rank", "Merit Badges",
"Tenderfoot Rank Requirements", "Camping Merit Badge Requirements", ...).

Rows are classified into one of four retained categories or counted as
out of scope (awards, palms, adventures).  Each retained row becomes a
category-specific record on the scout's ParsedScoutAdvancement; the first
occurrence of a code (or code + requirement number) wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from troop_etl.normalize import (
    normalize_badge_name,
    normalize_space,
    parse_us_date,
    trim,
)
from troop_etl.tabular import (
    HeaderMap,
    UnsupportedExportError,
    cell,
    split_line,
    split_lines,
)

RANK_NAME_TO_CODE: dict[str, str] = {
    "scout rank": "scout",
    "tenderfoot rank": "tenderfoot",
    "second class rank": "second_class",
    "first class rank": "first_class",
    "star scout rank": "star",
    "star rank": "star",
    "life scout rank": "life",
    "life rank": "life",
    "eagle scout rank": "eagle",
    "eagle rank": "eagle",
    "scout": "scout",
    "tenderfoot": "tenderfoot",
    "second class": "second_class",
    "first class": "first_class",
    "star": "star",
    "star scout": "star",
    "life": "life",
    "life scout": "life",
    "eagle": "eagle",
    "eagle scout": "eagle",
}

RANK_REQUIREMENT_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^scout rank requirements$", re.IGNORECASE), "scout"),
    (re.compile(r"^tenderfoot rank requirements$", re.IGNORECASE), "tenderfoot"),
    (re.compile(r"^second class rank requirements$", re.IGNORECASE), "second_class"),
    (re.compile(r"^first class rank requirements$", re.IGNORECASE), "first_class"),
    (re.compile(r"^star (scout )?rank requirements$", re.IGNORECASE), "star"),
    (re.compile(r"^life (scout )?rank requirements$", re.IGNORECASE), "life"),
    (re.compile(r"^eagle (scout )?rank requirements$", re.IGNORECASE), "eagle"),
]

_BADGE_REQUIREMENT_RE = re.compile(r"^(.+?)\s+Merit\s+Badge\s+Requirements$", re.IGNORECASE)
_MEMBER_ID_RE = re.compile(r"^\d+$")

# Header labels (lowercased, spaces and underscores removed).
COL_MEMBER_ID = "bsamemberid"
COL_FIRST_NAME = "firstname"
COL_NICKNAME = "nickname"
COL_MIDDLE_NAME = "middlename"
COL_LAST_NAME = "lastname"
COL_TYPE = "advancementtype"
COL_ADVANCEMENT = "advancement"
COL_VERSION = "version"
COL_AWARDED = "awarded"
COL_DATE_COMPLETED = "datecompleted"
COL_APPROVED = "approved"
COL_MARKED_COMPLETED = "markedcompleteddate"
COL_AWARDED_DATE = "awardeddate"

REQUIRED_COLUMNS = (COL_MEMBER_ID, COL_TYPE, COL_ADVANCEMENT)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class AdvancementCategory(str, Enum):
    RANK = "rank"
    RANK_REQUIREMENT = "rank_requirement"
    MERIT_BADGE = "merit_badge"
    MERIT_BADGE_REQUIREMENT = "merit_badge_requirement"
    OTHER = "other"


@dataclass(frozen=True)
class Classification:
    category: AdvancementCategory
    rank_code: str | None = None
    badge_name: str | None = None


def classify_advancement_type(advancement_type: str | None) -> Classification:
    """Classify a type-discriminator string.  Total: unknown → OTHER."""
    raw = (advancement_type or "").strip()
    lowered = raw.lower()
    if lowered == "rank":
        return Classification(AdvancementCategory.RANK)
    if lowered == "merit badges":
        return Classification(AdvancementCategory.MERIT_BADGE)
    for pattern, rank_code in RANK_REQUIREMENT_PATTERNS:
        if pattern.match(raw):
            return Classification(AdvancementCategory.RANK_REQUIREMENT, rank_code=rank_code)
    m = _BADGE_REQUIREMENT_RE.match(raw)
    if m:
        return Classification(
            AdvancementCategory.MERIT_BADGE_REQUIREMENT,
            badge_name=m.group(1).strip(),
        )
    return Classification(AdvancementCategory.OTHER)


def rank_code_for(name: str | None) -> str | None:
    v = normalize_space(name)
    if v is None:
        return None
    return RANK_NAME_TO_CODE.get(v.lower())


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass
class ParsedAdvancementRow:
    line_no: int
    member_id: str
    first_name: str
    last_name: str
    middle_name: str | None
    nickname: str | None
    advancement_type: str
    advancement: str
    version: str | None
    awarded: bool
    date_completed: date | None
    approved: bool
    marked_completed_date: date | None
    awarded_date: date | None


@dataclass(frozen=True)
class ParsedScoutRank:
    rank_code: str
    rank_name: str
    version: str | None
    awarded: bool
    awarded_date: date | None


@dataclass(frozen=True)
class ParsedScoutRankRequirement:
    rank_code: str
    requirement_number: str
    version: str | None
    completed_date: date | None


@dataclass(frozen=True)
class ParsedScoutMeritBadge:
    badge_code: str
    badge_name: str
    version: str | None
    awarded: bool
    awarded_date: date | None


@dataclass(frozen=True)
class ParsedScoutMeritBadgeRequirement:
    badge_code: str
    badge_name: str
    requirement_number: str
    version: str | None
    completed_date: date | None


@dataclass
class ParsedScoutAdvancement:
    member_id: str
    first_name: str
    last_name: str
    middle_name: str | None = None
    ranks: list[ParsedScoutRank] = field(default_factory=list)
    rank_requirements: list[ParsedScoutRankRequirement] = field(default_factory=list)
    merit_badges: list[ParsedScoutMeritBadge] = field(default_factory=list)
    merit_badge_requirements: list[ParsedScoutMeritBadgeRequirement] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def add_rank(self, item: ParsedScoutRank) -> bool:
        if any(r.rank_code == item.rank_code for r in self.ranks):
            return False
        self.ranks.append(item)
        return True

    def add_rank_requirement(self, item: ParsedScoutRankRequirement) -> bool:
        key = (item.rank_code, item.requirement_number)
        if any((r.rank_code, r.requirement_number) == key for r in self.rank_requirements):
            return False
        self.rank_requirements.append(item)
        return True

    def add_merit_badge(self, item: ParsedScoutMeritBadge) -> bool:
        if any(b.badge_code == item.badge_code for b in self.merit_badges):
            return False
        self.merit_badges.append(item)
        return True

    def add_merit_badge_requirement(self, item: ParsedScoutMeritBadgeRequirement) -> bool:
        key = (item.badge_code, item.requirement_number)
        if any(
            (r.badge_code, r.requirement_number) == key
            for r in self.merit_badge_requirements
        ):
            return False
        self.merit_badge_requirements.append(item)
        return True


@dataclass
class AdvancementParseSummary:
    total_rows: int = 0
    scout_count: int = 0
    rank_count: int = 0
    rank_requirement_count: int = 0
    badge_count: int = 0
    badge_requirement_count: int = 0
    duplicate_rows: int = 0
    skipped_rows: int = 0
    out_of_scope_rows: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_rows": self.total_rows,
            "scout_count": self.scout_count,
            "rank_count": self.rank_count,
            "rank_requirement_count": self.rank_requirement_count,
            "badge_count": self.badge_count,
            "badge_requirement_count": self.badge_requirement_count,
            "duplicate_rows": self.duplicate_rows,
            "skipped_rows": self.skipped_rows,
            "out_of_scope_rows": self.out_of_scope_rows,
        }


@dataclass
class ParsedTroopAdvancement:
    scouts: dict[str, ParsedScoutAdvancement] = field(default_factory=dict)
    summary: AdvancementParseSummary = field(default_factory=AdvancementParseSummary)
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Row decoding
# ---------------------------------------------------------------------------

def _header_key(label: str) -> str:
    return re.sub(r"[\s_]+", "", label)


class _Columns:
    def __init__(self, headers: list[str]) -> None:
        hmap = HeaderMap([_header_key(h) for h in headers])
        self.idx = {
            name: hmap.index(name, prefer_exact=True)
            for name in (
                COL_MEMBER_ID, COL_FIRST_NAME, COL_NICKNAME, COL_MIDDLE_NAME,
                COL_LAST_NAME, COL_TYPE, COL_ADVANCEMENT, COL_VERSION,
                COL_AWARDED, COL_DATE_COMPLETED, COL_APPROVED,
                COL_MARKED_COMPLETED, COL_AWARDED_DATE,
            )
        }

    def missing(self) -> list[str]:
        return [c for c in REQUIRED_COLUMNS if self.idx[c] is None]

    def get(self, values: list[str], name: str) -> str | None:
        return cell(values, self.idx[name])

    def min_fields(self) -> int:
        return max(self.idx[c] for c in REQUIRED_COLUMNS) + 1


def _decode_row(
    cols: _Columns,
    values: list[str],
    line_no: int,
) -> tuple[ParsedAdvancementRow | None, str | None]:
    if len(values) < cols.min_fields():
        return None, f"line {line_no}: too few fields ({len(values)})"
    member_id = cols.get(values, COL_MEMBER_ID)
    if not member_id or not _MEMBER_ID_RE.match(member_id):
        return None, f"line {line_no}: invalid member id {member_id!r}"
    row = ParsedAdvancementRow(
        line_no=line_no,
        member_id=member_id,
        first_name=normalize_space(cols.get(values, COL_FIRST_NAME)) or "",
        last_name=normalize_space(cols.get(values, COL_LAST_NAME)) or "",
        middle_name=normalize_space(cols.get(values, COL_MIDDLE_NAME)),
        nickname=normalize_space(cols.get(values, COL_NICKNAME)),
        advancement_type=cols.get(values, COL_TYPE) or "",
        advancement=cols.get(values, COL_ADVANCEMENT) or "",
        version=trim(cols.get(values, COL_VERSION)),
        awarded=cols.get(values, COL_AWARDED) == "1",
        date_completed=parse_us_date(cols.get(values, COL_DATE_COMPLETED)),
        approved=cols.get(values, COL_APPROVED) == "1",
        marked_completed_date=parse_us_date(cols.get(values, COL_MARKED_COMPLETED)),
        awarded_date=parse_us_date(cols.get(values, COL_AWARDED_DATE)),
    )
    return row, None


# ---------------------------------------------------------------------------
# Main parser
# ---------------------------------------------------------------------------

def parse_troop_advancement(text: str) -> ParsedTroopAdvancement:
    """Parse a troop advancement export.

    Raises:
        UnsupportedExportError: no header row, or the header lacks the
            member id / advancement type / advancement columns.
    """
    lines = split_lines(text)
    header_idx = next((i for i, line in enumerate(lines) if line.strip()), None)
    if header_idx is None:
        raise UnsupportedExportError("empty advancement export")
    cols = _Columns(split_line(lines[header_idx]))
    missing = cols.missing()
    if missing:
        raise UnsupportedExportError(
            f"not a troop advancement export: missing columns {', '.join(missing)}"
        )

    result = ParsedTroopAdvancement()
    summary = result.summary

    for i in range(header_idx + 1, len(lines)):
        line = lines[i]
        if not line.strip():
            continue
        line_no = i + 1
        summary.total_rows += 1

        row, error = _decode_row(cols, split_line(line), line_no)
        if row is None:
            result.errors.append(error)
            summary.skipped_rows += 1
            continue

        scout = result.scouts.get(row.member_id)
        if scout is None:
            scout = ParsedScoutAdvancement(
                member_id=row.member_id,
                first_name=row.first_name,
                last_name=row.last_name,
                middle_name=row.middle_name,
            )
            result.scouts[row.member_id] = scout

        _apply_row(scout, row, classify_advancement_type(row.advancement_type), summary)

    summary.scout_count = len(result.scouts)
    return result


def _apply_row(
    scout: ParsedScoutAdvancement,
    row: ParsedAdvancementRow,
    classification: Classification,
    summary: AdvancementParseSummary,
) -> None:
    category = classification.category

    if category == AdvancementCategory.OTHER:
        summary.out_of_scope_rows += 1
        return

    if category in (AdvancementCategory.RANK, AdvancementCategory.MERIT_BADGE):
        if not (row.awarded or row.awarded_date):
            summary.skipped_rows += 1
            return
        when = row.awarded_date or row.date_completed
        if category == AdvancementCategory.RANK:
            rank_code = rank_code_for(row.advancement)
            if rank_code is None:
                summary.skipped_rows += 1
                return
            added = scout.add_rank(ParsedScoutRank(
                rank_code=rank_code,
                rank_name=row.advancement,
                version=row.version,
                awarded=row.awarded,
                awarded_date=when,
            ))
            if added:
                summary.rank_count += 1
            else:
                summary.duplicate_rows += 1
            return
        badge_code = normalize_badge_name(row.advancement)
        if badge_code is None:
            summary.skipped_rows += 1
            return
        added = scout.add_merit_badge(ParsedScoutMeritBadge(
            badge_code=badge_code,
            badge_name=row.advancement,
            version=row.version,
            awarded=row.awarded,
            awarded_date=when,
        ))
        if added:
            summary.badge_count += 1
        else:
            summary.duplicate_rows += 1
        return

    # Requirement rows
    if not (row.date_completed or row.approved) or not row.advancement:
        summary.skipped_rows += 1
        return
    when = row.date_completed or row.marked_completed_date

    if category == AdvancementCategory.RANK_REQUIREMENT:
        added = scout.add_rank_requirement(ParsedScoutRankRequirement(
            rank_code=classification.rank_code,
            requirement_number=row.advancement,
            version=row.version,
            completed_date=when,
        ))
        if added:
            summary.rank_requirement_count += 1
        else:
            summary.duplicate_rows += 1
        return

    badge_code = normalize_badge_name(classification.badge_name)
    if badge_code is None:
        summary.skipped_rows += 1
        return
    added = scout.add_merit_badge_requirement(ParsedScoutMeritBadgeRequirement(
        badge_code=badge_code,
        badge_name=classification.badge_name,
        requirement_number=row.advancement,
        version=row.version,
        completed_date=when,
    ))
    if added:
        summary.badge_requirement_count += 1
    else:
        summary.duplicate_rows += 1


def validate_parsed_data(data: ParsedTroopAdvancement) -> list[str]:
    errors = list(data.errors)
    if not data.scouts:
        errors.append("No scouts found in the file")
    s = data.summary
    if s.rank_count + s.rank_requirement_count + s.badge_count + s.badge_requirement_count == 0:
        errors.append("No advancement data found in the file")
    return errors
