"""troop_etl.roster_parser

Parse a dual-section roster export ("ADULT MEMBERS" / "YOUTH MEMBERS")
into typed adult, scout, and guardian records.

Guardian references are left unresolved here: a ParsedGuardian carries the
guardian's member id and contact fields as they appear on the scout's row,
and the executor links them once every person in the batch exists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from troop_etl.normalize import (
    Gender,
    HealthFormStatus,
    SwimClassification,
    map_gender,
    normalize_email,
    normalize_space,
    parse_certifications,
    parse_guardian_relationship,
    parse_health_form,
    parse_positions,
    parse_swim_class,
    parse_us_date,
    split_pipe_list,
    trim,
)
from troop_etl.tabular import (
    HeaderMap,
    Section,
    UnsupportedExportError,
    extract_sections,
    split_lines,
)

ADULT_MARKER = "ADULT MEMBERS"
YOUTH_MARKER = "YOUTH MEMBERS"
ROSTER_MARKERS = [ADULT_MARKER, YOUTH_MARKER]

MIN_FIELDS = 5

ADULT_POSITION_PRIORITY = [
    "Scoutmaster",
    "Committee Chairman",
    "Treasurer",
    "Assistant Scoutmaster",
    "Committee Member",
    "Den Leader",
    "Troop Admin",
]

SCOUT_POSITION_PRIORITY = [
    "Senior Patrol Leader",
    "SPL",
    "Assistant Senior Patrol Leader",
    "ASPL",
    "Patrol Leader",
    "Assistant Patrol Leader",
    "Troop Guide",
    "Quartermaster",
    "Scribe",
    "Librarian",
    "Historian",
    "Bugler",
    "Chaplain Aide",
    "Instructor",
    "Junior Assistant Scoutmaster",
    "JASM",
    "Den Chief",
    "Webmaster",
    "Leave No Trace Trainer",
    "Outdoor Ethics Guide",
]

_UNIT_RE = re.compile(r"(?:troop|pack|crew|ship)\s+(\d+)(?:\s*([A-Z])\b)?", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

class UnitType(str, Enum):
    TROOP = "troop"
    PACK = "pack"
    CREW = "crew"
    SHIP = "ship"


class AdultRole(str, Enum):
    LEADER = "leader"
    TREASURER = "treasurer"
    PARENT = "parent"


@dataclass(frozen=True)
class RosterUnitMetadata:
    unit_type: UnitType | None = None
    unit_number: str | None = None
    unit_suffix: str | None = None
    council: str | None = None
    district: str | None = None


@dataclass
class ParsedCertification:
    code: str
    name: str
    expires_at: date | None = None


@dataclass
class ParsedAdult:
    line_no: int
    first_name: str
    last_name: str
    middle_name: str | None = None
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    phone: str | None = None
    gender: Gender = Gender.UNSPECIFIED
    date_joined: date | None = None
    member_id: str | None = None
    health_form_status: HealthFormStatus | None = None
    health_form_expires: date | None = None
    swim_classification: SwimClassification | None = None
    swim_class_date: date | None = None
    positions: list[str] = field(default_factory=list)
    certifications: list[ParsedCertification] = field(default_factory=list)
    merit_badges: list[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def current_position(self) -> str | None:
        return current_position(self.positions)

    @property
    def role(self) -> AdultRole:
        return derive_role(self.positions)

    @property
    def is_leader(self) -> bool:
        return self.role != AdultRole.PARENT


@dataclass
class ParsedGuardian:
    name: str
    member_id: str | None = None
    relationship: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    home_phone: str | None = None
    work_phone: str | None = None
    mobile_phone: str | None = None
    email: str | None = None


@dataclass
class ParsedScout:
    line_no: int
    first_name: str
    last_name: str
    middle_name: str | None = None
    rank: str | None = None
    member_id: str | None = None
    date_of_birth: date | None = None
    gender: Gender = Gender.UNSPECIFIED
    date_joined: date | None = None
    health_form_status: HealthFormStatus | None = None
    health_form_expires: date | None = None
    swim_classification: SwimClassification | None = None
    swim_class_date: date | None = None
    patrol: str | None = None
    positions: list[str] = field(default_factory=list)
    guardians: list[ParsedGuardian] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def current_position(self) -> str | None:
        return scout_position(self.positions)


@dataclass
class ParsedRoster:
    adults: list[ParsedAdult] = field(default_factory=list)
    scouts: list[ParsedScout] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    unit_metadata: RosterUnitMetadata = field(default_factory=RosterUnitMetadata)


# ---------------------------------------------------------------------------
# Position / role helpers
# ---------------------------------------------------------------------------

def derive_role(positions: list[str]) -> AdultRole:
    """Leader for scoutmaster / committee positions, treasurer, else parent."""
    for pos in positions:
        lower = pos.lower()
        if "scoutmaster" in lower:
            return AdultRole.LEADER
        if "committee chair" in lower or "committee member" in lower:
            return AdultRole.LEADER
        if "treasurer" in lower:
            return AdultRole.TREASURER
    return AdultRole.PARENT


def _first_by_priority(positions: list[str], priority: list[str]) -> str | None:
    for wanted in priority:
        needle = wanted.lower()
        for pos in positions:
            if needle in pos.lower():
                return pos
    return None


def current_position(positions: list[str]) -> str | None:
    """Most relevant adult position for display."""
    found = _first_by_priority(positions, ADULT_POSITION_PRIORITY)
    if found:
        return found
    for pos in positions:
        lower = pos.lower()
        if "parent" not in lower and "guardian" not in lower:
            return pos
    return positions[0] if positions else None


def scout_position(positions: list[str]) -> str | None:
    """Most relevant youth leadership position, else the first listed."""
    if not positions:
        return None
    return _first_by_priority(positions, SCOUT_POSITION_PRIORITY) or positions[0]


# ---------------------------------------------------------------------------
# Row builders
# ---------------------------------------------------------------------------

def _build_adult(h: HeaderMap, values: list[str], line_no: int) -> ParsedAdult:
    health_status, health_expires = parse_health_form(h.get(values, "Health Form"))
    certs = [
        ParsedCertification(code=code, name=name, expires_at=expires)
        for code, name, expires in parse_certifications(
            h.get(values, "Training"), h.get(values, "Expiration Date")
        )
    ]
    return ParsedAdult(
        line_no=line_no,
        first_name=normalize_space(h.get(values, "First Name")) or "",
        last_name=normalize_space(h.get(values, "Last Name")) or "",
        middle_name=normalize_space(h.get(values, "Middle Name")),
        email=normalize_email(h.get(values, "Email")),
        address=trim(h.get(values, "Address")),
        city=trim(h.get(values, "City")),
        state=trim(h.get(values, "State")),
        zip=trim(h.get(values, "Zip")),
        phone=trim(h.get(values, "Phone")),
        gender=map_gender(h.get(values, "Gender")),
        date_joined=parse_us_date(h.get(values, "Date Joined")),
        member_id=trim(h.get(values, "BSA Number")),
        health_form_status=health_status,
        health_form_expires=health_expires,
        swim_classification=parse_swim_class(h.get(values, "Swim Class", prefer_exact=True)),
        swim_class_date=parse_us_date(h.get(values, "Swim Class Date")),
        positions=parse_positions(h.get(values, "Positions")),
        certifications=certs,
        merit_badges=split_pipe_list(h.get(values, "Merit Badges")),
    )


def _build_guardian(h: HeaderMap, values: list[str]) -> ParsedGuardian | None:
    """Guardian fields live in the columns after 'Parent/Guardian Name'."""
    start = h.index("Parent/Guardian Name")
    if start is None:
        return None
    name = normalize_space(h.get(values, "Parent/Guardian Name"))
    if not name:
        return None
    member_id, label = parse_guardian_relationship(h.get(values, "Relationship", start=start))
    home_phones = [i for i in h.indexes("Home Phone") if i > start]
    home_phone = None
    if home_phones and home_phones[0] < len(values):
        home_phone = trim(values[home_phones[0]])
    return ParsedGuardian(
        name=name,
        member_id=member_id,
        relationship=label,
        address=trim(h.get(values, "Address", start=start)),
        city=trim(h.get(values, "City", start=start)),
        state=trim(h.get(values, "State", start=start)),
        zip=trim(h.get(values, "Zip", start=start)),
        home_phone=home_phone,
        work_phone=trim(h.get(values, "Work Phone", start=start)),
        mobile_phone=trim(h.get(values, "Mobile Phone", start=start)),
        email=normalize_email(h.get(values, "Email", start=start)),
    )


def _build_scout(h: HeaderMap, values: list[str], line_no: int) -> ParsedScout:
    health_status, health_expires = parse_health_form(h.get(values, "Health Form"))
    guardian = _build_guardian(h, values)
    return ParsedScout(
        line_no=line_no,
        first_name=normalize_space(h.get(values, "First Name")) or "",
        last_name=normalize_space(h.get(values, "Last Name")) or "",
        middle_name=normalize_space(h.get(values, "Middle Name")),
        rank=trim(h.get(values, "Rank")),
        member_id=trim(h.get(values, "BSA Number")),
        date_of_birth=parse_us_date(h.get(values, "Date of Birth")),
        gender=map_gender(h.get(values, "Gender")),
        date_joined=parse_us_date(h.get(values, "Date Joined")),
        health_form_status=health_status,
        health_form_expires=health_expires,
        swim_classification=parse_swim_class(h.get(values, "Swim Class", prefer_exact=True)),
        swim_class_date=parse_us_date(h.get(values, "Swim Class Date")),
        patrol=normalize_space(h.get(values, "Patrol")),
        positions=parse_positions(h.get(values, "Positions")),
        guardians=[guardian] if guardian else [],
    )


def _row_problem(values: list[str], first: str, last: str) -> str | None:
    if len(values) < MIN_FIELDS:
        return f"too few fields ({len(values)})"
    if not first:
        return f"missing first name (last name {last!r})"
    if not last:
        return f"missing last name (first name {first!r})"
    return None


def _parse_adults(section: Section, roster: ParsedRoster) -> None:
    seen: dict[str, int] = {}
    for row in section.rows:
        adult = _build_adult(section.headers, row.values, row.line_no)
        problem = _row_problem(row.values, adult.first_name, adult.last_name)
        if problem:
            roster.errors.append(f"line {row.line_no}: adult row rejected: {problem}")
            continue
        if adult.member_id and adult.member_id in seen:
            roster.errors.append(
                f"line {row.line_no}: duplicate adult member id {adult.member_id} "
                f"(first seen on line {seen[adult.member_id]})"
            )
            continue
        if adult.member_id:
            seen[adult.member_id] = row.line_no
        roster.adults.append(adult)


def _parse_scouts(section: Section, roster: ParsedRoster) -> None:
    seen: dict[str, int] = {}
    for row in section.rows:
        scout = _build_scout(section.headers, row.values, row.line_no)
        problem = _row_problem(row.values, scout.first_name, scout.last_name)
        if problem:
            roster.errors.append(f"line {row.line_no}: youth row rejected: {problem}")
            continue
        if scout.member_id and scout.member_id in seen:
            roster.errors.append(
                f"line {row.line_no}: duplicate youth member id {scout.member_id} "
                f"(first seen on line {seen[scout.member_id]})"
            )
            continue
        if scout.member_id:
            seen[scout.member_id] = row.line_no
        roster.scouts.append(scout)


# ---------------------------------------------------------------------------
# Unit metadata
# ---------------------------------------------------------------------------

def _unit_type(unit: str) -> UnitType | None:
    lower = unit.lower()
    for unit_type in UnitType:
        if unit_type.value in lower:
            return unit_type
    return None


def _metadata_from_row(h: HeaderMap, values: list[str]) -> RosterUnitMetadata:
    council = h.get(values, "Council")
    if council:
        council = re.sub(r"\s+\d+\s*$", "", council).strip() or None
    unit = h.get(values, "Unit Number") or h.get(values, "Unit")
    unit_type = number = suffix = None
    if unit:
        unit_type = _unit_type(unit)
        m = _UNIT_RE.search(unit)
        if m:
            number = m.group(1)
            suffix = m.group(2).upper() if m.group(2) else None
    return RosterUnitMetadata(
        unit_type=unit_type,
        unit_number=number,
        unit_suffix=suffix,
        council=council,
        district=h.get(values, "District"),
    )


def extract_unit_metadata(sections: dict[str, Section]) -> RosterUnitMetadata:
    """Derive unit metadata from the first adult row, else the first youth row."""
    found = RosterUnitMetadata()
    for marker in ROSTER_MARKERS:
        section = sections.get(marker)
        if section is None or section.headers is None or not section.rows:
            continue
        found = _metadata_from_row(section.headers, section.rows[0].values)
        if found.unit_number:
            return found
    return found


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def parse_roster(text: str) -> ParsedRoster:
    """Parse a roster export.

    Raises:
        UnsupportedExportError: neither section marker is present.
    """
    lines = split_lines(text)
    extracted = extract_sections(lines, ROSTER_MARKERS)
    if not extracted.sections:
        raise UnsupportedExportError(
            "not a roster export: no ADULT MEMBERS or YOUTH MEMBERS section found"
        )

    roster = ParsedRoster()
    roster.errors.extend(extracted.errors)
    for marker in extracted.missing:
        roster.errors.append(f"section not found: {marker}")

    adults = extracted.sections.get(ADULT_MARKER)
    if adults is not None and adults.headers is not None:
        _parse_adults(adults, roster)
    youth = extracted.sections.get(YOUTH_MARKER)
    if youth is not None and youth.headers is not None:
        _parse_scouts(youth, roster)

    roster.unit_metadata = extract_unit_metadata(extracted.sections)
    return roster


def validate_roster(roster: ParsedRoster) -> list[str]:
    """Return parse errors plus structural problems worth blocking an import."""
    errors = list(roster.errors)
    if not roster.adults and not roster.scouts:
        errors.append("no adults or scouts found in roster")
    for label, people in (("adult", roster.adults), ("scout", roster.scouts)):
        ids = [p.member_id for p in people if p.member_id]
        for member_id in sorted({i for i in ids if ids.count(i) > 1}):
            errors.append(f"duplicate {label} member id: {member_id}")
    return errors
