"""Normalization functions for roster and advancement export ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from enum import Enum


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNSPECIFIED = "prefer_not_to_say"


class HealthFormStatus(str, Enum):
    CURRENT = "current"
    EXPIRED = "expired"


class SwimClassification(str, Enum):
    SWIMMER = "swimmer"
    BEGINNER = "beginner"
    NON_SWIMMER = "non-swimmer"


_US_DATE_RE = re.compile(r"(\d{1,2})/(\d{1,2})/(\d{4})")
_TENURE_RE = re.compile(r"\s*\([^)]+\)\s*$")
_TRAINING_RE = re.compile(r"^([A-Z0-9_]+)\s+(.+)$")
_GUARDIAN_ID_RE = re.compile(r"\((\d+)\)")

_GENDER_TOKENS = {
    "m": Gender.MALE,
    "male": Gender.MALE,
    "f": Gender.FEMALE,
    "female": Gender.FEMALE,
    "o": Gender.OTHER,
    "other": Gender.OTHER,
    "x": Gender.OTHER,
}


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_email
# ---------------------------------------------------------------------------

def normalize_email(value: str | None) -> str | None:
    """Lowercase and trim an email address. Values without '@' → None."""
    v = trim(value)
    if v is None or "@" not in v:
        return None
    return v.lower()


# ---------------------------------------------------------------------------
# Rule 4: normalize_phone
# ---------------------------------------------------------------------------

def normalize_phone(value: str | None) -> str | None:
    """Return E.164-style phone or None.

    Keeps digits only.  10-digit → +1XXXXXXXXXX.
    11-digit starting with 1 → +1XXXXXXXXXX.
    Anything else → '+' prefixed digits, or None if fewer than 7 digits.
    """
    v = trim(value)
    if v is None:
        return None
    digits = re.sub(r"\D", "", v)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if len(digits) >= 7:
        return f"+{digits}"
    return None


# ---------------------------------------------------------------------------
# Rule 5: normalize_name  (for patrol and person lookups)
# ---------------------------------------------------------------------------

def normalize_name(value: str | None) -> str | None:
    """Lowercase, remove punctuation except spaces, collapse spaces."""
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^\w\s]", "", v)
    v = re.sub(r"\s+", " ", v).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 6: normalize_code  (rank / badge codes)
# ---------------------------------------------------------------------------

def normalize_code(value: str | None) -> str | None:
    """Lowercase; runs of non-alphanumerics → '_'; strip outer underscores.

    "Fish & Wildlife Management" → "fish_wildlife_management".
    """
    v = trim(value)
    if v is None:
        return None
    v = re.sub(r"[^a-z0-9]+", "_", v.lower()).strip("_")
    return v if v else None


def normalize_badge_name(value: str | None) -> str | None:
    """normalize_code after dropping a trailing ' MB' / ' Merit Badge'."""
    v = trim(value)
    if v is None:
        return None
    v = re.sub(r"\s+(MB|Merit Badge)$", "", v, flags=re.IGNORECASE)
    return normalize_code(v)


# ---------------------------------------------------------------------------
# Rule 7: parse_us_date
# ---------------------------------------------------------------------------

def parse_us_date(value: str | None) -> date | None:
    """Return the first M/D/YYYY date embedded in value.

    Surrounding text is ignored ("Swimmer (08/02/2025)",
    "1/5/2024 12:00:00 AM").  Placeholders such as "/  /" or "__/__/____",
    empty input, and impossible calendar dates → None.
    """
    v = trim(value)
    if v is None or "__" in v:
        return None
    m = _US_DATE_RE.search(v)
    if not m:
        return None
    month, day, year = (int(g) for g in m.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Rule 8: map_gender
# ---------------------------------------------------------------------------

def map_gender(value: str | None) -> Gender:
    """Map export gender tokens; unknown or absent → Gender.UNSPECIFIED."""
    v = trim(value)
    if v is None:
        return Gender.UNSPECIFIED
    return _GENDER_TOKENS.get(v.lower(), Gender.UNSPECIFIED)


# ---------------------------------------------------------------------------
# Rule 9: pipe-delimited lists
# ---------------------------------------------------------------------------

def split_pipe_list(value: str | None) -> list[str]:
    """Split on '|', trim each element, drop empties."""
    v = trim(value)
    if v is None:
        return []
    return [part.strip() for part in v.split("|") if part.strip()]


def parse_positions(value: str | None) -> list[str]:
    """Pipe list with a trailing parenthetical tenure removed.

    "Scoutmaster|Committee Member (3m 16d)" → ["Scoutmaster", "Committee Member"]
    """
    out: list[str] = []
    for item in split_pipe_list(value):
        cleaned = _TENURE_RE.sub("", item).strip()
        if cleaned:
            out.append(cleaned)
    return out


def parse_certifications(
    trainings: str | None,
    expirations: str | None,
) -> list[tuple[str, str, date | None]]:
    """Return (code, name, expires_at) triples from parallel pipe lists.

    "Y01 Safeguarding Youth Training" → ("Y01", "Safeguarding Youth Training").
    Entries without a leading code are dropped.  "(does not expire)" or a
    missing expiration entry → None.
    """
    names = split_pipe_list(trainings)
    expiries = split_pipe_list(expirations)
    out: list[tuple[str, str, date | None]] = []
    for i, item in enumerate(names):
        m = _TRAINING_RE.match(item)
        if not m:
            continue
        expiry_raw = expiries[i] if i < len(expiries) else None
        if expiry_raw and "does not expire" in expiry_raw.lower():
            expires_at = None
        else:
            expires_at = parse_us_date(expiry_raw)
        out.append((m.group(1), m.group(2).strip(), expires_at))
    return out


# ---------------------------------------------------------------------------
# Rule 10: free-text status fields
# ---------------------------------------------------------------------------

def parse_health_form(value: str | None) -> tuple[HealthFormStatus | None, date | None]:
    """Return (status, expiry) from a health-form cell.

    "expired" anywhere → EXPIRED; otherwise "current" or any embedded date
    → CURRENT.  The first embedded date is returned independently.
    """
    v = trim(value)
    if v is None:
        return None, None
    expiry = parse_us_date(v)
    lowered = v.lower()
    if "expired" in lowered:
        return HealthFormStatus.EXPIRED, expiry
    if "current" in lowered or expiry is not None:
        return HealthFormStatus.CURRENT, expiry
    return None, expiry


def parse_swim_class(value: str | None) -> SwimClassification | None:
    v = trim(value)
    if v is None:
        return None
    lowered = v.lower()
    # "non swimmer" contains "swimmer"; test it first
    if "non" in lowered:
        return SwimClassification.NON_SWIMMER
    if "beginner" in lowered:
        return SwimClassification.BEGINNER
    if "swimmer" in lowered:
        return SwimClassification.SWIMMER
    return None


# ---------------------------------------------------------------------------
# Rule 11: guardian relationship strings
# ---------------------------------------------------------------------------

def parse_guardian_relationship(value: str | None) -> tuple[str | None, str | None]:
    """Return (member_id, relationship_label).

    "(12345) - Father - Guardian" → ("12345", "Father").
    """
    v = trim(value)
    if v is None:
        return None, None
    m = _GUARDIAN_ID_RE.search(v)
    member_id = m.group(1) if m else None
    label = re.sub(r"\(\d+\)\s*-\s*", "", v)
    label = re.sub(r"\s*-\s*Guardian$", "", label, flags=re.IGNORECASE)
    return member_id, trim(label)


# ---------------------------------------------------------------------------
# Rule 12: requirement number variants
# ---------------------------------------------------------------------------

def requirement_number_variants(value: str | None) -> list[str]:
    """Ordered, de-duplicated candidate spellings of a requirement number.

    Export numbering ("2b[1]", "6a[1]a Aerobic", "1a.") and catalog
    numbering ("2(1)", "6Aa", "1a") differ; callers try each variant in
    order.  The bare leading number is always the last resort.
    """
    v = trim(value)
    if v is None:
        return []
    variants = [v]
    cleaned = v

    m = re.match(r"^(.+?)\s+[A-Z]", v)
    if m:
        cleaned = m.group(1)
        variants.append(cleaned)

    if cleaned.endswith("."):
        cleaned = cleaned[:-1]
        variants.append(cleaned)

    if "[" in cleaned:
        variants.append(cleaned.replace("[", "(").replace("]", ")"))

    m = re.match(r"^(\d+)([a-z])\[(\d+)\]$", cleaned, re.IGNORECASE)
    if m:
        num, letter, idx = m.groups()
        variants.append(f"{num}({idx})")
        variants.append(f"{num}[{idx}]")
        variants.append(f"{num}{letter}")
        variants.append(f"{num}{letter.upper()}({idx})")

    m = re.match(r"^(\d+)([a-z])\[\d+\]([a-z])$", cleaned, re.IGNORECASE)
    if m:
        num, first, second = m.groups()
        variants.append(f"{num}{first.upper()}{second.lower()}")
        variants.append(f"{num}{first.lower()}")

    m = re.match(r"^(\d+)[a-z]\((\d+)\)$", cleaned, re.IGNORECASE)
    if m:
        variants.append(f"{m.group(1)}({m.group(2)})")

    m = re.match(r"^(\d+)([a-z])(\d+)$", cleaned, re.IGNORECASE)
    if m:
        num, letter, suffix = m.groups()
        variants.append(f"{num}({suffix})")
        variants.append(f"{num}{letter}")

    m = re.match(r"^(\d+)", cleaned)
    if m:
        variants.append(m.group(1))

    return list(dict.fromkeys(variants))
