"""troop_etl.tabular

Line splitting, header lookup, and section extraction for the flat text
exports produced by the membership system.

The exports are not well-formed CSV: quoted cells may contain the
delimiter, quotes may be left unterminated, and a roster file carries two
logical tables separated by marker lines.  Everything here is lenient and
never raises on malformed lines; downstream parsers decide which rows to
reject.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

# A row consisting of a single quoted blank marks an empty section.
BLANK_SECTION_SENTINEL = '" "'


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class UnsupportedExportError(ValueError):
    """Raised when the input has no recognizable export structure at all."""


# ---------------------------------------------------------------------------
# Line parser
# ---------------------------------------------------------------------------

def split_line(line: str, delimiter: str = ",") -> list[str]:
    """Split one line into trimmed fields.

    A double quote toggles quoted mode; inside quoted mode the delimiter
    does not split and a doubled quote is a literal quote.  An unterminated
    quote turns the rest of the line into quoted content.
    """
    fields: list[str] = []
    buf: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                buf.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            fields.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
        i += 1
    fields.append("".join(buf).strip())
    return fields


def read_export_text(path: Path) -> str:
    """Decode an export file as UTF-8, falling back to Windows-1252.

    Bytes that are undefined in Windows-1252 become U+FFFD rather than
    aborting the run.
    """
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        log.warning("%s is not valid UTF-8 (%s); decoding as cp1252", path, exc.reason)
        return raw.decode("cp1252", errors="replace")


def split_lines(text: str) -> list[str]:
    """Split a payload into lines, tolerating a BOM and mixed line endings."""
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.splitlines()


# ---------------------------------------------------------------------------
# Header map
# ---------------------------------------------------------------------------

class HeaderMap:
    """Column lookup by case-insensitive substring match on header labels.

    Exports rename columns slightly between versions ("Unit Number" vs
    "Unit"), so labels are matched by substring; the first matching column
    wins.  With prefer_exact, an exact (case-insensitive) match anywhere
    in the header beats an earlier substring match.
    """

    def __init__(self, headers: list[str]) -> None:
        self.headers = headers
        self._lowered = [h.strip().lower() for h in headers]

    def index(
        self,
        label: str,
        start: int = 0,
        prefer_exact: bool = False,
    ) -> int | None:
        needle = label.lower()
        if prefer_exact:
            for i in range(start, len(self._lowered)):
                if self._lowered[i] == needle:
                    return i
        for i in range(start, len(self._lowered)):
            if needle in self._lowered[i]:
                return i
        return None

    def indexes(self, label: str) -> list[int]:
        """All column positions whose header contains label."""
        needle = label.lower()
        return [i for i, h in enumerate(self._lowered) if needle in h]

    def get(
        self,
        values: list[str],
        label: str,
        start: int = 0,
        prefer_exact: bool = False,
    ) -> str | None:
        """Return the trimmed cell for label, or None when absent or empty."""
        idx = self.index(label, start=start, prefer_exact=prefer_exact)
        return cell(values, idx)

    def __len__(self) -> int:
        return len(self.headers)


def cell(values: list[str], idx: int | None) -> str | None:
    if idx is None or idx >= len(values):
        return None
    v = values[idx].strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Section extractor
# ---------------------------------------------------------------------------

@dataclass
class DataRow:
    line_no: int
    values: list[str]


@dataclass
class Section:
    marker: str
    marker_line_no: int
    headers: HeaderMap | None
    header_line_no: int | None
    rows: list[DataRow] = field(default_factory=list)


@dataclass
class ExtractedSections:
    sections: dict[str, Section] = field(default_factory=dict)
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def extract_sections(
    lines: list[str],
    markers: list[str],
    delimiter: str = ",",
) -> ExtractedSections:
    """Locate each marker and collect its header and data rows.

    The first non-blank line after a marker is the header row.  Data rows
    run until the next marker line or end of input.  Blank lines and the
    blank-section sentinel are skipped.  Line numbers are 1-based.

    Markers absent from the input are listed in ``missing`` so callers can
    tell a missing section from one that is present but empty.
    """
    result = ExtractedSections()

    marker_at: dict[int, str] = {}
    for i, line in enumerate(lines):
        for marker in markers:
            if marker in line and marker not in marker_at.values():
                marker_at[i] = marker
                break

    for marker in markers:
        if marker not in marker_at.values():
            result.missing.append(marker)

    positions = sorted(marker_at)
    for pos_idx, start in enumerate(positions):
        marker = marker_at[start]
        end = positions[pos_idx + 1] if pos_idx + 1 < len(positions) else len(lines)

        header_idx = None
        for j in range(start + 1, end):
            if lines[j].strip():
                header_idx = j
                break

        if header_idx is None:
            result.errors.append(
                f"line {start + 1}: section {marker!r} has no header row"
            )
            result.sections[marker] = Section(marker, start + 1, None, None)
            continue

        section = Section(
            marker=marker,
            marker_line_no=start + 1,
            headers=HeaderMap(split_line(lines[header_idx], delimiter)),
            header_line_no=header_idx + 1,
        )
        for j in range(header_idx + 1, end):
            raw = lines[j]
            if not raw.strip() or raw.startswith(BLANK_SECTION_SENTINEL):
                continue
            section.rows.append(DataRow(line_no=j + 1, values=split_line(raw, delimiter)))
        result.sections[marker] = section

    return result
