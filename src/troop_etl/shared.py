"""troop_etl.shared

Types shared by the staging and execution phases of both import modes:
structured warnings, per-entity failures, and report-writing support.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

DEFAULT_REPORT_DIR = Path("./artifacts/reports")


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------

class WarningKind(str, Enum):
    VERSION_FALLBACK = "version_fallback"
    REQUIREMENT_NOT_FOUND = "requirement_not_found"
    VERSION_MISMATCH = "version_mismatch"
    SCOUT_NOT_FOUND = "scout_not_found"
    ADULT_NOT_FOUND = "adult_not_found"
    GUARDIAN_NOT_FOUND = "guardian_not_found"
    PATROL_NOT_CREATED = "patrol_not_created"


@dataclass(frozen=True)
class ImportWarning:
    kind: WarningKind
    message: str
    scout: str | None = None
    rank: str | None = None
    badge: str | None = None
    requirement: str | None = None
    requested_version: str | None = None
    used_version: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["kind"] = self.kind.value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ImportWarning":
        return cls(
            kind=WarningKind(data["kind"]),
            message=data["message"],
            scout=data.get("scout"),
            rank=data.get("rank"),
            badge=data.get("badge"),
            requirement=data.get("requirement"),
            requested_version=data.get("requested_version"),
            used_version=data.get("used_version"),
        )


def dedupe_warnings(warnings: list[ImportWarning]) -> list[ImportWarning]:
    """Drop repeated (kind, message) pairs, keeping first-seen order."""
    seen: set[tuple[WarningKind, str]] = set()
    out: list[ImportWarning] = []
    for w in warnings:
        key = (w.kind, w.message)
        if key in seen:
            continue
        seen.add(key)
        out.append(w)
    return out


# ---------------------------------------------------------------------------
# Per-entity failures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EntityFailure:
    """One person whose import was rolled back."""

    member_id: str | None
    name: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------

class SupportsToDict(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str | None],
    counters: SupportsToDict,
    report_dir: Path = DEFAULT_REPORT_DIR,
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
