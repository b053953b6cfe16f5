"""Domain records shared by the pivot engine and the store backends.

Timestamps are always timezone-aware UTC ``datetime`` values once they leave a
backend; naive values coming out of SQLite or a caller are taken as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

PHASES: tuple[str, ...] = ("mdl", "rig", "bld", "dsn", "ldv")
NO_PHASE = "none"
DEFAULT_ROOT = "assets"


def normalize_phase(value: str | None) -> str:
    return (value or "").strip().lower()


def preferred_phase_or_none(value: str | None) -> str | None:
    """Return the lower-cased phase, or None when no phase bias is requested."""
    phase = normalize_phase(value)
    if not phase or phase == NO_PHASE:
        return None
    return phase


def coerce_utc(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, str):
        ts = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    else:
        raise TypeError(f"unsupported timestamp value: {type(value).__name__}")
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def iso_or_none(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass(frozen=True, order=True)
class EntityKey:
    project: str
    root: str
    group_1: str
    relation: str

    def to_dict(self) -> dict[str, str]:
        return {
            "project": self.project,
            "root": self.root,
            "group_1": self.group_1,
            "relation": self.relation,
        }


@dataclass(frozen=True)
class StatusEvent:
    id: int
    project: str
    root: str
    group_1: str
    relation: str
    phase: str
    work_status: str | None
    approval_status: str | None
    submitted_at_utc: datetime | None
    modified_at_utc: datetime
    take: str | None = None
    deleted: bool = False

    @property
    def entity_key(self) -> EntityKey:
        return EntityKey(self.project, self.root, self.group_1, self.relation)

    @property
    def phase_key(self) -> str:
        return normalize_phase(self.phase)

    @property
    def recency(self) -> tuple[datetime, int]:
        # Equal timestamps resolve to the highest surrogate id.
        return (self.modified_at_utc, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project": self.project,
            "root": self.root,
            "group_1": self.group_1,
            "relation": self.relation,
            "phase": self.phase,
            "work_status": self.work_status,
            "approval_status": self.approval_status,
            "submitted_at_utc": iso_or_none(self.submitted_at_utc),
            "modified_at_utc": iso_or_none(self.modified_at_utc),
            "take": self.take,
            "deleted": self.deleted,
        }


@dataclass
class PhaseColumns:
    work_status: str | None = None
    approval_status: str | None = None
    submitted_at_utc: datetime | None = None
    take: str | None = None


@dataclass
class PivotRow:
    key: EntityKey
    phases: dict[str, PhaseColumns] = field(default_factory=lambda: {p: PhaseColumns() for p in PHASES})

    def phase(self, phase: str) -> PhaseColumns:
        return self.phases[phase]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "root": self.key.root,
            "project": self.key.project,
            "group_1": self.key.group_1,
            "relation": self.key.relation,
        }
        for phase in PHASES:
            cols = self.phases[phase]
            out[f"{phase}_work_status"] = cols.work_status
            out[f"{phase}_approval_status"] = cols.approval_status
            out[f"{phase}_submitted_at_utc"] = iso_or_none(cols.submitted_at_utc)
            out[f"{phase}_take"] = cols.take
        return out
