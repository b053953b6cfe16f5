"""Typed predicate / ordering descriptors and their SQL compilation.

Every filter value reaches SQL as a bound parameter. Column names come from the
closed set below and the table name passes ``validate_identifier``; nothing a
caller supplies is ever spliced into SQL text.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Union

from asset_review.models import DEFAULT_ROOT, PHASES, EntityKey, StatusEvent, normalize_phase

EVENT_COLUMNS: tuple[str, ...] = (
    "id",
    "project",
    "root",
    "group_1",
    "relation",
    "phase",
    "work_status",
    "approval_status",
    "submitted_at_utc",
    "modified_at_utc",
    "take",
    "deleted",
)


def validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def fold_status(value: str | None) -> str:
    return (value or "").strip().lower()


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class Granularity(str, Enum):
    ENTITY = "entity"
    ENTITY_PHASE = "entity_phase"


@dataclass(frozen=True)
class LatestScope:
    project: str
    root: str = DEFAULT_ROOT
    name_prefix: str = ""
    phase: str | None = None

    def with_phase(self, phase: str | None) -> "LatestScope":
        return replace(self, phase=normalize_phase(phase) or None)

    def admits(self, event: StatusEvent) -> bool:
        if event.deleted or event.project != self.project or event.root != self.root:
            return False
        prefix = self.name_prefix.strip().lower()
        if prefix and not event.group_1.lower().startswith(prefix):
            return False
        if self.phase and event.phase_key != self.phase:
            return False
        return True


@dataclass(frozen=True)
class StatusPredicate:
    approval_statuses: frozenset[str] = frozenset()
    work_statuses: frozenset[str] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not self.approval_statuses and not self.work_statuses

    def matches(self, event: StatusEvent) -> bool:
        # OR across the two families, IN within each.
        if self.is_empty:
            return True
        if self.approval_statuses and fold_status(event.approval_status) in self.approval_statuses:
            return True
        if self.work_statuses and fold_status(event.work_status) in self.work_statuses:
            return True
        return False


def _fold_all(values: Iterable[str] | None) -> frozenset[str]:
    return frozenset(fold_status(v) for v in (values or ()) if fold_status(v))


def build_status_predicate(
    approval_statuses: Iterable[str] | None,
    work_statuses: Iterable[str] | None,
) -> StatusPredicate:
    return StatusPredicate(
        approval_statuses=_fold_all(approval_statuses),
        work_statuses=_fold_all(work_statuses),
    )


# ---------------------------------------------------------------------------
# Ordering descriptors
# ---------------------------------------------------------------------------


class StatusFamily(str, Enum):
    WORK = "work"
    APPROVAL = "appr"


class TimestampField(str, Enum):
    SUBMITTED = "submitted_at_utc"
    MODIFIED = "modified_at_utc"


@dataclass(frozen=True)
class ByName:
    pass


@dataclass(frozen=True)
class ByRelation:
    pass


@dataclass(frozen=True)
class ByNameRelationSubmitted:
    pass


@dataclass(frozen=True)
class ByPhase:
    pass


@dataclass(frozen=True)
class ByTimestamp:
    field: TimestampField
    phase: str | None = None


@dataclass(frozen=True)
class ByStatus:
    family: StatusFamily
    phase: str | None = None


@dataclass(frozen=True)
class ByTake:
    phase: str | None = None


Ordering = Union[ByName, ByRelation, ByNameRelationSubmitted, ByPhase, ByTimestamp, ByStatus, ByTake]

DEFAULT_ORDERING: Ordering = ByName()

_FIXED_ORDER_KEYS: dict[str, Ordering] = {
    "group_1": ByName(),
    "group1": ByName(),
    "name": ByName(),
    "group1_only": ByName(),
    "relation": ByRelation(),
    "relation_only": ByRelation(),
    "group_rel": ByNameRelationSubmitted(),
    "group_rel_submitted": ByNameRelationSubmitted(),
    "submitted": ByTimestamp(TimestampField.SUBMITTED),
    "submitted_at": ByTimestamp(TimestampField.SUBMITTED),
    "submitted_at_utc": ByTimestamp(TimestampField.SUBMITTED),
    "modified_at_utc": ByTimestamp(TimestampField.MODIFIED),
    "phase": ByPhase(),
    "work_status": ByStatus(StatusFamily.WORK),
    "approval_status": ByStatus(StatusFamily.APPROVAL),
    "take": ByTake(),
}


def parse_order_key(key: str | None) -> tuple[Ordering, bool]:
    """Map a caller sort key onto an ordering descriptor.

    Returns ``(ordering, recognized)``; unknown keys yield the default ordering
    with ``recognized=False`` rather than an error.
    """
    normalized = (key or "").strip().lower()
    if normalized in _FIXED_ORDER_KEYS:
        return _FIXED_ORDER_KEYS[normalized], True
    phase, _, column = normalized.partition("_")
    if phase in PHASES:
        if column == "work":
            return ByStatus(StatusFamily.WORK, phase), True
        if column == "appr":
            return ByStatus(StatusFamily.APPROVAL, phase), True
        if column == "submitted":
            return ByTimestamp(TimestampField.SUBMITTED, phase), True
        if column == "take":
            return ByTake(phase), True
    return DEFAULT_ORDERING, False


def normalize_direction(direction: str | None) -> str:
    return "desc" if (direction or "").strip().lower() == "desc" else "asc"


# ---------------------------------------------------------------------------
# SQL compilation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SqlDialect:
    name: str
    placeholder: str
    lower_function: str = "LOWER"
    fold_function: str | None = None

    def adapt_timestamp(self, value: datetime) -> Any:
        if self.name == "sqlite":
            # Fixed-width text keeps lexical order equal to chronological order.
            return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")
        return value

    def placeholders(self, count: int) -> str:
        return ", ".join([self.placeholder] * count)

    def lower(self, column: str) -> str:
        return f"{self.lower_function}({column})"

    def fold(self, column: str) -> str:
        if self.fold_function:
            return f"{self.fold_function}({column})"
        return f"LOWER(TRIM({column}))"


def sql_lower(value: str | None) -> str | None:
    return None if value is None else value.lower()


def sql_fold(value: str | None) -> str | None:
    return None if value is None else value.strip().lower()


# SQLite's built-in LOWER() only folds ASCII; these names are bound to
# sql_lower / sql_fold on every SQLite connection.
SQLITE_FUNCTIONS: dict[str, Any] = {"py_lower": sql_lower, "py_fold": sql_fold}

SQLITE = SqlDialect("sqlite", "?", lower_function="py_lower", fold_function="py_fold")
POSTGRES = SqlDialect("postgres", "%s")


def _scope_clauses(scope: LatestScope, dialect: SqlDialect, params: list[Any]) -> list[str]:
    ph = dialect.placeholder
    clauses = ["deleted = 0", f"project = {ph}", f"root = {ph}"]
    params.extend([scope.project, scope.root])
    prefix = scope.name_prefix.strip().lower()
    if prefix:
        clauses.append(f"{dialect.lower('group_1')} LIKE {ph} ESCAPE '\\'")
        params.append(escape_like(prefix) + "%")
    if scope.phase:
        clauses.append(f"{dialect.fold('phase')} = {ph}")
        params.append(scope.phase)
    return clauses


def _keys_clause(keys: Sequence[EntityKey], dialect: SqlDialect, params: list[Any]) -> str:
    if not keys:
        raise ValueError("keys restriction must not be empty")
    ph = dialect.placeholder
    parts = []
    for key in keys:
        parts.append(f"(group_1 = {ph} AND relation = {ph})")
        params.extend([key.group_1, key.relation])
    return "(" + " OR ".join(parts) + ")"


def _status_clause(status: StatusPredicate, dialect: SqlDialect, params: list[Any]) -> str:
    parts = []
    if status.approval_statuses:
        values = sorted(status.approval_statuses)
        parts.append(f"{dialect.fold('approval_status')} IN ({dialect.placeholders(len(values))})")
        params.extend(values)
    if status.work_statuses:
        values = sorted(status.work_statuses)
        parts.append(f"{dialect.fold('work_status')} IN ({dialect.placeholders(len(values))})")
        params.extend(values)
    return "(" + " OR ".join(parts) + ")"


def build_latest_rows_sql(
    *,
    table: str,
    scope: LatestScope,
    granularity: Granularity,
    dialect: SqlDialect,
    keys: Sequence[EntityKey] | None = None,
    status: StatusPredicate | None = None,
) -> tuple[str, list[Any]]:
    table = validate_identifier(table)
    partition = "project, root, group_1, relation"
    if granularity is Granularity.ENTITY_PHASE:
        partition += ", " + dialect.fold("phase")
    params: list[Any] = []
    where = _scope_clauses(scope, dialect, params)
    if keys is not None:
        where.append(_keys_clause(keys, dialect, params))
    outer = ["rn = 1"]
    if status is not None and not status.is_empty:
        outer.append(_status_clause(status, dialect, params))
    columns = ", ".join(EVENT_COLUMNS)
    sql = f"""
        SELECT {columns}
        FROM (
            SELECT {columns},
                ROW_NUMBER() OVER (
                    PARTITION BY {partition}
                    ORDER BY modified_at_utc DESC, id DESC
                ) AS rn
            FROM {table}
            WHERE {" AND ".join(where)}
        ) AS latest
        WHERE {" AND ".join(outer)}
        ORDER BY project, root, group_1, relation, {dialect.fold("phase")}
    """
    return sql, params


@dataclass(frozen=True)
class EventListQuery:
    """Raw status-event listing used outside the pivot path."""

    project: str
    root: str | None = None
    group_1: str | None = None
    relations: tuple[str, ...] = ()
    phases: tuple[str, ...] = ()
    take: str | None = None
    modified_since: datetime | None = None
    page: int = 1
    per_page: int = 15

    @property
    def include_deleted(self) -> bool:
        return self.modified_since is not None

    @property
    def offset(self) -> int:
        return max(self.page - 1, 0) * self.per_page

    def admits(self, event: StatusEvent) -> bool:
        if event.project != self.project:
            return False
        if event.deleted and not self.include_deleted:
            return False
        if self.root is not None and event.root != self.root:
            return False
        if self.group_1 is not None and event.group_1 != self.group_1:
            return False
        if self.relations and event.relation not in self.relations:
            return False
        if self.phases and event.phase_key not in {normalize_phase(p) for p in self.phases}:
            return False
        if self.take is not None and event.take != self.take:
            return False
        if self.modified_since is not None and event.modified_at_utc < self.modified_since:
            return False
        return True


def build_event_list_sql(
    *,
    table: str,
    query: EventListQuery,
    dialect: SqlDialect,
) -> tuple[str, list[Any], str, list[Any]]:
    """Return ``(count_sql, count_params, page_sql, page_params)``."""
    table = validate_identifier(table)
    ph = dialect.placeholder
    params: list[Any] = []
    where = [f"project = {ph}"]
    params.append(query.project)
    if not query.include_deleted:
        where.append("deleted = 0")
    if query.root is not None:
        where.append(f"root = {ph}")
        params.append(query.root)
    if query.group_1 is not None:
        where.append(f"group_1 = {ph}")
        params.append(query.group_1)
    if query.relations:
        where.append(f"relation IN ({dialect.placeholders(len(query.relations))})")
        params.extend(query.relations)
    if query.phases:
        phases = [normalize_phase(p) for p in query.phases]
        where.append(f"{dialect.fold('phase')} IN ({dialect.placeholders(len(phases))})")
        params.extend(phases)
    if query.take is not None:
        where.append(f"take = {ph}")
        params.append(query.take)
    if query.modified_since is not None:
        where.append(f"modified_at_utc >= {ph}")
        params.append(dialect.adapt_timestamp(query.modified_since))
    order = "modified_at_utc ASC, id ASC" if query.include_deleted else "id DESC"
    where_sql = " AND ".join(where)
    count_sql = f"SELECT COUNT(*) FROM {table} WHERE {where_sql}"
    page_sql = f"""
        SELECT {", ".join(EVENT_COLUMNS)}
        FROM {table}
        WHERE {where_sql}
        ORDER BY {order}
        LIMIT {ph} OFFSET {ph}
    """
    return count_sql, list(params), page_sql, [*params, query.per_page, query.offset]
