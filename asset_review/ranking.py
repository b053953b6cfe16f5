"""Ordering, phase-priority re-rank and offset/limit slicing of matched entities.

Each ordering is expanded into a list of sort terms. A term yields ``None`` for
a missing value, and missing values sink to the end of that term whatever the
direction. The terms are applied as successive stable sorts from the least to
the most significant, which is what keeps the null placement per term.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from asset_review.models import EntityKey, StatusEvent, preferred_phase_or_none
from asset_review.query import (
    ByName,
    ByNameRelationSubmitted,
    ByPhase,
    ByRelation,
    ByStatus,
    ByTake,
    ByTimestamp,
    Ordering,
    StatusFamily,
    TimestampField,
    fold_status,
    normalize_direction,
    parse_order_key,
)

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 60


@dataclass
class RankedPage:
    keys: list[EntityKey]
    total: int
    limit: int
    offset: int
    order: str
    direction: str


@dataclass
class _Candidate:
    key: EntityKey
    phases: dict[str, StatusEvent]
    representative: StatusEvent | None

    def row(self, phase: str | None) -> StatusEvent | None:
        if phase is None:
            return self.representative
        return self.phases.get(phase)


Extractor = Callable[[_Candidate], Any]


def take_sort_value(take: str | None) -> tuple[int, str] | None:
    """Numeric value of the trailing four characters, raw label as tie-break.

    Labels without a four-digit tail rank with missing takes.
    """
    label = (take or "").strip()
    tail = label[-4:]
    if len(label) < 4 or not tail.isdigit():
        return None
    return (int(tail), label)


def ordering_label(ordering: Ordering) -> str:
    if isinstance(ordering, ByName):
        return "group1_only"
    if isinstance(ordering, ByRelation):
        return "relation_only"
    if isinstance(ordering, ByNameRelationSubmitted):
        return "group_rel_submitted"
    if isinstance(ordering, ByPhase):
        return "phase"
    if isinstance(ordering, ByTimestamp):
        if ordering.phase:
            return f"{ordering.phase}_submitted"
        return ordering.field.value
    if isinstance(ordering, ByStatus):
        if ordering.phase:
            return f"{ordering.phase}_{ordering.family.value}"
        return "work_status" if ordering.family is StatusFamily.WORK else "approval_status"
    if isinstance(ordering, ByTake):
        return f"{ordering.phase}_take" if ordering.phase else "take"
    raise TypeError(f"unsupported ordering: {ordering!r}")


def _name(c: _Candidate) -> Any:
    return (c.key.group_1.lower(), c.key.group_1)


def _relation(c: _Candidate) -> Any:
    return (c.key.relation.lower(), c.key.relation)


def _timestamp(field: TimestampField, phase: str | None) -> Extractor:
    def extract(c: _Candidate) -> Any:
        row = c.row(phase)
        return None if row is None else getattr(row, field.value)

    return extract


def _status(family: StatusFamily, phase: str | None) -> Extractor:
    attr = "work_status" if family is StatusFamily.WORK else "approval_status"

    def extract(c: _Candidate) -> Any:
        row = c.row(phase)
        if row is None:
            return None
        return fold_status(getattr(row, attr)) or None

    return extract


def _take(phase: str | None) -> Extractor:
    def extract(c: _Candidate) -> Any:
        row = c.row(phase)
        return None if row is None else take_sort_value(row.take)

    return extract


def _phase(c: _Candidate) -> Any:
    return c.representative.phase_key if c.representative is not None else None


def _terms(ordering: Ordering, descending: bool) -> list[tuple[Extractor, bool]]:
    submitted = _timestamp(TimestampField.SUBMITTED, None)
    if isinstance(ordering, ByName):
        primary = [(_name, descending), (_relation, False), (submitted, descending)]
    elif isinstance(ordering, ByRelation):
        primary = [(_relation, descending), (_name, False), (submitted, descending)]
    elif isinstance(ordering, ByNameRelationSubmitted):
        primary = [(_name, descending), (_relation, descending), (submitted, descending)]
    elif isinstance(ordering, ByTimestamp):
        primary = [(_timestamp(ordering.field, ordering.phase), descending)]
    elif isinstance(ordering, ByStatus):
        primary = [(_status(ordering.family, ordering.phase), descending)]
    elif isinstance(ordering, ByTake):
        primary = [(_take(ordering.phase), descending)]
    elif isinstance(ordering, ByPhase):
        primary = [(_phase, descending)]
    else:
        raise TypeError(f"unsupported ordering: {ordering!r}")
    return [*primary, (_name, False), (_relation, False), (lambda c: c.key, False)]


def _sort_nulls_last(items: list[_Candidate], extract: Extractor, descending: bool) -> list[_Candidate]:
    present: list[tuple[Any, _Candidate]] = []
    missing: list[_Candidate] = []
    for item in items:
        value = extract(item)
        if value is None:
            missing.append(item)
        else:
            present.append((value, item))
    present.sort(key=lambda pair: pair[0], reverse=descending)
    return [item for _, item in present] + missing


def _representative(phases: dict[str, StatusEvent], preferred: str | None) -> StatusEvent | None:
    if not phases:
        return None
    return max(phases.values(), key=lambda e: (e.phase_key == preferred, e.recency))


class RankingEngine:
    def rank(
        self,
        entity_keys: Iterable[EntityKey],
        phase_rows: Sequence[StatusEvent],
        order_key: str | None,
        direction: str | None,
        preferred_phase: str | None,
        limit: int,
        offset: int,
        total: int,
    ) -> RankedPage:
        """Order every matched entity and cut out one page.

        ``phase_rows`` are the latest rows per (entity, phase) for the scope; a
        phase-qualified order key reads the entity's row of that phase, any
        other key reads the representative row.
        """
        ordering, recognized = parse_order_key(order_key)
        if not recognized and (order_key or "").strip():
            logger.debug("ranking_unknown_order_key key=%s fallback=%s", order_key, ordering_label(ordering))
        dir_norm = normalize_direction(direction)
        preferred = preferred_phase_or_none(preferred_phase)
        limit = DEFAULT_LIMIT if limit <= 0 else limit
        offset = max(offset, 0)

        by_entity: dict[EntityKey, dict[str, StatusEvent]] = {}
        for row in phase_rows:
            by_entity.setdefault(row.entity_key, {})[row.phase_key] = row

        candidates = []
        for key in set(entity_keys):
            phases = by_entity.get(key, {})
            candidates.append(_Candidate(key=key, phases=phases, representative=_representative(phases, preferred)))

        for extract, descending in reversed(_terms(ordering, dir_norm == "desc")):
            candidates = _sort_nulls_last(candidates, extract, descending)

        if preferred is not None:
            first = [c for c in candidates if c.representative is not None and c.representative.phase_key == preferred]
            rest = [c for c in candidates if c.representative is None or c.representative.phase_key != preferred]
            candidates = first + rest

        page = candidates[offset : offset + limit]
        return RankedPage(
            keys=[c.key for c in page],
            total=total,
            limit=limit,
            offset=offset,
            order=ordering_label(ordering),
            direction=dir_norm,
        )
