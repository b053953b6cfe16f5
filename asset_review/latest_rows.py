from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol

from asset_review.errors import InvalidArgumentError
from asset_review.models import EntityKey, StatusEvent
from asset_review.query import EventListQuery, Granularity, LatestScope, StatusPredicate


class StatusLogReader(Protocol):
    """Read side of one store snapshot."""

    def latest_rows(
        self,
        scope: LatestScope,
        granularity: Granularity,
        keys: Sequence[EntityKey] | None = None,
        status: StatusPredicate | None = None,
    ) -> list[StatusEvent]: ...

    def list_events(self, query: EventListQuery) -> tuple[list[StatusEvent], int]: ...


def _partition_key(event: StatusEvent, granularity: Granularity) -> tuple[Any, ...]:
    if granularity is Granularity.ENTITY_PHASE:
        return (event.entity_key, event.phase_key)
    return (event.entity_key,)


def pick_latest(
    events: Iterable[StatusEvent],
    scope: LatestScope,
    granularity: Granularity,
    keys: Sequence[EntityKey] | None = None,
    status: StatusPredicate | None = None,
) -> list[StatusEvent]:
    """Pick the current event per partition from a plain event sequence.

    This is the in-process counterpart of the ROW_NUMBER() query the SQL
    backends run: deleted events never compete, the winner has the greatest
    ``(modified_at_utc, id)``, and ``status`` filters winners, not candidates.
    """
    wanted = set(keys) if keys is not None else None
    winners: dict[tuple[Any, ...], StatusEvent] = {}
    for event in events:
        if not scope.admits(event):
            continue
        if wanted is not None and event.entity_key not in wanted:
            continue
        part = _partition_key(event, granularity)
        current = winners.get(part)
        if current is None or event.recency > current.recency:
            winners[part] = event
    rows = [row for row in winners.values() if status is None or status.matches(row)]
    rows.sort(key=lambda e: (e.entity_key, e.phase_key))
    return rows


class LatestRowResolver:
    def __init__(self, reader: StatusLogReader) -> None:
        self._reader = reader

    def resolve(
        self,
        scope: LatestScope,
        granularity: Granularity,
        keys: Sequence[EntityKey] | None = None,
        status: StatusPredicate | None = None,
    ) -> list[StatusEvent]:
        if not scope.project.strip():
            raise InvalidArgumentError("project is required")
        if keys is not None and not keys:
            return []
        return self._reader.latest_rows(scope, granularity, keys=keys, status=status)
