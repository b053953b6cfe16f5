from __future__ import annotations

import threading
import time
from collections.abc import Sequence

from asset_review.errors import QueryCancelledError
from asset_review.models import EntityKey, StatusEvent
from asset_review.query import EventListQuery, Granularity, LatestScope, StatusPredicate


class CancellationGuard:
    def __init__(self, *, cancel_event: threading.Event | None = None, timeout_s: float | None = None) -> None:
        self._cancel_event = cancel_event
        self._deadline = time.monotonic() + timeout_s if timeout_s is not None and timeout_s > 0 else None

    def check(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise QueryCancelledError()
        if self._deadline is not None and time.monotonic() >= self._deadline:
            raise QueryCancelledError("query deadline exceeded")


class GuardedReader:
    """Checks the guard before every read so a tripped query issues nothing further."""

    def __init__(self, reader, guard: CancellationGuard) -> None:
        self._reader = reader
        self._guard = guard

    def latest_rows(
        self,
        scope: LatestScope,
        granularity: Granularity,
        keys: Sequence[EntityKey] | None = None,
        status: StatusPredicate | None = None,
    ) -> list[StatusEvent]:
        self._guard.check()
        return self._reader.latest_rows(scope, granularity, keys=keys, status=status)

    def list_events(self, query: EventListQuery) -> tuple[list[StatusEvent], int]:
        self._guard.check()
        return self._reader.list_events(query)
