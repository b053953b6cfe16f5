from __future__ import annotations

import logging
import threading
from typing import Any

from asset_review.cancellation import CancellationGuard, GuardedReader
from asset_review.errors import InvalidArgumentError, NotFoundError
from asset_review.latest_rows import LatestRowResolver
from asset_review.models import DEFAULT_ROOT, EntityKey, StatusEvent
from asset_review.query import EventListQuery, Granularity, LatestScope

logger = logging.getLogger(__name__)


class ReviewQueries:
    """Read operations over the status log that sit beside the pivot view."""

    def __init__(self, repository: Any, *, default_root: str = DEFAULT_ROOT) -> None:
        self._repository = repository
        self._default_root = default_root

    def _snapshot(self, project: str, fn, *, cancel_event: threading.Event | None, timeout_s: float | None) -> Any:
        guard = CancellationGuard(cancel_event=cancel_event, timeout_s=timeout_s)
        guard.check()
        return self._repository.run_snapshot(project=project, fn=lambda reader: fn(GuardedReader(reader, guard)))

    def list_review_events(
        self,
        query: EventListQuery,
        *,
        cancel_event: threading.Event | None = None,
        timeout_s: float | None = None,
    ) -> tuple[list[StatusEvent], int]:
        if not query.project.strip():
            raise InvalidArgumentError("project is required")
        events, total = self._snapshot(
            query.project,
            lambda reader: reader.list_events(query),
            cancel_event=cancel_event,
            timeout_s=timeout_s,
        )
        logger.info(
            "review_events_list project=%s modified_since=%s total=%d returned=%d",
            query.project,
            query.modified_since.isoformat() if query.modified_since else "-",
            total,
            len(events),
        )
        return events, total

    def list_assets(
        self,
        project: str,
        root: str | None = None,
        page: int = 1,
        per_page: int = 15,
        *,
        cancel_event: threading.Event | None = None,
        timeout_s: float | None = None,
    ) -> tuple[list[EntityKey], int]:
        project = (project or "").strip()
        if not project:
            raise InvalidArgumentError("project is required")
        scope = LatestScope(project=project, root=(root or "").strip() or self._default_root)
        rows = self._snapshot(
            project,
            lambda reader: LatestRowResolver(reader).resolve(scope, Granularity.ENTITY),
            cancel_event=cancel_event,
            timeout_s=timeout_s,
        )
        keys = sorted(
            {row.entity_key for row in rows},
            key=lambda k: (k.group_1.lower(), k.relation.lower(), k),
        )
        per_page = max(per_page, 1)
        offset = max(page - 1, 0) * per_page
        return keys[offset : offset + per_page], len(keys)

    def list_asset_review_infos(
        self,
        project: str,
        asset: str,
        relation: str,
        root: str | None = None,
        *,
        cancel_event: threading.Event | None = None,
        timeout_s: float | None = None,
    ) -> list[StatusEvent]:
        project = (project or "").strip()
        if not project or not (asset or "").strip() or not (relation or "").strip():
            raise InvalidArgumentError("project, asset and relation are required")
        key = EntityKey(project, (root or "").strip() or self._default_root, asset, relation)
        scope = LatestScope(project=project, root=key.root)
        rows = self._snapshot(
            project,
            lambda reader: LatestRowResolver(reader).resolve(scope, Granularity.ENTITY_PHASE, keys=[key]),
            cancel_event=cancel_event,
            timeout_s=timeout_s,
        )
        if not rows:
            raise NotFoundError(f"no review info for {asset}/{relation} in {project}")
        return rows
