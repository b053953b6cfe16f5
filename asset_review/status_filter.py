from __future__ import annotations

import logging
from collections.abc import Iterable

from asset_review.errors import InvalidArgumentError
from asset_review.latest_rows import LatestRowResolver
from asset_review.models import EntityKey, preferred_phase_or_none
from asset_review.query import Granularity, LatestScope, build_status_predicate

logger = logging.getLogger(__name__)


class StatusFilterEvaluator:
    """Decide which entities are visible in a pivot listing.

    With a preferred phase the status test runs against that phase's latest
    row, so entities that never reached the phase drop out. Without one the
    entity-wide latest row is tested. No status values means no filtering.
    """

    def __init__(self, resolver: LatestRowResolver) -> None:
        self._resolver = resolver

    def matching_entity_keys(
        self,
        scope: LatestScope,
        approval_statuses: Iterable[str] | None = None,
        work_statuses: Iterable[str] | None = None,
        preferred_phase: str | None = None,
    ) -> set[EntityKey]:
        if not scope.project.strip():
            raise InvalidArgumentError("project is required")
        predicate = build_status_predicate(approval_statuses, work_statuses)
        phase = preferred_phase_or_none(preferred_phase)
        if phase is None or predicate.is_empty:
            rows = self._resolver.resolve(scope.with_phase(None), Granularity.ENTITY, status=predicate)
        else:
            rows = self._resolver.resolve(scope.with_phase(phase), Granularity.ENTITY_PHASE, status=predicate)
        keys = {row.entity_key for row in rows}
        logger.debug(
            "status_filter project=%s root=%s phase=%s approval=%s work=%s matched=%d",
            scope.project,
            scope.root,
            phase or "none",
            sorted(predicate.approval_statuses),
            sorted(predicate.work_statuses),
            len(keys),
        )
        return keys
