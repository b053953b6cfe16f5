from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from asset_review.cancellation import CancellationGuard, GuardedReader
from asset_review.errors import InvalidArgumentError
from asset_review.latest_rows import LatestRowResolver
from asset_review.models import DEFAULT_ROOT, NO_PHASE, PHASES, PivotRow, normalize_phase
from asset_review.pivot import PivotAssembler
from asset_review.query import Granularity, LatestScope
from asset_review.ranking import RankingEngine
from asset_review.status_filter import StatusFilterEvaluator

logger = logging.getLogger(__name__)


def validate_phase(value: str | None) -> str:
    phase = normalize_phase(value)
    if phase and phase != NO_PHASE and phase not in PHASES:
        allowed = ", ".join([*PHASES, NO_PHASE])
        raise InvalidArgumentError(f"invalid phase {value!r}; allowed: {allowed}")
    return phase or NO_PHASE


@dataclass
class AssetPivotRequest:
    project: str
    root: str | None = None
    name_prefix: str = ""
    preferred_phase: str | None = None
    approval_statuses: Sequence[str] = field(default_factory=tuple)
    work_statuses: Sequence[str] = field(default_factory=tuple)
    order_key: str | None = None
    direction: str | None = None
    limit: int = 0
    offset: int = 0


@dataclass
class AssetPivotPage:
    rows: list[PivotRow]
    total: int
    limit: int
    offset: int
    order: str
    direction: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [row.to_dict() for row in self.rows],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
            "sort": self.order,
            "dir": self.direction,
        }


class AssetPivotService:
    def __init__(
        self,
        repository: Any,
        *,
        default_root: str = DEFAULT_ROOT,
        ranking: RankingEngine | None = None,
        assembler: PivotAssembler | None = None,
    ) -> None:
        self._repository = repository
        self._default_root = default_root
        self._ranking = ranking or RankingEngine()
        self._assembler = assembler or PivotAssembler()

    def get_asset_pivot_page(
        self,
        request: AssetPivotRequest,
        *,
        cancel_event: threading.Event | None = None,
        timeout_s: float | None = None,
    ) -> AssetPivotPage:
        """Filter, rank and assemble one page of the per-asset pivot view.

        Count, ranking input and page rows are all read inside one store
        snapshot. Cancellation is checked before every read; a tripped query
        raises ``QueryCancelledError`` without issuing the remaining reads.
        """
        project = (request.project or "").strip()
        if not project:
            raise InvalidArgumentError("project is required")
        preferred = validate_phase(request.preferred_phase)
        scope = LatestScope(
            project=project,
            root=(request.root or "").strip() or self._default_root,
            name_prefix=(request.name_prefix or "").strip(),
        )
        guard = CancellationGuard(cancel_event=cancel_event, timeout_s=timeout_s)
        started = time.perf_counter()
        guard.check()

        def _op(reader: Any) -> AssetPivotPage:
            guarded = GuardedReader(reader, guard)
            resolver = LatestRowResolver(guarded)
            matching = StatusFilterEvaluator(resolver).matching_entity_keys(
                scope,
                approval_statuses=request.approval_statuses,
                work_statuses=request.work_statuses,
                preferred_phase=preferred,
            )
            phase_rows = resolver.resolve(scope, Granularity.ENTITY_PHASE) if matching else []
            ranked = self._ranking.rank(
                matching,
                phase_rows,
                order_key=request.order_key,
                direction=request.direction,
                preferred_phase=preferred,
                limit=request.limit,
                offset=request.offset,
                total=len(matching),
            )
            rows = self._assembler.fetch_and_assemble(guarded, scope, ranked.keys)
            return AssetPivotPage(
                rows=rows,
                total=ranked.total,
                limit=ranked.limit,
                offset=ranked.offset,
                order=ranked.order,
                direction=ranked.direction,
            )

        page = self._repository.run_snapshot(project=project, fn=_op)
        logger.info(
            "asset_pivot_page project=%s root=%s order=%s dir=%s phase=%s total=%d returned=%d elapsed_ms=%.1f",
            project,
            scope.root,
            page.order,
            page.direction,
            preferred,
            page.total,
            len(page.rows),
            (time.perf_counter() - started) * 1000.0,
        )
        return page
