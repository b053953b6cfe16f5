from __future__ import annotations

from collections.abc import Iterable, Sequence

from asset_review.latest_rows import LatestRowResolver, StatusLogReader
from asset_review.models import PHASES, EntityKey, PhaseColumns, PivotRow, StatusEvent
from asset_review.query import Granularity, LatestScope


class PivotAssembler:
    """Fold per-phase latest rows into one wide row per entity, in page order."""

    def assemble(self, page_keys: Sequence[EntityKey], phase_rows: Iterable[StatusEvent]) -> list[PivotRow]:
        rows = {key: PivotRow(key=key) for key in page_keys}
        for event in phase_rows:
            target = rows.get(event.entity_key)
            # Unknown phases have no column group.
            if target is None or event.phase_key not in PHASES:
                continue
            target.phases[event.phase_key] = PhaseColumns(
                work_status=event.work_status,
                approval_status=event.approval_status,
                submitted_at_utc=event.submitted_at_utc,
                take=event.take,
            )
        return [rows[key] for key in page_keys]

    def fetch_and_assemble(
        self,
        reader: StatusLogReader,
        scope: LatestScope,
        page_keys: Sequence[EntityKey],
    ) -> list[PivotRow]:
        if not page_keys:
            return []
        resolver = LatestRowResolver(reader)
        phase_rows = resolver.resolve(scope.with_phase(None), Granularity.ENTITY_PHASE, keys=list(page_keys))
        return self.assemble(page_keys, phase_rows)
