from __future__ import annotations

from datetime import UTC, datetime

from asset_review.models import PHASES, EntityKey, StatusEvent
from asset_review.pivot import PivotAssembler
from asset_review.query import Granularity, LatestScope
from asset_review.repositories import InMemoryStatusEventsRepository


def _event(event_id: int, name: str, phase: str, **kwargs) -> StatusEvent:
    return StatusEvent(
        id=event_id,
        project="proj",
        root="assets",
        group_1=name,
        relation="main",
        phase=phase,
        work_status=kwargs.get("work_status"),
        approval_status=kwargs.get("approval_status"),
        submitted_at_utc=kwargs.get("submitted_at_utc"),
        modified_at_utc=datetime(2024, 1, 1, tzinfo=UTC),
        take=kwargs.get("take"),
    )


def test_assemble_preserves_page_order_and_default_fills():
    a = EntityKey("proj", "assets", "a", "main")
    b = EntityKey("proj", "assets", "b", "main")
    c = EntityKey("proj", "assets", "c", "main")
    rows = [
        _event(1, "a", "rig", work_status="wip", take="take0002"),
        _event(2, "b", "mdl", approval_status="approved"),
        _event(3, "b", "fx", approval_status="ignored"),
    ]

    pivot = PivotAssembler().assemble([c, a, b], rows)

    assert [r.key for r in pivot] == [c, a, b]
    assert all(cols.work_status is None for cols in pivot[0].phases.values())
    assert pivot[1].phase("rig").work_status == "wip"
    assert pivot[1].phase("rig").take == "take0002"
    assert pivot[1].phase("mdl").work_status is None
    assert pivot[2].phase("mdl").approval_status == "approved"
    assert set(pivot[2].phases) == set(PHASES)


def test_assemble_ignores_rows_outside_the_page():
    a = EntityKey("proj", "assets", "a", "main")

    pivot = PivotAssembler().assemble([a], [_event(1, "z", "mdl", work_status="wip")])

    assert len(pivot) == 1
    assert pivot[0].phase("mdl").work_status is None


def test_pivot_row_to_dict_flattens_phase_columns():
    submitted = datetime(2024, 3, 4, 5, 6, tzinfo=UTC)
    a = EntityKey("proj", "assets", "a", "main")

    row = PivotAssembler().assemble([a], [_event(1, "a", "ldv", work_status="wip", submitted_at_utc=submitted)])[0]
    data = row.to_dict()

    assert data["group_1"] == "a"
    assert data["ldv_work_status"] == "wip"
    assert data["ldv_submitted_at_utc"] == "2024-03-04T05:06:00+00:00"
    assert data["mdl_take"] is None
    assert len([k for k in data if k.endswith("_approval_status")]) == len(PHASES)


def test_fetch_and_assemble_reads_latest_per_phase_for_page_keys_only():
    repo = InMemoryStatusEventsRepository()
    repo.append(project="proj", group_1="a", relation="main", phase="mdl", work_status="old", modified_at_utc="2024-01-01T00:00:00Z")
    repo.append(project="proj", group_1="a", relation="main", phase="mdl", work_status="new", modified_at_utc="2024-01-02T00:00:00Z")
    repo.append(project="proj", group_1="b", relation="main", phase="mdl", work_status="other", modified_at_utc="2024-01-02T00:00:00Z")
    calls: list[dict] = []

    class SpyReader:
        def __init__(self, inner):
            self._inner = inner

        def latest_rows(self, scope, granularity, keys=None, status=None):
            calls.append({"granularity": granularity, "keys": keys})
            return self._inner.latest_rows(scope, granularity, keys=keys, status=status)

    a = EntityKey("proj", "assets", "a", "main")
    pivot = repo.run_snapshot(
        project="proj",
        fn=lambda reader: PivotAssembler().fetch_and_assemble(SpyReader(reader), LatestScope(project="proj"), [a]),
    )

    assert [r.phase("mdl").work_status for r in pivot] == ["new"]
    assert calls == [{"granularity": Granularity.ENTITY_PHASE, "keys": [a]}]


def test_fetch_and_assemble_with_empty_page_issues_no_read():
    class ExplodingReader:
        def latest_rows(self, *args, **kwargs):
            raise AssertionError("should not read")

    assert PivotAssembler().fetch_and_assemble(ExplodingReader(), LatestScope(project="proj"), []) == []
