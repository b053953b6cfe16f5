from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta

import pytest

from asset_review.errors import StoreError
from asset_review.models import EntityKey
from asset_review.pivot_service import AssetPivotRequest, AssetPivotService
from asset_review.query import EventListQuery, Granularity, LatestScope, build_status_predicate
from asset_review.repositories import (
    InMemoryStatusEventsRepository,
    PostgresStatusEventsRepository,
    SqliteStatusEventsRepository,
)

BASE = datetime(2024, 1, 1, tzinfo=UTC)


def _seed(repo) -> None:
    repo.append(project="proj", group_1="Chair", relation="main", phase="mdl", work_status="wip", modified_at_utc=BASE)
    repo.append(
        project="proj",
        group_1="Chair",
        relation="main",
        phase="MDL",
        work_status="done",
        approval_status="Approved",
        submitted_at_utc=BASE + timedelta(hours=1),
        modified_at_utc=BASE + timedelta(hours=1),
        take="take0002",
    )
    repo.append(project="proj", group_1="Chair", relation="main", phase="rig", work_status="wip", modified_at_utc=BASE + timedelta(hours=2))
    repo.append(project="proj", group_1="ch%air", relation="alt", phase="mdl", work_status="wip", modified_at_utc=BASE)
    repo.append(project="proj", group_1="table", relation="main", phase="ldv", approval_status="pending", modified_at_utc=BASE)
    repo.append(project="proj", group_1="table", relation="main", phase="ldv", approval_status="retake", modified_at_utc=BASE)
    repo.append(project="proj", group_1="lamp", relation="main", phase="mdl", modified_at_utc=BASE, root="props")
    repo.append(project="other", group_1="Chair", relation="main", phase="mdl", modified_at_utc=BASE)


@pytest.fixture
def sqlite_repo(tmp_path) -> SqliteStatusEventsRepository:
    repo = SqliteStatusEventsRepository(str(tmp_path / "reviews.sqlite3"))
    _seed(repo)
    return repo


@pytest.fixture
def memory_repo() -> InMemoryStatusEventsRepository:
    repo = InMemoryStatusEventsRepository()
    _seed(repo)
    return repo


def _latest(repo, scope, granularity, **kwargs):
    rows = repo.run_snapshot(project=scope.project, fn=lambda reader: reader.latest_rows(scope, granularity, **kwargs))
    return [(r.group_1, r.relation, r.phase_key, r.id) for r in rows]


@pytest.mark.parametrize(
    ("scope", "granularity", "kwargs"),
    [
        (LatestScope(project="proj"), Granularity.ENTITY, {}),
        (LatestScope(project="proj"), Granularity.ENTITY_PHASE, {}),
        (LatestScope(project="proj", phase="mdl"), Granularity.ENTITY_PHASE, {}),
        (LatestScope(project="proj", name_prefix="CH"), Granularity.ENTITY_PHASE, {}),
        (LatestScope(project="proj", name_prefix="ch%"), Granularity.ENTITY, {}),
        (LatestScope(project="proj", root="props"), Granularity.ENTITY, {}),
        (
            LatestScope(project="proj"),
            Granularity.ENTITY_PHASE,
            {"keys": [EntityKey("proj", "assets", "Chair", "main")]},
        ),
        (
            LatestScope(project="proj"),
            Granularity.ENTITY,
            {"status": build_status_predicate(["approved", "retake"], ["done"])},
        ),
    ],
)
def test_sqlite_latest_rows_match_in_memory_reference(sqlite_repo, memory_repo, scope, granularity, kwargs):
    assert _latest(sqlite_repo, scope, granularity, **kwargs) == _latest(memory_repo, scope, granularity, **kwargs)


def test_sqlite_tie_break_prefers_highest_id(sqlite_repo):
    rows = _latest(sqlite_repo, LatestScope(project="proj", name_prefix="table"), Granularity.ENTITY)

    assert len(rows) == 1
    assert rows[0][3] == 6


def test_sqlite_like_wildcards_are_literal(sqlite_repo):
    rows = _latest(sqlite_repo, LatestScope(project="proj", name_prefix="ch%"), Granularity.ENTITY)

    assert [r[0] for r in rows] == ["ch%air"]


def _seed_accented(repo) -> None:
    repo.append(project="proj", group_1="Ölampe", relation="main", phase="mdl", approval_status="ÄNDERN", modified_at_utc=BASE)
    repo.append(project="proj", group_1="Éclair", relation="main", phase=" Rig ", work_status="Prüfen", modified_at_utc=BASE)
    repo.append(project="proj", group_1="olive", relation="main", phase="mdl", approval_status="approved", modified_at_utc=BASE)


@pytest.mark.parametrize(
    ("scope", "granularity", "kwargs"),
    [
        (LatestScope(project="proj", name_prefix="öl"), Granularity.ENTITY, {}),
        (LatestScope(project="proj", name_prefix="ÉC"), Granularity.ENTITY_PHASE, {}),
        (LatestScope(project="proj", phase="rig"), Granularity.ENTITY_PHASE, {}),
        (LatestScope(project="proj"), Granularity.ENTITY, {"status": build_status_predicate(["ändern"], ["PRÜFEN"])}),
    ],
)
def test_sqlite_folds_non_ascii_like_in_memory(tmp_path, scope, granularity, kwargs):
    sqlite_repo = SqliteStatusEventsRepository(str(tmp_path / "accented.sqlite3"))
    memory_repo = InMemoryStatusEventsRepository()
    _seed_accented(sqlite_repo)
    _seed_accented(memory_repo)

    sqlite_rows = _latest(sqlite_repo, scope, granularity, **kwargs)

    assert sqlite_rows
    assert sqlite_rows == _latest(memory_repo, scope, granularity, **kwargs)


def test_sqlite_pivot_total_counts_non_ascii_statuses(tmp_path):
    sqlite_repo = SqliteStatusEventsRepository(str(tmp_path / "accented.sqlite3"))
    _seed_accented(sqlite_repo)
    request = AssetPivotRequest(project="proj", approval_statuses=("Ändern",), name_prefix="Öl")

    page = AssetPivotService(sqlite_repo).get_asset_pivot_page(request)

    assert page.total == 1
    assert [r.group_1 for r in page.rows] == ["Ölampe"]


def test_sqlite_round_trips_timestamps_and_take(sqlite_repo):
    scope = LatestScope(project="proj", phase="mdl", name_prefix="chair")
    rows = sqlite_repo.run_snapshot(project="proj", fn=lambda reader: reader.latest_rows(scope, Granularity.ENTITY_PHASE))

    assert rows[0].submitted_at_utc == BASE + timedelta(hours=1)
    assert rows[0].modified_at_utc.tzinfo is not None
    assert rows[0].take == "take0002"


def test_sqlite_soft_delete_hides_row_and_is_visible_to_sync_listing(sqlite_repo):
    assert sqlite_repo.soft_delete(event_id=2) is True
    assert sqlite_repo.soft_delete(event_id=2) is False

    rows = _latest(sqlite_repo, LatestScope(project="proj", phase="mdl", name_prefix="chair"), Granularity.ENTITY_PHASE)
    assert [r[3] for r in rows] == [1]

    events, total = sqlite_repo.run_snapshot(
        project="proj",
        fn=lambda reader: reader.list_events(EventListQuery(project="proj", modified_since=BASE)),
    )
    assert total == 7
    assert any(e.id == 2 and e.deleted for e in events)


def test_list_events_matches_between_backends(sqlite_repo, memory_repo):
    for query in (
        EventListQuery(project="proj", per_page=3, page=2),
        EventListQuery(project="proj", phases=("mdl",), relations=("main",)),
        EventListQuery(project="proj", take="take0002"),
        EventListQuery(project="proj", modified_since=BASE + timedelta(minutes=30)),
    ):
        sqlite_events, sqlite_total = sqlite_repo.run_snapshot(project="proj", fn=lambda r: r.list_events(query))
        memory_events, memory_total = memory_repo.run_snapshot(project="proj", fn=lambda r: r.list_events(query))
        assert sqlite_total == memory_total
        assert [e.id for e in sqlite_events] == [e.id for e in memory_events]


def test_pivot_page_matches_between_backends(sqlite_repo, memory_repo):
    request = AssetPivotRequest(project="proj", order_key="mdl_take", direction="desc", preferred_phase="mdl")

    sqlite_page = AssetPivotService(sqlite_repo).get_asset_pivot_page(request)
    memory_page = AssetPivotService(memory_repo).get_asset_pivot_page(request)

    assert sqlite_page.total == memory_page.total == 3
    assert [r.to_dict() for r in sqlite_page.rows] == [r.to_dict() for r in memory_page.rows]


def test_sqlite_errors_surface_as_store_error(sqlite_repo):
    def _broken(reader):
        raise sqlite3.OperationalError("disk I/O error")

    with pytest.raises(StoreError, match="disk I/O error"):
        sqlite_repo.run_snapshot(project="proj", fn=_broken)


def test_inmemory_snapshot_is_isolated_from_later_appends(memory_repo):
    def _op(reader):
        memory_repo.append(project="proj", group_1="late", relation="main", phase="mdl", modified_at_utc=BASE)
        return reader.latest_rows(LatestScope(project="proj", name_prefix="late"), Granularity.ENTITY)

    assert memory_repo.run_snapshot(project="proj", fn=_op) == []


def test_postgres_repository_rejects_invalid_table_name():
    class DummyRunner:
        def run_in_snapshot(self, *, project: str, fn):
            return fn(None)

    with pytest.raises(ValueError, match="invalid SQL identifier"):
        PostgresStatusEventsRepository(tx_runner=DummyRunner(), table_name="t_review_info;drop table x")


def test_postgres_repository_runs_parameterized_sql_in_one_snapshot():
    statements: list[tuple[str, tuple | None]] = []
    row = (
        11,
        "proj",
        "assets",
        "chair",
        "main",
        "rig",
        "wip",
        "approved",
        None,
        datetime(2024, 1, 2, tzinfo=UTC),
        None,
        0,
    )

    class FakeCursor:
        def __enter__(self):
            return self

        def __exit__(self, exc_type, exc, tb):
            return False

        def execute(self, query: str, params=None):
            statements.append((query, params))
            self._count = query.strip().startswith("SELECT COUNT")

        def fetchall(self):
            return [(1,)] if self._count else [row]

    class FakeConnection:
        def cursor(self):
            return FakeCursor()

    class FakeRunner:
        def __init__(self):
            self.projects: list[str] = []

        def run_in_snapshot(self, *, project: str, fn):
            self.projects.append(project)
            return fn(FakeConnection())

    runner = FakeRunner()
    repo = PostgresStatusEventsRepository(tx_runner=runner, table_name="t_review_info")

    def _op(reader):
        latest = reader.latest_rows(
            LatestScope(project="proj", name_prefix="cha"),
            Granularity.ENTITY_PHASE,
            status=build_status_predicate(["Approved"], []),
        )
        events, total = reader.list_events(EventListQuery(project="proj", per_page=5))
        return latest, events, total

    latest, events, total = repo.run_snapshot(project="proj", fn=_op)

    assert runner.projects == ["proj"]
    assert len(statements) == 3
    latest_sql, latest_params = statements[0]
    assert "FROM t_review_info" in latest_sql
    assert "LOWER(group_1) LIKE %s" in latest_sql
    assert latest_params == ("proj", "assets", "cha%", "approved")
    assert latest[0].entity_key == EntityKey("proj", "assets", "chair", "main")
    assert latest[0].deleted is False
    assert statements[2][1] == ("proj", 5, 0)
    assert total == 1
    assert [e.id for e in events] == [11]
