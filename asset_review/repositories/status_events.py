from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from asset_review.db.postgres import PostgresTxRunner
from asset_review.errors import StoreError
from asset_review.latest_rows import pick_latest
from asset_review.models import DEFAULT_ROOT, EntityKey, StatusEvent, coerce_utc
from asset_review.query import (
    POSTGRES,
    SQLITE,
    SQLITE_FUNCTIONS,
    EventListQuery,
    Granularity,
    LatestScope,
    SqlDialect,
    StatusPredicate,
    build_event_list_sql,
    build_latest_rows_sql,
    validate_identifier,
)

logger = logging.getLogger(__name__)

Execute = Callable[[str, Sequence[Any]], list[tuple[Any, ...]]]


def _event_from_row(row: Sequence[Any]) -> StatusEvent:
    return StatusEvent(
        id=int(row[0]),
        project=row[1],
        root=row[2],
        group_1=row[3],
        relation=row[4],
        phase=row[5],
        work_status=row[6],
        approval_status=row[7],
        submitted_at_utc=coerce_utc(row[8]),
        modified_at_utc=coerce_utc(row[9]),
        take=row[10],
        deleted=bool(row[11]),
    )


class EventSnapshotReader:
    """Reader over a frozen tuple of events."""

    def __init__(self, events: tuple[StatusEvent, ...]) -> None:
        self._events = events

    def latest_rows(
        self,
        scope: LatestScope,
        granularity: Granularity,
        keys: Sequence[EntityKey] | None = None,
        status: StatusPredicate | None = None,
    ) -> list[StatusEvent]:
        return pick_latest(self._events, scope, granularity, keys=keys, status=status)

    def list_events(self, query: EventListQuery) -> tuple[list[StatusEvent], int]:
        rows = [e for e in self._events if query.admits(e)]
        if query.include_deleted:
            rows.sort(key=lambda e: e.recency)
        else:
            rows.sort(key=lambda e: e.id, reverse=True)
        return rows[query.offset : query.offset + query.per_page], len(rows)


class SqlSnapshotReader:
    """Reader issuing compiled SQL through one connection-bound ``execute``."""

    def __init__(self, *, execute: Execute, table_name: str, dialect: SqlDialect) -> None:
        self._execute = execute
        self._table_name = validate_identifier(table_name)
        self._dialect = dialect

    def latest_rows(
        self,
        scope: LatestScope,
        granularity: Granularity,
        keys: Sequence[EntityKey] | None = None,
        status: StatusPredicate | None = None,
    ) -> list[StatusEvent]:
        if keys is not None and not keys:
            return []
        sql, params = build_latest_rows_sql(
            table=self._table_name,
            scope=scope,
            granularity=granularity,
            dialect=self._dialect,
            keys=keys,
            status=status,
        )
        return [_event_from_row(row) for row in self._execute(sql, params)]

    def list_events(self, query: EventListQuery) -> tuple[list[StatusEvent], int]:
        count_sql, count_params, page_sql, page_params = build_event_list_sql(
            table=self._table_name,
            query=query,
            dialect=self._dialect,
        )
        count_rows = self._execute(count_sql, count_params)
        total = int(count_rows[0][0]) if count_rows else 0
        events = [_event_from_row(row) for row in self._execute(page_sql, page_params)]
        return events, total


class InMemoryStatusEventsRepository:
    def __init__(self, events: Sequence[StatusEvent] | None = None) -> None:
        self._lock = threading.RLock()
        self._events: list[StatusEvent] = list(events or [])

    def reset(self) -> None:
        with self._lock:
            self._events = []

    def append(
        self,
        *,
        project: str,
        group_1: str,
        relation: str,
        phase: str,
        root: str = DEFAULT_ROOT,
        work_status: str | None = None,
        approval_status: str | None = None,
        submitted_at_utc: datetime | str | None = None,
        modified_at_utc: datetime | str | None = None,
        take: str | None = None,
    ) -> StatusEvent:
        with self._lock:
            next_id = max((e.id for e in self._events), default=0) + 1
            event = StatusEvent(
                id=next_id,
                project=project,
                root=root,
                group_1=group_1,
                relation=relation,
                phase=phase,
                work_status=work_status,
                approval_status=approval_status,
                submitted_at_utc=coerce_utc(submitted_at_utc),
                modified_at_utc=coerce_utc(modified_at_utc) or datetime.now(UTC),
                take=take,
            )
            self._events.append(event)
            return event

    def soft_delete(self, *, event_id: int) -> bool:
        with self._lock:
            for idx, event in enumerate(self._events):
                if event.id == event_id and not event.deleted:
                    self._events[idx] = replace(event, deleted=True)
                    return True
            return False

    def run_snapshot(self, *, project: str, fn: Callable[[Any], Any]) -> Any:
        with self._lock:
            frozen = tuple(e for e in self._events if e.project == project)
        return fn(EventSnapshotReader(frozen))


class SqliteStatusEventsRepository:
    """Status log kept in a local SQLite file; reads run in one deferred transaction."""

    def __init__(self, db_path: str, *, table_name: str = "t_review_info") -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._table_name = validate_identifier(table_name)
        self._lock = threading.RLock()
        self._initialize_database()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        for name, func in SQLITE_FUNCTIONS.items():
            conn.create_function(name, 1, func, deterministic=True)
        return conn

    def _initialize_database(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table_name} (
                  id INTEGER PRIMARY KEY AUTOINCREMENT,
                  project TEXT NOT NULL,
                  root TEXT NOT NULL,
                  group_1 TEXT NOT NULL,
                  relation TEXT NOT NULL,
                  phase TEXT NOT NULL,
                  work_status TEXT,
                  approval_status TEXT,
                  submitted_at_utc TEXT,
                  modified_at_utc TEXT NOT NULL,
                  take TEXT,
                  deleted INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                f"""
                CREATE INDEX IF NOT EXISTS idx_{self._table_name}_latest
                ON {self._table_name} (project, root, group_1, relation, phase, modified_at_utc)
                """
            )
        finally:
            conn.close()

    def reset(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(f"DELETE FROM {self._table_name}")
            finally:
                conn.close()

    def append(
        self,
        *,
        project: str,
        group_1: str,
        relation: str,
        phase: str,
        root: str = DEFAULT_ROOT,
        work_status: str | None = None,
        approval_status: str | None = None,
        submitted_at_utc: datetime | str | None = None,
        modified_at_utc: datetime | str | None = None,
        take: str | None = None,
    ) -> StatusEvent:
        submitted = coerce_utc(submitted_at_utc)
        modified = coerce_utc(modified_at_utc) or datetime.now(UTC)
        sql = f"""
            INSERT INTO {self._table_name} (
                project, root, group_1, relation, phase, work_status, approval_status,
                submitted_at_utc, modified_at_utc, take, deleted
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0)
        """
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(
                    sql,
                    (
                        project,
                        root,
                        group_1,
                        relation,
                        phase,
                        work_status,
                        approval_status,
                        SQLITE.adapt_timestamp(submitted) if submitted is not None else None,
                        SQLITE.adapt_timestamp(modified),
                        take,
                    ),
                )
                event_id = int(cur.lastrowid)
            finally:
                conn.close()
        return StatusEvent(
            id=event_id,
            project=project,
            root=root,
            group_1=group_1,
            relation=relation,
            phase=phase,
            work_status=work_status,
            approval_status=approval_status,
            submitted_at_utc=submitted,
            modified_at_utc=modified,
            take=take,
        )

    def soft_delete(self, *, event_id: int) -> bool:
        # The marker carries the row id so one row never collides with another.
        sql = f"UPDATE {self._table_name} SET deleted = id WHERE id = ? AND deleted = 0"
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(sql, (event_id,))
                return cur.rowcount > 0
            finally:
                conn.close()

    def run_snapshot(self, *, project: str, fn: Callable[[Any], Any]) -> Any:
        conn = self._connect()
        try:
            conn.execute("BEGIN")

            def _execute(sql: str, params: Sequence[Any]) -> list[tuple[Any, ...]]:
                return conn.execute(sql, list(params)).fetchall()

            reader = SqlSnapshotReader(execute=_execute, table_name=self._table_name, dialect=SQLITE)
            result = fn(reader)
            conn.execute("ROLLBACK")
            return result
        except sqlite3.Error as exc:
            logger.warning("sqlite_snapshot_failed project=%s path=%s error=%s", project, self._db_path, exc)
            raise StoreError(f"status log store read failed: {exc}") from exc
        finally:
            conn.close()


class PostgresStatusEventsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "t_review_info") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def run_snapshot(self, *, project: str, fn: Callable[[Any], Any]) -> Any:
        def _op(conn: Any) -> Any:
            def _execute(sql: str, params: Sequence[Any]) -> list[tuple[Any, ...]]:
                with conn.cursor() as cur:
                    cur.execute(sql, tuple(params))
                    return list(cur.fetchall() or [])

            return fn(SqlSnapshotReader(execute=_execute, table_name=self._table_name, dialect=POSTGRES))

        return self._tx_runner.run_in_snapshot(project=project, fn=_op)
