from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from asset_review.errors import StoreError

logger = logging.getLogger(__name__)


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic inside one read-only REPEATABLE READ transaction."""

    def __init__(self, dsn: str, *, connect_timeout_s: int = 5) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()
        self._connect_timeout_s = connect_timeout_s

    def run_in_snapshot(
        self,
        *,
        project: str,
        fn: Callable[[Any], Any],
    ) -> Any:
        if not project.strip():
            raise ValueError("project must not be empty")

        psycopg = _import_psycopg()
        try:
            with psycopg.connect(self._dsn, connect_timeout=self._connect_timeout_s) as conn:
                with conn.cursor() as cur:
                    cur.execute("SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY")
                result = fn(conn)
                conn.rollback()
                return result
        except psycopg.Error as exc:
            logger.warning("postgres_snapshot_failed project=%s error=%s", project, exc)
            raise StoreError(f"status log store read failed: {exc}") from exc
