from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from asset_review.db.postgres import PostgresTxRunner
from asset_review.repositories import (
    InMemoryStatusEventsRepository,
    PostgresStatusEventsRepository,
    SqliteStatusEventsRepository,
)
from asset_review.runtime_profile import RuntimeProfile

logger = logging.getLogger(__name__)


def create_repository(profile: RuntimeProfile) -> Any:
    if profile.store_backend == "sqlite":
        logger.info("status_store backend=sqlite path=%s table=%s", profile.sqlite_path, profile.review_table)
        return SqliteStatusEventsRepository(profile.sqlite_path, table_name=profile.review_table)
    if profile.store_backend == "postgres":
        logger.info("status_store backend=postgres table=%s", profile.review_table)
        return PostgresStatusEventsRepository(
            tx_runner=PostgresTxRunner(profile.postgres_dsn),
            table_name=profile.review_table,
        )
    return InMemoryStatusEventsRepository()


def create_repository_from_env(environ: Mapping[str, str] | None = None) -> Any:
    return create_repository(RuntimeProfile.from_env(environ))


repository = create_repository_from_env()
