from asset_review.repositories.status_events import (
    EventSnapshotReader,
    InMemoryStatusEventsRepository,
    PostgresStatusEventsRepository,
    SqliteStatusEventsRepository,
    SqlSnapshotReader,
)

__all__ = [
    "EventSnapshotReader",
    "InMemoryStatusEventsRepository",
    "PostgresStatusEventsRepository",
    "SqliteStatusEventsRepository",
    "SqlSnapshotReader",
]
