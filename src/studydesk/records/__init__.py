"""File, job and preview-queue records with an explicit status state machine."""
from __future__ import annotations

from functools import lru_cache

from studydesk.settings import get_settings

from .database import Base, Database, create_db_engine
from .models import FileRecord, FileStatus, IngestionJobRecord, JobStatus, PreviewRequestRecord
from .repository import RecordStore


@lru_cache()
def get_record_store() -> RecordStore:
    """Return the process-wide record store, creating tables on first use."""

    database = Database(get_settings().database_url)
    database.create_all()
    return RecordStore(database)


def reset_record_store_cache() -> None:
    """Clear the cached record store (primarily for testing)."""

    get_record_store.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "Base",
    "Database",
    "FileRecord",
    "FileStatus",
    "IngestionJobRecord",
    "JobStatus",
    "PreviewRequestRecord",
    "RecordStore",
    "create_db_engine",
    "get_record_store",
    "reset_record_store_cache",
]
