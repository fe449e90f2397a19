"""Exception hierarchy shared by the ingestion and query services."""
from __future__ import annotations


class StudydeskError(RuntimeError):
    """Base class for errors raised by the service."""


class ExtractionError(StudydeskError):
    """Raised when a document cannot be opened or its content extracted."""


class UnsupportedDocumentError(ExtractionError):
    """Raised when the MIME type of an upload is not handled."""


class ChunkIndexOverflowError(StudydeskError):
    """Raised when a batch produces more chunks than its chunk_index range holds."""

    def __init__(self, file_id: str, start_page: int, limit: int) -> None:
        super().__init__(
            f"Batch starting at page {start_page} of file {file_id} exceeded {limit} chunks"
        )
        self.file_id = file_id
        self.start_page = start_page
        self.limit = limit


class InvalidTransitionError(StudydeskError):
    """Raised when a record is not in the state a transition requires."""

    def __init__(self, kind: str, record_id: str, expected: str, target: str) -> None:
        super().__init__(f"{kind} {record_id} cannot move to '{target}' (expected '{expected}')")
        self.kind = kind
        self.record_id = record_id
        self.expected = expected
        self.target = target


class RecordNotFoundError(StudydeskError):
    """Raised when a file or job row does not exist."""


class DuplicateRecordError(StudydeskError):
    """Raised when a job is submitted twice with the same id."""


class QueryTimeoutError(StudydeskError):
    """Raised when answering a query exceeds the configured time budget."""


__all__ = [
    "ChunkIndexOverflowError",
    "DuplicateRecordError",
    "ExtractionError",
    "InvalidTransitionError",
    "QueryTimeoutError",
    "RecordNotFoundError",
    "StudydeskError",
    "UnsupportedDocumentError",
]
