import logging

import pytest

from studydesk.errors import DuplicateRecordError, InvalidTransitionError, RecordNotFoundError
from studydesk.ingest.models import IngestionJobPayload
from studydesk.logging_config import AUDIT_LOGGER_NAME
from studydesk.records import FileStatus, JobStatus


def _job(job_id: str = "job-1") -> IngestionJobPayload:
    return IngestionJobPayload(
        id=job_id,
        user_id="user-1",
        class_id="class-1",
        storage_path="user-1/notes.pdf",
        original_name="notes.pdf",
        mime_type="application/pdf",
        size=42,
    )


def _file(records):
    return records.create_file(
        name="notes.pdf",
        user_id="user-1",
        class_id="class-1",
        folder_id=None,
        size=42,
        mime_type="application/pdf",
        storage_path="user-1/notes.pdf",
    )


def test_job_moves_pending_processing_completed(records) -> None:
    records.create_job(_job())

    records.claim_job("job-1")
    records.complete_job("job-1")

    assert records.get_job("job-1").status == JobStatus.COMPLETED.value


def test_job_cannot_be_claimed_twice(records) -> None:
    records.create_job(_job())
    records.claim_job("job-1")

    with pytest.raises(InvalidTransitionError):
        records.claim_job("job-1")
    assert records.get_job("job-1").status == JobStatus.PROCESSING.value


def test_failed_job_keeps_error_message_and_is_terminal(records) -> None:
    records.create_job(_job())
    records.claim_job("job-1")
    records.fail_job("job-1", "boom")

    job = records.get_job("job-1")
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == "boom"
    with pytest.raises(InvalidTransitionError):
        records.complete_job("job-1")


def test_duplicate_job_is_rejected(records) -> None:
    records.create_job(_job())

    with pytest.raises(DuplicateRecordError):
        records.create_job(_job())


def test_missing_records_raise_not_found(records) -> None:
    with pytest.raises(RecordNotFoundError):
        records.get_job("nope")
    with pytest.raises(RecordNotFoundError):
        records.mark_file_processing("nope")


def test_file_lifecycle_sets_url_and_page_count(records) -> None:
    record = _file(records)
    assert record.status == FileStatus.QUEUED.value

    records.mark_file_processing(record.id)
    records.finalize_file(record.id, url="http://files.test/notes.pdf", page_count=7)

    stored = records.get_file(record.id)
    assert stored.status == FileStatus.PROCESSED_TEXT.value
    assert stored.page_count == 7
    assert stored.url == "http://files.test/notes.pdf"


def test_processed_file_cannot_be_marked_failed(records) -> None:
    record = _file(records)
    records.mark_file_processing(record.id)
    records.finalize_file(record.id, url=None, page_count=1)

    with pytest.raises(InvalidTransitionError):
        records.mark_file_error(record.id, "late failure")


def test_mark_file_error_is_idempotent(records) -> None:
    record = _file(records)
    records.mark_file_processing(record.id)

    assert records.mark_file_error(record.id, "first") is True
    assert records.mark_file_error(record.id, "second") is False
    assert records.get_file(record.id).error_message == "first"


def test_finalize_requires_processing(records) -> None:
    record = _file(records)

    with pytest.raises(InvalidTransitionError):
        records.finalize_file(record.id, url=None, page_count=1)


def test_get_files_returns_only_existing_rows(records) -> None:
    record = _file(records)

    found = records.get_files([record.id, "missing"])

    assert list(found) == [record.id]


def test_preview_requests_are_queued(records) -> None:
    record = _file(records)

    request_id = records.enqueue_preview(record.id)

    queued = records.list_preview_requests(record.id)
    assert [row.id for row in queued] == [request_id]
    assert queued[0].status == "pending"


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.INFO)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_transitions_are_audited(records, caplog) -> None:
    record = _file(records)
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    handler = _ListHandler()
    caplog.set_level(logging.INFO, logger=AUDIT_LOGGER_NAME)
    audit_logger.addHandler(handler)
    try:
        records.mark_file_processing(record.id)
    finally:
        audit_logger.removeHandler(handler)

    events = [entry.msg for entry in handler.records]
    assert {"event": "file.status", "id": record.id, "from": "queued", "to": "processing"} in events
