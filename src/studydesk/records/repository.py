"""Persistence and status transitions for files, jobs and preview requests.

Every status change is a conditional ``UPDATE ... WHERE status IN (...)`` so
that exactly one writer can perform a given transition, even when several
stateless invocations race on the same row.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from studydesk.errors import DuplicateRecordError, InvalidTransitionError, RecordNotFoundError
from studydesk.ingest.models import IngestionJobPayload
from studydesk.logging_config import AUDIT_LOGGER_NAME

from .database import Database
from .models import FileRecord, FileStatus, IngestionJobRecord, JobStatus, PreviewRequestRecord, utcnow

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


class RecordStore:
    """Repository for the ``files``, ``processing_queue`` and ``preview_queue`` tables."""

    def __init__(self, database: Database) -> None:
        self.database = database

    # Jobs -----------------------------------------------------------------

    def create_job(self, payload: IngestionJobPayload) -> IngestionJobRecord:
        record = IngestionJobRecord(
            id=payload.id,
            user_id=payload.user_id,
            class_id=payload.class_id,
            folder_id=payload.folder_id,
            storage_path=payload.storage_path,
            original_name=payload.original_name,
            mime_type=payload.mime_type,
            size=payload.size,
            status=JobStatus.PENDING.value,
        )
        try:
            with self.database.session() as session:
                session.add(record)
        except IntegrityError as exc:
            raise DuplicateRecordError(f"Job {payload.id} already exists") from exc
        return record

    def get_job(self, job_id: str) -> IngestionJobRecord:
        with self.database.session() as session:
            record = session.get(IngestionJobRecord, job_id)
        if record is None:
            raise RecordNotFoundError(f"Job {job_id} not found")
        return record

    def list_pending_jobs(self, limit: int = 10) -> List[IngestionJobRecord]:
        with self.database.session() as session:
            statement = (
                select(IngestionJobRecord)
                .where(IngestionJobRecord.status == JobStatus.PENDING.value)
                .order_by(IngestionJobRecord.created_at)
                .limit(limit)
            )
            return list(session.scalars(statement))

    def claim_job(self, job_id: str) -> None:
        self._transition_job(job_id, (JobStatus.PENDING,), JobStatus.PROCESSING)

    def attach_file(self, job_id: str, file_id: str) -> None:
        with self.database.session() as session:
            session.execute(
                update(IngestionJobRecord)
                .where(IngestionJobRecord.id == job_id)
                .values(file_id=file_id, updated_at=utcnow())
            )

    def complete_job(self, job_id: str) -> None:
        self._transition_job(job_id, (JobStatus.PROCESSING,), JobStatus.COMPLETED)

    def fail_job(self, job_id: str, message: str) -> None:
        self._transition_job(job_id, (JobStatus.PROCESSING,), JobStatus.FAILED, error_message=message)

    # Files ----------------------------------------------------------------

    def create_file(
        self,
        *,
        name: str,
        user_id: str,
        class_id: str,
        folder_id: Optional[str],
        size: int,
        mime_type: str,
        storage_path: str,
        file_id: Optional[str] = None,
    ) -> FileRecord:
        values: Dict[str, Any] = dict(
            name=name,
            user_id=user_id,
            class_id=class_id,
            folder_id=folder_id,
            size=size,
            mime_type=mime_type,
            storage_path=storage_path,
            status=FileStatus.QUEUED.value,
        )
        if file_id:
            values["id"] = file_id
        record = FileRecord(**values)
        with self.database.session() as session:
            session.add(record)
        self._audit("file", record.id, None, FileStatus.QUEUED.value)
        return record

    def get_file(self, file_id: str) -> FileRecord:
        with self.database.session() as session:
            record = session.get(FileRecord, file_id)
        if record is None:
            raise RecordNotFoundError(f"File {file_id} not found")
        return record

    def get_files(self, file_ids: Iterable[str]) -> Dict[str, FileRecord]:
        ids = sorted(set(file_ids))
        if not ids:
            return {}
        with self.database.session() as session:
            rows = session.scalars(select(FileRecord).where(FileRecord.id.in_(ids)))
            return {row.id: row for row in rows}

    def mark_file_processing(self, file_id: str) -> None:
        self._transition_file(file_id, (FileStatus.QUEUED,), FileStatus.PROCESSING)

    def finalize_file(self, file_id: str, *, url: Optional[str], page_count: int) -> None:
        self._transition_file(
            file_id,
            (FileStatus.PROCESSING,),
            FileStatus.PROCESSED_TEXT,
            url=url,
            page_count=page_count,
        )

    def mark_file_error(self, file_id: str, message: str) -> bool:
        """Move a file to ``error``; returns ``False`` when it already failed."""

        try:
            self._transition_file(
                file_id,
                (FileStatus.QUEUED, FileStatus.PROCESSING),
                FileStatus.ERROR,
                error_message=message,
            )
        except InvalidTransitionError:
            if self.get_file(file_id).status == FileStatus.ERROR.value:
                return False
            raise
        return True

    # Previews -------------------------------------------------------------

    def enqueue_preview(self, file_id: str) -> int:
        record = PreviewRequestRecord(file_id=file_id, status="pending")
        with self.database.session() as session:
            session.add(record)
            session.flush()
            request_id = record.id
        return request_id

    def list_preview_requests(self, file_id: str) -> List[PreviewRequestRecord]:
        with self.database.session() as session:
            statement = select(PreviewRequestRecord).where(PreviewRequestRecord.file_id == file_id)
            return list(session.scalars(statement))

    # Internals ------------------------------------------------------------

    def _transition_file(
        self,
        file_id: str,
        allowed_from: Sequence[FileStatus],
        target: FileStatus,
        **values: Any,
    ) -> None:
        self._transition(FileRecord, "File", file_id, allowed_from, target, values)

    def _transition_job(
        self,
        job_id: str,
        allowed_from: Sequence[JobStatus],
        target: JobStatus,
        **values: Any,
    ) -> None:
        self._transition(IngestionJobRecord, "Job", job_id, allowed_from, target, values)

    def _transition(self, model, kind: str, record_id: str, allowed_from, target, values) -> None:
        sources = [status.value for status in allowed_from]
        with self.database.session() as session:
            result = session.execute(
                update(model)
                .where(model.id == record_id, model.status.in_(sources))
                .values(status=target.value, updated_at=utcnow(), **values)
            )
            if result.rowcount == 1:
                self._audit(kind.lower(), record_id, "|".join(sources), target.value)
                return
            current = session.scalar(select(model.status).where(model.id == record_id))
        if current is None:
            raise RecordNotFoundError(f"{kind} {record_id} not found")
        raise InvalidTransitionError(kind, record_id, "|".join(sources), target.value)

    def _audit(self, kind: str, record_id: str, previous: Optional[str], status: str) -> None:
        AUDIT_LOGGER.info(
            {"event": f"{kind}.status", "id": record_id, "from": previous, "to": status}
        )
