"""Ingestion coordinator: owns the lifecycle of one uploaded file."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from studydesk.logging_config import AUDIT_LOGGER_NAME
from studydesk.telemetry import emit_ingest_event, traced_duration

from .driver import BatchChainDriver, BatchResult, FileTarget
from .extractors import DocxExtractor, ImageDescriber, ImageExtractor, TextExtractor
from .format_detection import DocumentFormat, DocumentFormatDetector
from .models import BatchCursor, IngestionJobPayload, PageContent

LOGGER = logging.getLogger(__name__)
AUDIT_LOGGER = logging.getLogger(AUDIT_LOGGER_NAME)


@dataclass(slots=True)
class IngestionOutcome:
    job_id: str
    file_id: str
    page_count: int
    first_batch: Optional[BatchResult] = None
    chunk_count: int = 0


class IngestionCoordinator:
    """Claims a job, creates its file record and hands pages to the driver.

    Paginated documents run their first batch inline; later batches are chained
    by the driver's dispatcher, so the job row only reflects whether the
    initial hand-off succeeded.
    """

    def __init__(self, driver: BatchChainDriver, *, captioner: Optional[ImageDescriber] = None) -> None:
        self.driver = driver
        self.records = driver.records
        self.storage = driver.storage
        self.text_extractor = TextExtractor()
        self.docx_extractor = DocxExtractor()
        self.image_extractor = ImageExtractor(captioner)
        self.captioner = captioner

    def close(self) -> None:
        self.driver.close()
        close = getattr(self.captioner, "close", None)
        if close is not None:
            close()

    def run(self, job: IngestionJobPayload) -> IngestionOutcome:
        started = time.perf_counter()
        self.records.claim_job(job.id)
        file_id: Optional[str] = None
        try:
            record = self.records.create_file(
                name=job.original_name,
                user_id=job.user_id,
                class_id=job.class_id,
                folder_id=job.folder_id,
                size=job.size,
                mime_type=job.mime_type,
                storage_path=job.storage_path,
            )
            file_id = record.id
            self.records.attach_file(job.id, file_id)
            self.records.mark_file_processing(file_id)
            with traced_duration("ingest.job.process", logger=LOGGER, job_id=job.id, file_id=file_id):
                outcome = self._process(job, file_id)
        except Exception as error:
            self._fail(job, file_id, error)
            raise

        self.records.complete_job(job.id)
        duration_ms = (time.perf_counter() - started) * 1000.0
        emit_ingest_event(
            "ingest.job.completed",
            file_id=file_id,
            job_id=job.id,
            file_name=job.original_name,
            mime_type=job.mime_type,
            size_bytes=job.size,
            pages=outcome.page_count,
            chunks=outcome.chunk_count,
            duration_ms=duration_ms,
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest.job",
                "status": "completed",
                "job_id": job.id,
                "file_id": file_id,
                "user_id": job.user_id,
                "file": job.original_name,
                "pages": outcome.page_count,
                "duration_ms": round(duration_ms, 3),
            }
        )
        return outcome

    def _process(self, job: IngestionJobPayload, file_id: str) -> IngestionOutcome:
        data = self.storage.read_bytes(job.storage_path)
        document_format = DocumentFormatDetector.detect(job.original_name, job.mime_type)
        target = FileTarget(
            file_id=file_id,
            file_name=job.original_name,
            user_id=job.user_id,
            class_id=job.class_id,
            folder_id=job.folder_id,
            storage_path=job.storage_path,
        )

        if document_format.is_paginated:
            total_pages = self.driver.pdf_extractor.page_count(data)
            LOGGER.info("File %s (%s) has %s pages", file_id, job.original_name, total_pages)
            if total_pages == 0:
                self.driver.finalize(target, page_count=0)
                return IngestionOutcome(job_id=job.id, file_id=file_id, page_count=0)
            cursor = BatchCursor(
                file_id=file_id,
                storage_path=job.storage_path,
                user_id=job.user_id,
                class_id=job.class_id,
                folder_id=job.folder_id,
                original_name=job.original_name,
                current_page=1,
                total_pages=total_pages,
                mime_type=job.mime_type,
                size=job.size,
            )
            first_batch = self.driver.process(cursor)
            return IngestionOutcome(
                job_id=job.id,
                file_id=file_id,
                page_count=total_pages,
                first_batch=first_batch,
                chunk_count=first_batch.chunk_count,
            )

        pages = self._extract_single_page(data, document_format, job.mime_type)
        try:
            chunk_count = self.driver.index_pages(pages, target, start_page=1, paginated=False)
            self.driver.finalize(target, page_count=1)
        except Exception as error:
            self.driver.fail(target, error)
            raise
        return IngestionOutcome(job_id=job.id, file_id=file_id, page_count=1, chunk_count=chunk_count)

    def _extract_single_page(
        self, data: bytes, document_format: DocumentFormat, mime_type: str
    ) -> List[PageContent]:
        if document_format is DocumentFormat.IMAGE:
            return self.image_extractor.extract(data, mime_type)
        if document_format is DocumentFormat.DOCX:
            return self.docx_extractor.extract(data)
        return self.text_extractor.extract(data)

    def _fail(self, job: IngestionJobPayload, file_id: Optional[str], error: BaseException) -> None:
        message = str(error).strip() or error.__class__.__name__
        if file_id is not None:
            try:
                self.records.mark_file_error(file_id, message)
            except Exception as record_error:
                LOGGER.error("Could not mark file %s as failed: %s", file_id, record_error)
        try:
            self.records.fail_job(job.id, message)
        except Exception as record_error:
            LOGGER.error("Could not mark job %s as failed: %s", job.id, record_error)
        emit_ingest_event(
            "ingest.job.failed",
            file_id=file_id,
            job_id=job.id,
            file_name=job.original_name,
            mime_type=job.mime_type,
            size_bytes=job.size,
            error=error,
        )
        AUDIT_LOGGER.info(
            {
                "event": "ingest.job",
                "status": "failed",
                "job_id": job.id,
                "file_id": file_id,
                "user_id": job.user_id,
                "file": job.original_name,
                "error": message,
            }
        )
