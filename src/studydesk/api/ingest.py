"""API router for ingestion jobs, chained batches, status views and chunk deletion."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel, Field

from studydesk.errors import DuplicateRecordError, RecordNotFoundError
from studydesk.ingest.coordinator import IngestionCoordinator
from studydesk.ingest.driver import BatchChainDriver
from studydesk.ingest.models import BatchCursor, IngestionJobPayload
from studydesk.ingest.service import get_ingestion_coordinator
from studydesk.records import FileRecord, IngestionJobRecord, RecordStore, get_record_store
from studydesk.vectorstore import ChunkVectorStore, VectorStoreUnavailableError, get_vector_store

from .dependencies import get_user_id

LOGGER = logging.getLogger(__name__)

router = APIRouter(tags=["ingest"])


class JobRequest(BaseModel):
    """Queue entry created when an upload completes."""

    id: Optional[str] = Field(None, description="Job id; generated when omitted.")
    user_id: Optional[str] = Field(None, description="Must match X-User-Id when given.")
    class_id: str = Field(..., min_length=1)
    folder_id: Optional[str] = None
    storage_path: str = Field(..., min_length=1)
    original_name: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    size: int = Field(0, ge=0)


class JobAccepted(BaseModel):
    job_id: str
    status: str


class BatchRequest(BaseModel):
    """Cursor of the next page window of a paginated file."""

    file_id: str
    storage_path: str
    user_id: str
    class_id: str
    folder_id: Optional[str] = None
    original_name: str
    current_page: int = Field(..., ge=1)
    total_pages: int = Field(..., ge=1)
    mime_type: str = "application/pdf"
    size: int = Field(0, ge=0)


class BatchAccepted(BaseModel):
    file_id: str
    current_page: int
    status: str


class JobView(BaseModel):
    id: str
    status: str
    file_id: Optional[str]
    original_name: str
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime


class FileView(BaseModel):
    id: str
    name: str
    status: str
    class_id: str
    folder_id: Optional[str]
    mime_type: str
    size: int
    page_count: Optional[int]
    url: Optional[str]
    thumbnail_url: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime


class ChunksDeleted(BaseModel):
    deleted: int
    file_id: Optional[str] = None
    class_id: Optional[str] = None


def _run_job(coordinator: IngestionCoordinator, job: IngestionJobPayload) -> None:
    try:
        coordinator.run(job)
    except Exception as exc:
        # The coordinator has already recorded the failure on the job and file rows.
        LOGGER.error("Ingestion job %s failed: %s", job.id, exc)


def _run_batch(driver: BatchChainDriver, cursor: BatchCursor) -> None:
    try:
        driver.process(cursor)
    except Exception as exc:
        LOGGER.error(
            "Batch for file %s at page %s failed: %s", cursor.file_id, cursor.current_page, exc
        )


def _job_view(record: IngestionJobRecord) -> JobView:
    return JobView(
        id=record.id,
        status=record.status,
        file_id=record.file_id,
        original_name=record.original_name,
        error_message=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _file_view(record: FileRecord) -> FileView:
    return FileView(
        id=record.id,
        name=record.name,
        status=record.status,
        class_id=record.class_id,
        folder_id=record.folder_id,
        mime_type=record.mime_type,
        size=record.size,
        page_count=record.page_count,
        url=record.url,
        thumbnail_url=record.thumbnail_url,
        error_message=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


@router.post("/ingest/jobs", response_model=JobAccepted, status_code=202)
def submit_job(
    request: JobRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    records: RecordStore = Depends(get_record_store),
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
) -> JobAccepted:
    """Record an ingestion job and process it after the response is sent."""

    if request.user_id is not None and request.user_id != user_id:
        raise HTTPException(status_code=403, detail="Job belongs to another user")

    job = IngestionJobPayload(
        id=request.id or str(uuid.uuid4()),
        user_id=user_id,
        class_id=request.class_id,
        storage_path=request.storage_path,
        original_name=request.original_name,
        mime_type=request.mime_type,
        size=request.size,
        folder_id=request.folder_id,
    )
    try:
        record = records.create_job(job)
    except DuplicateRecordError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    background_tasks.add_task(_run_job, coordinator, job)
    return JobAccepted(job_id=record.id, status=record.status)


@router.post("/ingest/batches", response_model=BatchAccepted, status_code=202)
def submit_batch(
    request: BatchRequest,
    background_tasks: BackgroundTasks,
    coordinator: IngestionCoordinator = Depends(get_ingestion_coordinator),
) -> BatchAccepted:
    """Process one chained page window; the successor is dispatched by the driver."""

    try:
        cursor = BatchCursor.from_payload(request.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    background_tasks.add_task(_run_batch, coordinator.driver, cursor)
    return BatchAccepted(file_id=cursor.file_id, current_page=cursor.current_page, status="accepted")


@router.get("/jobs/{job_id}", response_model=JobView)
def get_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    records: RecordStore = Depends(get_record_store),
) -> JobView:
    try:
        record = records.get_job(job_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Job not found") from exc
    if record.user_id != user_id:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_view(record)


@router.get("/files/{file_id}", response_model=FileView)
def get_file(
    file_id: str,
    user_id: str = Depends(get_user_id),
    records: RecordStore = Depends(get_record_store),
) -> FileView:
    try:
        record = records.get_file(file_id)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc
    if record.user_id != user_id:
        raise HTTPException(status_code=404, detail="File not found")
    return _file_view(record)


@router.delete("/files/{file_id}/chunks", response_model=ChunksDeleted)
def delete_file_chunks(
    file_id: str,
    user_id: str = Depends(get_user_id),
    vector_store: ChunkVectorStore = Depends(get_vector_store),
) -> ChunksDeleted:
    """Remove every indexed chunk of one of the caller's files."""

    try:
        deleted = vector_store.delete_file_chunks(user_id=user_id, file_id=file_id)
    except VectorStoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ChunksDeleted(deleted=deleted, file_id=file_id)


@router.delete("/classes/{class_id}/chunks", response_model=ChunksDeleted)
def delete_class_chunks(
    class_id: str,
    user_id: str = Depends(get_user_id),
    vector_store: ChunkVectorStore = Depends(get_vector_store),
) -> ChunksDeleted:
    """Remove every indexed chunk the caller owns in one class."""

    try:
        deleted = vector_store.delete_class_chunks(user_id=user_id, class_id=class_id)
    except VectorStoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return ChunksDeleted(deleted=deleted, class_id=class_id)
