"""Shared fixtures: in-memory records and vectors, deterministic embeddings, generated PDFs."""
from __future__ import annotations

import io
import os
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from PyPDF2 import PdfWriter

os.environ.setdefault("LOG_DIR", str(Path(tempfile.gettempdir()) / "studydesk-test-logs"))
os.environ["INSTALL_HEAVY"] = "false"

from studydesk.embeddings import EmbeddingModel, reset_embedding_model_cache  # noqa: E402
from studydesk.ingest.coordinator import IngestionCoordinator  # noqa: E402
from studydesk.ingest.dispatch import QueuedBatchDispatcher  # noqa: E402
from studydesk.ingest.driver import BatchChainDriver  # noqa: E402
from studydesk.ingest.extractors import PDFExtractor  # noqa: E402
from studydesk.ingest.models import IngestionJobPayload, PageContent  # noqa: E402
from studydesk.ingest.previews import QueuePreviewRequester  # noqa: E402
from studydesk.ingest.service import reset_ingestion_coordinator_cache  # noqa: E402
from studydesk.query.service import reset_oracle_service_cache  # noqa: E402
from studydesk.records import Database, RecordStore, reset_record_store_cache  # noqa: E402
from studydesk.settings import reset_settings_cache  # noqa: E402
from studydesk.storage import LocalObjectStorage, reset_object_storage_cache  # noqa: E402
from studydesk.vectorstore import ChunkVectorStore, MockVectorStore, reset_vector_store_cache  # noqa: E402

USER_ID = "user-1"
CLASS_ID = "class-bio"
COLLECTION = "DocumentChunk"


def _reset_caches() -> None:
    reset_settings_cache()
    reset_record_store_cache()
    reset_vector_store_cache()
    reset_embedding_model_cache()
    reset_object_storage_cache()
    reset_ingestion_coordinator_cache()
    reset_oracle_service_cache()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.setenv("INSTALL_HEAVY", "false")
    monkeypatch.setenv("VECTOR_STORE", "mock")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "objects"))
    monkeypatch.setenv("BATCH_DISPATCH", "queue")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ASSISTANT_ID", raising=False)
    monkeypatch.delenv("PREVIEW_ENDPOINT_URL", raising=False)
    _reset_caches()
    yield
    _reset_caches()


class TextPDFExtractor(PDFExtractor):
    """Opens the real PDF but supplies page text, since generated pages are blank."""

    def __init__(self, texts: Optional[Dict[int, str]] = None, *, fail_on_page: Optional[int] = None) -> None:
        super().__init__()
        self.texts = texts or {}
        self.fail_on_page = fail_on_page
        self.windows: List[Tuple[int, int]] = []

    def extract_pages(self, data: bytes, start_page: int, end_page: int) -> List[PageContent]:
        self.windows.append((start_page, end_page))
        pages = super().extract_pages(data, start_page, end_page)
        for page in pages:
            if page.page_number == self.fail_on_page:
                raise RuntimeError(f"page {page.page_number} is corrupt")
            page.text = self.texts.get(
                page.page_number,
                f"Page {page.page_number} explains topic number {page.page_number} in detail.",
            )
        return pages


def build_pdf(page_count: int) -> bytes:
    writer = PdfWriter()
    for _ in range(page_count):
        writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def records() -> RecordStore:
    database = Database("sqlite://")
    database.create_all()
    yield RecordStore(database)
    database.dispose()


@pytest.fixture
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "objects", "http://files.test")


@pytest.fixture
def mock_backend() -> MockVectorStore:
    return MockVectorStore()


@pytest.fixture
def vector_store(mock_backend: MockVectorStore) -> ChunkVectorStore:
    return ChunkVectorStore(mock_backend, collection_name=COLLECTION)


@pytest.fixture
def embedder() -> EmbeddingModel:
    return EmbeddingModel(use_model=False, batch_size=8)


@pytest.fixture
def dispatcher() -> QueuedBatchDispatcher:
    return QueuedBatchDispatcher()


@pytest.fixture
def pdf_extractor() -> TextPDFExtractor:
    return TextPDFExtractor()


@pytest.fixture
def driver(records, storage, vector_store, embedder, dispatcher, pdf_extractor) -> BatchChainDriver:
    return BatchChainDriver(
        records=records,
        storage=storage,
        vector_store=vector_store,
        embedder=embedder,
        dispatcher=dispatcher,
        previews=QueuePreviewRequester(records),
        pdf_extractor=pdf_extractor,
        batch_size=3,
    )


@pytest.fixture
def coordinator(driver: BatchChainDriver) -> IngestionCoordinator:
    return IngestionCoordinator(driver)


@pytest.fixture
def submit_job(records: RecordStore, storage: LocalObjectStorage) -> Callable[..., IngestionJobPayload]:
    """Store ``data`` as an upload and record a pending job for it."""

    def _submit(
        data: bytes,
        *,
        name: str = "lecture.pdf",
        mime_type: str = "application/pdf",
        user_id: str = USER_ID,
        class_id: str = CLASS_ID,
        folder_id: Optional[str] = None,
    ) -> IngestionJobPayload:
        storage_path = f"{user_id}/{uuid.uuid4().hex}-{name}"
        storage.write_bytes(storage_path, data)
        job = IngestionJobPayload(
            id=str(uuid.uuid4()),
            user_id=user_id,
            class_id=class_id,
            storage_path=storage_path,
            original_name=name,
            mime_type=mime_type,
            size=len(data),
            folder_id=folder_id,
        )
        records.create_job(job)
        return job

    return _submit


@pytest.fixture
def make_pdf() -> Callable[[int], bytes]:
    return build_pdf
