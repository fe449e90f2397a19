"""Batch chain driver: processes one page window of a paginated document.

A batch is stateless. It re-reads the stored object, indexes the pages of its
window and then either hands exactly one successor cursor to the dispatcher
or, on the last window, finalizes the file record and requests previews.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from studydesk.embeddings import EmbeddingModel
from studydesk.records import RecordStore
from studydesk.storage import LocalObjectStorage
from studydesk.telemetry import emit_batch_event, emit_exception, emit_ingest_event
from studydesk.vectorstore import ChunkVectorStore

from .chunking import PageChunker
from .dispatch import BatchDispatcher
from .extractors import PDFExtractor
from .models import BatchCursor, IndexedChunk, PageContent
from .normalization import normalize_text
from .previews import PreviewRequester

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResult:
    file_id: str
    start_page: int
    end_page: int
    chunk_count: int
    next_page: Optional[int]


@dataclass(slots=True)
class FileTarget:
    """The file-level fields every written chunk carries."""

    file_id: str
    file_name: str
    user_id: str
    class_id: str
    folder_id: Optional[str]
    storage_path: str

    @classmethod
    def from_cursor(cls, cursor: BatchCursor) -> "FileTarget":
        return cls(
            file_id=cursor.file_id,
            file_name=cursor.original_name,
            user_id=cursor.user_id,
            class_id=cursor.class_id,
            folder_id=cursor.folder_id,
            storage_path=cursor.storage_path,
        )


class BatchChainDriver:
    def __init__(
        self,
        *,
        records: RecordStore,
        storage: LocalObjectStorage,
        vector_store: ChunkVectorStore,
        embedder: EmbeddingModel,
        dispatcher: BatchDispatcher,
        previews: PreviewRequester,
        pdf_extractor: Optional[PDFExtractor] = None,
        chunker: Optional[PageChunker] = None,
        batch_size: int = 3,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.records = records
        self.storage = storage
        self.vector_store = vector_store
        self.embedder = embedder
        self.dispatcher = dispatcher
        self.previews = previews
        self.pdf_extractor = pdf_extractor or PDFExtractor()
        self.chunker = chunker or PageChunker()
        self.batch_size = batch_size

    def process(self, cursor: BatchCursor) -> BatchResult:
        """Index the cursor's page window, then chain or finalize."""

        start_page, end_page = cursor.window(self.batch_size)
        target = FileTarget.from_cursor(cursor)
        started = time.perf_counter()
        emit_batch_event(
            "ingest.batch.start",
            file_id=cursor.file_id,
            start_page=start_page,
            end_page=end_page,
            total_pages=cursor.total_pages,
        )
        try:
            data = self.storage.read_bytes(cursor.storage_path)
            pages = self.pdf_extractor.extract_pages(data, start_page, end_page)
            chunk_count = self.index_pages(pages, target, start_page=start_page)

            successor = cursor.advance(self.batch_size)
            if successor is not None:
                self.dispatcher.dispatch(successor, self.process)
            else:
                self.finalize(target, page_count=cursor.total_pages)
        except Exception as error:
            self.fail(target, error)
            raise

        emit_batch_event(
            "ingest.batch.complete",
            file_id=cursor.file_id,
            start_page=start_page,
            end_page=end_page,
            total_pages=cursor.total_pages,
            chunks=chunk_count,
            images=sum(len(page.image_captions) for page in pages),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return BatchResult(
            file_id=cursor.file_id,
            start_page=start_page,
            end_page=end_page,
            chunk_count=chunk_count,
            next_page=successor.current_page if successor is not None else None,
        )

    def index_pages(
        self,
        pages: Iterable[PageContent],
        target: FileTarget,
        *,
        start_page: int,
        paginated: bool = True,
    ) -> int:
        """Chunk, embed and write ``pages``; returns the number of chunks written.

        Non-paginated documents are one page and skip the per-batch chunk limit.
        """

        normalized = [
            PageContent(
                page_number=page.page_number,
                text=normalize_text(page.text),
                image_captions=[normalize_text(caption) for caption in page.image_captions],
            )
            for page in pages
        ]
        chunks = list(
            self.chunker.chunk_pages(
                normalized,
                start_page=start_page,
                batch_size=self.batch_size if paginated else None,
                file_id=target.file_id,
                file_name=target.file_name,
                user_id=target.user_id,
                class_id=target.class_id,
                folder_id=target.folder_id,
            )
        )
        if not chunks:
            LOGGER.info("Pages from %s of file %s produced no text", start_page, target.file_id)
            return 0

        vectors = self.embedder.embed_texts([chunk.content for chunk in chunks])
        if len(vectors) != len(chunks):
            raise RuntimeError(f"Embedding returned {len(vectors)} vectors for {len(chunks)} chunks")
        self.vector_store.upsert(
            [IndexedChunk(chunk=chunk, vector=vector) for chunk, vector in zip(chunks, vectors)]
        )
        return len(chunks)

    def finalize(self, target: FileTarget, *, page_count: int) -> None:
        self.records.finalize_file(
            target.file_id,
            url=self.storage.public_url(target.storage_path),
            page_count=page_count,
        )
        emit_ingest_event(
            "ingest.file.processed",
            file_id=target.file_id,
            file_name=target.file_name,
            pages=page_count,
        )
        try:
            self.previews.request(target.file_id)
        except Exception as error:
            LOGGER.warning("Could not request previews for file %s: %s", target.file_id, error)

    def close(self) -> None:
        """Release the dispatcher and preview requester, letting running batches finish."""

        for component in (self.dispatcher, self.previews):
            close = getattr(component, "close", None)
            if close is not None:
                close()

    def fail(self, target: FileTarget, error: BaseException) -> None:
        """Record ``error`` on the file and drop the chunks written so far."""

        emit_exception(module=__name__, error=error, file_id=target.file_id)
        try:
            self.records.mark_file_error(target.file_id, _error_message(error))
        except Exception as record_error:
            LOGGER.error("Could not mark file %s as failed: %s", target.file_id, record_error)
        try:
            removed = self.vector_store.delete_file_chunks(user_id=target.user_id, file_id=target.file_id)
        except Exception as cleanup_error:
            LOGGER.error("Could not remove partial chunks of file %s: %s", target.file_id, cleanup_error)
        else:
            if removed:
                LOGGER.info("Removed %s partial chunks of failed file %s", removed, target.file_id)


def _error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__


__all__ = ["BatchChainDriver", "BatchResult", "FileTarget"]
