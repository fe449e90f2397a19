"""Wire the ingestion components together from settings."""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from studydesk.embeddings import EmbeddingModel, get_embedding_model
from studydesk.llm import VisionCaptioner
from studydesk.records import RecordStore, get_record_store
from studydesk.settings import Settings, get_settings
from studydesk.storage import LocalObjectStorage, get_object_storage
from studydesk.vectorstore import ChunkVectorStore, get_vector_store

from .chunking import ChunkingConfig, PageChunker
from .coordinator import IngestionCoordinator
from .dispatch import BatchDispatcher, build_dispatcher
from .driver import BatchChainDriver
from .extractors import PDFExtractor
from .previews import build_preview_requester


def build_coordinator(
    settings: Settings,
    *,
    records: RecordStore,
    storage: LocalObjectStorage,
    vector_store: ChunkVectorStore,
    embedder: EmbeddingModel,
    dispatcher: Optional[BatchDispatcher] = None,
) -> IngestionCoordinator:
    captioner = VisionCaptioner.from_settings(settings)
    chunker = PageChunker(
        ChunkingConfig(
            chunk_chars=settings.chunk_size,
            overlap_chars=settings.chunk_overlap,
            index_stride=settings.chunk_index_stride,
        )
    )
    driver = BatchChainDriver(
        records=records,
        storage=storage,
        vector_store=vector_store,
        embedder=embedder,
        dispatcher=dispatcher or build_dispatcher(settings),
        previews=build_preview_requester(settings, records),
        pdf_extractor=PDFExtractor(captioner),
        chunker=chunker,
        batch_size=settings.batch_size,
    )
    return IngestionCoordinator(driver, captioner=captioner)


@lru_cache()
def get_ingestion_coordinator() -> IngestionCoordinator:
    """Return the process-wide coordinator built from the cached singletons."""

    return build_coordinator(
        get_settings(),
        records=get_record_store(),
        storage=get_object_storage(),
        vector_store=get_vector_store(),
        embedder=get_embedding_model(),
    )


def close_ingestion_coordinator() -> None:
    """Close the cached coordinator, if one was built, and forget it."""

    if get_ingestion_coordinator.cache_info().currsize:  # type: ignore[attr-defined]
        get_ingestion_coordinator().close()
    reset_ingestion_coordinator_cache()


def reset_ingestion_coordinator_cache() -> None:
    """Clear the cached coordinator (primarily for testing)."""

    get_ingestion_coordinator.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "build_coordinator",
    "close_ingestion_coordinator",
    "get_ingestion_coordinator",
    "reset_ingestion_coordinator_cache",
]
