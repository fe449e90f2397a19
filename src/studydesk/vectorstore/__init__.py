"""Vector index writer and filtered search over pluggable backends."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Union

from studydesk.ingest.models import IndexedChunk
from studydesk.settings import get_settings
from studydesk.telemetry import emit_vectorstore_event

from .errors import VectorStoreUnavailableError
from .mock_store import MockQueryResult, MockVectorStore

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .chroma_store import ChromaStore

LOGGER = logging.getLogger(__name__)

DEFAULT_DISTANCE_METRIC = "cosine"
TEXT_PROPERTY = "text_chunk"


@dataclass(slots=True)
class ChunkSearchResult:
    """A retrieved chunk with its properties and distance to the query."""

    id: str
    content: str
    distance: float
    metadata: Dict[str, Any]

    @property
    def file_id(self) -> str:
        return str(self.metadata.get("source_file_id", ""))

    @property
    def page_number(self) -> int:
        return int(self.metadata.get("page_number", 0) or 0)


def build_where(**conditions: Optional[str]) -> Optional[Dict[str, Any]]:
    """Build a Chroma ``where`` filter from equality conditions, skipping ``None``."""

    clauses = [{key: value} for key, value in conditions.items() if value is not None]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def chunk_id(file_id: str, chunk_index: int) -> str:
    """Deterministic record id, so a re-processed batch overwrites its chunks."""

    return uuid.uuid5(uuid.NAMESPACE_URL, f"{file_id}:{chunk_index}").hex


class ChunkVectorStore:
    """Write and search document chunks in one logical collection."""

    def __init__(
        self,
        backend: Union[MockVectorStore, "ChromaStore"],
        *,
        collection_name: str = "DocumentChunk",
        distance_metric: str = DEFAULT_DISTANCE_METRIC,
    ) -> None:
        self._store = backend
        self.collection_name = collection_name
        self.backend_name = type(backend).__name__
        try:
            self._store.create_collection(
                self.collection_name,
                metadata={"hnsw:space": distance_metric},
            )
        except Exception as exc:
            raise VectorStoreUnavailableError(
                "Failed to initialise vector store collection",
                cause=exc,
            ) from exc

    def upsert(self, chunks: Sequence[IndexedChunk]) -> List[str]:
        """Write all chunks in a single batched call."""

        if not chunks:
            return []

        ids: List[str] = []
        documents: List[str] = []
        embeddings: List[List[float]] = []
        metadatas: List[Dict[str, Any]] = []
        for item in chunks:
            meta = item.chunk.metadata
            ids.append(chunk_id(meta.source_file_id, meta.chunk_index))
            documents.append(item.chunk.content)
            embeddings.append(list(item.vector))
            properties = meta.to_properties()
            properties[TEXT_PROPERTY] = item.chunk.content
            metadatas.append(properties)

        file_id = chunks[0].chunk.metadata.source_file_id
        try:
            self._store.add(
                self.collection_name,
                ids=ids,
                embeddings=embeddings,
                documents=documents,
                metadatas=metadatas,
            )
        except Exception as exc:
            emit_vectorstore_event(
                "vectorstore.upsert",
                collection=self.collection_name,
                count=len(ids),
                backend=self.backend_name,
                file_id=file_id,
                error=exc,
            )
            raise VectorStoreUnavailableError("Failed to upsert chunks into vector store", cause=exc) from exc

        emit_vectorstore_event(
            "vectorstore.upsert",
            collection=self.collection_name,
            count=len(ids),
            backend=self.backend_name,
            file_id=file_id,
        )
        return ids

    def query(
        self,
        vector: Sequence[float],
        *,
        user_id: str,
        class_id: Optional[str] = None,
        k: int = 10,
    ) -> List[ChunkSearchResult]:
        """Nearest-neighbour search restricted to one owner and, optionally, one class."""

        if k <= 0:
            return []
        where = build_where(user_id=user_id, class_id=class_id)
        try:
            neighbours = self._store.query(self.collection_name, vector, k=k, where=where)
        except Exception as exc:
            raise VectorStoreUnavailableError("Vector store query failed", cause=exc) from exc
        return [_to_result(neighbour) for neighbour in neighbours]

    def delete_file_chunks(self, *, user_id: str, file_id: str) -> int:
        return self._delete(build_where(user_id=user_id, source_file_id=file_id), file_id=file_id)

    def delete_class_chunks(self, *, user_id: str, class_id: str) -> int:
        return self._delete(build_where(user_id=user_id, class_id=class_id))

    def _delete(self, where: Optional[Dict[str, Any]], *, file_id: str | None = None) -> int:
        try:
            removed = self._store.delete(self.collection_name, where=where or {})
        except Exception as exc:
            raise VectorStoreUnavailableError("Vector store delete failed", cause=exc) from exc
        emit_vectorstore_event(
            "vectorstore.delete",
            collection=self.collection_name,
            count=removed,
            backend=self.backend_name,
            file_id=file_id,
        )
        return removed


def _to_result(neighbour: Union[MockQueryResult, Mapping[str, Any]]) -> ChunkSearchResult:
    if isinstance(neighbour, MockQueryResult):
        return ChunkSearchResult(
            id=neighbour.id,
            content=neighbour.document,
            distance=float(neighbour.distance),
            metadata=dict(neighbour.metadata),
        )
    metadata = dict(neighbour.get("metadata", {}))
    return ChunkSearchResult(
        id=str(neighbour.get("id", "")),
        content=str(neighbour.get("document") or metadata.get(TEXT_PROPERTY, "")),
        distance=float(neighbour.get("distance", 0.0)),
        metadata=metadata,
    )


@lru_cache()
def get_vector_store() -> ChunkVectorStore:
    """Return a lazily initialised vector store based on ``VECTOR_STORE``."""

    settings = get_settings()
    backend = settings.vector_store

    if backend == "mock":
        return ChunkVectorStore(MockVectorStore(), collection_name=settings.collection_name)

    if backend == "chroma":
        from .chroma_store import ChromaStore

        store = ChromaStore(settings.chroma_persist_dir)
        LOGGER.info("Using Chroma vector store at %s", settings.chroma_persist_dir)
        return ChunkVectorStore(store, collection_name=settings.collection_name)

    raise ValueError(f"Unsupported VECTOR_STORE backend: {backend!r}")


def reset_vector_store_cache() -> None:
    """Clear the cached vector store (primarily for testing)."""

    get_vector_store.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "ChunkSearchResult",
    "ChunkVectorStore",
    "MockVectorStore",
    "VectorStoreUnavailableError",
    "build_where",
    "chunk_id",
    "get_vector_store",
    "reset_vector_store_cache",
]
