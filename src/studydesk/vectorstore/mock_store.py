"""In-memory vector store used by default and in tests."""
from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class MockQueryResult:
    """Container for similarity search results."""

    id: str
    document: str
    metadata: dict
    distance: float


@dataclass(slots=True)
class _MockStoredItem:
    id: str
    embedding: List[float]
    document: str
    metadata: dict


def matches_where(metadata: Mapping[str, Any], where: Optional[Mapping[str, Any]]) -> bool:
    """Evaluate the subset of the Chroma ``where`` grammar the service emits."""

    if not where:
        return True
    for key, condition in where.items():
        if key == "$and":
            if not all(matches_where(metadata, clause) for clause in condition):
                return False
            continue
        if key == "$or":
            if not any(matches_where(metadata, clause) for clause in condition):
                return False
            continue
        if isinstance(condition, Mapping):
            if "$eq" in condition and metadata.get(key) != condition["$eq"]:
                return False
            if "$ne" in condition and metadata.get(key) == condition["$ne"]:
                return False
            if "$in" in condition and metadata.get(key) not in condition["$in"]:
                return False
            continue
        if metadata.get(key) != condition:
            return False
    return True


class MockVectorStore:
    """A minimal thread-safe in-memory vector store with Chroma-like methods."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, _MockStoredItem]] = {}
        self._lock = threading.Lock()

    def create_collection(self, name: str, *, metadata: Optional[Dict[str, object]] = None) -> None:
        with self._lock:
            self._collections.setdefault(name, {})

    def add(
        self,
        name: str,
        *,
        ids: Iterable[str],
        embeddings: Iterable[Sequence[float]],
        documents: Iterable[str],
        metadatas: Iterable[dict | None] | None = None,
    ) -> None:
        """Insert or replace documents in a collection."""

        id_list = list(ids)
        embedding_list = [list(map(float, embedding)) for embedding in embeddings]
        document_list = list(documents)
        metadata_list = list(metadatas) if metadatas is not None else [None] * len(id_list)

        if not (len(id_list) == len(embedding_list) == len(document_list) == len(metadata_list)):
            raise ValueError("All inputs must be of the same length")

        with self._lock:
            collection = self._require(name)
            for idx, embedding, document, metadata in zip(
                id_list, embedding_list, document_list, metadata_list
            ):
                collection[idx] = _MockStoredItem(
                    id=idx,
                    embedding=embedding,
                    document=document,
                    metadata=dict(metadata or {}),
                )

    def query(
        self,
        name: str,
        query_embedding: Sequence[float],
        k: int = 10,
        where: Optional[Mapping[str, Any]] = None,
    ) -> List[MockQueryResult]:
        """Return the *k* closest matching items by cosine distance."""

        if k <= 0:
            return []
        with self._lock:
            candidates = [
                item for item in self._require(name).values() if matches_where(item.metadata, where)
            ]

        scored = sorted(
            ((_cosine_distance(query_embedding, item.embedding), item) for item in candidates),
            key=lambda pair: pair[0],
        )
        return [
            MockQueryResult(
                id=item.id,
                document=item.document,
                metadata=dict(item.metadata),
                distance=distance,
            )
            for distance, item in scored[:k]
        ]

    def delete(self, name: str, *, where: Mapping[str, Any]) -> int:
        with self._lock:
            collection = self._require(name)
            doomed = [key for key, item in collection.items() if matches_where(item.metadata, where)]
            for key in doomed:
                del collection[key]
        return len(doomed)

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._require(name))

    def all_metadata(self, name: str) -> List[dict]:
        with self._lock:
            return [dict(item.metadata) for item in self._require(name).values()]

    def _require(self, name: str) -> Dict[str, _MockStoredItem]:
        if name not in self._collections:
            raise KeyError(f"Collection '{name}' does not exist")
        return self._collections[name]


def _cosine_distance(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        raise ValueError("Vectors must share the same dimension")
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 1.0
    return 1.0 - dot / norm
