"""Embedding client backed by Sentence Transformers."""
from __future__ import annotations

import hashlib
import logging
import os
import random
import time
from functools import lru_cache
from typing import List, Sequence

from studydesk.settings import get_settings, heavy_dependencies_enabled
from studydesk.telemetry import emit_embeddings_event

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
FALLBACK_DIMENSION = 384
FALLBACK_MODEL_NAME = "deterministic-fallback"


class EmbeddingModel:
    """Convert chunk and query strings into fixed-length vectors.

    When heavy dependencies are disabled (``INSTALL_HEAVY=false``) a
    deterministic hash-seeded vector is produced instead, so identical text
    always maps to the identical vector without downloading a model.
    """

    def __init__(
        self,
        model_name_or_path: str | None = None,
        *,
        device: str | None = None,
        batch_size: int | None = None,
        use_model: bool | None = None,
    ) -> None:
        self._model_name = model_name_or_path or os.getenv("EMBEDDING_MODEL_PATH", DEFAULT_MODEL_NAME)
        self._batch_size = max(1, batch_size or get_settings().embedding_batch_size)
        self._dimension = FALLBACK_DIMENSION
        self._model = None

        if use_model is None:
            use_model = heavy_dependencies_enabled()
        if not use_model:
            LOGGER.info("INSTALL_HEAVY is disabled; using deterministic fallback embeddings.")
            self._model_name = FALLBACK_MODEL_NAME
            return

        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(self._model_name, device=device or os.getenv("EMBEDDING_DEVICE"))
        self._dimension = int(self._model.get_sentence_embedding_dimension())

    def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed ``texts`` in sub-batches; any failure fails the whole call."""

        if not texts:
            return []
        started = time.perf_counter()
        vectors: List[List[float]] = []
        try:
            for offset in range(0, len(texts), self._batch_size):
                vectors.extend(self._embed_batch(texts[offset : offset + self._batch_size]))
        except Exception as error:
            emit_embeddings_event(
                model=self._model_name,
                count=len(texts),
                duration_ms=(time.perf_counter() - started) * 1000.0,
                errors=[str(error)],
            )
            raise

        emit_embeddings_event(
            model=self._model_name,
            count=len(texts),
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return vectors

    def embed_query(self, text: str) -> List[float]:
        if not text.strip():
            raise ValueError("Cannot embed an empty query")
        return self.embed_texts([text])[0]

    def _embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if self._model is None:
            return [self._deterministic_embedding(str(text)) for text in texts]
        embeddings = self._model.encode(
            list(texts),
            convert_to_numpy=True,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return embeddings.tolist()

    def _deterministic_embedding(self, text: str) -> List[float]:
        seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest(), "big")
        rng = random.Random(seed)
        return [rng.uniform(-1.0, 1.0) for _ in range(self._dimension)]

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def dimension(self) -> int:
        return int(self._dimension)


@lru_cache()
def get_embedding_model() -> EmbeddingModel:
    """Return a cached embedding model instance."""

    return EmbeddingModel()


def reset_embedding_model_cache() -> None:
    """Clear the cached embedding model instance (primarily for testing)."""

    get_embedding_model.cache_clear()  # type: ignore[attr-defined]
