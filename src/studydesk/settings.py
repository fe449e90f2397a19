"""Environment driven configuration for the ingestion and query services."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

LOGGER = logging.getLogger(__name__)


def _str_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _optional_from_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _float_from_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; using default %s", name, value, default)
        return default


def _flag_from_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


@dataclass(slots=True)
class Settings:
    """Runtime configuration resolved from environment variables."""

    database_url: str = "sqlite:///studydesk.db"
    storage_dir: str = "data"
    public_base_url: str = "http://localhost:8000/files"

    vector_store: str = "mock"
    chroma_persist_dir: str = "chroma_db"
    collection_name: str = "DocumentChunk"

    batch_size: int = 3
    chunk_size: int = 1000
    chunk_overlap: int = 100
    chunk_index_stride: int = 1000
    embedding_batch_size: int = 64

    retrieval_top_k: int = 10
    query_timeout_seconds: float = 60.0

    llm_base_url: str = "https://api.openai.com/v1"
    openai_api_key: Optional[str] = None
    llm_model: str = "gpt-4o"
    llm_max_tokens: int = 1000
    llm_temperature: float = 0.2
    llm_timeout_seconds: float = 120.0
    assistant_id: Optional[str] = None
    assistant_poll_attempts: int = 30
    assistant_poll_interval: float = 1.0

    vision_model: str = "gpt-4o-mini"
    caption_images: bool = True

    batch_dispatch: str = "thread"
    batch_endpoint_url: Optional[str] = None
    dispatch_workers: int = 4
    preview_endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_url=_str_from_env("DATABASE_URL", defaults.database_url),
            storage_dir=_str_from_env("STORAGE_DIR", defaults.storage_dir),
            public_base_url=_str_from_env("PUBLIC_BASE_URL", defaults.public_base_url).rstrip("/"),
            vector_store=_str_from_env("VECTOR_STORE", defaults.vector_store).lower(),
            chroma_persist_dir=_str_from_env("CHROMA_PERSIST_DIR", defaults.chroma_persist_dir),
            collection_name=_str_from_env("COLLECTION_NAME", defaults.collection_name),
            batch_size=_int_from_env("INGEST_BATCH_SIZE", defaults.batch_size),
            chunk_size=_int_from_env("CHUNK_SIZE", defaults.chunk_size),
            chunk_overlap=_int_from_env("CHUNK_OVERLAP", defaults.chunk_overlap),
            chunk_index_stride=_int_from_env("CHUNK_INDEX_STRIDE", defaults.chunk_index_stride),
            embedding_batch_size=_int_from_env("EMBEDDING_BATCH_SIZE", defaults.embedding_batch_size),
            retrieval_top_k=_int_from_env("RETRIEVAL_TOP_K", defaults.retrieval_top_k),
            query_timeout_seconds=_float_from_env("QUERY_TIMEOUT_SECONDS", defaults.query_timeout_seconds),
            llm_base_url=_str_from_env("LLM_BASE_URL", defaults.llm_base_url).rstrip("/"),
            openai_api_key=_optional_from_env("OPENAI_API_KEY"),
            llm_model=_str_from_env("LLM_MODEL", defaults.llm_model),
            llm_max_tokens=_int_from_env("LLM_MAX_TOKENS", defaults.llm_max_tokens),
            llm_temperature=_float_from_env("LLM_TEMPERATURE", defaults.llm_temperature),
            llm_timeout_seconds=_float_from_env("LLM_TIMEOUT_SECONDS", defaults.llm_timeout_seconds),
            assistant_id=_optional_from_env("ASSISTANT_ID"),
            assistant_poll_attempts=_int_from_env("ASSISTANT_POLL_ATTEMPTS", defaults.assistant_poll_attempts),
            assistant_poll_interval=_float_from_env("ASSISTANT_POLL_INTERVAL", defaults.assistant_poll_interval),
            vision_model=_str_from_env("VISION_MODEL", defaults.vision_model),
            caption_images=_flag_from_env("CAPTION_IMAGES", defaults.caption_images),
            batch_dispatch=_str_from_env("BATCH_DISPATCH", defaults.batch_dispatch).lower(),
            batch_endpoint_url=_optional_from_env("BATCH_ENDPOINT_URL"),
            dispatch_workers=_int_from_env("DISPATCH_WORKERS", defaults.dispatch_workers),
            preview_endpoint_url=_optional_from_env("PREVIEW_ENDPOINT_URL"),
        )


def heavy_dependencies_enabled() -> bool:
    """Return whether model-backed dependencies should be initialised."""

    return _flag_from_env("INSTALL_HEAVY", True)


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]


__all__ = ["Settings", "get_settings", "heavy_dependencies_enabled", "reset_settings_cache"]
