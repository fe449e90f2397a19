"""Object storage access for uploaded documents."""
from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Final
from urllib.parse import quote
from uuid import uuid4

from studydesk.errors import ExtractionError
from studydesk.settings import get_settings

_FILENAME_SAFE_CHARS_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")


def _sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename preserving the extension when possible."""
    sanitized = Path(filename or "upload").name
    sanitized = _FILENAME_SAFE_CHARS_RE.sub("_", sanitized)
    return sanitized.strip("._") or "upload"


def build_storage_path(user_id: str, filename: str) -> str:
    """Return a unique ``<user>/<name>-<hex>.<ext>`` object key for an upload."""

    sanitized = _sanitize_filename(filename)
    base = Path(sanitized).stem or "upload"
    suffix = Path(sanitized).suffix
    return f"{_sanitize_filename(user_id)}/{base}-{uuid4().hex}{suffix}"


class LocalObjectStorage:
    """Stores objects under a root directory and serves them from a base URL."""

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")

    def _resolve(self, storage_path: str) -> Path:
        candidate = (self.root / storage_path).resolve()
        if self.root not in candidate.parents:
            raise ExtractionError(f"Storage path escapes the storage root: {storage_path}")
        return candidate

    def read_bytes(self, storage_path: str) -> bytes:
        path = self._resolve(storage_path)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise ExtractionError(f"Stored object not found: {storage_path}") from exc

    def write_bytes(self, storage_path: str, data: bytes) -> Path:
        path = self._resolve(storage_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def public_url(self, storage_path: str) -> str:
        return f"{self.public_base_url}/{quote(storage_path)}"


@lru_cache()
def get_object_storage() -> LocalObjectStorage:
    settings = get_settings()
    return LocalObjectStorage(settings.storage_dir, settings.public_base_url)


def reset_object_storage_cache() -> None:
    get_object_storage.cache_clear()  # type: ignore[attr-defined]
