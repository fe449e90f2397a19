"""Data models used by the ingestion pipeline."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional


@dataclass(slots=True)
class PageContent:
    """Text and image captions extracted from one page of a document."""

    page_number: int
    text: str
    image_captions: List[str] = field(default_factory=list)

    @property
    def content_type(self) -> str:
        if self.image_captions:
            return "text+image" if self.text.strip() else "image"
        return "text"

    def combined_text(self) -> str:
        parts = [self.text.strip()] if self.text.strip() else []
        for index, caption in enumerate(self.image_captions, start=1):
            parts.append(f"[Image {index} on page {self.page_number}]: {caption.strip()}")
        return "\n\n".join(parts)


@dataclass(slots=True)
class ChunkMetadata:
    """Metadata stored with every indexed chunk."""

    source_file_id: str
    source_file_name: str
    user_id: str
    class_id: str
    folder_id: Optional[str]
    page_number: int
    chunk_index: int
    content_type: str

    def to_properties(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DocumentChunk:
    """Container that pairs chunk text with associated metadata."""

    content: str
    metadata: ChunkMetadata


@dataclass(slots=True)
class IndexedChunk:
    """A chunk together with the vector computed for it."""

    chunk: DocumentChunk
    vector: List[float]


@dataclass(slots=True)
class IngestionJobPayload:
    """Queue entry produced when a user uploads a file."""

    id: str
    user_id: str
    class_id: str
    storage_path: str
    original_name: str
    mime_type: str
    size: int
    folder_id: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "IngestionJobPayload":
        return cls(
            id=str(payload["id"]),
            user_id=str(payload["user_id"]),
            class_id=str(payload["class_id"]),
            storage_path=str(payload["storage_path"]),
            original_name=str(payload["original_name"]),
            mime_type=str(payload["mime_type"]),
            size=int(payload.get("size") or 0),
            folder_id=_optional_str(payload.get("folder_id")),
        )


@dataclass(slots=True)
class BatchCursor:
    """Resumable position in a paginated document, passed between batches."""

    file_id: str
    storage_path: str
    user_id: str
    class_id: str
    original_name: str
    current_page: int
    total_pages: int
    folder_id: Optional[str] = None
    mime_type: str = "application/pdf"
    size: int = 0

    def window(self, batch_size: int) -> tuple[int, int]:
        """Return the inclusive page range this cursor covers."""

        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        end = min(self.current_page + batch_size - 1, self.total_pages)
        return self.current_page, end

    def advance(self, batch_size: int) -> Optional["BatchCursor"]:
        """Return the successor cursor, or ``None`` when this is the last batch."""

        _, end = self.window(batch_size)
        if end >= self.total_pages:
            return None
        return replace(self, current_page=end + 1)

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "BatchCursor":
        current_page = int(payload["current_page"])
        total_pages = int(payload["total_pages"])
        if current_page < 1 or current_page > total_pages:
            raise ValueError(
                f"current_page {current_page} is outside the document (1..{total_pages})"
            )
        return cls(
            file_id=str(payload["file_id"]),
            storage_path=str(payload["storage_path"]),
            user_id=str(payload["user_id"]),
            class_id=str(payload["class_id"]),
            original_name=str(payload["original_name"]),
            current_page=current_page,
            total_pages=total_pages,
            folder_id=_optional_str(payload.get("folder_id")),
            mime_type=str(payload.get("mime_type") or "application/pdf"),
            size=int(payload.get("size") or 0),
        )


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
