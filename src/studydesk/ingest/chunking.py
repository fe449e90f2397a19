"""Fixed-size window chunking and page-aware chunk tagging."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional

from studydesk.errors import ChunkIndexOverflowError

from .models import ChunkMetadata, DocumentChunk, PageContent

LOGGER = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 100


def chunk_text(text: str, size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[str]:
    """Split ``text`` into windows of ``size`` characters overlapping by ``overlap``.

    The last window may be shorter than ``size``. Once a window reaches the end
    of the text no further windows are produced, so the tail is never repeated.
    """

    if size <= 0:
        raise ValueError("size must be positive")
    if overlap < 0 or overlap >= size:
        raise ValueError("overlap must be in the range [0, size)")
    if not text:
        return []

    step = size - overlap
    chunks: List[str] = []
    start = 0
    text_length = len(text)
    while start < text_length:
        end = min(start + size, text_length)
        chunks.append(text[start:end])
        if end == text_length:
            break
        start += step
    return chunks


@dataclass(slots=True)
class ChunkingConfig:
    chunk_chars: int = DEFAULT_CHUNK_SIZE
    overlap_chars: int = DEFAULT_CHUNK_OVERLAP
    index_stride: int = 1000


class PageChunker:
    """Chunk the pages of one batch and assign batch-offset chunk indices.

    ``chunk_index = (start_page - 1) * index_stride + n`` where ``n`` counts
    chunks across the batch, so two batches of the same file never share an
    index as long as a batch stays below ``batch_size * index_stride`` chunks.
    Single-page documents pass ``batch_size=None`` and have no upper bound.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk_pages(
        self,
        pages: Iterable[PageContent],
        *,
        start_page: int,
        batch_size: Optional[int],
        file_id: str,
        file_name: str,
        user_id: str,
        class_id: str,
        folder_id: Optional[str],
    ) -> Iterator[DocumentChunk]:
        base_index = (start_page - 1) * self.config.index_stride
        limit = batch_size * self.config.index_stride if batch_size is not None else None
        local_index = 0
        for page in pages:
            page_text = page.combined_text()
            for piece in chunk_text(page_text, self.config.chunk_chars, self.config.overlap_chars):
                if limit is not None and local_index >= limit:
                    raise ChunkIndexOverflowError(file_id, start_page, limit)
                metadata = ChunkMetadata(
                    source_file_id=file_id,
                    source_file_name=file_name,
                    user_id=user_id,
                    class_id=class_id,
                    folder_id=folder_id,
                    page_number=page.page_number,
                    chunk_index=base_index + local_index,
                    content_type=page.content_type,
                )
                LOGGER.debug(
                    "Chunk %s page %s length %s",
                    metadata.chunk_index,
                    page.page_number,
                    len(piece),
                )
                yield DocumentChunk(content=piece, metadata=metadata)
                local_index += 1
