"""Extractors for supported document types."""
from __future__ import annotations

import io
import logging
import mimetypes
from typing import List, Optional, Protocol

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from studydesk.errors import ExtractionError

from .models import PageContent

LOGGER = logging.getLogger(__name__)


class ImageDescriber(Protocol):
    """Produces a natural-language caption for an image."""

    def describe(self, image: bytes, mime_type: str, *, context: str = "") -> str:
        ...


class PDFExtractor:
    """Extract page text and embedded image captions from PDF documents.

    Only the requested page window is read, so a batch never pays for pages
    outside its range.
    """

    def __init__(self, captioner: Optional[ImageDescriber] = None, *, max_images_per_page: int = 5) -> None:
        self.captioner = captioner
        self.max_images_per_page = max_images_per_page

    def page_count(self, data: bytes) -> int:
        return len(self._open(data).pages)

    def extract_pages(self, data: bytes, start_page: int, end_page: int) -> List[PageContent]:
        """Return content for the inclusive 1-based range ``[start_page, end_page]``."""

        reader = self._open(data)
        total = len(reader.pages)
        if start_page < 1 or end_page > total or start_page > end_page:
            raise ExtractionError(
                f"Page window {start_page}-{end_page} is outside the document (1-{total})"
            )

        pages: List[PageContent] = []
        for page_number in range(start_page, end_page + 1):
            page = reader.pages[page_number - 1]
            try:
                text = page.extract_text() or ""
            except Exception as error:
                raise ExtractionError(f"Failed to extract text from page {page_number}: {error}") from error
            captions = self._caption_images(page, page_number)
            pages.append(PageContent(page_number=page_number, text=text, image_captions=captions))
        return pages

    def _open(self, data: bytes) -> PdfReader:
        try:
            return PdfReader(io.BytesIO(data))
        except (PdfReadError, ValueError, OSError) as error:
            raise ExtractionError(f"Unable to open PDF: {error}") from error

    def _caption_images(self, page, page_number: int) -> List[str]:
        if self.captioner is None:
            return []
        try:
            images = list(page.images)
        except Exception as error:  # PyPDF2 raises a variety of decoder errors here
            LOGGER.warning("Could not read images on page %s: %s", page_number, error)
            return []

        captions: List[str] = []
        for image in images[: self.max_images_per_page]:
            mime_type = mimetypes.guess_type(image.name)[0] or "image/png"
            caption = self.captioner.describe(
                image.data,
                mime_type,
                context=f"Image {len(captions) + 1} on page {page_number}",
            )
            if caption.strip():
                captions.append(caption.strip())
        if len(images) > self.max_images_per_page:
            LOGGER.info(
                "Page %s has %s images; captioned the first %s",
                page_number,
                len(images),
                self.max_images_per_page,
            )
        return captions


class DocxExtractor:
    """Extract text from Microsoft Word documents as a single page."""

    def extract(self, data: bytes) -> List[PageContent]:
        from docx import Document as DocxDocument

        try:
            document = DocxDocument(io.BytesIO(data))
        except Exception as error:
            raise ExtractionError(f"python-docx failed to parse DOCX content: {error}") from error

        text_parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text]
        return [PageContent(page_number=1, text="\n\n".join(text_parts))]


class TextExtractor:
    """Extract text from plaintext and markdown documents."""

    def extract(self, data: bytes, encoding: str = "utf-8") -> List[PageContent]:
        try:
            text = data.decode(encoding)
        except UnicodeDecodeError:
            LOGGER.info("Document is not valid %s; decoding as latin-1", encoding)
            text = data.decode("latin-1")
        return [PageContent(page_number=1, text=text)]


class ImageExtractor:
    """Turn a standalone image upload into a single captioned page."""

    def __init__(self, captioner: Optional[ImageDescriber] = None) -> None:
        self.captioner = captioner

    def extract(self, data: bytes, mime_type: str) -> List[PageContent]:
        if self.captioner is None:
            LOGGER.warning("No image captioner configured; image upload yields no text")
            return [PageContent(page_number=1, text="")]
        caption = self.captioner.describe(data, mime_type, context="Uploaded image")
        return [PageContent(page_number=1, text="", image_captions=[caption] if caption.strip() else [])]
