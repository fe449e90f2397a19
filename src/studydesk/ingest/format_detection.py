"""Utilities for detecting the format of uploaded documents."""
from __future__ import annotations

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Optional

from studydesk.errors import UnsupportedDocumentError


class DocumentFormat(str, Enum):
    """Supported document formats."""

    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    MARKDOWN = "md"
    IMAGE = "image"

    @property
    def is_paginated(self) -> bool:
        return self is DocumentFormat.PDF


class DocumentFormatDetector:
    """Detects the document format based on MIME type and file name."""

    _MIME_MAP = {
        "application/pdf": DocumentFormat.PDF,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document": DocumentFormat.DOCX,
        "text/plain": DocumentFormat.TXT,
        "text/markdown": DocumentFormat.MARKDOWN,
        "text/x-markdown": DocumentFormat.MARKDOWN,
    }
    _SUFFIX_MAP = {
        "pdf": DocumentFormat.PDF,
        "docx": DocumentFormat.DOCX,
        "txt": DocumentFormat.TXT,
        "md": DocumentFormat.MARKDOWN,
        "markdown": DocumentFormat.MARKDOWN,
        "png": DocumentFormat.IMAGE,
        "jpg": DocumentFormat.IMAGE,
        "jpeg": DocumentFormat.IMAGE,
        "gif": DocumentFormat.IMAGE,
        "webp": DocumentFormat.IMAGE,
    }

    @classmethod
    def detect(cls, file_name: str, mime_type: Optional[str] = None) -> DocumentFormat:
        """Return the detected document format.

        An explicit MIME type wins; otherwise ``mimetypes.guess_type`` and the
        file suffix are consulted in that order.
        """

        for candidate in (mime_type, mimetypes.guess_type(file_name)[0]):
            detected = cls._from_mime(candidate)
            if detected is not None:
                return detected

        suffix = Path(file_name).suffix.lower().lstrip(".")
        if suffix in cls._SUFFIX_MAP:
            return cls._SUFFIX_MAP[suffix]
        raise UnsupportedDocumentError(
            f"Unsupported file format: {file_name} ({mime_type or 'unknown type'})"
        )

    @classmethod
    def _from_mime(cls, mime_type: Optional[str]) -> Optional[DocumentFormat]:
        if not mime_type:
            return None
        base_type = mime_type.split(";", 1)[0].strip().lower()
        if base_type in cls._MIME_MAP:
            return cls._MIME_MAP[base_type]
        if base_type.startswith("image/"):
            return DocumentFormat.IMAGE
        return None
