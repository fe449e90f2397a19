"""Text normalisation applied to extracted page text."""
from __future__ import annotations

import re
import unicodedata

_WHITESPACE_RE = re.compile(r"[ \t\f\v]+")
_MULTIPLE_NEWLINES_RE = re.compile(r"\n{3,}")
_TRAILING_SPACE_RE = re.compile(r" +\n")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0e-\x1f\x7f]")
_HYPHEN_BREAK_RE = re.compile(r"(\w)-\n(\w)")


def normalize_text(text: str) -> str:
    """Normalise Unicode form and whitespace of extracted PDF text."""

    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = _CONTROL_CHARS_RE.sub("", normalized)
    normalized = _HYPHEN_BREAK_RE.sub(r"\1\2", normalized)
    normalized = _WHITESPACE_RE.sub(" ", normalized)
    normalized = _TRAILING_SPACE_RE.sub("\n", normalized)
    normalized = _MULTIPLE_NEWLINES_RE.sub("\n\n", normalized)
    return normalized.strip()


def collapse_whitespace(text: str) -> str:
    """Collapse every whitespace run to a single space."""

    return " ".join(text.split())
