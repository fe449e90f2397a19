"""Merge per-question answers into one response with a single citation numbering.

Each sub-answer cites its sources with local numbers starting at 1. The
reconciler tokenizes every answer into literal text and citation markers,
maps each local number to a global one (reusing the number of a source that
was already cited by an earlier sub-answer) and re-renders the tokens in one
pass, so a rewritten number is never rewritten again.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from studydesk.ingest.normalization import collapse_whitespace

from .engine import Source, SubAnswer

CITATION_KEY_PREFIX_CHARS = 100

MARKER_RE = re.compile(
    r"\[\s*sources?\s*(\d+(?:\s*(?:,|&|and)\s*\d+)*)\s*\]",
    re.IGNORECASE,
)
NUMBER_RE = re.compile(r"\d+")

SourceKey = Tuple[str, int, str]


@dataclass(frozen=True, slots=True)
class CitationMarker:
    """One marker; grouped markers such as ``[Sources 1 and 3]`` keep every number."""

    numbers: Tuple[int, ...]


Token = Union[str, CitationMarker]


@dataclass(slots=True)
class ReconciledSource:
    number: int
    file_id: str
    file_name: str
    file_type: Optional[str]
    file_url: Optional[str]
    page_number: int
    content: str

    @classmethod
    def from_source(cls, number: int, source: Source) -> "ReconciledSource":
        return cls(
            number=number,
            file_id=source.file_id,
            file_name=source.file_name,
            file_type=source.file_type,
            file_url=source.file_url,
            page_number=source.page_number,
            content=source.content,
        )


@dataclass(slots=True)
class ReconciledResponse:
    text: str
    sources: List[ReconciledSource]


def source_key(source: Source) -> SourceKey:
    """Identity of a physical source: file, page and the start of its text."""

    prefix = collapse_whitespace(source.content)[:CITATION_KEY_PREFIX_CHARS]
    return source.file_id, source.page_number, prefix


def tokenize(text: str) -> List[Token]:
    tokens: List[Token] = []
    position = 0
    for match in MARKER_RE.finditer(text):
        if match.start() > position:
            tokens.append(text[position : match.start()])
        numbers = tuple(int(value) for value in NUMBER_RE.findall(match.group(1)))
        tokens.append(CitationMarker(numbers))
        position = match.end()
    if position < len(text):
        tokens.append(text[position:])
    return tokens


def render(tokens: Sequence[Token], numbers: Dict[int, int]) -> str:
    """Render tokens as ``[Source N]`` markers, dropping numbers without a mapping."""

    parts: List[str] = []
    for token in tokens:
        if isinstance(token, CitationMarker):
            mapped = [numbers[number] for number in token.numbers if number in numbers]
            parts.append(", ".join(f"[Source {number}]" for number in dict.fromkeys(mapped)))
        else:
            parts.append(token)
    return "".join(parts)


class CitationReconciler:
    """Accumulates the global numbering across the sub-answers of one response."""

    def __init__(self) -> None:
        self._numbers: Dict[SourceKey, int] = {}
        self._sources: List[ReconciledSource] = []

    def _global_number(self, source: Source) -> int:
        key = source_key(source)
        number = self._numbers.get(key)
        if number is None:
            number = len(self._sources) + 1
            self._numbers[key] = number
            self._sources.append(ReconciledSource.from_source(number, source))
        return number

    def rewrite(self, answer: SubAnswer) -> str:
        local_sources = {source.number: source for source in answer.sources}
        tokens = tokenize(answer.text)
        local_to_global: Dict[int, int] = {}
        for token in tokens:
            if not isinstance(token, CitationMarker):
                continue
            for number in token.numbers:
                source = local_sources.get(number)
                if source is not None and number not in local_to_global:
                    local_to_global[number] = self._global_number(source)
        return render(tokens, local_to_global)

    @property
    def sources(self) -> List[ReconciledSource]:
        return sorted(self._sources, key=lambda source: source.number)


def reconcile(sub_answers: Sequence[SubAnswer]) -> ReconciledResponse:
    """Merge ``sub_answers`` (in question order) into one response."""

    reconciler = CitationReconciler()
    parts: List[str] = []
    for answer in sub_answers:
        text = reconciler.rewrite(answer).strip()
        if len(sub_answers) > 1:
            parts.append(f"**Q:** {answer.question}\n\n{text}")
        else:
            parts.append(text)
    return ReconciledResponse(text="\n\n".join(parts), sources=reconciler.sources)


__all__ = [
    "CITATION_KEY_PREFIX_CHARS",
    "CitationMarker",
    "CitationReconciler",
    "ReconciledResponse",
    "ReconciledSource",
    "reconcile",
    "render",
    "source_key",
    "tokenize",
]
