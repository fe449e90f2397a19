"""Retrieval+synthesis for one question: search the owner's chunks, answer with citations."""
from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from studydesk.embeddings import EmbeddingModel
from studydesk.llm import Generator
from studydesk.records import FileRecord, RecordStore
from studydesk.telemetry import emit_inference_request, emit_inference_result, emit_retriever_event
from studydesk.vectorstore import ChunkSearchResult, ChunkVectorStore

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

NO_INFORMATION_ANSWER = (
    "I couldn't find any information about this in your uploaded documents."
)

SYSTEM_PROMPT = (
    "You are an expert academic assistant. Answer the user's question based only on the "
    "provided sources. Cite every fact with the source it comes from using the format "
    "[Source N], for example [Source 1] or [Source 2]. Use exactly one citation per fact and "
    "never combine several facts under a single citation. Only cite source numbers that are "
    "listed below. If the provided sources are not sufficient to answer the question, say so. "
    "Be concise and helpful."
)


@dataclass(slots=True)
class Source:
    """A chunk shown to the model under its local citation number."""

    number: int
    file_id: str
    file_name: str
    file_type: Optional[str]
    file_url: Optional[str]
    page_number: int
    content: str


@dataclass(slots=True)
class SubAnswer:
    question: str
    text: str
    sources: List[Source] = field(default_factory=list)


@dataclass(slots=True)
class SearchHit:
    file_id: str
    file_name: str
    folder_id: Optional[str]
    class_id: Optional[str]
    page_number: int
    snippet: str
    distance: float


def build_prompt(question: str, sources: Sequence[Source]) -> Tuple[str, str]:
    """Return the system and user prompt for ``question`` grounded on ``sources``."""

    lines = [f'User Question: "{question}"', "", "Sources:"]
    for source in sources:
        lines.append(
            f'[Source {source.number}] From page {source.page_number} of "{source.file_name}": '
            f'"{source.content}"'
        )
    return SYSTEM_PROMPT, "\n".join(lines)


class RetrievalEngine:
    """Answers a single question from the requesting user's indexed chunks.

    Embedding and search calls block, so :meth:`answer` runs them on a bounded
    pool owned by the engine. Cancelling :meth:`answer` stops the await only:
    a search already running on the pool finishes and its result is discarded.
    :meth:`close` drops queued searches and releases the pool.
    """

    def __init__(
        self,
        *,
        embedder: EmbeddingModel,
        vector_store: ChunkVectorStore,
        records: RecordStore,
        top_k: int = 10,
        snippet_chars: int = 300,
        max_workers: int = 4,
    ) -> None:
        self.embedder = embedder
        self.vector_store = vector_store
        self.records = records
        self.top_k = top_k
        self.snippet_chars = snippet_chars
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="retrieval")

    async def _run_blocking(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: func(*args, **kwargs))

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def retrieve(
        self,
        question: str,
        *,
        user_id: str,
        class_id: Optional[str] = None,
        k: Optional[int] = None,
        req_id: Optional[str] = None,
    ) -> List[ChunkSearchResult]:
        top_k = self.top_k if k is None else k
        started = time.perf_counter()
        vector = self.embedder.embed_query(question)
        hits = self.vector_store.query(vector, user_id=user_id, class_id=class_id, k=top_k)
        emit_retriever_event(
            req_id=req_id,
            query=question,
            top_k=top_k,
            results=[
                {"id": hit.id, "file_id": hit.file_id, "page": hit.page_number, "distance": round(hit.distance, 4)}
                for hit in hits
            ],
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        return hits

    def resolve_sources(self, hits: Sequence[ChunkSearchResult]) -> List[Source]:
        """Number hits 1..k in retrieval order, skipping chunks whose file record is gone."""

        files: Dict[str, FileRecord] = self.records.get_files({hit.file_id for hit in hits})
        sources: List[Source] = []
        for hit in hits:
            record = files.get(hit.file_id)
            if record is None:
                LOGGER.warning("Skipping chunk %s: file %s has no record", hit.id, hit.file_id)
                continue
            sources.append(
                Source(
                    number=len(sources) + 1,
                    file_id=record.id,
                    file_name=record.name,
                    file_type=record.mime_type,
                    file_url=record.url,
                    page_number=hit.page_number,
                    content=hit.content,
                )
            )
        return sources

    async def answer(
        self,
        question: str,
        *,
        user_id: str,
        generator: Generator,
        class_id: Optional[str] = None,
        req_id: Optional[str] = None,
    ) -> SubAnswer:
        hits = await self._run_blocking(
            self.retrieve, question, user_id=user_id, class_id=class_id, req_id=req_id
        )
        if not hits:
            return SubAnswer(question=question, text=NO_INFORMATION_ANSWER)

        sources = await self._run_blocking(self.resolve_sources, hits)
        if not sources:
            return SubAnswer(question=question, text=NO_INFORMATION_ANSWER)

        system_prompt, user_prompt = build_prompt(question, sources)
        emit_inference_request(
            req_id=req_id,
            generator=generator.name,
            model=generator.model_name,
            prompt_len=len(user_prompt),
            max_tokens=None,
            sources=[f"{source.file_id}:{source.page_number}" for source in sources],
        )
        started = time.perf_counter()
        try:
            text = await generator.generate(system_prompt=system_prompt, user_prompt=user_prompt)
        except Exception as error:
            emit_inference_result(
                req_id=req_id,
                generator=generator.name,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                answer_preview="",
                fallback=False,
                error=error,
            )
            raise
        emit_inference_result(
            req_id=req_id,
            generator=generator.name,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            answer_preview=text,
            fallback=generator.name == "stub",
        )
        return SubAnswer(question=question, text=text, sources=sources)

    def search(
        self,
        query: str,
        *,
        user_id: str,
        class_id: Optional[str] = None,
        limit: Optional[int] = None,
        req_id: Optional[str] = None,
    ) -> List[SearchHit]:
        """Semantic search without synthesis, one hit per retrieved chunk."""

        if not query or not query.strip():
            raise ValueError("Query must not be empty")
        hits = self.retrieve(query, user_id=user_id, class_id=class_id, k=limit, req_id=req_id)
        return [
            SearchHit(
                file_id=hit.file_id,
                file_name=str(hit.metadata.get("source_file_name", "")),
                folder_id=hit.metadata.get("folder_id"),
                class_id=hit.metadata.get("class_id"),
                page_number=hit.page_number,
                snippet=hit.content[: self.snippet_chars],
                distance=hit.distance,
            )
            for hit in hits
        ]


__all__ = [
    "NO_INFORMATION_ANSWER",
    "RetrievalEngine",
    "SearchHit",
    "Source",
    "SubAnswer",
    "build_prompt",
]
