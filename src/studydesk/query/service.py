"""Question answering over a user's documents: decompose, answer in parallel, reconcile."""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from functools import lru_cache
from typing import Callable, List, Optional, Sequence

from studydesk.embeddings import get_embedding_model
from studydesk.errors import QueryTimeoutError
from studydesk.llm import Generator, select_generator
from studydesk.records import get_record_store
from studydesk.settings import get_settings
from studydesk.telemetry import emit_exception, log_event
from studydesk.vectorstore import get_vector_store

from .citations import ReconciledResponse, reconcile
from .decomposer import decompose
from .engine import RetrievalEngine, SubAnswer

LOGGER = logging.getLogger(__name__)

SUBQUESTION_FAILED_ANSWER = (
    "Something went wrong while answering this question, so no answer is available for it."
)

GeneratorFactory = Callable[[], Generator]


class OracleService:
    def __init__(
        self,
        engine: RetrievalEngine,
        generator_factory: GeneratorFactory,
        *,
        timeout_seconds: float = 60.0,
    ) -> None:
        self.engine = engine
        self._generator_factory = generator_factory
        self.timeout_seconds = timeout_seconds

    async def ask(
        self,
        message: str,
        *,
        user_id: str,
        class_id: Optional[str] = None,
        req_id: Optional[str] = None,
    ) -> ReconciledResponse:
        """Answer every question in ``message`` and merge the citations.

        A failing sub-question is answered with ``SUBQUESTION_FAILED_ANSWER``;
        only when every sub-question fails is the first error raised. The whole
        fan-out is cancelled once ``timeout_seconds`` elapse.
        """

        req_id = req_id or uuid.uuid4().hex
        questions = decompose(message)
        generator = self._generator_factory()
        started = time.perf_counter()
        try:
            results = await asyncio.wait_for(
                self._fan_out(questions, user_id=user_id, class_id=class_id, generator=generator, req_id=req_id),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            log_event(
                LOGGER,
                "oracle.query.timeout",
                level="error",
                req_id=req_id,
                details={"questions": len(questions), "timeout_seconds": self.timeout_seconds},
            )
            raise QueryTimeoutError(
                f"Answering took longer than {self.timeout_seconds:g} seconds"
            ) from exc
        finally:
            await generator.aclose()

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors and len(errors) == len(results):
            raise errors[0]

        sub_answers: List[SubAnswer] = []
        for question, result in zip(questions, results):
            if isinstance(result, BaseException):
                sub_answers.append(SubAnswer(question=question, text=SUBQUESTION_FAILED_ANSWER))
            else:
                sub_answers.append(result)

        response = reconcile(sub_answers)
        log_event(
            LOGGER,
            "oracle.query",
            req_id=req_id,
            duration_ms=(time.perf_counter() - started) * 1000.0,
            details={
                "questions": len(questions),
                "failed": len(errors),
                "sources": len(response.sources),
                "generator": generator.name,
            },
        )
        return response

    async def _fan_out(
        self,
        questions: Sequence[str],
        *,
        user_id: str,
        class_id: Optional[str],
        generator: Generator,
        req_id: str,
    ) -> List[object]:
        return await asyncio.gather(
            *(
                self._answer_one(question, user_id=user_id, class_id=class_id, generator=generator, req_id=req_id)
                for question in questions
            )
        )

    async def _answer_one(
        self,
        question: str,
        *,
        user_id: str,
        class_id: Optional[str],
        generator: Generator,
        req_id: str,
    ) -> object:
        try:
            return await self.engine.answer(
                question, user_id=user_id, class_id=class_id, generator=generator, req_id=req_id
            )
        except Exception as error:
            emit_exception(module=__name__, error=error, req_id=req_id)
            return error


@lru_cache()
def get_oracle_service() -> OracleService:
    settings = get_settings()
    engine = RetrievalEngine(
        embedder=get_embedding_model(),
        vector_store=get_vector_store(),
        records=get_record_store(),
        top_k=settings.retrieval_top_k,
    )
    return OracleService(
        engine,
        lambda: select_generator(get_settings()),
        timeout_seconds=settings.query_timeout_seconds,
    )


def get_retrieval_engine() -> RetrievalEngine:
    return get_oracle_service().engine


def close_oracle_service() -> None:
    if get_oracle_service.cache_info().currsize:  # type: ignore[attr-defined]
        get_oracle_service().engine.close()
    reset_oracle_service_cache()


def reset_oracle_service_cache() -> None:
    get_oracle_service.cache_clear()  # type: ignore[attr-defined]


__all__ = [
    "OracleService",
    "SUBQUESTION_FAILED_ANSWER",
    "close_oracle_service",
    "get_oracle_service",
    "get_retrieval_engine",
    "reset_oracle_service_cache",
]
