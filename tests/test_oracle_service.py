import asyncio
from typing import Dict, List

import pytest

from studydesk.errors import QueryTimeoutError
from studydesk.llm import Generator, LLMGenerationError, StubGenerator
from studydesk.query.engine import NO_INFORMATION_ANSWER, Source, SubAnswer
from studydesk.query.service import SUBQUESTION_FAILED_ANSWER, OracleService


@pytest.fixture
def anyio_backend():
    return "asyncio"


def _source(file_id: str, page: int, content: str, number: int = 1) -> Source:
    return Source(number, file_id, f"{file_id}.pdf", "application/pdf", None, page, content)


class ScriptedEngine:
    """Stands in for the retrieval engine with a canned outcome per question."""

    def __init__(self, outcomes: Dict[str, object], *, delay: float = 0.0) -> None:
        self.outcomes = outcomes
        self.delay = delay
        self.calls: List[tuple] = []

    async def answer(self, question, *, user_id, generator, class_id=None, req_id=None):
        self.calls.append((question, user_id, class_id, generator.name))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes[question]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class ClosingGenerator(StubGenerator):
    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def _service(engine, generator: Generator = None, timeout: float = 5.0) -> OracleService:
    generator = generator or StubGenerator()
    return OracleService(engine, lambda: generator, timeout_seconds=timeout)


@pytest.mark.anyio
async def test_each_question_is_answered_and_sources_are_merged() -> None:
    shared = _source("f1", 2, "Water moves across membranes.")
    shared_second = _source("f1", 2, "Water moves across membranes.", number=2)
    engine = ScriptedEngine(
        {
            "What is osmosis?": SubAnswer("What is osmosis?", "Water moves [Source 1].", [shared]),
            "What is diffusion?": SubAnswer(
                "What is diffusion?",
                "Particles spread [Source 1], water too [Source 2].",
                [_source("f2", 1, "Particles spread out."), shared_second],
            ),
        }
    )
    generator = ClosingGenerator()

    response = await _service(engine, generator).ask(
        "1. What is osmosis?\n2. What is diffusion?", user_id="user-1", class_id="class-bio"
    )

    assert "Water moves [Source 1]." in response.text
    assert "Particles spread [Source 2], water too [Source 1]." in response.text
    assert [source.file_id for source in response.sources] == ["f1", "f2"]
    assert {call[1:] for call in engine.calls} == {("user-1", "class-bio", "stub")}
    assert generator.closed


@pytest.mark.anyio
async def test_failed_sub_question_does_not_sink_the_others() -> None:
    engine = ScriptedEngine(
        {
            "What is osmosis?": SubAnswer("What is osmosis?", "Water moves [Source 1].", [_source("f1", 1, "w")]),
            "What is diffusion?": LLMGenerationError("upstream 500"),
        }
    )

    response = await _service(engine).ask("What is osmosis?\nWhat is diffusion?", user_id="user-1")

    assert "**Q:** What is diffusion?\n\n" + SUBQUESTION_FAILED_ANSWER in response.text
    assert "Water moves [Source 1]." in response.text
    assert len(response.sources) == 1


@pytest.mark.anyio
async def test_error_is_raised_when_every_sub_question_fails() -> None:
    engine = ScriptedEngine(
        {
            "What is osmosis?": LLMGenerationError("first"),
            "What is diffusion?": LLMGenerationError("second"),
        }
    )
    generator = ClosingGenerator()

    with pytest.raises(LLMGenerationError, match="first"):
        await _service(engine, generator).ask("What is osmosis?\nWhat is diffusion?", user_id="user-1")
    assert generator.closed


@pytest.mark.anyio
async def test_slow_answers_raise_query_timeout() -> None:
    engine = ScriptedEngine(
        {"What is osmosis?": SubAnswer("What is osmosis?", "late")},
        delay=1.0,
    )
    generator = ClosingGenerator()

    with pytest.raises(QueryTimeoutError):
        await _service(engine, generator, timeout=0.05).ask("What is osmosis?", user_id="user-1")
    assert generator.closed


@pytest.mark.anyio
async def test_single_question_without_hits_returns_no_information() -> None:
    engine = ScriptedEngine({"What is osmosis?": SubAnswer("What is osmosis?", NO_INFORMATION_ANSWER)})

    response = await _service(engine).ask("What is osmosis?", user_id="user-1")

    assert response.text == NO_INFORMATION_ANSWER
    assert response.sources == []


@pytest.mark.anyio
async def test_empty_message_is_rejected_before_any_work() -> None:
    engine = ScriptedEngine({})

    with pytest.raises(ValueError):
        await _service(engine).ask("   ", user_id="user-1")
    assert engine.calls == []


@pytest.mark.anyio
async def test_end_to_end_with_indexed_text(coordinator, submit_job, embedder, vector_store, records) -> None:
    from studydesk.query.engine import RetrievalEngine

    job = submit_job(b"Ribosomes build proteins from amino acids.", name="cells.txt", mime_type="text/plain")
    coordinator.run(job)
    engine = RetrievalEngine(embedder=embedder, vector_store=vector_store, records=records)

    try:
        response = await _service(engine).ask("What do ribosomes do?", user_id=job.user_id)
    finally:
        engine.close()

    assert "[Source 1]" in response.text
    assert [source.file_name for source in response.sources] == ["cells.txt"]
    assert response.sources[0].content == "Ribosomes build proteins from amino acids."
