import threading
from typing import List, Optional

import pytest

from studydesk.ingest.models import ChunkMetadata, DocumentChunk, IndexedChunk
from studydesk.llm import Generator
from studydesk.query.engine import NO_INFORMATION_ANSWER, RetrievalEngine, Source, build_prompt

from conftest import CLASS_ID, USER_ID


@pytest.fixture
def anyio_backend():
    return "asyncio"


class RecordingGenerator(Generator):
    name = "recording"

    def __init__(self, answer: str = "Osmosis moves water [Source 1].") -> None:
        self.answer = answer
        self.prompts: List[tuple] = []

    async def generate(self, *, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        return self.answer


def _file(records, name: str = "biology.pdf", user_id: str = USER_ID) -> str:
    record = records.create_file(
        name=name,
        user_id=user_id,
        class_id=CLASS_ID,
        folder_id="folder-1",
        size=10,
        mime_type="application/pdf",
        storage_path=f"{user_id}/{name}",
    )
    return record.id


def _index(
    vector_store,
    embedder,
    *,
    file_id: str,
    text: str,
    page: int = 1,
    index: int = 0,
    user_id: str = USER_ID,
    class_id: str = CLASS_ID,
    folder_id: Optional[str] = "folder-1",
) -> None:
    chunk = DocumentChunk(
        content=text,
        metadata=ChunkMetadata(
            source_file_id=file_id,
            source_file_name="biology.pdf",
            user_id=user_id,
            class_id=class_id,
            folder_id=folder_id,
            page_number=page,
            chunk_index=index,
            content_type="text",
        ),
    )
    vector_store.upsert([IndexedChunk(chunk=chunk, vector=embedder.embed_texts([text])[0])])


@pytest.fixture
def engine(embedder, vector_store, records):
    engine = RetrievalEngine(embedder=embedder, vector_store=vector_store, records=records, top_k=10)
    yield engine
    engine.close()


@pytest.mark.anyio
async def test_no_hits_short_circuits_without_calling_the_model(engine) -> None:
    generator = RecordingGenerator()

    answer = await engine.answer("What is osmosis?", user_id=USER_ID, generator=generator)

    assert answer.text == NO_INFORMATION_ANSWER
    assert answer.sources == []
    assert generator.prompts == []


@pytest.mark.anyio
async def test_answer_numbers_sources_and_builds_prompt(engine, records, vector_store, embedder) -> None:
    file_id = _file(records)
    _index(vector_store, embedder, file_id=file_id, text="Osmosis is the diffusion of water.", page=3)
    generator = RecordingGenerator()

    answer = await engine.answer("What is osmosis?", user_id=USER_ID, generator=generator)

    assert answer.text == "Osmosis moves water [Source 1]."
    assert [(source.number, source.file_id, source.page_number) for source in answer.sources] == [
        (1, file_id, 3)
    ]
    system_prompt, user_prompt = generator.prompts[0]
    assert "[Source N]" in system_prompt
    assert '[Source 1] From page 3 of "biology.pdf": "Osmosis is the diffusion of water."' in user_prompt
    assert user_prompt.startswith('User Question: "What is osmosis?"')


@pytest.mark.anyio
async def test_chunks_of_deleted_files_are_skipped_without_using_a_number(
    engine, records, vector_store, embedder
) -> None:
    live_id = _file(records)
    _index(vector_store, embedder, file_id="deleted-file", text="Orphaned chunk text.", index=0)
    _index(vector_store, embedder, file_id=live_id, text="Live chunk text.", index=0)
    generator = RecordingGenerator()

    answer = await engine.answer("chunk text", user_id=USER_ID, generator=generator)

    assert [(source.number, source.file_id) for source in answer.sources] == [(1, live_id)]
    assert "Orphaned" not in generator.prompts[0][1]


@pytest.mark.anyio
async def test_only_orphaned_chunks_yield_no_information(engine, vector_store, embedder) -> None:
    _index(vector_store, embedder, file_id="deleted-file", text="Orphaned chunk text.")
    generator = RecordingGenerator()

    answer = await engine.answer("chunk text", user_id=USER_ID, generator=generator)

    assert answer.text == NO_INFORMATION_ANSWER
    assert generator.prompts == []


@pytest.mark.anyio
async def test_search_work_runs_on_the_engine_pool(engine, monkeypatch) -> None:
    threads = []
    original = engine.embedder.embed_query

    def embed_query(text):
        threads.append(threading.current_thread().name)
        return original(text)

    monkeypatch.setattr(engine.embedder, "embed_query", embed_query)

    await engine.answer("What is osmosis?", user_id=USER_ID, generator=RecordingGenerator())

    assert len(threads) == 1
    assert threads[0].startswith("retrieval")


@pytest.mark.anyio
async def test_closed_engine_refuses_new_questions(engine) -> None:
    engine.close()

    with pytest.raises(RuntimeError):
        await engine.answer("What is osmosis?", user_id=USER_ID, generator=RecordingGenerator())


def test_retrieval_is_scoped_to_owner_and_class(engine, records, vector_store, embedder) -> None:
    mine = _file(records)
    theirs = _file(records, name="theirs.pdf", user_id="user-2")
    _index(vector_store, embedder, file_id=mine, text="Mine in biology.", index=0)
    _index(vector_store, embedder, file_id=mine, text="Mine in chemistry.", index=1, class_id="class-chem")
    _index(vector_store, embedder, file_id=theirs, text="Someone else's notes.", user_id="user-2")

    all_mine = engine.retrieve("notes", user_id=USER_ID)
    biology_only = engine.retrieve("notes", user_id=USER_ID, class_id=CLASS_ID)

    assert {hit.content for hit in all_mine} == {"Mine in biology.", "Mine in chemistry."}
    assert [hit.content for hit in biology_only] == ["Mine in biology."]
    assert engine.retrieve("notes", user_id="user-3") == []


def test_retrieve_respects_top_k(records, vector_store, embedder) -> None:
    file_id = _file(records)
    for index in range(5):
        _index(vector_store, embedder, file_id=file_id, text=f"Fact number {index}.", index=index)
    engine = RetrievalEngine(embedder=embedder, vector_store=vector_store, records=records, top_k=2)

    assert len(engine.retrieve("fact", user_id=USER_ID)) == 2
    assert len(engine.retrieve("fact", user_id=USER_ID, k=4)) == 4


def test_search_returns_snippets_with_file_metadata(records, vector_store, embedder) -> None:
    file_id = _file(records)
    _index(vector_store, embedder, file_id=file_id, text="x" * 50, page=2)
    engine = RetrievalEngine(
        embedder=embedder, vector_store=vector_store, records=records, snippet_chars=20
    )

    hits = engine.search("anything", user_id=USER_ID, limit=5)

    assert len(hits) == 1
    hit = hits[0]
    assert (hit.file_id, hit.file_name, hit.folder_id, hit.class_id, hit.page_number) == (
        file_id,
        "biology.pdf",
        "folder-1",
        CLASS_ID,
        2,
    )
    assert hit.snippet == "x" * 20


@pytest.mark.parametrize("query", ["", "   "])
def test_search_rejects_empty_query(engine, query: str) -> None:
    with pytest.raises(ValueError):
        engine.search(query, user_id=USER_ID)


def test_build_prompt_lists_sources_in_order() -> None:
    sources = [
        Source(1, "f1", "a.pdf", "application/pdf", None, 1, "alpha"),
        Source(2, "f2", "b.pdf", "application/pdf", None, 4, "beta"),
    ]

    _, user_prompt = build_prompt("Q?", sources)

    assert user_prompt.splitlines()[-2:] == [
        '[Source 1] From page 1 of "a.pdf": "alpha"',
        '[Source 2] From page 4 of "b.pdf": "beta"',
    ]
