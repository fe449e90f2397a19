from studydesk.query.citations import CitationMarker, reconcile, tokenize
from studydesk.query.engine import Source, SubAnswer


def _source(number: int, file_id: str, page: int, content: str) -> Source:
    return Source(
        number=number,
        file_id=file_id,
        file_name=f"{file_id}.pdf",
        file_type="application/pdf",
        file_url=f"http://files.test/{file_id}.pdf",
        page_number=page,
        content=content,
    )


def test_local_numbers_are_renumbered_globally() -> None:
    first = SubAnswer(
        question="What are A and B?",
        text="Fact A [Source 1]. Fact B [Source 2].",
        sources=[_source(1, "f1", 1, "alpha text"), _source(2, "f1", 2, "beta text")],
    )
    second = SubAnswer(
        question="What is C?",
        text="Fact C [Source 1].",
        sources=[_source(1, "f2", 5, "gamma text")],
    )

    result = reconcile([first, second])

    assert result.text == (
        "**Q:** What are A and B?\n\nFact A [Source 1]. Fact B [Source 2].\n\n"
        "**Q:** What is C?\n\nFact C [Source 3]."
    )
    assert [(source.number, source.file_id, source.page_number) for source in result.sources] == [
        (1, "f1", 1),
        (2, "f1", 2),
        (3, "f2", 5),
    ]


def test_same_physical_source_gets_one_global_number() -> None:
    shared = "The cell membrane   is selectively\npermeable."
    first = SubAnswer(
        question="q1",
        text="Membranes filter [Source 1].",
        sources=[_source(1, "f1", 3, shared)],
    )
    second = SubAnswer(
        question="q2",
        text="Other fact [Source 1], membranes again [Source 2].",
        sources=[
            _source(1, "f9", 1, "unrelated"),
            _source(2, "f1", 3, "The cell membrane is selectively permeable."),
        ],
    )

    result = reconcile([first, second])

    assert "Membranes filter [Source 1]." in result.text
    assert "Other fact [Source 2], membranes again [Source 1]." in result.text
    assert [source.number for source in result.sources] == [1, 2]
    assert len([source for source in result.sources if source.file_id == "f1"]) == 1


def test_rewrite_is_single_pass_when_numbers_swap() -> None:
    earlier = SubAnswer(question="q1", text="X [Source 1].", sources=[_source(1, "f1", 2, "second page")])
    later = SubAnswer(
        question="q2",
        text="Y [Source 1] then Z [Source 2].",
        sources=[_source(1, "f1", 1, "first page"), _source(2, "f1", 2, "second page")],
    )

    result = reconcile([earlier, later])

    assert result.text.endswith("Y [Source 2] then Z [Source 1].")


def test_unknown_markers_are_dropped_and_variants_normalised() -> None:
    answer = SubAnswer(
        question="only",
        text="Known [source  1] and invented [Source 7] and [SOURCE 1].",
        sources=[_source(1, "f1", 1, "text")],
    )

    result = reconcile([answer])

    assert result.text == "Known [Source 1] and invented  and [Source 1]."
    assert len(result.sources) == 1


def test_global_numbers_are_contiguous_in_first_seen_order() -> None:
    answers = [
        SubAnswer(
            question=f"q{index}",
            text=" ".join(f"[Source {number}]" for number in (2, 1)),
            sources=[_source(1, f"a{index}", 1, "one"), _source(2, f"b{index}", 1, "two")],
        )
        for index in range(3)
    ]

    result = reconcile(answers)

    assert [source.number for source in result.sources] == [1, 2, 3, 4, 5, 6]
    assert [source.file_id for source in result.sources] == ["b0", "a0", "b1", "a1", "b2", "a2"]


def test_sub_answer_without_sources_passes_through() -> None:
    result = reconcile([SubAnswer(question="q", text="Nothing found.")])

    assert result.text == "Nothing found."
    assert result.sources == []


def test_tokenize_splits_literals_and_markers() -> None:
    assert tokenize("a [Source 1]b[ source 22 ]") == [
        "a ",
        CitationMarker((1,)),
        "b",
        CitationMarker((22,)),
    ]


def test_grouped_markers_are_renumbered_per_source() -> None:
    first = SubAnswer(
        question="What is A?",
        text="Fact A [Source 1].",
        sources=[_source(1, "f1", 1, "alpha text")],
    )
    second = SubAnswer(
        question="What are B and A?",
        text="Both hold [Source 1, 2] and again [Sources 2 and 9].",
        sources=[_source(1, "f2", 3, "beta text"), _source(2, "f1", 1, "alpha text")],
    )

    assert tokenize("x [Sources 1 and 3]") == ["x ", CitationMarker((1, 3))]

    result = reconcile([first, second])

    assert result.text.endswith("Both hold [Source 2], [Source 1] and again [Source 1].")
    assert [source.file_id for source in result.sources] == ["f1", "f2"]
