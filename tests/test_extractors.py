import io

import pytest
from docx import Document as DocxDocument

from studydesk.errors import ExtractionError, UnsupportedDocumentError
from studydesk.ingest.extractors import DocxExtractor, ImageExtractor, PDFExtractor, TextExtractor
from studydesk.ingest.format_detection import DocumentFormat, DocumentFormatDetector
from studydesk.storage import LocalObjectStorage, build_storage_path

from conftest import build_pdf


class _FixedCaptioner:
    def __init__(self, caption: str) -> None:
        self.caption = caption
        self.calls = []

    def describe(self, image: bytes, mime_type: str, *, context: str = "") -> str:
        self.calls.append((mime_type, context))
        return self.caption


@pytest.mark.parametrize(
    "file_name, mime_type, expected",
    [
        ("notes.pdf", "application/pdf", DocumentFormat.PDF),
        ("notes", "application/pdf; charset=binary", DocumentFormat.PDF),
        ("essay.docx", None, DocumentFormat.DOCX),
        ("readme.md", "text/markdown", DocumentFormat.MARKDOWN),
        ("todo.txt", "", DocumentFormat.TXT),
        ("diagram.png", "image/png", DocumentFormat.IMAGE),
        ("photo.jpeg", "application/octet-stream", DocumentFormat.IMAGE),
    ],
)
def test_format_detection(file_name: str, mime_type, expected: DocumentFormat) -> None:
    assert DocumentFormatDetector.detect(file_name, mime_type) is expected


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(UnsupportedDocumentError):
        DocumentFormatDetector.detect("slides.key", "application/x-iwork-keynote-sffkey")


def test_only_pdf_is_paginated() -> None:
    assert DocumentFormat.PDF.is_paginated
    assert not DocumentFormat.DOCX.is_paginated


def test_text_extractor_falls_back_to_latin1() -> None:
    pages = TextExtractor().extract("Café notes".encode("latin-1"))

    assert pages[0].page_number == 1
    assert pages[0].text == "Café notes"


def test_docx_extractor_joins_paragraphs() -> None:
    document = DocxDocument()
    document.add_paragraph("Chapter one")
    document.add_paragraph("")
    document.add_paragraph("Cells divide.")
    buffer = io.BytesIO()
    document.save(buffer)

    pages = DocxExtractor().extract(buffer.getvalue())

    assert [page.text for page in pages] == ["Chapter one\n\nCells divide."]


def test_docx_extractor_wraps_parse_errors() -> None:
    with pytest.raises(ExtractionError):
        DocxExtractor().extract(b"definitely not a zip archive")


def test_pdf_extractor_counts_pages_and_validates_window() -> None:
    data = build_pdf(4)
    extractor = PDFExtractor()

    assert extractor.page_count(data) == 4
    pages = extractor.extract_pages(data, 2, 4)
    assert [page.page_number for page in pages] == [2, 3, 4]
    for start, end in [(0, 2), (3, 5), (3, 2)]:
        with pytest.raises(ExtractionError):
            extractor.extract_pages(data, start, end)


def test_pdf_extractor_rejects_garbage() -> None:
    with pytest.raises(ExtractionError):
        PDFExtractor().page_count(b"this is not a pdf")


def test_image_extractor_uses_caption() -> None:
    captioner = _FixedCaptioner("A diagram of the water cycle.")

    pages = ImageExtractor(captioner).extract(b"\x89PNG", "image/png")

    assert pages[0].image_captions == ["A diagram of the water cycle."]
    assert pages[0].content_type == "image"
    assert captioner.calls == [("image/png", "Uploaded image")]


def test_image_extractor_without_captioner_yields_empty_page() -> None:
    pages = ImageExtractor().extract(b"\x89PNG", "image/png")

    assert pages[0].text == ""
    assert pages[0].image_captions == []


def test_storage_round_trip_and_public_url(tmp_path) -> None:
    storage = LocalObjectStorage(tmp_path, "http://files.test/")
    path = build_storage_path("user 1", "My Notes (final).pdf")

    storage.write_bytes(path, b"data")

    assert path.startswith("user_1/My_Notes_final_-")
    assert path.endswith(".pdf")
    assert storage.read_bytes(path) == b"data"
    assert storage.public_url("u/a b.pdf") == "http://files.test/u/a%20b.pdf"


def test_storage_rejects_escaping_paths_and_missing_objects(tmp_path) -> None:
    storage = LocalObjectStorage(tmp_path / "root", "http://files.test")

    with pytest.raises(ExtractionError):
        storage.read_bytes("../outside.txt")
    with pytest.raises(ExtractionError):
        storage.read_bytes("user/missing.pdf")
