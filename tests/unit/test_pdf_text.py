"""Unit tests for PDF word-to-fragment conversion."""

from __future__ import annotations

from pathlib import Path

import pytest

from bulletin_pipeline.acquisition.pdf_text import AcquiredDocument, PageText, extract_pdf, fragments_from_words
from bulletin_pipeline.errors import AcquisitionFailure
from bulletin_pipeline.models import TextFragment


def test_fragments_from_words_normalizes_text_and_drops_blanks() -> None:
    words = [
        {"text": " Dupont   Jean ", "x0": 10, "top": 20.5},
        {"text": "   ", "x0": 1, "top": 1},
        {"text": "14,5", "x0": 102.25, "top": 21},
    ]

    fragments = fragments_from_words(words, page_number=2)

    assert fragments == (
        TextFragment(text="Dupont Jean", x=10.0, y=20.5, page=2),
        TextFragment(text="14,5", x=102.25, y=21.0, page=2),
    )


def test_acquired_document_flattens_pages_in_order() -> None:
    first = PageText(page_number=1, fragments=(TextFragment("a", 0, 0, 1),))
    second = PageText(page_number=2, fragments=(TextFragment("b", 0, 0, 2),))

    document = AcquiredDocument(pages=(first, second))

    assert [fragment.text for fragment in document.fragments] == ["a", "b"]


def test_extract_pdf_reports_unreadable_file(tmp_path: Path) -> None:
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")

    with pytest.raises(AcquisitionFailure):
        extract_pdf(path)
