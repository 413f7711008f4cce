"""Unit tests for document metadata extraction."""

from __future__ import annotations

import pytest

from bulletin_pipeline.bulletins.metadata import (
    extract_class_appreciation,
    extract_term,
    extract_term_info,
    normalize_term,
    normalize_year,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1er trimestre", "Trimestre 1"),
        ("Deuxième Trimestre", "Trimestre 2"),
        ("second semestre", "Semestre 2"),
        ("Trimestre 3", "Trimestre 3"),
        ("trimestre", ""),
    ],
)
def test_normalize_term(raw: str, expected: str) -> None:
    assert normalize_term(raw) == expected


def test_normalize_year() -> None:
    assert normalize_year("2023 / 2024") == "2023-2024"


def test_extract_term_prefers_ordinal_mention() -> None:
    assert extract_term("Bulletin du 2ème trimestre") == "Trimestre 2"
    assert extract_term("Période : trimestre n° 3") == "Trimestre 3"
    assert extract_term("Relevé de notes") is None


def test_extract_term_info_reads_every_field() -> None:
    text = "\n".join(
        [
            "COLLÈGE ROMAIN ROLLAND",
            "Année scolaire 2023-2024",
            "Bulletin du 1er Trimestre",
            "Classe : 4A",
            "Professeur principal : Mme DURAND",
        ]
    )

    info = extract_term_info(text)

    assert info.term == "Trimestre 1"
    assert info.class_name == "4A"
    assert info.school_name == "COLLÈGE ROMAIN ROLLAND"
    assert info.year == "2023-2024"
    assert info.main_teacher == "Mme DURAND"


def test_extract_term_info_leaves_missing_fields_empty() -> None:
    info = extract_term_info("Relevé de notes")

    assert info.term is None
    assert info.class_name is None
    assert info.school_name is None
    assert info.year is None
    assert info.main_teacher is None


def test_extract_class_appreciation_stops_at_next_heading() -> None:
    text = "\n".join(
        [
            "Bulletin du 2ème Trimestre",
            "Appréciation générale de la classe : Classe agréable et investie,",
            "qui doit gagner en rigueur.",
            "MATHEMATIQUES M. MARTIN 12,5",
        ]
    )

    assert extract_class_appreciation(text) == "Classe agréable et investie, qui doit gagner en rigueur."
    assert extract_term_info(text).class_appreciation == "Classe agréable et investie, qui doit gagner en rigueur."


def test_extract_class_appreciation_missing_or_empty() -> None:
    assert extract_class_appreciation("Appréciation générale : Bon élève") is None
    assert extract_class_appreciation("Appréciations générales de la classe\nMATHEMATIQUES 12") is None
