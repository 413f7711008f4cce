"""Unit tests for splitting documents into bulletin blocks."""

from __future__ import annotations

import pytest

from bulletin_pipeline.bulletins.splitter import count_anchors, split_bulletins, split_text
from bulletin_pipeline.errors import InvalidTemplatePattern, NoDelimiterMatch


def test_split_bulletins_opens_block_at_each_anchor() -> None:
    lines = [
        "Collège Jean Moulin",
        "Bulletin du 1er Trimestre",
        "Élève : DUPONT Jean",
        "MATHEMATIQUES M. MARTIN 14 Bien",
        "Bulletin du 1er Trimestre",
        "Élève : DURAND Zoé",
    ]

    blocks = split_bulletins(lines)

    assert [block.start_line for block in blocks] == [1, 4]
    assert [block.index for block in blocks] == [0, 1]
    assert blocks[0].lines == ("Bulletin du 1er Trimestre", "Élève : DUPONT Jean", "MATHEMATIQUES M. MARTIN 14 Bien")
    assert all(block.anchored for block in blocks)


def test_split_bulletins_without_anchor_returns_single_unanchored_block() -> None:
    lines = ["Relevé de notes", "Maths : 12"]

    blocks = split_bulletins(lines)

    assert len(blocks) == 1
    assert not blocks[0].anchored
    assert blocks[0].text == "Relevé de notes\nMaths : 12"


def test_split_bulletins_rejects_empty_document() -> None:
    with pytest.raises(NoDelimiterMatch):
        split_bulletins(["", "   "])


def test_split_text_accepts_custom_anchor() -> None:
    blocks = split_text("ELEVE 1\nMaths 12\nELEVE 2\nMaths 14", pattern=r"^eleve \d+$")

    assert [block.text for block in blocks] == ["ELEVE 1\nMaths 12", "ELEVE 2\nMaths 14"]


def test_invalid_anchor_pattern_is_reported() -> None:
    with pytest.raises(InvalidTemplatePattern, match="anchor_pattern"):
        split_bulletins(["Bulletin"], pattern="(unclosed")


def test_count_anchors_matches_ordinal_words() -> None:
    lines = ["Bulletin scolaire du deuxième trimestre", "Bulletin du 2ème semestre", "Bulletin"]

    assert count_anchors(lines) == 2
