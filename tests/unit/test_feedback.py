"""Unit tests for subject-feedback extraction from bulletin blocks."""

from __future__ import annotations

from bulletin_pipeline.bulletins.feedback import block_student_name, build_bulletin_record, extract_feedback
from bulletin_pipeline.models import AverageSource, BulletinBlock

STRUCTURED_BLOCK = "\n".join(
    [
        "Bulletin du 1er Trimestre",
        "Élève : DUPONT Jean",
        "MATHEMATIQUES M. MARTIN 14,5 Bon trimestre",
        "FRANCAIS Mme DURAND 12 Des efforts",
        "à poursuivre.",
        "Appréciation générale : Bon ensemble",
    ]
)


def _block(text: str, index: int = 0) -> BulletinBlock:
    return BulletinBlock(index=index, start_line=0, lines=tuple(text.splitlines()), anchored=True)


def test_extract_feedback_structured_lines() -> None:
    extraction = extract_feedback(STRUCTURED_BLOCK)

    assert extraction.pattern == "structured"
    assert [(item.subject, item.teacher, item.average) for item in extraction.feedback] == [
        ("MATHEMATIQUES", "M. MARTIN", 14.5),
        ("FRANCAIS", "Mme DURAND", 12.0),
    ]


def test_extract_feedback_remark_continues_until_section_line() -> None:
    extraction = extract_feedback(STRUCTURED_BLOCK)

    assert extraction.feedback[0].remark == "Bon trimestre"
    assert extraction.feedback[1].remark == "Des efforts à poursuivre."


def test_extract_feedback_stacked_lines() -> None:
    text = "\n".join(
        [
            "ANGLAIS",
            "Mme SMITH",
            "15,5",
            "Très bon trimestre.",
            "HISTOIRE-GEOGRAPHIE",
            "M. LEROY",
            "Abs",
        ]
    )

    extraction = extract_feedback(text)

    assert extraction.pattern == "stacked"
    assert [(item.subject, item.teacher, item.average) for item in extraction.feedback] == [
        ("ANGLAIS", "Mme SMITH", 15.5),
        ("HISTOIRE-GEOGRAPHIE", "M. LEROY", None),
    ]
    assert extraction.feedback[0].remark == "Très bon trimestre."


def test_extract_feedback_labelled_lines_skip_summary_labels() -> None:
    text = "\n".join(
        [
            "Français : 12,5 - Travail sérieux",
            "Mathématiques : 9",
            "Moyenne générale : 10,75",
        ]
    )

    extraction = extract_feedback(text)

    assert extraction.pattern == "labelled"
    assert [(item.subject, item.average, item.teacher) for item in extraction.feedback] == [
        ("Français", 12.5, None),
        ("Mathématiques", 9.0, None),
    ]
    assert extraction.feedback[0].remark == "Travail sérieux"


def test_extract_feedback_without_subject_lines() -> None:
    extraction = extract_feedback("Rien à signaler")

    assert extraction.pattern is None
    assert extraction.feedback == ()


def test_block_student_name_reads_surname_first_line() -> None:
    text = "Bulletin du 1er Trimestre\nDUPONT Jean-Pierre\nMATHEMATIQUES M. MARTIN 14"

    assert block_student_name(text, text.index("MATHEMATIQUES")) == "DUPONT Jean-Pierre"


def test_build_bulletin_record_derives_average() -> None:
    record, feedback = build_bulletin_record(_block(STRUCTURED_BLOCK), source="bulletins.pdf")

    assert record is not None
    assert len(feedback) == 2
    assert record.name == "DUPONT Jean"
    assert not record.name_is_fallback
    assert dict(record.grades) == {"MATHEMATIQUES": 14.5, "FRANCAIS": 12.0}
    assert record.average == 13.25
    assert record.average_source is AverageSource.DERIVED
    assert record.teacher_names["FRANCAIS"] == "Mme DURAND"
    assert record.comments["MATHEMATIQUES"] == "Bon trimestre"
    assert record.source == "bulletins.pdf"


def test_build_bulletin_record_reads_declared_average() -> None:
    text = STRUCTURED_BLOCK + "\nMoyenne générale : 13,5"

    record, _ = build_bulletin_record(_block(text))

    assert record is not None
    assert record.average == 13.5
    assert record.average_source is AverageSource.DECLARED


def test_build_bulletin_record_falls_back_to_block_position_for_name() -> None:
    record, _ = build_bulletin_record(_block("Bulletin du 1er Trimestre\nMATHEMATIQUES M. MARTIN 11", index=2))

    assert record is not None
    assert record.name == "Élève 3"
    assert record.name_is_fallback


def test_build_bulletin_record_returns_none_without_feedback() -> None:
    record, feedback = build_bulletin_record(_block("Bulletin du 1er Trimestre\nÉlève : DUPONT Jean"))

    assert record is None
    assert feedback == ()
