"""Unit tests for mapping-template inference."""

from __future__ import annotations

from bulletin_pipeline.acquisition.tabular import TabularDocument
from bulletin_pipeline.mapping.infer import infer_column_mappings, infer_student_delimiter, infer_template
from bulletin_pipeline.mapping.template import UNUSED
from bulletin_pipeline.models import DocumentShape

PROSE_SAMPLE = "\n".join(
    [
        "Collège Victor Hugo",
        "Bulletin du 1er trimestre",
        "Élève : Jean Dupont",
        "Classe : 5B",
        "Mathématiques",
        "Note : 14,5",
        "Moyenne de classe : 12,1",
        "Appréciation : Bon travail",
        "------",
        "Bulletin du 1er trimestre",
        "Élève : Zoé Martin",
    ]
)


def test_infer_prose_template_takes_first_matching_candidate() -> None:
    template = infer_template(PROSE_SAMPLE, DocumentShape.PROSE, name="sample")

    assert template.name == "sample"
    assert template.student_name_pattern.startswith(r"^[ \t]*(?:élève")
    assert template.grade_pattern.startswith("(?:note|moyenne")
    assert template.class_average_pattern.startswith("(?:moyenne de")
    assert template.teacher_comment_pattern
    assert template.term_pattern.startswith("bulletin du")
    assert template.class_name_pattern.startswith(r"\bclasse")
    assert template.school_name_pattern
    assert template.custom_regex == ""


def test_infer_student_delimiter_prefers_repeated_anchor() -> None:
    delimiter = infer_student_delimiter(PROSE_SAMPLE)

    assert delimiter.startswith("(?=")


def test_infer_student_delimiter_falls_back_to_rules() -> None:
    assert infer_student_delimiter("Jean\n========\nZoé") == "={6,}"
    assert infer_student_delimiter("Jean Dupont") == ""


def test_infer_template_is_pure() -> None:
    first = infer_template(PROSE_SAMPLE, DocumentShape.PROSE)
    second = infer_template(PROSE_SAMPLE, DocumentShape.PROSE)

    assert first == second


def test_infer_column_mappings_from_long_format_header() -> None:
    mappings = infer_column_mappings(["Élève", "Matière", "Note", "Moyenne classe", "Appréciation", "INE"])

    assert mappings.student_name == 0
    assert mappings.subject == 1
    assert mappings.grade == 2
    assert mappings.class_average == 3
    assert mappings.teacher_comment == 4
    assert mappings.student_id == 5


def test_infer_column_mappings_first_column_wins() -> None:
    mappings = infer_column_mappings(["Nom", "Prénom", "Discipline", "Moyenne"])

    assert mappings.student_name == 0
    assert mappings.subject == 2
    assert mappings.grade == 3


def test_infer_template_for_tabular_document_reads_header() -> None:
    document = TabularDocument(header=("Nom", "Maths", "Moyenne"), rows=())

    template = infer_template(document, DocumentShape.TABULAR)

    assert template.column_mappings.student_name == 0
    assert template.column_mappings.subject == UNUSED
    assert template.column_mappings.grade == 2
    assert template.column_mappings.missing_required() == ("subject",)


def test_infer_template_uses_custom_anchor_pattern() -> None:
    sample = "RELEVÉ DE NOTES\nÉlève : Jean Dupont\n\nRELEVÉ DE NOTES\nÉlève : Zoé Martin\n"
    anchor = r"relev[ée] de notes"

    template = infer_template(sample, DocumentShape.PROSE, anchor_pattern=anchor)

    assert template.delimiters.student == f"(?={anchor})"
    assert infer_template(sample, DocumentShape.PROSE).delimiters.student == ""
