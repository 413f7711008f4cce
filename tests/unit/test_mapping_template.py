"""Unit tests for mapping-template values and their stored form."""

from __future__ import annotations

from pathlib import Path

import pytest

from bulletin_pipeline.errors import InvalidTemplatePattern
from bulletin_pipeline.io.template_json import load_template, save_template
from bulletin_pipeline.mapping.template import (
    UNUSED,
    ColumnMappings,
    Delimiters,
    MappingTemplate,
    compile_template_pattern,
    detect_bulletin_format,
    starter_template,
    template_from_dict,
    template_to_dict,
    with_columns,
)


def test_template_dict_uses_camel_case_keys() -> None:
    template = MappingTemplate(
        name="college",
        student_name_pattern=r"Élève\s*:\s*([^\n]+)",
        delimiters=Delimiters(student=r"={10,}"),
        column_mappings=ColumnMappings(student_name=0, subject=1, grade=2),
    )

    payload = template_to_dict(template)

    assert payload["studentNamePattern"] == r"Élève\s*:\s*([^\n]+)"
    assert payload["delimiters"] == {"student": r"={10,}", "subject": ""}
    assert payload["columnMappings"]["studentName"] == 0
    assert payload["columnMappings"]["classAverage"] == UNUSED
    assert template_from_dict(payload) == template


def test_template_from_dict_accepts_snake_case_and_defaults() -> None:
    template = template_from_dict(
        {"grade_pattern": r"(\d+)", "column_mappings": {"student_name": "0", "grade": 3}},
        name="fallback-name",
    )

    assert template.name == "fallback-name"
    assert template.grade_pattern == r"(\d+)"
    assert template.column_mappings.student_name == 0
    assert template.column_mappings.grade == 3
    assert template.column_mappings.subject == UNUSED


def test_template_from_dict_rejects_non_integer_index() -> None:
    with pytest.raises(ValueError, match="must be an integer"):
        template_from_dict({"columnMappings": {"grade": "C"}})


def test_missing_required_columns() -> None:
    assert ColumnMappings(student_name=0).missing_required() == ("subject", "grade")
    assert ColumnMappings(student_name=0, subject=1, grade=2).missing_required() == ()


def test_is_empty_and_patterns() -> None:
    assert MappingTemplate().is_empty
    template = MappingTemplate(term_pattern=r"Trimestre\s*(\d)", delimiters=Delimiters(subject="-{5,}"))

    assert not template.is_empty
    assert template.patterns() == {"term_pattern": r"Trimestre\s*(\d)", "delimiters.subject": "-{5,}"}


def test_compile_template_pattern_reports_field() -> None:
    template = MappingTemplate(grade_pattern="(\\d+")

    assert compile_template_pattern(template, "subject_pattern") is None
    with pytest.raises(InvalidTemplatePattern, match="grade_pattern"):
        compile_template_pattern(template, "grade_pattern")


def test_with_columns_returns_new_template() -> None:
    template = MappingTemplate()

    updated = with_columns(template, grade=4)

    assert updated.column_mappings.grade == 4
    assert template.column_mappings.grade == UNUSED
    with pytest.raises(ValueError, match="Unknown column mapping"):
        with_columns(template, note=1)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("COLLEGE ROMAIN ROLLAND\nBulletin", "roman-rolland"),
        ("Bulletin scolaire du 1er trimestre", "standard-bulletin"),
        ("Tableau des moyennes", "moyennes-tableau"),
        ("Relevé", "standard"),
    ],
)
def test_detect_bulletin_format(text: str, expected: str) -> None:
    assert detect_bulletin_format(text) == expected


def test_starter_template_falls_back_to_standard() -> None:
    assert starter_template("roman-rolland").delimiters.student == r"={10,}"
    assert starter_template("unknown").name == "standard"


def test_template_json_roundtrip_uses_file_stem(tmp_path: Path) -> None:
    path = tmp_path / "college.json"
    save_template(MappingTemplate(name="", grade_pattern=r"(\d+)"), path)

    loaded = load_template(path)

    assert loaded.name == "college"
    assert loaded.grade_pattern == r"(\d+)"
    assert '"gradePattern"' in path.read_text(encoding="utf-8")


def test_load_template_rejects_non_object(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("[1, 2]\n", encoding="utf-8")

    with pytest.raises(ValueError, match="JSON object"):
        load_template(path)
