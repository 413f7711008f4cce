"""Unit tests for dataset and template validation."""

from __future__ import annotations

import pytest

from bulletin_pipeline.mapping.template import ColumnMappings, MappingTemplate
from bulletin_pipeline.models import (
    ClassDataset,
    DocumentResult,
    ErrorKind,
    ExtractionResult,
    Failure,
    ResultStatus,
    StudentRecord,
)
from bulletin_pipeline.validation import (
    collect_failure_counts,
    collect_status_counts,
    template_issues,
    validate_class_dataset,
    validate_template,
)


def _dataset(*students: StudentRecord, subjects: tuple[str, ...] = ("Maths",)) -> ClassDataset:
    return ClassDataset(students=students, subjects=subjects)


def test_validate_class_dataset_accepts_absent_grades() -> None:
    validate_class_dataset(_dataset(StudentRecord(name="A", grades={"Maths": None})))


def test_validate_class_dataset_rejects_unknown_subject() -> None:
    with pytest.raises(ValueError, match="subject 'SVT' missing from dataset"):
        validate_class_dataset(_dataset(StudentRecord(name="A", grades={"SVT": 12.0})))


def test_validate_class_dataset_rejects_out_of_range_grade() -> None:
    with pytest.raises(ValueError, match="out of range"):
        validate_class_dataset(_dataset(StudentRecord(name="A", grades={"Maths": 21.0})))


def test_validate_class_dataset_rejects_duplicate_subjects_and_blank_names() -> None:
    dataset = _dataset(StudentRecord(name=" ", grades={}), subjects=("Maths", "Maths"))

    with pytest.raises(ValueError, match="failed with 2 errors"):
        validate_class_dataset(dataset)


def test_validate_class_dataset_preview_is_truncated() -> None:
    students = [StudentRecord(name=f"S{idx}", grades={"Maths": 30.0}) for idx in range(30)]

    with pytest.raises(ValueError, match=r"\.\.\. and 5 more"):
        validate_class_dataset(_dataset(*students))


def test_template_issues_lists_bad_patterns_and_indexes() -> None:
    template = MappingTemplate(
        subject_pattern="(",
        column_mappings=ColumnMappings(grade=-3),
    )

    issues = template_issues(template)

    assert any("subject_pattern" in issue for issue in issues)
    assert any("invalid index -3" in issue for issue in issues)
    assert any("without grade_pattern" in issue for issue in issues)


def test_validate_template_accepts_empty_template() -> None:
    validate_template(MappingTemplate())


def test_validate_template_raises_with_name() -> None:
    with pytest.raises(ValueError, match="Template 'broken' validation"):
        validate_template(MappingTemplate(name="broken", grade_pattern="[0-9"))


def test_collect_counts() -> None:
    documents = [
        DocumentResult("a.pdf", ExtractionResult(status=ResultStatus.OK)),
        DocumentResult(
            "b.pdf",
            ExtractionResult(
                status=ResultStatus.DEGRADED,
                failure=Failure(kind=ErrorKind.NO_HEADER_DETECTED, reason="no header"),
            ),
        ),
        DocumentResult("c.pdf", ExtractionResult(status=ResultStatus.OK)),
    ]

    assert collect_status_counts(documents) == {"ok": 2, "degraded": 1}
    assert collect_failure_counts(documents) == {"no_header_detected": 1}
