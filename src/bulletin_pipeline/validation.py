"""Validation helpers for the class dataset contract and mapping templates."""

from __future__ import annotations

from collections import Counter
from typing import Sequence

from bulletin_pipeline.errors import InvalidTemplatePattern
from bulletin_pipeline.mapping.template import MappingTemplate, compile_template_pattern
from bulletin_pipeline.models import ClassDataset, DocumentResult, ResultStatus

PREVIEW_LIMIT = 25


def _raise_with_preview(title: str, errors: Sequence[str]) -> None:
    preview = "\n".join(f"- {item}" for item in errors[:PREVIEW_LIMIT])
    rest = len(errors) - min(PREVIEW_LIMIT, len(errors))
    more = f"\n- ... and {rest} more" if rest > 0 else ""
    raise ValueError(f"{title} failed with {len(errors)} errors:\n{preview}{more}")


def validate_class_dataset(dataset: ClassDataset, grade_scale: float = 20.0) -> None:
    """Validate the dataset boundary contract.

    Subjects are unique, every grade key is a dataset subject, grades lie in
    ``[0, grade_scale]`` and student names are non-empty.

    Args:
        dataset: Dataset handed to reporting.
        grade_scale: Upper bound of a valid grade.

    Raises:
        ValueError: If any constraint is violated.
    """

    errors: list[str] = []
    duplicates = [subject for subject, count in Counter(dataset.subjects).items() if count > 1]
    for subject in duplicates:
        errors.append(f"Subject '{subject}' listed more than once")

    subjects = set(dataset.subjects)
    for idx, student in enumerate(dataset.students, start=1):
        if not student.name.strip():
            errors.append(f"Student {idx}: empty name")
        for subject, grade in student.grades.items():
            if subject not in subjects:
                errors.append(f"Student {idx} ({student.name}): subject '{subject}' missing from dataset")
            if grade is not None and not 0 <= grade <= grade_scale:
                errors.append(f"Student {idx} ({student.name}): grade {grade} for '{subject}' out of range")

    if errors:
        _raise_with_preview("Dataset validation", errors)


def template_issues(template: MappingTemplate) -> list[str]:
    """Return human-readable problems of ``template`` without raising."""

    issues: list[str] = []
    for attr in template.patterns():
        try:
            compile_template_pattern(template, attr)
        except InvalidTemplatePattern as exc:
            issues.append(exc.reason)
    for attr, index in vars(template.column_mappings).items():
        if index < -1:
            issues.append(f"Column mapping {attr} has invalid index {index}")
    if template.subject_pattern and not template.grade_pattern:
        issues.append("subject_pattern is set without grade_pattern; subjects will carry no grade")
    return issues


def validate_template(template: MappingTemplate) -> None:
    """Validate that every template pattern compiles.

    Raises:
        ValueError: If the template has problems.
    """

    issues = template_issues(template)
    if issues:
        _raise_with_preview(f"Template '{template.name}' validation", issues)


def collect_status_counts(documents: Sequence[DocumentResult]) -> dict[str, int]:
    """Count documents by result status.

    Returns:
        Dictionary of status value to document count, in status order.
    """

    counter: Counter[str] = Counter(document.result.status.value for document in documents)
    return {status.value: counter[status.value] for status in ResultStatus if counter[status.value]}


def collect_failure_counts(documents: Sequence[DocumentResult]) -> dict[str, int]:
    """Count documents by failure kind."""

    counter: Counter[str] = Counter()
    for document in documents:
        if document.result.failure is not None:
            counter[document.result.failure.kind.value] += 1
    return dict(counter)
