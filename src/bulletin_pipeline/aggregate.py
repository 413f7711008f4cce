"""Class-level aggregation of per-document extraction results.

Buckets are half-open ``[lower, upper)`` except the last one, which also holds
its upper bound; an average of exactly ``10.0`` therefore falls into
``[10, 13)`` and a perfect ``20.0`` into ``[15, 20]``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from statistics import fmean
from typing import Iterable, Sequence

from bulletin_pipeline.candidates import most_frequent
from bulletin_pipeline.config import DEFAULT_SETTINGS, ExtractionSettings
from bulletin_pipeline.models import (
    BucketCount,
    ClassDataset,
    ExtractionResult,
    Grade,
    StudentRecord,
    SubjectSummary,
    TermInfo,
)

logger = logging.getLogger(__name__)

CATEGORY_THRESHOLDS = (
    ("excellent", 16.0),
    ("good", 14.0),
    ("average", 10.0),
    ("struggling", 8.0),
    ("very_struggling", float("-inf")),
)


def _mean(values: Iterable[float]) -> float | None:
    present = list(values)
    if not present:
        return None
    return round(fmean(present), 2)


def bucket_index(value: Grade, bounds: Sequence[float]) -> int | None:
    """Return the bucket holding ``value``, ``None`` when absent or out of range."""

    if value is None:
        return None
    last = len(bounds) - 2
    for idx, (lower, upper) in enumerate(zip(bounds, bounds[1:])):
        if lower <= value < upper or (idx == last and value == upper):
            return idx
    return None


def distribution(students: Sequence[StudentRecord], bounds: Sequence[float]) -> tuple[BucketCount, ...]:
    """Bucket students by overall average.

    Students without an average, or with one outside ``bounds``, are not
    counted.
    """

    members: list[list[str]] = [[] for _ in range(len(bounds) - 1)]
    for student in students:
        idx = bucket_index(student.average, bounds)
        if idx is None:
            if student.average is not None:
                logger.debug("Average %s of %s is outside the bucket range", student.average, student.name)
            continue
        members[idx].append(student.name)
    last = len(bounds) - 2
    return tuple(
        BucketCount(lower=lower, upper=upper, upper_inclusive=idx == last, students=tuple(members[idx]))
        for idx, (lower, upper) in enumerate(zip(bounds, bounds[1:]))
    )


def categorize_students(students: Sequence[StudentRecord]) -> dict[str, tuple[str, ...]]:
    """Group student names into performance categories by average.

    Each category is ``average >= threshold`` below the previous category's
    threshold; students without an average are left out.
    """

    categories: dict[str, list[str]] = {name: [] for name, _ in CATEGORY_THRESHOLDS}
    for student in students:
        if student.average is None:
            continue
        for name, threshold in CATEGORY_THRESHOLDS:
            if student.average >= threshold:
                categories[name].append(student.name)
                break
    return {name: tuple(members) for name, members in categories.items()}


def subject_union(students: Sequence[StudentRecord]) -> tuple[str, ...]:
    """Return every subject of ``students`` once, in first-seen order."""

    seen: dict[str, None] = {}
    for student in students:
        for subject in student.grades:
            seen.setdefault(subject, None)
    return tuple(seen)


def merge_students(results: Sequence[ExtractionResult]) -> tuple[tuple[StudentRecord, ...], list[str]]:
    """Concatenate the students of several results.

    A name already read from another document is a duplicate: the first record
    is kept. Namesakes inside one document are distinct students, and records
    with a fallback name are never duplicates; when such a name is taken it is
    qualified with the record's source.

    Returns:
        ``(students, warnings)``.
    """

    kept: list[StudentRecord] = []
    first_by_name: dict[str, StudentRecord] = {}
    warnings: list[str] = []
    for result in results:
        for student in result.students:
            first = first_by_name.get(student.name)
            if first is not None and student.name_is_fallback:
                student = replace(student, name=f"{student.name} ({student.source or len(kept) + 1})")
            elif first is not None and not first.name_is_fallback and first.source != student.source:
                warnings.append(
                    f"Duplicate student {student.name!r} in {student.source or 'document'}; "
                    f"kept the record from {first.source or 'the first document'}"
                )
                continue
            first_by_name.setdefault(student.name, student)
            kept.append(student)
    return tuple(kept), warnings


def build_class_dataset(
    students: Sequence[StudentRecord],
    term_info: TermInfo = TermInfo(),
    declared_subject_averages: dict[str, Grade] | None = None,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
) -> ClassDataset:
    """Compute class statistics for ``students``.

    Args:
        students: Records to aggregate; never modified.
        term_info: Document metadata carried onto the dataset.
        declared_subject_averages: Class averages read from the documents.
        settings: Settings providing the bucket bounds.

    Returns:
        A new dataset whose subject set covers every grade key.
    """

    subjects = subject_union(students)
    subject_averages = {
        subject: _mean(
            student.grades[subject]
            for student in students
            if student.grades.get(subject) is not None
        )
        for subject in subjects
    }

    declared: dict[str, Grade] = dict(declared_subject_averages or {})
    for student in students:
        for subject, value in student.class_averages.items():
            if value is not None:
                declared.setdefault(subject, value)

    summaries = tuple(
        SubjectSummary(
            subject=subject,
            average=subject_averages[subject],
            graded_count=sum(1 for student in students if student.grades.get(subject) is not None),
            teacher=most_frequent(
                [student.teacher_names[subject] for student in students if subject in student.teacher_names]
            ),
        )
        for subject in subjects
    )

    return ClassDataset(
        students=tuple(students),
        subjects=subjects,
        term_info=term_info,
        class_average=_mean(student.average for student in students if student.average is not None),
        subject_averages=subject_averages,
        declared_subject_averages=declared,
        distribution=distribution(students, settings.bucket_bounds),
        subject_summaries=summaries,
    )


def aggregate(
    results: Sequence[ExtractionResult],
    settings: ExtractionSettings = DEFAULT_SETTINGS,
) -> tuple[ClassDataset, list[str]]:
    """Merge per-document results into one class dataset.

    Metadata fields are taken from the first result that has them; declared
    class averages likewise.

    Returns:
        ``(dataset, warnings)``.
    """

    students, warnings = merge_students(results)
    term_info = TermInfo()
    declared: dict[str, Grade] = {}
    for result in results:
        term_info = term_info.merged_with(result.term_info)
        for subject, value in result.class_averages.items():
            if value is not None:
                declared.setdefault(subject, value)

    multi = [result for result in results if len(result.students) > 1]
    if len(results) > 1 and multi:
        logger.info("%d of %d document(s) hold more than one student", len(multi), len(results))

    dataset = build_class_dataset(students, term_info, declared, settings)
    logger.info(
        "Aggregated %d student(s) over %d subject(s) from %d document(s)",
        len(dataset.students),
        len(dataset.subjects),
        len(results),
    )
    return dataset, warnings
