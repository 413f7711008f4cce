"""Stage 3: Build typed student records from resolved record rows.

Grade cells accept ``.`` or ``,`` as decimal separator and an optional
``/scale`` suffix. Absence markers and unreadable text both become an absent
grade (``None``) and are never coerced to zero.
"""

from __future__ import annotations

import logging
import re
from statistics import fmean
from typing import Iterator, Mapping, Sequence

from bulletin_pipeline.config import DEFAULT_SETTINGS, ExtractionSettings
from bulletin_pipeline.errors import UnparsableGrade
from bulletin_pipeline.models import (
    AverageSource,
    ColumnModel,
    ColumnRole,
    Grade,
    RecordRow,
    StudentRecord,
)

logger = logging.getLogger(__name__)

GRADE_RE = re.compile(r"^(?P<value>\d+(?:[.,]\d+)?)\s*(?:/\s*(?P<scale>\d+(?:[.,]\d+)?))?$")
GRADE_TOKEN_RE = re.compile(r"\d+(?:[.,]\d+)?(?:\s*/\s*\d+(?:[.,]\d+)?)?")
COMMENT_COLUMN_RE = re.compile(r"^(?P<subject>.+?)\s*\((?:appr[ée]ciations?|commentaires?)\)$", re.IGNORECASE)

ABSENCE_MARKERS = frozenset(
    {
        "abs", "abs.", "absent", "absente", "ab", "disp", "disp.", "dispense", "dispensé",
        "dispensée", "nn", "n.n", "n.n.", "ne", "n.e", "n.e.", "nc", "n.c", "n.c.", "-", "--",
        "x", "exc", "excusé", "excusée", "non noté", "non évalué",
    }
)

SUBJECT_ABBREVIATIONS: Mapping[str, str] = {
    "FR": "Français",
    "FRANC": "Français",
    "MATH": "Mathématiques",
    "MATHS": "Mathématiques",
    "HG": "Histoire-Géographie",
    "H-G": "Histoire-Géographie",
    "ANG": "Anglais",
    "ENG": "Anglais",
    "SVT": "Sciences de la Vie et de la Terre",
    "PHY": "Physique-Chimie",
    "PC": "Physique-Chimie",
    "EPS": "Éducation Physique et Sportive",
    "TECH": "Technologie",
    "TECHNO": "Technologie",
    "ESP": "Espagnol",
    "ALL": "Allemand",
    "MUS": "Musique",
    "ARTS": "Arts Plastiques",
    "AP": "Arts Plastiques",
}


def is_absence_marker(text: str) -> bool:
    """Return whether ``text`` explicitly marks a grade as absent."""

    return text.strip().lower() in ABSENCE_MARKERS


def _to_float(text: str) -> float:
    return float(text.replace(",", "."))


def parse_grade_strict(text: str, scale: float = DEFAULT_SETTINGS.grade_scale) -> Grade:
    """Parse one grade cell.

    A ``/N`` suffix rescales the value onto ``scale`` (``7/10`` on a 20 scale
    is ``14.0``).

    Args:
        text: Raw cell text.
        scale: Native grade scale; values above it are rejected.

    Returns:
        The grade, or ``None`` for an empty cell or an absence marker.

    Raises:
        UnparsableGrade: If the text is neither a grade nor an absence marker.
    """

    cleaned = text.strip()
    if not cleaned or is_absence_marker(cleaned):
        return None
    match = GRADE_RE.match(cleaned)
    if match is None:
        raise UnparsableGrade(cleaned)

    value = _to_float(match.group("value"))
    if match.group("scale"):
        denominator = _to_float(match.group("scale"))
        if denominator <= 0:
            raise UnparsableGrade(cleaned, "zero scale")
        if value > denominator:
            raise UnparsableGrade(cleaned, f"above /{denominator:g}")
        return round(value * scale / denominator, 4)
    if value > scale:
        raise UnparsableGrade(cleaned, f"above the {scale:g} scale")
    return value


def parse_grade(text: str, scale: float = DEFAULT_SETTINGS.grade_scale) -> Grade:
    """Parse one grade cell, turning unreadable text into an absent grade."""

    try:
        return parse_grade_strict(text, scale)
    except UnparsableGrade as exc:
        logger.debug("%s; treated as absent", exc.reason)
        return None


def subject_name(label: str, settings: ExtractionSettings = DEFAULT_SETTINGS) -> str:
    """Return the subject key for a column label, expanding abbreviations when enabled."""

    cleaned = label.strip()
    if settings.expand_subject_abbreviations:
        return SUBJECT_ABBREVIATIONS.get(cleaned.upper(), cleaned)
    return cleaned


def derive_average(grades: Mapping[str, Grade]) -> float | None:
    """Return the mean of present grades, ``None`` when no grade is present."""

    present = [grade for grade in grades.values() if grade is not None]
    if not present:
        return None
    return round(fmean(present), 2)


def build_student_record(
    row: RecordRow,
    model: ColumnModel,
    index: int,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
) -> tuple[StudentRecord | None, list[str]]:
    """Convert one record row into a student record.

    Args:
        row: Row resolved against ``model``.
        model: Column model the row was assigned with.
        index: 1-based position of the row, used for fallback names.
        settings: Extraction settings.
        source: Document label stored on the record.

    Returns:
        ``(record, warnings)``. ``record`` is ``None`` when the row carries no
        grade, average or comment at all.
    """

    warnings: list[str] = []
    anchors = model.anchors
    if not anchors:
        return None, warnings

    name_labels = model.labels(ColumnRole.NAME)
    name_is_fallback = not name_labels
    if name_labels:
        name = " ".join(part for part in (row.get(label) for label in name_labels) if part)
    else:
        name = row.get(anchors[0].label)

    grades: dict[str, Grade] = {}
    filled_cells = 0
    for anchor in anchors:
        if anchor.role is not ColumnRole.SUBJECT or (name_is_fallback and anchor is anchors[0]):
            continue
        text = row.get(anchor.label)
        subject = subject_name(anchor.label, settings)
        if text:
            filled_cells += 1
        try:
            grades[subject] = parse_grade_strict(text, settings.grade_scale)
        except UnparsableGrade as exc:
            grades[subject] = None
            warnings.append(f"{name or f'row {index}'} / {subject}: {exc.reason}")

    comments: dict[str, str] = {}
    for anchor in anchors:
        if anchor.role is not ColumnRole.OTHER:
            continue
        match = COMMENT_COLUMN_RE.match(anchor.label)
        text = row.get(anchor.label)
        if match and text:
            comments[subject_name(match.group("subject"), settings)] = text
            filled_cells += 1

    declared: float | None = None
    for label in model.labels(ColumnRole.AVERAGE):
        text = row.get(label)
        if text:
            filled_cells += 1
        declared = parse_grade(text, settings.grade_scale)
        if declared is not None:
            break

    if not filled_cells:
        logger.debug("Row %d on page %d has no grade cell; skipped", index, row.page)
        return None, warnings

    if not name:
        name = f"Élève {index}"
        name_is_fallback = True
        warnings.append(f"Row {index} on page {row.page} has no student name; using {name!r}")

    if declared is not None:
        average, average_source = declared, AverageSource.DECLARED
    else:
        average = derive_average(grades)
        average_source = AverageSource.UNDEFINED if average is None else AverageSource.DERIVED

    record = StudentRecord(
        name=name,
        grades=grades,
        average=average,
        average_source=average_source,
        comments=comments,
        name_is_fallback=name_is_fallback,
        source=source,
    )
    return record, warnings


def iter_student_records(
    rows: Sequence[RecordRow],
    model: ColumnModel,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
    first_index: int = 1,
) -> Iterator[tuple[int, StudentRecord | None, list[str]]]:
    """Yield ``(position, record, warnings)`` for each row in order.

    Records are produced lazily so a caller checking a deadline between rows
    keeps everything built before it stops.
    """

    for position, row in enumerate(rows, start=first_index):
        record, warnings = build_student_record(row, model, position, settings, source)
        yield position, record, warnings


def declared_class_averages(
    aggregate_rows: Sequence[RecordRow],
    model: ColumnModel,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
) -> dict[str, Grade]:
    """Read per-subject class averages from aggregate summary rows.

    The first aggregate row carrying a value for a subject wins.
    """

    averages: dict[str, Grade] = {}
    for row in aggregate_rows:
        for label in model.labels(ColumnRole.SUBJECT):
            subject = subject_name(label, settings)
            if averages.get(subject) is not None:
                continue
            value = parse_grade(row.get(label), settings.grade_scale)
            if value is not None:
                averages[subject] = value
    return averages
