"""Data models used across report-card extraction stages.

This module defines explicit immutable contracts between stages so each stage
has a narrow, testable interface and downstream code can rely on stable fields.
Mapping-valued fields are frozen into read-only views on construction; every
transformation in the package returns a new value instead of mutating one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping

Grade = float | None
"""A numeric grade, or ``None`` when the grade is absent (never coerced to 0)."""


def _frozen(mapping: Mapping) -> Mapping:
    """Return a read-only copy of ``mapping``."""

    return MappingProxyType(dict(mapping))


class ColumnRole(str, Enum):
    """Semantic role of a grade-table column."""

    NAME = "name"
    SUBJECT = "subject"
    AVERAGE = "average"
    OTHER = "other"


class AverageSource(str, Enum):
    """Provenance of a student's overall average."""

    DECLARED = "declared"
    DERIVED = "derived"
    UNDEFINED = "undefined"


class DocumentShape(str, Enum):
    """Document layouts the engine knows how to read."""

    GRADE_TABLE = "grade_table"
    BULLETINS = "bulletins"
    PROSE = "prose"
    TABULAR = "tabular"


class ResultStatus(str, Enum):
    """Outcome tag of one extraction run.

    ``PARTIAL`` carries the records accumulated before a timeout or a
    cancellation; ``DEGRADED`` is returned when the document could not be read
    the normal way and only fallback data is available.
    """

    OK = "ok"
    PARTIAL = "partial"
    DEGRADED = "degraded"


class ErrorKind(str, Enum):
    """Machine-checkable failure kinds exposed at the engine boundary."""

    NO_HEADER_DETECTED = "no_header_detected"
    NO_DELIMITER_MATCH = "no_delimiter_match"
    UNPARSABLE_GRADE = "unparsable_grade"
    MISSING_REQUIRED_COLUMN_MAPPING = "missing_required_column_mapping"
    INVALID_TEMPLATE_PATTERN = "invalid_template_pattern"
    ACQUISITION_TIMEOUT = "acquisition_timeout"
    ACQUISITION_FAILURE = "acquisition_failure"
    CANCELLED = "cancelled"
    NO_RECORDS = "no_records"


@dataclass(frozen=True)
class TextFragment:
    """One positioned piece of text produced by the acquisition adapter."""

    text: str
    x: float
    y: float
    page: int


@dataclass(frozen=True)
class Row:
    """Fragments sharing one vertical band on a page, sorted by ``x``."""

    page: int
    y: float
    fragments: tuple[TextFragment, ...]

    @property
    def text(self) -> str:
        """Return the row text joined left to right with single spaces."""

        return " ".join(fragment.text for fragment in self.fragments)


@dataclass(frozen=True)
class ColumnAnchor:
    """Column position and role derived from a header row.

    ``width`` extends to the next anchor's ``x`` so anchors of one model never
    overlap; the last anchor of a row uses a large sentinel width.
    """

    role: ColumnRole
    label: str
    x: float
    width: float
    page: int = 1

    @property
    def right(self) -> float:
        """Return the exclusive right edge of the column."""

        return self.x + self.width


@dataclass(frozen=True)
class ColumnModel:
    """Ordered column anchors detected from one header row."""

    page: int
    header_y: float
    anchors: tuple[ColumnAnchor, ...]
    detected_by: str

    def labels(self, role: ColumnRole) -> tuple[str, ...]:
        """Return anchor labels having ``role`` in left-to-right order."""

        return tuple(anchor.label for anchor in self.anchors if anchor.role is role)


@dataclass(frozen=True)
class RecordRow:
    """One data row resolved into column label -> concatenated text."""

    page: int
    cells: Mapping[str, str]

    def __post_init__(self) -> None:
        object.__setattr__(self, "cells", _frozen(self.cells))

    def get(self, label: str) -> str:
        """Return the stripped cell text for ``label`` or an empty string."""

        return self.cells.get(label, "").strip()


@dataclass(frozen=True)
class StudentRecord:
    """Normalized record for one student of one document.

    ``average_source`` distinguishes an average read from the document
    (``DECLARED``) from one computed as the mean of present grades
    (``DERIVED``); the two are not interchangeable when auditing.
    """

    name: str
    grades: Mapping[str, Grade] = field(default_factory=dict)
    average: Grade = None
    average_source: AverageSource = AverageSource.UNDEFINED
    comments: Mapping[str, str] = field(default_factory=dict)
    teacher_names: Mapping[str, str] = field(default_factory=dict)
    class_averages: Mapping[str, Grade] = field(default_factory=dict)
    name_is_fallback: bool = False
    source: str = ""

    def __post_init__(self) -> None:
        for name in ("grades", "comments", "teacher_names", "class_averages"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    @property
    def present_grades(self) -> tuple[float, ...]:
        """Return grades that carry a value, in subject order."""

        return tuple(grade for grade in self.grades.values() if grade is not None)


@dataclass(frozen=True)
class SubjectFeedback:
    """Per-subject feedback captured from a student's bulletin."""

    subject: str
    teacher: str | None
    average: Grade
    remark: str
    class_average: Grade = None


@dataclass(frozen=True)
class BulletinBlock:
    """Contiguous lines believed to hold one student's bulletin."""

    index: int
    start_line: int
    lines: tuple[str, ...]
    anchored: bool

    @property
    def text(self) -> str:
        """Return the block lines joined with newlines."""

        return "\n".join(self.lines)


@dataclass(frozen=True)
class TermInfo:
    """Document-level metadata; ``None`` marks a field that was not found."""

    term: str | None = None
    class_name: str | None = None
    school_name: str | None = None
    year: str | None = None
    main_teacher: str | None = None
    class_appreciation: str | None = None

    def merged_with(self, other: "TermInfo") -> "TermInfo":
        """Return a copy where fields missing here are taken from ``other``."""

        return TermInfo(
            term=self.term or other.term,
            class_name=self.class_name or other.class_name,
            school_name=self.school_name or other.school_name,
            year=self.year or other.year,
            main_teacher=self.main_teacher or other.main_teacher,
            class_appreciation=self.class_appreciation or other.class_appreciation,
        )


@dataclass(frozen=True)
class Failure:
    """Failure description crossing the engine boundary."""

    kind: ErrorKind
    reason: str


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of extracting one document.

    Attributes:
        status: ``OK``, ``PARTIAL`` or ``DEGRADED``.
        shape: Layout the records were read from, when one was determined.
        students: Student records in document order.
        term_info: Document metadata.
        failure: Typed failure for ``PARTIAL``/``DEGRADED`` results.
        warnings: Human-readable notes about absorbed field-level problems.
        unparsed_blocks: Indexes of bulletin blocks that yielded no record.
        class_averages: Class averages per subject read from summary rows.
    """

    status: ResultStatus
    shape: DocumentShape | None = None
    students: tuple[StudentRecord, ...] = ()
    term_info: TermInfo = field(default_factory=TermInfo)
    failure: Failure | None = None
    warnings: tuple[str, ...] = ()
    unparsed_blocks: tuple[int, ...] = ()
    class_averages: Mapping[str, Grade] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "class_averages", _frozen(self.class_averages))

    @property
    def ok(self) -> bool:
        """Return whether the extraction completed without degradation."""

        return self.status is ResultStatus.OK


@dataclass(frozen=True)
class DocumentResult:
    """Extraction result tagged with the document it came from."""

    source: str
    result: ExtractionResult


@dataclass(frozen=True)
class BucketCount:
    """Number of students whose average falls into one range.

    The range is ``[lower, upper)``; the last bucket of a distribution is
    ``[lower, upper]``.
    """

    lower: float
    upper: float
    upper_inclusive: bool
    students: tuple[str, ...]

    @property
    def count(self) -> int:
        return len(self.students)

    @property
    def label(self) -> str:
        closing = "]" if self.upper_inclusive else ")"
        return f"[{self.lower:g}, {self.upper:g}{closing}"


@dataclass(frozen=True)
class SubjectSummary:
    """Class-level statistic for one subject."""

    subject: str
    average: Grade
    graded_count: int
    teacher: str | None = None


@dataclass(frozen=True)
class ClassDataset:
    """Aggregate of student records built fresh for one analysis run.

    Subject names are deduplicated and every ``StudentRecord.grades`` key is a
    member of ``subjects``.
    """

    students: tuple[StudentRecord, ...]
    subjects: tuple[str, ...]
    term_info: TermInfo = field(default_factory=TermInfo)
    class_average: Grade = None
    subject_averages: Mapping[str, Grade] = field(default_factory=dict)
    declared_subject_averages: Mapping[str, Grade] = field(default_factory=dict)
    distribution: tuple[BucketCount, ...] = ()
    subject_summaries: tuple[SubjectSummary, ...] = ()

    def __post_init__(self) -> None:
        for name in ("subject_averages", "declared_subject_averages"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))


@dataclass(frozen=True)
class BatchResult:
    """Per-document results of a batch run plus the merged class dataset."""

    documents: tuple[DocumentResult, ...]
    dataset: ClassDataset
    status: ResultStatus
    warnings: tuple[str, ...] = ()
