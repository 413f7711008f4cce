"""Mapping templates: user-editable extraction rules.

A template holds regex patterns for prose documents and explicit zero-based
column indexes for tabular documents. Templates are plain frozen values; the
engine reads them and never changes them, so one instance can be applied to
many documents at once.

Serialization uses the camelCase keys of stored templates::

    {"name": ..., "studentNamePattern": ..., "delimiters": {"student": ..., "subject": ...},
     "columnMappings": {"studentName": 0, "subject": 1, "grade": 2, ...}}
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping

from bulletin_pipeline.candidates import compile_pattern

UNUSED = -1
# Flags every prose pattern is compiled with, at inference and at application.
PATTERN_FLAGS = re.IGNORECASE | re.MULTILINE

PATTERN_FIELDS = (
    ("student_name_pattern", "studentNamePattern"),
    ("student_id_pattern", "studentIdPattern"),
    ("subject_pattern", "subjectPattern"),
    ("grade_pattern", "gradePattern"),
    ("class_average_pattern", "classAveragePattern"),
    ("teacher_comment_pattern", "teacherCommentPattern"),
    ("term_pattern", "termPattern"),
    ("class_name_pattern", "classNamePattern"),
    ("school_name_pattern", "schoolNamePattern"),
    ("custom_regex", "customRegex"),
)

COLUMN_FIELDS = (
    ("student_name", "studentName"),
    ("student_id", "studentId"),
    ("subject", "subject"),
    ("grade", "grade"),
    ("class_average", "classAverage"),
    ("teacher_comment", "teacherComment"),
)


@dataclass(frozen=True)
class Delimiters:
    """Regexes separating student blocks and subject sections."""

    student: str = ""
    subject: str = ""


@dataclass(frozen=True)
class ColumnMappings:
    """Zero-based column indexes; :data:`UNUSED` (``-1``) marks an unmapped field."""

    student_name: int = UNUSED
    student_id: int = UNUSED
    subject: int = UNUSED
    grade: int = UNUSED
    class_average: int = UNUSED
    teacher_comment: int = UNUSED

    def missing_required(self) -> tuple[str, ...]:
        """Return the required fields (name, subject, grade) left unmapped."""

        return tuple(
            name for name in ("student_name", "subject", "grade") if getattr(self, name) == UNUSED
        )


@dataclass(frozen=True)
class MappingTemplate:
    """Named bundle of extraction rules."""

    name: str = "template"
    student_name_pattern: str = ""
    student_id_pattern: str = ""
    subject_pattern: str = ""
    grade_pattern: str = ""
    class_average_pattern: str = ""
    teacher_comment_pattern: str = ""
    term_pattern: str = ""
    class_name_pattern: str = ""
    school_name_pattern: str = ""
    custom_regex: str = ""
    delimiters: Delimiters = field(default_factory=Delimiters)
    column_mappings: ColumnMappings = field(default_factory=ColumnMappings)

    def patterns(self) -> dict[str, str]:
        """Return the non-empty regex fields keyed by attribute name."""

        out = {attr: getattr(self, attr) for attr, _ in PATTERN_FIELDS if getattr(self, attr)}
        if self.delimiters.student:
            out["delimiters.student"] = self.delimiters.student
        if self.delimiters.subject:
            out["delimiters.subject"] = self.delimiters.subject
        return out

    @property
    def is_empty(self) -> bool:
        """Return whether the template carries no rule at all."""

        return not self.patterns() and self.column_mappings == ColumnMappings()


def compile_template_pattern(template: MappingTemplate, attr: str, flags: int = PATTERN_FLAGS) -> re.Pattern | None:
    """Compile one pattern field of ``template``.

    Returns:
        The compiled regex, or ``None`` when the field is empty.

    Raises:
        InvalidTemplatePattern: If the field does not hold a valid regex.
    """

    value = template.patterns().get(attr)
    if not value:
        return None
    return compile_pattern(attr, value, flags)


def template_to_dict(template: MappingTemplate) -> dict[str, Any]:
    """Serialize ``template`` into a plain camelCase mapping."""

    payload: dict[str, Any] = {"name": template.name}
    for attr, key in PATTERN_FIELDS:
        payload[key] = getattr(template, attr)
    payload["delimiters"] = {
        "student": template.delimiters.student,
        "subject": template.delimiters.subject,
    }
    payload["columnMappings"] = {key: getattr(template.column_mappings, attr) for attr, key in COLUMN_FIELDS}
    return payload


def _as_index(value: Any, key: str) -> int:
    if value is None or value == "":
        return UNUSED
    try:
        index = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Column mapping {key!r} must be an integer, got {value!r}") from exc
    if index < UNUSED:
        raise ValueError(f"Column mapping {key!r} must be >= {UNUSED}, got {index}")
    return index


def template_from_dict(payload: Mapping[str, Any], name: str = "") -> MappingTemplate:
    """Build a template from a stored camelCase mapping.

    Missing keys take their defaults; snake_case keys are accepted as well.

    Raises:
        ValueError: If a column mapping is not an integer index.
    """

    kwargs: dict[str, Any] = {"name": str(payload.get("name") or name or "template")}
    for attr, key in PATTERN_FIELDS:
        value = payload.get(key, payload.get(attr, ""))
        kwargs[attr] = "" if value is None else str(value)

    raw_delimiters = payload.get("delimiters") or {}
    kwargs["delimiters"] = Delimiters(
        student=str(raw_delimiters.get("student") or ""),
        subject=str(raw_delimiters.get("subject") or ""),
    )

    raw_columns = payload.get("columnMappings", payload.get("column_mappings")) or {}
    kwargs["column_mappings"] = ColumnMappings(
        **{attr: _as_index(raw_columns.get(key, raw_columns.get(attr)), key) for attr, key in COLUMN_FIELDS}
    )
    return MappingTemplate(**kwargs)


def with_columns(template: MappingTemplate, **indexes: int) -> MappingTemplate:
    """Return a copy of ``template`` with some column indexes replaced."""

    valid = {item.name for item in fields(ColumnMappings)}
    unknown = set(indexes) - valid
    if unknown:
        raise ValueError(f"Unknown column mapping(s): {sorted(unknown)}")
    return replace(template, column_mappings=replace(template.column_mappings, **indexes))


FORMAT_SIGNATURES = (
    ("roman-rolland", ("COLLEGE ROMAN ROLLAND", "COLLEGE ROMAIN ROLLAND", "Appréciations générales de la classe")),
    ("standard-bulletin", ("Bulletin scolaire", "Bulletin de notes")),
    ("moyennes-tableau", ("Tableau des moyennes",)),
)


def detect_bulletin_format(text: str) -> str:
    """Return the known layout family of ``text`` (``"standard"`` when unknown)."""

    for fmt, markers in FORMAT_SIGNATURES:
        if any(marker in text for marker in markers):
            return fmt
    return "standard"


STARTER_TEMPLATES: Mapping[str, Mapping[str, Any]] = {
    "roman-rolland": {
        "studentNamePattern": r"Élève\s*:\s*([^\n]+)",
        "subjectPattern": r"^([A-ZÀ-Ö][A-ZÀ-Ö \-&.]+?)\s*:",
        "gradePattern": r"(\d+(?:[.,]\d+)?)\s*/\s*20",
        "classAveragePattern": r"Moyenne\s+de\s+classe\s*:\s*(\d+(?:[.,]\d+)?)",
        "teacherCommentPattern": r"Appréciation\s*:\s*([^\n]+)",
        "termPattern": r"Trimestre\s*(\d+)",
        "classNamePattern": r"Classe\s*:\s*(\w+)",
        "delimiters": {"student": r"={10,}", "subject": r"-{5,}"},
    },
    "standard-bulletin": {
        "studentNamePattern": r"(?:Élève|Nom)\s*:\s*([^\n]+)",
        "subjectPattern": r"^([A-ZÀ-Ö][\w \-]+?)\s*:\s*\d",
        "gradePattern": r"(\d+[,.]\d+)(?:\s*/\s*\d+)?",
        "classAveragePattern": r"Moyenne\s+de\s+classe\s*:?\s*(\d+[,.]\d+)",
        "teacherCommentPattern": r"(?:Appréciation|Commentaire)\s*:?\s*([^\n]+)",
        "termPattern": r"(?:Trimestre|Période)\s*(\d+)",
        "delimiters": {"student": r"(?:-{10,}|={10,}|\*{10,})", "subject": r"(?:-{5,}|={5,})"},
    },
    "moyennes-tableau": {
        "studentNamePattern": r"^([A-ZÀ-Ö][\w\- ]+?)\s+\d",
        "subjectPattern": r"([A-ZÀ-Ö][\w ]+)",
        "gradePattern": r"(\d+[,.]\d+)",
    },
    "standard": {
        "studentNamePattern": r"^([A-ZÀ-Ö][\w\- ]+?)\s*$",
        "subjectPattern": r"([A-ZÀ-Ö][\w ]+)",
        "gradePattern": r"(\d+[,.]\d+)",
    },
}


def starter_template(fmt: str) -> MappingTemplate:
    """Return the starter template of a layout family from :func:`detect_bulletin_format`."""

    payload = STARTER_TEMPLATES.get(fmt, STARTER_TEMPLATES["standard"])
    return template_from_dict(payload, name=fmt if fmt in STARTER_TEMPLATES else "standard")
