"""Mapping-template application.

``apply_template`` is a pure function of the document and the template: it
compiles the template's patterns locally and returns a fresh
:class:`~bulletin_pipeline.models.ExtractionResult`. A field that does not match
is simply absent; only a document that yields no block or row at all, or a
template that cannot be used, raises.
"""

from __future__ import annotations

import logging
import re
from typing import Iterator, Mapping, Sequence

from bulletin_pipeline.acquisition.tabular import TabularDocument
from bulletin_pipeline.bulletins.metadata import normalize_term
from bulletin_pipeline.candidates import capture, compile_pattern
from bulletin_pipeline.config import DEFAULT_SETTINGS, ExtractionSettings
from bulletin_pipeline.errors import (
    MissingRequiredColumnMapping,
    NoDelimiterMatch,
    NoRecordsExtracted,
    UnparsableGrade,
)
from bulletin_pipeline.mapping.template import (
    COLUMN_FIELDS,
    PATTERN_FLAGS,
    UNUSED,
    MappingTemplate,
    compile_template_pattern,
)
from bulletin_pipeline.models import (
    AverageSource,
    DocumentShape,
    ExtractionResult,
    Grade,
    ResultStatus,
    StudentRecord,
    TermInfo,
)
from bulletin_pipeline.stages.stage3_records import derive_average, parse_grade, parse_grade_strict

logger = logging.getLogger(__name__)

GENERIC_BLOCK_SPLIT_RE = re.compile(r"\n{3,}|\r\n{3,}|={3,}|-{3,}")
CUSTOM_CLASS_AVERAGE_GROUPS = ("classAverage", "class_average")


def _search(pattern: re.Pattern | None, text: str) -> str | None:
    if pattern is None:
        return None
    match = pattern.search(text)
    if match is None:
        return None
    value = capture(match).strip()
    return value or None


def _term(pattern: re.Pattern | None, text: str) -> str | None:
    if pattern is None:
        return None
    match = pattern.search(text)
    if match is None:
        return None
    value = capture(match).strip()
    kind = "Semestre" if "semestre" in match.group(0).lower() else "Trimestre"
    normalized = normalize_term(f"{kind} {value}")
    return normalized or value or None


def split_blocks(text: str, template: MappingTemplate) -> list[str]:
    """Split prose into student blocks with the template's student delimiter.

    An empty delimiter falls back to blank-line runs and rules of ``=``/``-``.

    Raises:
        NoDelimiterMatch: If no non-blank block remains.
        InvalidTemplatePattern: If the delimiter does not compile.
    """

    delimiter = template.delimiters.student
    splitter = (
        compile_pattern("delimiters.student", delimiter, PATTERN_FLAGS) if delimiter else GENERIC_BLOCK_SPLIT_RE
    )
    parts = splitter.split(text)
    # ``re.split`` interleaves captured delimiter groups; keep only the text between delimiters.
    blocks = [part for part in parts[:: splitter.groups + 1] if part and part.strip()]
    if not blocks:
        raise NoDelimiterMatch("Document text could not be split into any student block")
    return blocks


def _grade(value: str | None, settings: ExtractionSettings) -> Grade:
    return None if value is None else parse_grade(value, settings.grade_scale)


def _record(
    name: str,
    grades: dict[str, Grade],
    class_averages: dict[str, Grade],
    comments: dict[str, str],
    source: str,
) -> StudentRecord:
    average = derive_average(grades)
    return StudentRecord(
        name=name,
        grades=grades,
        average=average,
        average_source=AverageSource.UNDEFINED if average is None else AverageSource.DERIVED,
        comments=comments,
        class_averages=class_averages,
        source=source,
    )


def prose_term_info(text: str, template: MappingTemplate) -> TermInfo:
    """Read the term, class and school fields of a prose template."""

    return TermInfo(
        term=_term(compile_template_pattern(template, "term_pattern"), text),
        class_name=_search(compile_template_pattern(template, "class_name_pattern"), text),
        school_name=_search(compile_template_pattern(template, "school_name_pattern"), text),
    )


def iter_prose_records(
    text: str,
    template: MappingTemplate,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
) -> Iterator[tuple[int, StudentRecord | None]]:
    """Yield ``(block_index, record)`` for every student block of ``text``.

    Each subject match opens a section running to the next subject match; the
    first grade, class average and comment found in that section belong to
    that subject. Without subject and grade patterns, ``custom_regex`` named
    groups (``subject``, ``grade``, ``classAverage``, ``comment``) are used.
    ``record`` is ``None`` for a block without a student name.

    Patterns are compiled and the text is split before the first item is
    yielded, so template errors surface on the first ``next()``.
    """

    name_re = compile_template_pattern(template, "student_name_pattern")
    subject_re = compile_template_pattern(template, "subject_pattern")
    grade_re = compile_template_pattern(template, "grade_pattern")
    class_avg_re = compile_template_pattern(template, "class_average_pattern")
    comment_re = compile_template_pattern(template, "teacher_comment_pattern")
    custom_re = compile_template_pattern(template, "custom_regex")

    for index, block in enumerate(split_blocks(text, template)):
        name = _search(name_re, block)
        if not name:
            yield index, None
            continue

        grades: dict[str, Grade] = {}
        class_averages: dict[str, Grade] = {}
        comments: dict[str, str] = {}
        if subject_re is not None and grade_re is not None:
            matches = list(subject_re.finditer(block))
            for idx, match in enumerate(matches):
                subject = capture(match).strip()
                if not subject or grades.get(subject) is not None:
                    continue
                end = matches[idx + 1].start() if idx + 1 < len(matches) else len(block)
                section = block[match.start() : end]
                grades[subject] = _grade(_search(grade_re, section), settings)
                class_avg = _grade(_search(class_avg_re, section), settings)
                if class_avg is not None:
                    class_averages.setdefault(subject, class_avg)
                comment = _search(comment_re, section)
                if comment and subject not in comments:
                    comments[subject] = comment
        elif custom_re is not None:
            for match in custom_re.finditer(block):
                found = {key: value for key, value in match.groupdict().items() if value}
                subject = (found.get("subject") or "").strip()
                if not subject or grades.get(subject) is not None:
                    continue
                grades[subject] = _grade(found.get("grade"), settings)
                class_avg = _grade(
                    next((found[key] for key in CUSTOM_CLASS_AVERAGE_GROUPS if key in found), None), settings
                )
                if class_avg is not None:
                    class_averages.setdefault(subject, class_avg)
                if found.get("comment"):
                    comments.setdefault(subject, found["comment"].strip())

        yield index, _record(name, grades, class_averages, comments, source)


def apply_prose(
    text: str,
    template: MappingTemplate,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
) -> ExtractionResult:
    """Apply a template's regex fields to prose text."""

    students: list[StudentRecord] = []
    unparsed: list[int] = []
    for index, record in iter_prose_records(text, template, settings, source):
        if record is None:
            unparsed.append(index)
        else:
            students.append(record)

    if unparsed:
        logger.info("%d block(s) without a student name were left unparsed", len(unparsed))
    return ExtractionResult(
        status=ResultStatus.OK,
        shape=DocumentShape.PROSE,
        students=tuple(students),
        term_info=prose_term_info(text, template),
        unparsed_blocks=tuple(unparsed),
    )


def _column_keys(header: Sequence[str], template: MappingTemplate) -> tuple[dict[str, str | None], list[str]]:
    """Resolve template column indexes into header labels."""

    missing = template.column_mappings.missing_required()
    if missing:
        raise MissingRequiredColumnMapping(
            f"Tabular template {template.name!r} must map the name, subject and grade columns; "
            f"unmapped: {', '.join(missing)}"
        )

    keys: dict[str, str | None] = {}
    warnings: list[str] = []
    for attr, _ in COLUMN_FIELDS:
        index = getattr(template.column_mappings, attr)
        if index == UNUSED:
            keys[attr] = None
        elif index < len(header):
            keys[attr] = header[index]
        elif attr in ("student_name", "subject", "grade"):
            raise MissingRequiredColumnMapping(
                f"Column index {index} for {attr} is outside the {len(header)} column(s) of the document"
            )
        else:
            keys[attr] = None
            warnings.append(f"Column index {index} for {attr} is outside the document; ignored")
    return keys, warnings



class LongFormatReader:
    """Merge long-format rows, one ``(student, subject, grade)`` triple each, per student.

    The column indexes are resolved when the reader is built, so a template
    that cannot be used fails before any row is read.

    Raises:
        MissingRequiredColumnMapping: If name, subject or grade is unmapped.
    """

    def __init__(
        self,
        header: Sequence[str],
        template: MappingTemplate,
        settings: ExtractionSettings = DEFAULT_SETTINGS,
        source: str = "",
    ) -> None:
        self._keys, warnings = _column_keys(header, template)
        self._settings = settings
        self._source = source
        self._by_name: dict[str, tuple[dict[str, Grade], dict[str, Grade], dict[str, str]]] = {}
        self.warnings: list[str] = warnings
        self.class_averages: dict[str, Grade] = {}

    def add(self, row: Mapping[str, str]) -> None:
        """Merge one row; rows without a name or a subject are ignored."""

        keys = self._keys
        scale = self._settings.grade_scale
        name = (row.get(keys["student_name"]) or "").strip()
        subject = (row.get(keys["subject"]) or "").strip()
        if not name or not subject:
            return
        grades, class_averages, comments = self._by_name.setdefault(name, ({}, {}, {}))

        try:
            grades[subject] = parse_grade_strict(row.get(keys["grade"]) or "", scale)
        except UnparsableGrade as exc:
            grades[subject] = None
            self.warnings.append(f"{name} / {subject}: {exc.reason}")

        if keys["class_average"]:
            value = parse_grade(row.get(keys["class_average"]) or "", scale)
            if value is not None:
                class_averages[subject] = value
                self.class_averages.setdefault(subject, value)
        if keys["teacher_comment"]:
            comment = (row.get(keys["teacher_comment"]) or "").strip()
            if comment:
                comments[subject] = comment

    def students(self) -> list[StudentRecord]:
        """Return the records merged so far, sorted by name."""

        return [
            _record(name, *self._by_name[name], self._source)
            for name in sorted(self._by_name, key=lambda item: item.casefold())
        ]


def apply_tabular(
    document: TabularDocument,
    template: MappingTemplate,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
) -> ExtractionResult:
    """Apply a template's column indexes to long-format spreadsheet rows.

    Raises:
        MissingRequiredColumnMapping: If name, subject or grade is unmapped.
        NoRecordsExtracted: If the document has no data row.
    """

    reader = LongFormatReader(document.header, template, settings, source)
    if not document.rows:
        raise NoRecordsExtracted("Spreadsheet has no data rows")
    for row in document.rows:
        reader.add(row)
    return ExtractionResult(
        status=ResultStatus.OK,
        shape=DocumentShape.TABULAR,
        students=tuple(reader.students()),
        warnings=tuple(reader.warnings),
        class_averages=reader.class_averages,
    )


def apply_template(
    document: object,
    template: MappingTemplate,
    shape: DocumentShape,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
) -> ExtractionResult:
    """Apply ``template`` to ``document`` according to ``shape``.

    Args:
        document: Prose text, or a :class:`TabularDocument` for ``TABULAR``.
        template: Template to apply; it is never modified.
        shape: ``TABULAR`` for spreadsheets, any other shape reads prose.
        settings: Extraction settings.
        source: Document label stored on the records.
    """

    if shape is DocumentShape.TABULAR:
        if not isinstance(document, TabularDocument):
            raise TypeError(f"Tabular templates need a TabularDocument, got {type(document).__name__}")
        return apply_tabular(document, template, settings, source)
    return apply_prose(str(document), template, settings, source)
