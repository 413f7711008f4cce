"""Top-level orchestration of report-card extraction.

Positioned documents (PDF) go through row clustering, then either the grade
table stages or the bulletin splitter and feedback extractor. Spreadsheets
enter directly at the row-to-column stage. Stage exceptions are converted here,
once, into tagged results: a timeout or a cancellation returns the records
built so far as ``PARTIAL``; any other document-level failure returns
``DEGRADED`` with whatever fallback data could be read.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

from bulletin_pipeline.acquisition.pdf_text import extract_pdf
from bulletin_pipeline.acquisition.tabular import CSV_SUFFIXES, EXCEL_SUFFIXES, TabularDocument, read_tabular
from bulletin_pipeline.aggregate import aggregate
from bulletin_pipeline.bulletins.feedback import build_bulletin_record, extract_feedback
from bulletin_pipeline.bulletins.metadata import extract_term_info
from bulletin_pipeline.bulletins.splitter import count_anchors, split_bulletins
from bulletin_pipeline.config import DEFAULT_SETTINGS, ExtractionSettings
from bulletin_pipeline.errors import (
    AcquisitionFailure,
    AcquisitionTimeout,
    ExtractionCancelled,
    ExtractionError,
    NoHeaderDetected,
    NoRecordsExtracted,
)
from bulletin_pipeline.mapping.apply import LongFormatReader, iter_prose_records, prose_term_info, split_blocks
from bulletin_pipeline.mapping.infer import infer_column_mappings, infer_template
from bulletin_pipeline.mapping.template import MappingTemplate
from bulletin_pipeline.models import (
    BatchResult,
    ColumnRole,
    DocumentResult,
    DocumentShape,
    ExtractionResult,
    Grade,
    ResultStatus,
    Row,
    StudentRecord,
    TermInfo,
    TextFragment,
)
from bulletin_pipeline.progress import (
    ACQUIRED,
    CLUSTERED,
    DONE,
    EXTRACTED,
    STRUCTURED,
    CancellationToken,
    ProgressCallback,
    RunControl,
    ensure_control,
)
from bulletin_pipeline.stages.stage1_cluster import cluster_rows, rows_to_lines
from bulletin_pipeline.stages.stage2_columns import (
    assign_section,
    find_header_row,
    locate_tables,
    record_rows_from_table,
)
from bulletin_pipeline.stages.stage3_records import declared_class_averages, iter_student_records

logger = logging.getLogger(__name__)

PDF_SUFFIXES = {".pdf"}
INTERRUPTIONS = (AcquisitionTimeout, ExtractionCancelled)


@dataclass
class _Progress:
    """Records accumulated by one extraction, kept when it is interrupted."""

    students: list[StudentRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    unparsed: list[int] = field(default_factory=list)
    class_averages: dict[str, Grade] = field(default_factory=dict)
    shape: DocumentShape | None = None
    term_info: TermInfo = field(default_factory=TermInfo)

    def result(self, status: ResultStatus, failure: ExtractionError | None = None) -> ExtractionResult:
        return ExtractionResult(
            status=status,
            shape=self.shape,
            students=tuple(self.students),
            term_info=self.term_info,
            failure=None if failure is None else failure.to_failure(),
            warnings=tuple(self.warnings),
            unparsed_blocks=tuple(self.unparsed),
            class_averages=self.class_averages,
        )


def _uses_template(template: MappingTemplate | None) -> bool:
    return template is not None and not template.is_empty


def detect_shape(rows: Sequence[Row], settings: ExtractionSettings = DEFAULT_SETTINGS) -> DocumentShape:
    """Decide whether clustered rows hold a grade table or bulletins.

    Repeated bulletin anchors mean bulletins. A single anchor, or none, means a
    grade table when a header row exists; otherwise bulletins when subject
    feedback can be read from the text.
    """

    lines = rows_to_lines(rows)
    anchors = count_anchors(lines, settings.anchor_pattern)
    if anchors >= 2:
        return DocumentShape.BULLETINS
    if find_header_row(rows) is not None:
        return DocumentShape.GRADE_TABLE
    if anchors == 1 or extract_feedback("\n".join(lines), settings).feedback:
        return DocumentShape.BULLETINS
    return DocumentShape.GRADE_TABLE


def _extract_grade_table(
    rows: Sequence[Row],
    settings: ExtractionSettings,
    control: RunControl,
    source: str,
    progress: _Progress,
) -> None:
    sections = locate_tables(rows)
    control.report(STRUCTURED)
    total = sum(len(section.rows) for section in sections)
    done = 0
    position = 1
    for section in sections:
        student_rows, aggregate_rows = assign_section(section)
        for subject, value in declared_class_averages(aggregate_rows, section.model, settings).items():
            progress.class_averages.setdefault(subject, value)
        for _, record, row_warnings in iter_student_records(
            student_rows, section.model, settings, source, first_index=position
        ):
            control.check()
            progress.warnings.extend(row_warnings)
            if record is not None:
                progress.students.append(record)
            done += 1
            if done % settings.progress_every == 0:
                control.report_step(done, total)
        position += len(student_rows)


def _extract_bulletins(
    lines: Sequence[str],
    settings: ExtractionSettings,
    control: RunControl,
    source: str,
    progress: _Progress,
) -> None:
    blocks = split_bulletins(lines, settings.anchor_pattern)
    control.report(STRUCTURED)
    for done, block in enumerate(blocks, start=1):
        control.check()
        record, _ = build_bulletin_record(block, settings, source)
        if record is None:
            progress.unparsed.append(block.index)
        else:
            progress.students.append(record)
        if done % settings.progress_every == 0:
            control.report_step(done, len(blocks))
    if progress.unparsed:
        progress.warnings.append(
            f"{len(progress.unparsed)} bulletin block(s) yielded no subject feedback: "
            f"{', '.join(str(idx) for idx in progress.unparsed)}"
        )


def _read_with_template(
    document: object,
    template: MappingTemplate,
    shape: DocumentShape,
    settings: ExtractionSettings,
    control: RunControl,
    source: str,
    progress: _Progress,
) -> TermInfo:
    """Read ``document`` with ``template`` into ``progress``, one block or row at a time.

    Records are appended as they are built so an interruption keeps them.

    Returns:
        Metadata read by the template's own fields.
    """

    if shape is DocumentShape.TABULAR:
        if not isinstance(document, TabularDocument):
            raise TypeError(f"Tabular templates need a TabularDocument, got {type(document).__name__}")
        progress.shape = DocumentShape.TABULAR
        reader = LongFormatReader(document.header, template, settings, source)
        if not document.rows:
            raise NoRecordsExtracted("Spreadsheet has no data rows")
        control.report(STRUCTURED)
        try:
            for done, row in enumerate(document.rows, start=1):
                control.check()
                reader.add(row)
                if done % settings.progress_every == 0:
                    control.report_step(done, len(document.rows))
        finally:
            # Rows merge per student, so records are only final once reading stops.
            progress.students = reader.students()
            progress.warnings.extend(reader.warnings)
            for subject, value in reader.class_averages.items():
                progress.class_averages.setdefault(subject, value)
        return TermInfo()

    text = str(document)
    progress.shape = DocumentShape.PROSE
    records = iter_prose_records(text, template, settings, source)
    total = len(split_blocks(text, template))
    control.report(STRUCTURED)
    for done, (index, record) in enumerate(records, start=1):
        control.check()
        if record is None:
            progress.unparsed.append(index)
        else:
            progress.students.append(record)
        if done % settings.progress_every == 0:
            control.report_step(done, total)
    if progress.unparsed:
        progress.warnings.append(
            f"{len(progress.unparsed)} block(s) without a student name: "
            f"{', '.join(str(idx) for idx in progress.unparsed)}"
        )
    return prose_term_info(text, template)


def _fallback_with_inferred_template(
    document: object,
    shape: DocumentShape,
    failure: ExtractionError,
    settings: ExtractionSettings,
    control: RunControl,
    source: str,
    progress: _Progress,
) -> ExtractionResult:
    """Retry a failed document with an auto-inferred template.

    The result is ``DEGRADED``, or ``PARTIAL`` when the retry is interrupted.
    """

    logger.warning("%s: %s; retrying with an inferred template", source or "document", failure.reason)
    try:
        template = infer_template(
            document,
            shape,
            name=f"auto:{source}" if source else "auto",
            anchor_pattern=settings.anchor_pattern,
        )
        term_info = _read_with_template(document, template, shape, settings, control, source, progress)
    except INTERRUPTIONS as exc:
        logger.warning("%s: %s; returning %d record(s)", source or "document", exc.reason, len(progress.students))
        return progress.result(ResultStatus.PARTIAL, exc)
    except ExtractionError as exc:
        logger.warning("%s: inferred template failed: %s", source or "document", exc.reason)
        progress.warnings.append(f"Inferred template failed: {exc.reason}")
        return progress.result(ResultStatus.DEGRADED, failure)

    progress.term_info = progress.term_info.merged_with(term_info)
    if progress.students:
        progress.warnings.append(
            f"{failure.reason}; {len(progress.students)} record(s) read with an inferred template"
        )
    return progress.result(ResultStatus.DEGRADED, failure)


def _finish(progress: _Progress, source: str) -> ExtractionResult:
    if not progress.students:
        failure = NoRecordsExtracted(f"No student record could be extracted from {source or 'the document'}")
        logger.warning(failure.reason)
        return progress.result(ResultStatus.DEGRADED, failure)
    return progress.result(ResultStatus.OK)


def _from_template(
    document: object,
    template: MappingTemplate,
    shape: DocumentShape,
    settings: ExtractionSettings,
    control: RunControl,
    source: str,
    progress: _Progress,
) -> ExtractionResult:
    term_info = _read_with_template(document, template, shape, settings, control, source, progress)
    progress.term_info = term_info.merged_with(progress.term_info)
    control.report(EXTRACTED)
    return _finish(progress, source)


def extract_positioned(
    fragments: Iterable[TextFragment],
    template: MappingTemplate | None = None,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    control: RunControl | None = None,
    source: str = "",
) -> ExtractionResult:
    """Extract student records from positioned text fragments.

    Args:
        fragments: Fragments of one document, any order.
        template: Mapping template; an empty or missing template means the
            built-in heuristics are used.
        settings: Extraction settings.
        control: Progress/cancellation handle.
        source: Document label stored on the records.

    Returns:
        A tagged result; this function does not raise :class:`ExtractionError`.
    """

    control = ensure_control(control, settings.timeout)
    progress = _Progress()
    text = ""
    try:
        control.check()
        rows = cluster_rows(fragments, settings.row_tolerance)
        control.report(CLUSTERED)
        lines = rows_to_lines(rows)
        text = "\n".join(lines)
        progress.term_info = extract_term_info(text)

        if _uses_template(template):
            return _from_template(text, template, DocumentShape.PROSE, settings, control, source, progress)

        progress.shape = detect_shape(rows, settings)
        logger.info("%s: reading %d row(s) as %s", source or "document", len(rows), progress.shape.value)
        if progress.shape is DocumentShape.BULLETINS:
            _extract_bulletins(lines, settings, control, source, progress)
        else:
            _extract_grade_table(rows, settings, control, source, progress)
        control.report(EXTRACTED)
    except INTERRUPTIONS as exc:
        logger.warning("%s: %s; returning %d record(s)", source or "document", exc.reason, len(progress.students))
        return progress.result(ResultStatus.PARTIAL, exc)
    except NoHeaderDetected as exc:
        if settings.infer_template_on_failure and text.strip():
            return _fallback_with_inferred_template(
                text, DocumentShape.PROSE, exc, settings, control, source, progress
            )
        logger.warning("%s: %s", source or "document", exc.reason)
        return progress.result(ResultStatus.DEGRADED, exc)
    except ExtractionError as exc:
        logger.warning("%s: %s", source or "document", exc.reason)
        return progress.result(ResultStatus.DEGRADED, exc)
    return _finish(progress, source)


def _is_long_format(header: Sequence[str]) -> bool:
    """Return whether spreadsheet rows hold one ``(student, subject, grade)`` triple each."""

    mappings = infer_column_mappings(header)
    return not mappings.missing_required()


def extract_tabular(
    document: TabularDocument,
    template: MappingTemplate | None = None,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    control: RunControl | None = None,
    source: str = "",
) -> ExtractionResult:
    """Extract student records from spreadsheet rows.

    Wide sheets (one student per row, one column per subject) go through the
    column-role stages; long sheets (a subject column and a grade column) and
    explicit templates go through template application.

    Returns:
        A tagged result; this function does not raise :class:`ExtractionError`.
    """

    control = ensure_control(control, settings.timeout)
    progress = _Progress(shape=DocumentShape.TABULAR)
    progress.term_info = extract_term_info("\n".join(document.preamble))
    try:
        control.check()
        if _uses_template(template):
            return _from_template(document, template, DocumentShape.TABULAR, settings, control, source, progress)
        if not document.header:
            raise NoHeaderDetected(f"No header row found in {source or 'the spreadsheet'}")
        if _is_long_format(document.header):
            inferred = infer_template(document, DocumentShape.TABULAR, name="long-format")
            return _from_template(document, inferred, DocumentShape.TABULAR, settings, control, source, progress)

        model, student_rows, aggregate_rows = record_rows_from_table(document.header, document.rows)
        control.report(STRUCTURED)
        if not model.labels(ColumnRole.SUBJECT):
            raise NoHeaderDetected(f"No subject column among {', '.join(document.header)}")
        progress.class_averages.update(declared_class_averages(aggregate_rows, model, settings))
        for done, record, row_warnings in iter_student_records(student_rows, model, settings, source):
            control.check()
            progress.warnings.extend(row_warnings)
            if record is not None:
                progress.students.append(record)
            if done % settings.progress_every == 0:
                control.report_step(done, len(student_rows))
        control.report(EXTRACTED)
    except INTERRUPTIONS as exc:
        logger.warning("%s: %s; returning %d record(s)", source or "document", exc.reason, len(progress.students))
        return progress.result(ResultStatus.PARTIAL, exc)
    except ExtractionError as exc:
        logger.warning("%s: %s", source or "document", exc.reason)
        return progress.result(ResultStatus.DEGRADED, exc)
    return _finish(progress, source)


def run_document(
    path: Path,
    template: MappingTemplate | None = None,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    on_progress: ProgressCallback | None = None,
    token: CancellationToken | None = None,
) -> DocumentResult:
    """Extract one document file, dispatching on its suffix.

    Args:
        path: PDF, CSV or Excel file.
        template: Optional mapping template, shared read-only.
        settings: Extraction settings; ``settings.timeout`` bounds the run.
        on_progress: Callback receiving ``0..100``.
        token: Cooperative cancellation token.

    Returns:
        The tagged result; no :class:`ExtractionError` escapes.
    """

    control = RunControl(on_progress=on_progress, token=token, timeout=settings.timeout)
    source = path.name
    suffix = path.suffix.lower()
    try:
        control.check()
        if suffix in PDF_SUFFIXES:
            acquired = extract_pdf(path, control=control)
            control.report(ACQUIRED)
            result = extract_positioned(acquired.fragments, template, settings, control, source)
        elif suffix in CSV_SUFFIXES or suffix in EXCEL_SUFFIXES:
            document = read_tabular(path)
            control.report(ACQUIRED)
            result = extract_tabular(document, template, settings, control, source)
        else:
            raise AcquisitionFailure(f"Unsupported document type: {path.name}")
    except INTERRUPTIONS as exc:
        logger.warning("%s: %s during acquisition", source, exc.reason)
        result = ExtractionResult(status=ResultStatus.PARTIAL, failure=exc.to_failure())
    except ExtractionError as exc:
        logger.warning("%s: %s", source, exc.reason)
        result = ExtractionResult(status=ResultStatus.DEGRADED, failure=exc.to_failure())

    control.report(DONE)
    logger.info("%s: %s with %d student(s)", source, result.status.value, len(result.students))
    return DocumentResult(source=source, result=result)


def _batch_status(results: Sequence[ExtractionResult]) -> ResultStatus:
    statuses = {result.status for result in results}
    if ResultStatus.PARTIAL in statuses:
        return ResultStatus.PARTIAL
    if ResultStatus.DEGRADED in statuses:
        return ResultStatus.DEGRADED
    return ResultStatus.OK


def run_batch(
    paths: Sequence[Path],
    template: MappingTemplate | None = None,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    on_progress: ProgressCallback | None = None,
    token: CancellationToken | None = None,
    max_workers: int = 4,
) -> BatchResult:
    """Extract many independent documents concurrently and aggregate them.

    Documents share only the read-only template and settings. Results keep the
    order of ``paths`` regardless of completion order.

    Returns:
        Per-document results plus the merged class dataset.
    """

    if max_workers < 1:
        raise ValueError(f"max_workers must be >= 1, got {max_workers}")

    batch_control = RunControl(on_progress=on_progress)
    documents: list[DocumentResult | None] = [None] * len(paths)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(run_document, Path(path), template, settings, None, token): idx
            for idx, path in enumerate(paths)
        }
        for done, future in enumerate(as_completed(futures), start=1):
            documents[futures[future]] = future.result()
            batch_control.report_step(done, len(paths), start=0, end=EXTRACTED)

    ordered = tuple(document for document in documents if document is not None)
    results = [document.result for document in ordered]
    dataset, warnings = aggregate(results, settings)
    for document in ordered:
        warnings.extend(f"{document.source}: {warning}" for warning in document.result.warnings)
        if not document.result.ok:
            reason = document.result.failure.reason if document.result.failure else document.result.status.value
            warnings.append(f"{document.source}: {document.result.status.value} ({reason})")
    batch_control.report(DONE)
    return BatchResult(
        documents=ordered,
        dataset=dataset,
        status=_batch_status(results),
        warnings=tuple(warnings),
    )
