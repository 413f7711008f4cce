"""Markdown report generation for extraction run summaries."""

from __future__ import annotations

from typing import Iterable, Sequence

from bulletin_pipeline.io.tsv_io import format_grade
from bulletin_pipeline.models import BatchResult


def _markdown_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    """Render a deterministic GitHub-flavored markdown table.

    Args:
        headers: Table header labels.
        rows: Table body rows as string sequences.

    Returns:
        Markdown table text.
    """

    line_header = "| " + " | ".join(headers) + " |"
    line_sep = "| " + " | ".join("---" for _ in headers) + " |"
    body = ["| " + " | ".join(cell.replace("|", "/") for cell in row) + " |" for row in rows]
    return "\n".join([line_header, line_sep, *body])


def build_report_md(batch: BatchResult) -> str:
    """Build the markdown report for one extraction run.

    Args:
        batch: Per-document results and the aggregated dataset.

    Returns:
        Full markdown content with summary tables.
    """

    dataset = batch.dataset
    info = dataset.term_info

    document_rows = [
        (
            document.source,
            document.result.status.value,
            document.result.shape.value if document.result.shape else "-",
            str(len(document.result.students)),
            document.result.failure.kind.value if document.result.failure else "",
            document.result.failure.reason if document.result.failure else "",
        )
        for document in batch.documents
    ]

    info_rows = [
        ("term", info.term or "-"),
        ("class", info.class_name or "-"),
        ("school", info.school_name or "-"),
        ("year", info.year or "-"),
        ("main teacher", info.main_teacher or "-"),
        ("class average", format_grade(dataset.class_average) or "-"),
        ("students", str(len(dataset.students))),
    ]

    subject_rows = [
        (
            summary.subject,
            format_grade(summary.average) or "-",
            format_grade(dataset.declared_subject_averages.get(summary.subject)) or "-",
            str(summary.graded_count),
            summary.teacher or "",
        )
        for summary in dataset.subject_summaries
    ]

    bucket_rows = [(bucket.label, str(bucket.count)) for bucket in dataset.distribution]

    student_rows = [
        (
            student.name + (" (fallback name)" if student.name_is_fallback else ""),
            format_grade(student.average) or "-",
            student.average_source.value,
            str(len(student.present_grades)),
            student.source,
        )
        for student in sorted(dataset.students, key=lambda item: item.name.casefold())
    ]

    sections = [
        "# Extraction Report",
        "",
        f"Run status: **{batch.status.value}**",
        "",
        "## Documents",
        _markdown_table(["source", "status", "shape", "students", "failure", "reason"], document_rows),
        "",
        "## Class",
        _markdown_table(["field", "value"], info_rows),
        "",
    ]
    if info.class_appreciation:
        sections.extend(["## Class appreciation", info.class_appreciation, ""])
    sections.extend(
        [
            "## Subjects",
            _markdown_table(
                ["subject", "average", "declared_class_average", "graded", "teacher"],
                subject_rows,
            ),
            "",
            "## Average distribution",
            _markdown_table(["bucket", "students"], bucket_rows),
            "",
            "## Students",
            _markdown_table(["student", "average", "average_source", "grades", "source"], student_rows),
        ]
    )

    if batch.warnings:
        sections.extend(["", "## Warnings", *(f"- {warning}" for warning in batch.warnings)])

    return "\n".join(sections) + "\n"
