"""CLI entrypoint for report-card extraction."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from bulletin_pipeline.acquisition.pdf_text import extract_pdf
from bulletin_pipeline.acquisition.tabular import read_tabular
from bulletin_pipeline.config import DEFAULT_SETTINGS, ExtractionSettings
from bulletin_pipeline.io.template_json import load_template, save_template
from bulletin_pipeline.io.tsv_io import format_grade, write_dataset_tsv
from bulletin_pipeline.mapping.infer import infer_template
from bulletin_pipeline.mapping.template import MappingTemplate, detect_bulletin_format, starter_template
from bulletin_pipeline.models import BatchResult, DocumentShape, ResultStatus
from bulletin_pipeline.pipeline import run_batch
from bulletin_pipeline.reporting.report_md import build_report_md
from bulletin_pipeline.stages.stage1_cluster import document_text
from bulletin_pipeline.validation import collect_failure_counts, collect_status_counts, validate_template


def _format_table(headers: Sequence[str], data_rows: Sequence[Sequence[str]]) -> str:
    """Format rows as an ASCII table for terminal output.

    Args:
        headers: Table headers.
        data_rows: Row values.

    Returns:
        Monospace table string.
    """

    widths = [len(header) for header in headers]
    for row in data_rows:
        for idx, value in enumerate(row):
            widths[idx] = max(widths[idx], len(value))

    header_line = " | ".join(header.ljust(widths[idx]) for idx, header in enumerate(headers))
    separator_line = "-+-".join("-" * width for width in widths)
    body_lines = [
        " | ".join(value.ljust(widths[idx]) for idx, value in enumerate(row)) for row in data_rows
    ]
    return "\n".join([header_line, separator_line, *body_lines])


def build_arg_parser() -> argparse.ArgumentParser:
    """Construct CLI argument parser.

    Returns:
        Configured parser for the extraction command.
    """

    parser = argparse.ArgumentParser(
        description="Extract grade tables and student bulletins from PDF, CSV or Excel exports."
    )
    parser.add_argument("files", nargs="+", type=Path, help="Documents to extract (PDF, CSV, XLSX).")
    parser.add_argument("--output", type=Path, default=None, help="Destination TSV of the class grade table.")
    parser.add_argument(
        "--report",
        type=Path,
        default=None,
        help="Markdown report output path (default: report.md next to the TSV).",
    )
    parser.add_argument("--template", type=Path, default=None, help="Mapping template JSON to apply.")
    parser.add_argument(
        "--infer-template",
        type=Path,
        default=None,
        metavar="PATH",
        help="Infer a template from the first document, write it to PATH and exit.",
    )
    parser.add_argument(
        "--starter-template",
        type=Path,
        default=None,
        metavar="PATH",
        help="Write the starter template of the first PDF's detected layout to PATH and exit.",
    )
    parser.add_argument(
        "--row-tolerance",
        type=float,
        default=DEFAULT_SETTINGS.row_tolerance,
        help="Vertical tolerance for grouping fragments into rows.",
    )
    parser.add_argument(
        "--grade-scale", type=float, default=DEFAULT_SETTINGS.grade_scale, help="Native grade scale."
    )
    parser.add_argument(
        "--anchor-pattern",
        default=DEFAULT_SETTINGS.anchor_pattern,
        help="Regex of the line opening each student bulletin.",
    )
    parser.add_argument("--timeout", type=float, default=None, help="Seconds allowed per document.")
    parser.add_argument("--workers", type=int, default=4, help="Documents processed concurrently.")
    parser.add_argument(
        "--expand-abbreviations",
        action="store_true",
        help="Rewrite subject abbreviations (MATHS, HG, ...) into full names.",
    )
    parser.add_argument(
        "--no-infer-fallback",
        action="store_true",
        help="Do not retry documents without a header using an inferred template.",
    )
    parser.add_argument("--no-header", action="store_true", help="Do not write the TSV header.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug details.")
    return parser


def _settings_from_args(args: argparse.Namespace) -> ExtractionSettings:
    return ExtractionSettings(
        row_tolerance=args.row_tolerance,
        grade_scale=args.grade_scale,
        anchor_pattern=args.anchor_pattern,
        timeout=args.timeout,
        expand_subject_abbreviations=args.expand_abbreviations,
        infer_template_on_failure=not args.no_infer_fallback,
    )


def _sample_template(path: Path, settings: ExtractionSettings, starter: bool) -> MappingTemplate:
    """Build a template from the text or header of one document."""

    if path.suffix.lower() == ".pdf":
        text = document_text(extract_pdf(path).fragments, tolerance=settings.row_tolerance)
        if starter:
            return starter_template(detect_bulletin_format(text))
        return infer_template(text, DocumentShape.PROSE, name=path.stem, anchor_pattern=settings.anchor_pattern)
    if starter:
        raise SystemExit("Starter templates are only available for PDF bulletins")
    return infer_template(read_tabular(path), DocumentShape.TABULAR, name=path.stem)


def _print_batch_analysis(batch: BatchResult) -> None:
    """Print per-document status and class summary tables.

    Args:
        batch: Result of the extraction run.
    """

    document_rows = [
        [
            document.source,
            document.result.status.value,
            str(len(document.result.students)),
            document.result.failure.kind.value if document.result.failure else "",
        ]
        for document in batch.documents
    ]
    print("Documents:")
    print(_format_table(["source", "status", "students", "failure"], document_rows))

    status_rows = [[status, str(count)] for status, count in collect_status_counts(batch.documents).items()]
    print("\nDocuments by status:")
    print(_format_table(["status", "count"], status_rows))

    failure_counts = collect_failure_counts(batch.documents)
    if failure_counts:
        failure_rows = [
            [kind, str(count)] for kind, count in sorted(failure_counts.items(), key=lambda item: (-item[1], item[0]))
        ]
        print("\nFailures by kind:")
        print(_format_table(["kind", "count"], failure_rows))

    dataset = batch.dataset
    if not dataset.students:
        print("\nNo students extracted; skipping class summary.")
        return

    subject_rows = [
        [summary.subject, format_grade(summary.average) or "-", str(summary.graded_count)]
        for summary in dataset.subject_summaries
    ]
    print("\nSubjects:")
    print(_format_table(["subject", "average", "graded"], subject_rows))

    bucket_rows = [[bucket.label, str(bucket.count)] for bucket in dataset.distribution]
    print("\nAverage distribution:")
    print(_format_table(["bucket", "students"], bucket_rows))


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI workflow from arguments through artifact generation.

    Returns:
        Zero when every document was extracted normally, one otherwise.
    """

    parser = build_arg_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    missing = [path for path in args.files if not path.exists()]
    if missing:
        raise SystemExit(f"File not found: {', '.join(str(path) for path in missing)}")

    settings = _settings_from_args(args)

    if args.infer_template is not None or args.starter_template is not None:
        starter = args.starter_template is not None
        destination = args.starter_template if starter else args.infer_template
        template = _sample_template(args.files[0], settings, starter=starter)
        save_template(template, destination)
        print(f"Wrote template {template.name!r} to {destination}")
        return 0

    template = None
    if args.template is not None:
        template = load_template(args.template)
        validate_template(template)

    batch = run_batch(args.files, template=template, settings=settings, max_workers=args.workers)

    if args.output is not None:
        write_dataset_tsv(batch.dataset, output_path=args.output, include_header=not args.no_header)
        print(f"Wrote {len(batch.dataset.students)} students to {args.output}")
    report_path = args.report
    if report_path is None and args.output is not None:
        report_path = args.output.parent / "report.md"
    if report_path is not None:
        report_path.write_text(build_report_md(batch), encoding="utf-8")
        print(f"Wrote report to {report_path}")

    _print_batch_analysis(batch)
    for warning in batch.warnings:
        print(f"WARNING: {warning}")
    print(f"\nRun status: {batch.status.value}")
    return 0 if batch.status is ResultStatus.OK else 1


if __name__ == "__main__":
    raise SystemExit(main())
