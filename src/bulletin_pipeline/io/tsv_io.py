"""TSV writer for the class dataset grade table."""

from __future__ import annotations

from pathlib import Path

from bulletin_pipeline.models import ClassDataset, Grade

FIXED_COLUMNS = ["student", "source", "average", "average_source"]


def format_grade(value: Grade) -> str:
    """Render a grade for tabular output; absent grades become empty cells."""

    if value is None:
        return ""
    return f"{value:g}"


def _clean(text: str) -> str:
    return text.replace("\t", " ").replace("\n", " ")


def write_dataset_tsv(dataset: ClassDataset, output_path: Path, include_header: bool = True) -> None:
    """Write one row per student with one column per dataset subject.

    Args:
        dataset: Aggregated class dataset.
        output_path: Destination TSV file path.
        include_header: Whether to include a header row.
    """

    with output_path.open("w", encoding="utf-8") as handle:
        if include_header:
            handle.write("\t".join([*FIXED_COLUMNS, *(_clean(subject) for subject in dataset.subjects)]))
            handle.write("\n")
        for student in dataset.students:
            handle.write(
                "\t".join(
                    [
                        _clean(student.name),
                        _clean(student.source),
                        format_grade(student.average),
                        student.average_source.value,
                        *(format_grade(student.grades.get(subject)) for subject in dataset.subjects),
                    ]
                )
            )
            handle.write("\n")
