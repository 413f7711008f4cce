"""Unit tests for the class grade-table TSV writer."""

from __future__ import annotations

from pathlib import Path

from bulletin_pipeline.io.tsv_io import format_grade, write_dataset_tsv
from bulletin_pipeline.models import AverageSource, ClassDataset, StudentRecord


def _dataset() -> ClassDataset:
    return ClassDataset(
        students=(
            StudentRecord(
                name="Dupont\tJean",
                grades={"Maths": 14.5, "Français": None},
                average=14.5,
                average_source=AverageSource.DECLARED,
                source="classe.csv",
            ),
        ),
        subjects=("Maths", "Français", "SVT"),
    )


def test_format_grade() -> None:
    assert format_grade(None) == ""
    assert format_grade(12.0) == "12"
    assert format_grade(13.25) == "13.25"


def test_write_dataset_tsv_with_header(tmp_path: Path) -> None:
    output = tmp_path / "grades.tsv"

    write_dataset_tsv(_dataset(), output_path=output)

    assert output.read_text(encoding="utf-8").splitlines() == [
        "student\tsource\taverage\taverage_source\tMaths\tFrançais\tSVT",
        "Dupont Jean\tclasse.csv\t14.5\tdeclared\t14.5\t\t",
    ]


def test_write_dataset_tsv_without_header(tmp_path: Path) -> None:
    output = tmp_path / "grades.tsv"

    write_dataset_tsv(_dataset(), output_path=output, include_header=False)

    content = output.read_text(encoding="utf-8")
    assert content.startswith("Dupont Jean\t")
    assert content.count("\n") == 1
