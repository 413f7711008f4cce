"""Integration tests running whole documents through the extraction pipeline."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from bulletin_pipeline.acquisition.tabular import TabularDocument
from bulletin_pipeline.config import ExtractionSettings
from bulletin_pipeline.mapping.template import MappingTemplate
from bulletin_pipeline.models import AverageSource, DocumentShape, ErrorKind, ResultStatus, TextFragment
from bulletin_pipeline.pipeline import extract_positioned, extract_tabular, run_batch, run_document
from bulletin_pipeline.progress import CancellationToken, RunControl


def _layout(rows: Sequence[Sequence[tuple[str, float]]], page: int = 1) -> list[TextFragment]:
    """Place each row 20 points below the previous one."""

    return [
        TextFragment(text=text, x=x, y=20.0 * idx, page=page)
        for idx, cells in enumerate(rows)
        for text, x in cells
    ]


def _lines(*lines: str) -> list[TextFragment]:
    return _layout([[(line, 10.0)] for line in lines])


GRADE_TABLE = _layout(
    [
        [("Collège Jean Moulin", 10)],
        [("Nom", 10), ("Maths", 100), ("Français", 200), ("Moyenne", 300)],
        [("Dupont Jean", 12), ("14,5", 102), ("Abs", 198), ("14,5", 305)],
        [("Martin Zoé", 11), ("12", 99), ("9", 201)],
        [("Petit Léa", 10), ("16", 100), ("18", 200), ("17", 300)],
        [("Moyenne de la classe", 10), ("12", 100), ("11", 200), ("11,5", 300)],
    ]
)


class _StepClock:
    """Clock advancing one second each time it is read."""

    def __init__(self) -> None:
        self.now = -1.0

    def __call__(self) -> float:
        self.now += 1.0
        return self.now


def test_grade_table_fragments_end_to_end() -> None:
    """Positioned grade-table rows should become typed student records."""

    result = extract_positioned(GRADE_TABLE, source="classe.pdf")

    assert result.status is ResultStatus.OK
    assert result.shape is DocumentShape.GRADE_TABLE
    assert [student.name for student in result.students] == ["Dupont Jean", "Martin Zoé", "Petit Léa"]

    dupont, martin, _ = result.students
    assert dict(dupont.grades) == {"Maths": 14.5, "Français": None}
    assert dupont.average == 14.5
    assert dupont.average_source is AverageSource.DECLARED
    assert martin.average == 10.5
    assert martin.average_source is AverageSource.DERIVED
    assert dict(result.class_averages) == {"Maths": 12.0, "Français": 11.0}
    assert result.term_info.school_name == "Collège Jean Moulin"


def test_bulletin_fragments_end_to_end() -> None:
    fragments = _lines(
        "Collège Jean Moulin",
        "Bulletin du 1er Trimestre",
        "Élève : DUPONT Jean",
        "MATHEMATIQUES M. MARTIN 14,5 Bon trimestre",
        "FRANCAIS Mme DURAND 12 Des efforts",
        "Bulletin du 1er Trimestre",
        "Élève : MARTIN Zoé",
        "MATHEMATIQUES M. MARTIN 17 Excellent",
        "FRANCAIS Mme DURAND Abs",
    )

    result = extract_positioned(fragments, source="bulletins.pdf")

    assert result.status is ResultStatus.OK
    assert result.shape is DocumentShape.BULLETINS
    assert result.term_info.term == "Trimestre 1"
    assert [student.name for student in result.students] == ["DUPONT Jean", "MARTIN Zoé"]
    zoe = result.students[1]
    assert dict(zoe.grades) == {"MATHEMATIQUES": 17.0, "FRANCAIS": None}
    assert zoe.average == 17.0
    assert zoe.teacher_names["MATHEMATIQUES"] == "M. MARTIN"
    assert result.unparsed_blocks == ()


def test_prose_template_applies_to_positioned_text() -> None:
    template = MappingTemplate(
        name="simple",
        student_name_pattern=r"Élève\s*:\s*([^\n]+)",
        subject_pattern=r"^(Mathématiques|Anglais)\b",
        grade_pattern=r"(\d+(?:,\d+)?)\s*/\s*20",
    )
    fragments = _lines("Élève : Jean Dupont", "Mathématiques 14,5 / 20", "Anglais 11 / 20")

    result = extract_positioned(fragments, template=template)

    assert result.status is ResultStatus.OK
    assert result.shape is DocumentShape.PROSE
    (student,) = result.students
    assert dict(student.grades) == {"Mathématiques": 14.5, "Anglais": 11.0}


def test_document_without_header_is_degraded() -> None:
    result = extract_positioned(_lines("Relevé illisible", "sans tableau"), source="scan.pdf")

    assert result.status is ResultStatus.DEGRADED
    assert result.failure is not None
    assert result.failure.kind is ErrorKind.NO_HEADER_DETECTED
    assert result.students == ()


def test_degraded_without_inference_fallback() -> None:
    settings = ExtractionSettings(infer_template_on_failure=False)

    result = extract_positioned(_lines("Relevé illisible", "sans tableau"), settings=settings)

    assert result.status is ResultStatus.DEGRADED
    assert result.failure is not None
    assert result.failure.kind is ErrorKind.NO_HEADER_DETECTED


def test_timeout_returns_partial_records() -> None:
    """Records built before the deadline are kept when time runs out."""

    control = RunControl(timeout=2.5, clock=_StepClock())

    result = extract_positioned(GRADE_TABLE, control=control)

    assert result.status is ResultStatus.PARTIAL
    assert result.failure is not None
    assert result.failure.kind is ErrorKind.ACQUISITION_TIMEOUT
    assert [student.name for student in result.students] == ["Dupont Jean"]


def test_cancelled_run_returns_partial() -> None:
    token = CancellationToken()
    token.cancel()

    result = extract_positioned(GRADE_TABLE, control=RunControl(token=token))

    assert result.status is ResultStatus.PARTIAL
    assert result.failure is not None
    assert result.failure.kind is ErrorKind.CANCELLED
    assert result.students == ()


def test_run_document_reads_wide_csv(tmp_path: Path) -> None:
    path = tmp_path / "classe.csv"
    path.write_text(
        "Élève;MATHS;FRANC;Moyenne\nDupont Jean;14,5;Abs;14,5\nMartin Zoé;12;10;11\n",
        encoding="utf-8",
    )
    seen: list[int] = []

    document = run_document(path, on_progress=seen.append)

    result = document.result
    assert document.source == "classe.csv"
    assert result.status is ResultStatus.OK
    assert result.shape is DocumentShape.TABULAR
    dupont = result.students[0]
    assert dupont.name == "Dupont Jean"
    assert dict(dupont.grades) == {"MATHS": 14.5, "FRANC": None}
    assert dupont.average == 14.5
    assert dupont.average_source is AverageSource.DECLARED
    assert seen == sorted(seen)
    assert seen[-1] == 100


def test_run_document_reads_long_csv(tmp_path: Path) -> None:
    path = tmp_path / "notes.csv"
    path.write_text(
        "Élève;Matière;Note\nDupont Jean;Maths;12\nDupont Jean;SVT;16\nMartin Zoé;Maths;9\n",
        encoding="utf-8",
    )

    result = run_document(path).result

    assert result.status is ResultStatus.OK
    assert [student.name for student in result.students] == ["Dupont Jean", "Martin Zoé"]
    assert result.students[0].average == 14.0


def test_run_batch_merges_documents_in_order(tmp_path: Path) -> None:
    first = tmp_path / "t1.csv"
    first.write_text("Nom;Maths;Anglais\nDupont Jean;12;14\nMartin Zoé;8;10\n", encoding="utf-8")
    second = tmp_path / "t2.csv"
    second.write_text("Nom;Maths;SVT\nDupont Jean;20;20\nPetit Léa;15;13\n", encoding="utf-8")
    unsupported = tmp_path / "notes.docx"
    seen: list[int] = []

    batch = run_batch([first, second, unsupported], on_progress=seen.append, max_workers=2)

    assert [document.source for document in batch.documents] == ["t1.csv", "t2.csv", "notes.docx"]
    assert batch.status is ResultStatus.DEGRADED
    assert batch.documents[2].result.failure is not None
    assert batch.documents[2].result.failure.kind is ErrorKind.ACQUISITION_FAILURE

    dataset = batch.dataset
    assert [student.name for student in dataset.students] == ["Dupont Jean", "Martin Zoé", "Petit Léa"]
    assert dataset.students[0].source == "t1.csv"
    assert dataset.subjects == ("Maths", "Anglais", "SVT")
    assert dataset.class_average == 12.0
    assert any("Duplicate student 'Dupont Jean'" in warning for warning in batch.warnings)
    assert any(warning.startswith("notes.docx: degraded") for warning in batch.warnings)
    assert seen[-1] == 100


def test_grade_table_keeps_rows_whose_remarks_hold_header_words() -> None:
    fragments = _layout(
        [
            [("Nom", 10), ("Maths", 100), ("Français", 200), ("Appréciation", 300)],
            [("Dupont Jean", 10), ("14", 100), ("12", 200), ("Bon trimestre", 300)],
            [("Martin Zoé", 10), ("11", 100), ("9", 200), ("Élève sérieuse", 300)],
            [("Petit Léa", 10), ("8", 100), ("10", 200), ("Moyenne fragile", 300)],
        ]
    )

    result = extract_positioned(fragments)

    assert result.status is ResultStatus.OK
    assert [student.name for student in result.students] == ["Dupont Jean", "Martin Zoé", "Petit Léa"]


def test_run_batch_keeps_unnamed_students_of_each_file(tmp_path: Path) -> None:
    first = tmp_path / "b1.csv"
    first.write_text("Nom;Maths;Anglais\n;12;14\n", encoding="utf-8")
    second = tmp_path / "b2.csv"
    second.write_text("Nom;Maths;Anglais\n;8;10\n", encoding="utf-8")

    batch = run_batch([first, second], max_workers=1)

    assert [[student.name for student in doc.result.students] for doc in batch.documents] == [
        ["Élève 1"],
        ["Élève 1"],
    ]
    assert [student.name for student in batch.dataset.students] == ["Élève 1", "Élève 1 (b2.csv)"]
    assert batch.dataset.class_average == 11.0


PROSE_TEMPLATE = MappingTemplate(
    name="simple",
    student_name_pattern=r"Élève\s*:\s*([^\n]+)",
    subject_pattern=r"^(Mathématiques|Anglais)\b",
    grade_pattern=r"(\d+(?:,\d+)?)\s*/\s*20",
)


def _prose_bulletins(count: int) -> list[TextFragment]:
    lines: list[str] = []
    for idx in range(count):
        lines.extend([f"Élève : Eleve{idx}", "Mathématiques 12 / 20", "======"])
    return _lines(*lines)


def test_template_run_stops_at_timeout_with_partial_records() -> None:
    control = RunControl(timeout=2.5, clock=_StepClock())

    result = extract_positioned(_prose_bulletins(50), template=PROSE_TEMPLATE, control=control)

    assert result.status is ResultStatus.PARTIAL
    assert result.failure is not None
    assert result.failure.kind is ErrorKind.ACQUISITION_TIMEOUT
    assert [student.name for student in result.students] == ["Eleve0"]


def test_template_run_honors_cancellation_between_blocks() -> None:
    token = CancellationToken()

    def cancel_once_structured(percent: int) -> None:
        if percent >= 50:
            token.cancel()

    control = RunControl(on_progress=cancel_once_structured, token=token)

    result = extract_positioned(_prose_bulletins(5), template=PROSE_TEMPLATE, control=control)

    assert result.status is ResultStatus.PARTIAL
    assert result.failure is not None
    assert result.failure.kind is ErrorKind.CANCELLED
    assert result.students == ()


def test_long_format_run_stops_at_timeout_with_rows_read() -> None:
    document = TabularDocument(
        header=("Élève", "Matière", "Note"),
        rows=(
            {"Élève": "Dupont Jean", "Matière": "Maths", "Note": "12"},
            {"Élève": "Dupont Jean", "Matière": "SVT", "Note": "16"},
            {"Élève": "Martin Zoé", "Matière": "Maths", "Note": "9"},
        ),
    )
    control = RunControl(timeout=2.5, clock=_StepClock())

    result = extract_tabular(document, control=control)

    assert result.status is ResultStatus.PARTIAL
    assert [(student.name, dict(student.grades)) for student in result.students] == [
        ("Dupont Jean", {"Maths": 12.0})
    ]
