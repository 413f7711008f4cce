"""Mapping-template inference from a document sample.

For prose samples every field has a fixed battery of candidate patterns; the
first candidate that matches the sample is stored in the template. For tabular
samples the header labels are matched against column vocabularies. Inference is
a pure function of the sample.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from bulletin_pipeline.config import DEFAULT_ANCHOR_PATTERN
from bulletin_pipeline.models import DocumentShape
from bulletin_pipeline.mapping.template import (
    PATTERN_FLAGS,
    UNUSED,
    ColumnMappings,
    Delimiters,
    MappingTemplate,
)

logger = logging.getLogger(__name__)

PROSE_CANDIDATES: dict[str, tuple[str, ...]] = {
    "student_name_pattern": (
        r"^[ \t]*(?:élève|eleve|nom|étudiante?|etudiante?)[ \t]*:[ \t]*([^\n:]+?)[ \t]*$",
        r"^[ \t]*([^\W\d_][^\W\d_'\-]*(?:[ '\-][^\W\d_]+)+)[ \t]+\d{1,2}[.,]\d{1,2}",
    ),
    "subject_pattern": (
        r"^[ \t]*(?:matière|matiere|discipline)[ \t]*:[ \t]*([^\n:]+?)[ \t]*$",
        r"\b(mathématiques|mathematiques|français|francais|histoire[- ]géographie|histoire|svt|"
        r"physique[- ]chimie|physique|anglais|espagnol|allemand|eps|technologie|musique|arts plastiques)\b",
    ),
    "grade_pattern": (
        r"(?:note|moyenne|moy\.?)[ \t]*:?[ \t]*(\d{1,2}[.,]\d{1,2})",
        r"(\d{1,2}[.,]\d{1,2})[ \t]*/[ \t]*20",
    ),
    "class_average_pattern": (
        r"(?:moyenne de (?:la )?classe|moy\.? classe)[ \t]*:?[ \t]*(\d{1,2}[.,]\d{1,2})",
        r"classe[ \t]*:?[ \t]*(\d{1,2}[.,]\d{1,2})",
    ),
    "teacher_comment_pattern": (
        r"(?:commentaire|appréciation|appreciation)[ \t]*:?[ \t]*([^\n]+)",
    ),
    "term_pattern": (
        r"bulletin du (premier|deuxième|troisième|1er|2ème|3ème|\d)[ \t]*trimestre",
        r"trimestre[ \t]*:?[ \t]*(premier|deuxième|troisième|1er|2ème|3ème|\d)",
    ),
    "class_name_pattern": (
        r"\bclasse[ \t]*:[ \t]*([\w\-]+(?:[ \t][A-Z0-9]{1,2}\b)?)",
        r"^[ \t]*bulletin de ([\w\- ]+?)[ \t]*$",
    ),
    "school_name_pattern": (
        r"\b((?:collège|college|lycée|lycee|école|ecole|institution)[ \t]+[^\n]+?)[ \t]*$",
    ),
}

STUDENT_DELIMITER_CANDIDATES = (r"-{6,}", r"={6,}", r"\n{3,}")
SUBJECT_DELIMITER_CANDIDATES = (r"-{5,}",)
MIN_ANCHOR_REPEATS = 2

NAME_HEADER_WORDS = ("élève", "eleve", "nom", "étudiant", "etudiant", "student")
SUBJECT_HEADER_WORDS = ("matière", "matiere", "discipline", "subject")
GRADE_HEADER_WORDS = ("note", "moyenne", "moy", "grade")
COMMENT_HEADER_WORDS = ("comment", "appréciation", "appreciation")
ID_HEADER_RE = re.compile(r"\b(?:id|identifiant|ine|n°)\b", re.IGNORECASE)


def _first_matching(candidates: Sequence[str], sample: str) -> str:
    for pattern in candidates:
        if re.search(pattern, sample, PATTERN_FLAGS):
            return pattern
    return ""


def infer_student_delimiter(sample: str, anchor_pattern: str = DEFAULT_ANCHOR_PATTERN) -> str:
    """Guess the regex separating student blocks in ``sample``.

    A bulletin anchor repeated at least twice wins and is used as a lookahead
    so each block keeps its anchor line; separator rules and blank-line runs
    come next. Returns an empty string when nothing repeats.
    """

    if len(re.findall(anchor_pattern, sample, PATTERN_FLAGS)) >= MIN_ANCHOR_REPEATS:
        return f"(?={anchor_pattern})"
    return _first_matching(STUDENT_DELIMITER_CANDIDATES, sample)


def infer_prose_template(
    sample: str,
    name: str = "auto",
    anchor_pattern: str = DEFAULT_ANCHOR_PATTERN,
) -> MappingTemplate:
    """Infer regex fields and delimiters from a prose sample.

    ``anchor_pattern`` is the bulletin anchor the splitter uses, so the
    inferred student delimiter cuts blocks at the same lines.
    """

    fields = {attr: _first_matching(candidates, sample) for attr, candidates in PROSE_CANDIDATES.items()}
    found = sorted(attr for attr, value in fields.items() if value)
    logger.info("Inferred %d prose field pattern(s): %s", len(found), ", ".join(found) or "-")
    return MappingTemplate(
        name=name,
        delimiters=Delimiters(
            student=infer_student_delimiter(sample, anchor_pattern),
            subject=_first_matching(SUBJECT_DELIMITER_CANDIDATES, sample),
        ),
        **fields,
    )


def _has_any(label: str, words: Sequence[str]) -> bool:
    return any(word in label for word in words)


def infer_column_mappings(header: Sequence[str]) -> ColumnMappings:
    """Guess column indexes from header labels by vocabulary.

    The first column matching a field's vocabulary wins. A class-average
    column (``classe`` together with ``moy``/``average``) is recognized before
    the grade vocabulary so it is never taken for the grade column.
    """

    indexes = {
        "student_name": UNUSED,
        "student_id": UNUSED,
        "subject": UNUSED,
        "grade": UNUSED,
        "class_average": UNUSED,
        "teacher_comment": UNUSED,
    }

    def claim(field_name: str, index: int) -> None:
        if indexes[field_name] == UNUSED:
            indexes[field_name] = index

    for index, raw in enumerate(header):
        label = raw.strip().lower()
        if not label:
            continue
        if "classe" in label and _has_any(label, ("moy", "average")):
            claim("class_average", index)
        elif _has_any(label, COMMENT_HEADER_WORDS):
            claim("teacher_comment", index)
        elif _has_any(label, NAME_HEADER_WORDS):
            claim("student_name", index)
        elif _has_any(label, SUBJECT_HEADER_WORDS):
            claim("subject", index)
        elif _has_any(label, GRADE_HEADER_WORDS):
            claim("grade", index)
        elif ID_HEADER_RE.search(label):
            claim("student_id", index)
    return ColumnMappings(**indexes)


def infer_template(
    sample: str | Sequence[str] | object,
    shape: DocumentShape,
    name: str = "auto",
    anchor_pattern: str = DEFAULT_ANCHOR_PATTERN,
) -> MappingTemplate:
    """Infer a mapping template from a document sample.

    Args:
        sample: Prose text for ``PROSE``/``BULLETINS``/``GRADE_TABLE`` shapes;
            header labels, or any object with a ``header`` attribute, for
            ``TABULAR``.
        shape: Document shape the template will be applied to.
        name: Name of the produced template.
        anchor_pattern: Bulletin anchor used to infer the student delimiter
            of prose samples.

    Returns:
        A new template. Fields no candidate matched are left empty.
    """

    if shape is DocumentShape.TABULAR:
        header: Sequence[str] | None = getattr(sample, "header", None)
        if header is None:
            header = [sample] if isinstance(sample, str) else list(sample)  # type: ignore[arg-type]
        mappings = infer_column_mappings(header)
        logger.info("Inferred column mappings %s", mappings)
        return MappingTemplate(name=name, column_mappings=mappings)
    return infer_prose_template(str(sample), name=name, anchor_pattern=anchor_pattern)
