"""Subject-feedback extraction inside one bulletin block.

Bulletin exports lay each subject out in one of a few shapes:

* ``STRUCTURED``: subject, teacher, average and remark on one line
  (``MATHEMATIQUES M. DUPONT 14,5 Bon trimestre``);
* ``STACKED``: subject line, teacher line, optional average line, remark lines;
* ``LABELLED``: ``Français : 12,5 - Travail sérieux`` with no teacher.

The patterns are tried in that order and the first one that yields at least one
feedback tuple for the block wins, so results of incompatible layouts are never
mixed within one block. Remark text continues on following lines up to the next
subject or a section line such as ``Appréciation générale``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from bulletin_pipeline.candidates import FieldCandidate, first_match
from bulletin_pipeline.config import DEFAULT_SETTINGS, ExtractionSettings
from bulletin_pipeline.models import AverageSource, BulletinBlock, StudentRecord, SubjectFeedback
from bulletin_pipeline.stages.stage3_records import derive_average, parse_grade, subject_name

logger = logging.getLogger(__name__)

UPPER = "A-ZÀ-ÖØ-Þ"
LOWER = "a-zß-öø-ÿ"
SUBJECT = rf"(?P<subject>[{UPPER}][{UPPER}0-9&'./\- ]*?[{UPPER}0-9.])"
TEACHER = (
    rf"(?P<teacher>(?:M\.|Mme\.?|Mlle\.?|Mr\.?|MME|MR)[ \t]+[{UPPER}][\w'\-]*"
    rf"(?:[ \t]+[{UPPER}][{UPPER}'\-]+\b)*)"
)
GRADE = r"\d{1,2}(?:[.,]\d+)?(?:[ \t]*/[ \t]*\d+)?|Abs\.?|ABS|NN|N\.N\.|Disp\.?"

STRUCTURED_RE = re.compile(
    rf"^[ \t]*{SUBJECT}[ \t]+{TEACHER}"
    rf"(?:[ \t]+(?P<average>{GRADE}))?(?:[ \t]+(?P<class_average>{GRADE}))?"
    rf"(?:[ \t]+(?P<remark>\S.*?))?[ \t]*$",
    re.MULTILINE,
)
STACKED_RE = re.compile(
    rf"^[ \t]*{SUBJECT}[ \t]*\n[ \t]*{TEACHER}[ \t]*$"
    rf"(?:\n[ \t]*(?P<average>{GRADE})(?:[ \t]+(?P<class_average>{GRADE}))?[ \t]*$)?",
    re.MULTILINE,
)
LABELLED_RE = re.compile(
    rf"^[ \t]*(?P<subject>[{UPPER}][\w'&./\- ]*?)[ \t]*:[ \t]*(?P<average>{GRADE})"
    rf"(?:[ \t]*[-:][ \t]*(?P<remark>.*?))?[ \t]*$",
    re.MULTILINE,
)

FEEDBACK_PATTERNS = (
    ("structured", STRUCTURED_RE),
    ("stacked", STACKED_RE),
    ("labelled", LABELLED_RE),
)

STOP_LINE_RE = re.compile(
    r"^[ \t]*(?:appr[ée]ciations?[ \t]+g[ée]n[ée]rales?|moyennes?[ \t]+g[ée]n[ée]rales?|vie[ \t]+scolaire|"
    r"absences?|retards?|d[ée]cision|avis[ \t]+du[ \t]+conseil|professeure?[ \t]+principal)",
    re.IGNORECASE,
)
SUMMARY_SUBJECT_RE = re.compile(
    r"^(?:moyennes?|rang|absences?|retards?|classe|[ée]l[èe]ve|nom|date|appr[ée]ciation|trimestre|"
    r"semestre|ann[ée]e|effectif|professeur)",
    re.IGNORECASE,
)
POLE_RE = re.compile(r"\bPOLE[ \t]+\w+")
EXCLUDED_SUBJECT_WORDS = ("POLE", "OPTIONS")
DECLARED_AVERAGE_RE = re.compile(
    r"moyenne[ \t]+g[ée]n[ée]rale(?:[ \t]+de[ \t]+l'[ée]l[èe]ve)?[ \t]*:?[ \t]*(?P<value>\d{1,2}(?:[.,]\d+)?)",
    re.IGNORECASE,
)

NAME_CANDIDATES = (
    FieldCandidate(
        "labelled_name",
        re.compile(
            r"^[ \t]*(?:[ée]l[èe]ve|nom(?:[ \t]+et[ \t]+pr[ée]nom)?|[ée]tudiante?)[ \t]*:[ \t]*"
            r"(?P<value>[^\n:]+?)(?=[ \t]+(?:classe|n[ée]e?|date|ine)\b|[ \t]*$)",
            re.IGNORECASE | re.MULTILINE,
        ),
    ),
    FieldCandidate(
        "surname_first_name",
        re.compile(
            rf"^[ \t]*(?P<value>[{UPPER}][{UPPER}'\-]+(?:[ \t]+[{UPPER}][{UPPER}'\-]+)*"
            rf"[ \t]+[{UPPER}][{LOWER}'\-]+(?:[ \t\-][{UPPER}][{LOWER}'\-]+)*)[ \t]*$",
            re.MULTILINE,
        ),
    ),
)


@dataclass(frozen=True)
class FeedbackExtraction:
    """Feedback tuples of one block and the pattern that produced them."""

    pattern: str | None
    feedback: tuple[SubjectFeedback, ...]
    first_offset: int


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", POLE_RE.sub("", text)).strip()


def _continuation(text: str, start: int, end: int) -> str:
    """Return remark lines between ``start`` and ``end`` up to the first section line."""

    kept: list[str] = []
    for line in text[start:end].splitlines():
        if STOP_LINE_RE.match(line):
            break
        if line.strip():
            kept.append(line.strip())
    return " ".join(kept)


def _feedback_from_matches(
    name: str,
    matches: list[re.Match],
    text: str,
    settings: ExtractionSettings,
) -> list[SubjectFeedback]:
    feedback: list[SubjectFeedback] = []
    seen: set[str] = set()
    for idx, match in enumerate(matches):
        subject = _clean_text(match.group("subject"))
        if not subject or any(word in subject.upper() for word in EXCLUDED_SUBJECT_WORDS):
            continue
        if name == "labelled" and SUMMARY_SUBJECT_RE.match(subject):
            continue
        subject = subject_name(subject, settings)
        if subject in seen:
            continue
        seen.add(subject)

        groups = match.groupdict()
        next_start = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        inline = groups.get("remark") or ""
        remark = _clean_text(" ".join(part for part in (inline, _continuation(text, match.end(), next_start)) if part))
        teacher = groups.get("teacher")
        feedback.append(
            SubjectFeedback(
                subject=subject,
                teacher=_clean_text(teacher) if teacher else None,
                average=parse_grade(groups.get("average") or "", settings.grade_scale),
                remark=remark,
                class_average=parse_grade(groups.get("class_average") or "", settings.grade_scale),
            )
        )
    return feedback


def extract_feedback(text: str, settings: ExtractionSettings = DEFAULT_SETTINGS) -> FeedbackExtraction:
    """Extract ``(subject, teacher, average, remark)`` tuples from block text.

    Args:
        text: Block text, one layout row per line.
        settings: Extraction settings (grade scale, abbreviation expansion).

    Returns:
        The winning pattern's feedback; an empty extraction when no pattern
        matched.
    """

    for name, pattern in FEEDBACK_PATTERNS:
        matches = list(pattern.finditer(text))
        if not matches:
            continue
        feedback = _feedback_from_matches(name, matches, text, settings)
        if feedback:
            return FeedbackExtraction(pattern=name, feedback=tuple(feedback), first_offset=matches[0].start())
    return FeedbackExtraction(pattern=None, feedback=(), first_offset=len(text))


def block_student_name(text: str, header_end: int | None = None) -> str | None:
    """Find the student name in the header part of a block.

    Args:
        text: Block text.
        header_end: Offset where subject feedback starts; the name is looked
            for before it.
    """

    header = text if header_end is None else text[:header_end]
    found = first_match(NAME_CANDIDATES, header)
    if found is None and header_end is not None:
        found = first_match(NAME_CANDIDATES[:1], text)
    return None if found is None else re.sub(r"\s+", " ", found[1]).strip()


def build_bulletin_record(
    block: BulletinBlock,
    settings: ExtractionSettings = DEFAULT_SETTINGS,
    source: str = "",
) -> tuple[StudentRecord | None, tuple[SubjectFeedback, ...]]:
    """Turn one bulletin block into a student record.

    Returns:
        ``(record, feedback)``; ``record`` is ``None`` when the block yields no
        subject feedback.
    """

    text = block.text
    extraction = extract_feedback(text, settings)
    if not extraction.feedback:
        logger.warning("Bulletin block %d (line %d) yielded no subject feedback", block.index, block.start_line)
        return None, ()

    name = block_student_name(text, extraction.first_offset)
    name_is_fallback = name is None
    if name is None:
        name = f"Élève {block.index + 1}"
        logger.debug("Bulletin block %d has no recognizable student name; using %r", block.index, name)

    grades = {item.subject: item.average for item in extraction.feedback}
    declared = DECLARED_AVERAGE_RE.search(text)
    declared_value = parse_grade(declared.group("value"), settings.grade_scale) if declared else None
    if declared_value is not None:
        average, average_source = declared_value, AverageSource.DECLARED
    else:
        average = derive_average(grades)
        average_source = AverageSource.UNDEFINED if average is None else AverageSource.DERIVED

    record = StudentRecord(
        name=name,
        grades=grades,
        average=average,
        average_source=average_source,
        comments={item.subject: item.remark for item in extraction.feedback if item.remark},
        teacher_names={item.subject: item.teacher for item in extraction.feedback if item.teacher},
        class_averages={
            item.subject: item.class_average for item in extraction.feedback if item.class_average is not None
        },
        name_is_fallback=name_is_fallback,
        source=source,
    )
    return record, extraction.feedback
