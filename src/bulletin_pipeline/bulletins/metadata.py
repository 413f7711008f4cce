"""Document metadata: term, class, school, academic year, main teacher and the
class-level general appreciation.

Every field is found with an ordered candidate battery; a field no candidate
matches stays ``None`` rather than being replaced with a placeholder.
"""

from __future__ import annotations

import re

from bulletin_pipeline.candidates import FieldCandidate, first_value
from bulletin_pipeline.models import TermInfo

ORDINAL_WORDS = {
    "premier": 1,
    "première": 1,
    "premiere": 1,
    "deuxième": 2,
    "deuxieme": 2,
    "second": 2,
    "seconde": 2,
    "troisième": 3,
    "troisieme": 3,
}
DIGIT_RE = re.compile(r"\d")
UPPER_WORD = r"[A-ZÀ-ÖØ-Þ'\-]{2,}"
TITLE_WORD = r"[A-ZÀ-ÖØ-Þ][\w'\-]+"
SCHOOL_KIND = r"(?i:coll[èe]ge|lyc[ée]e|[ée]cole|institution)"

# The remark runs until the next upper-case heading line or the end of the text.
CLASS_APPRECIATION_RE = re.compile(
    r"(?i:appr[ée]ciations?[ \t]+g[ée]n[ée]rales?[ \t]+de[ \t]+la[ \t]+classe)[ \t]*[:.\-]?\s*(?![A-ZÀ-ÖØ-Þ]{3,})"
    r"(?P<value>\S.*?)(?=\n[ \t]*[A-ZÀ-ÖØ-Þ]{3,}|\Z)",
    re.DOTALL,
)


def normalize_term(raw: str) -> str:
    """Normalize a term mention into ``Trimestre N`` or ``Semestre N``.

    Returns:
        The normalized label, or an empty string when no period number can be
        read from ``raw``.
    """

    lowered = raw.lower()
    kind = "Semestre" if "semestre" in lowered else "Trimestre"
    digit = DIGIT_RE.search(lowered)
    if digit is not None:
        return f"{kind} {digit.group(0)}"
    for word, number in ORDINAL_WORDS.items():
        if word in lowered:
            return f"{kind} {number}"
    return ""


def normalize_year(raw: str) -> str:
    """Render ``2023 / 2024`` style years as ``2023-2024``."""

    return re.sub(r"\s*[-/]\s*", "-", raw.strip())


def _clean_person(raw: str) -> str:
    return re.sub(r"\s+", " ", raw).strip(" .,;:")


TERM_CANDIDATES = (
    FieldCandidate(
        "ordinal_term",
        re.compile(
            r"\b(?:premi(?:er|[èe]re)|deuxi[èe]me|seconde?|troisi[èe]me|"
            r"\d\s*(?:er|re|[èe]re|nde?|[èe]me|e)?)\s*(?:trimestre|semestre)\b",
            re.IGNORECASE,
        ),
        normalize_term,
    ),
    FieldCandidate(
        "numbered_term",
        re.compile(r"\b(?:trimestre|semestre)\s*:?\s*(?:n°\s*)?\d\b", re.IGNORECASE),
        normalize_term,
    ),
)

YEAR_CANDIDATES = (
    FieldCandidate(
        "year_range",
        re.compile(r"\b(?P<value>(?:19|20)\d{2}\s*[-/]\s*(?:19|20)\d{2})\b"),
        normalize_year,
    ),
    FieldCandidate(
        "labelled_year",
        re.compile(r"ann[ée]e\s+(?:scolaire\s+)?:?\s*(?P<value>(?:19|20)\d{2})\b", re.IGNORECASE),
    ),
)

CLASS_CANDIDATES = (
    FieldCandidate(
        "labelled_class",
        re.compile(r"\bclasse\s*:\s*(?P<value>[A-Za-z0-9][\w\-]*(?:[ \t][A-Z0-9]{1,2}\b)?)", re.IGNORECASE),
    ),
    FieldCandidate(
        "line_class",
        re.compile(r"^[ \t]*classe[ \t]+(?P<value>\d+[ \t]?(?:e|[èe]me|[A-Za-z])[ \t]?\d?)\b", re.IGNORECASE | re.MULTILINE),
    ),
    FieldCandidate("level_code", re.compile(r"\b(?P<value>[1-6](?:e|ème)[ \t]?\d)\b")),
)

SCHOOL_CANDIDATES = (
    FieldCandidate(
        "upper_school",
        re.compile(rf"(?P<value>{SCHOOL_KIND}[ \t]+{UPPER_WORD}(?:[ \t]+{UPPER_WORD})*)\b"),
    ),
    FieldCandidate(
        "title_school",
        re.compile(rf"(?P<value>{SCHOOL_KIND}[ \t]+{TITLE_WORD}(?:[ \t]+(?:de|du|des|la|le|{TITLE_WORD}))*)"),
    ),
)

MAIN_TEACHER_CANDIDATES = (
    FieldCandidate(
        "professeur_principal",
        re.compile(
            r"professeure?[ \t]+(?:principale?|r[ée]f[ée]rente?)[ \t]*:?[ \t]*(?P<value>[A-Za-zÀ-ÖØ-öø-ÿ' \t.\-]+)",
            re.IGNORECASE,
        ),
        _clean_person,
    ),
    FieldCandidate(
        "pp_label",
        re.compile(r"\bPP[ \t]*:[ \t]*(?P<value>[A-Za-zÀ-ÖØ-öø-ÿ' \t.\-]+)"),
        _clean_person,
    ),
)


def extract_term(text: str) -> str | None:
    """Return the normalized term of ``text`` or ``None``."""

    return first_value(TERM_CANDIDATES, text)


def extract_class_appreciation(text: str) -> str | None:
    """Return the general appreciation written for the whole class, if any."""

    match = CLASS_APPRECIATION_RE.search(text)
    if match is None:
        return None
    return re.sub(r"\s+", " ", match.group("value")).strip() or None


def extract_term_info(text: str) -> TermInfo:
    """Extract every metadata field found in ``text``.

    Args:
        text: Document text, or the preamble of a spreadsheet export.

    Returns:
        Metadata with ``None`` for fields that were not found.
    """

    return TermInfo(
        term=extract_term(text),
        class_name=first_value(CLASS_CANDIDATES, text),
        school_name=first_value(SCHOOL_CANDIDATES, text),
        year=first_value(YEAR_CANDIDATES, text),
        main_teacher=first_value(MAIN_TEACHER_CANDIDATES, text),
        class_appreciation=extract_class_appreciation(text),
    )
