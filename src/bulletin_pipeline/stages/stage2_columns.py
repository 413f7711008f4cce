"""Stage 2: Detect the grade-table header and assign cells to columns.

The header row is the first row with a header keyword and at least three
fragments; when no such row exists, the first row repeating a generic average
marker (``Moy``) at least three times is used and the subject names are read
from the row above it. Each header fragment becomes a
:class:`~bulletin_pipeline.models.ColumnAnchor` with a classified role, and data
fragments are assigned to the anchor nearest to their ``x``.

Pages that repeat the header get their own column model; continuation pages
without a header keep the model of the previous page.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Sequence

from bulletin_pipeline.errors import NoHeaderDetected
from bulletin_pipeline.models import ColumnAnchor, ColumnModel, ColumnRole, RecordRow, Row

logger = logging.getLogger(__name__)

HEADER_KEYWORD_RE = re.compile(
    r"\b(?:noms?|pr[ée]noms?|[ée]l[èe]ves?|[ée]tudiants?|students?|names?|"
    r"mati[èe]res?|disciplines?|subjects?|moyennes?|averages?)\b",
    re.IGNORECASE,
)
AVERAGE_MARKERS = frozenset({"moy", "moy.", "avg", "avg."})
AVERAGE_WORD_RE = re.compile(r"\b(?:moy(?:enne)?s?|averages?|avg|overall)\b\.?", re.IGNORECASE)
NAME_RE = re.compile(
    r"\b(?:noms?|pr[ée]noms?|[ée]l[èe]ves?|[ée]tudiants?|students?|names?|identit[ée])\b",
    re.IGNORECASE,
)
EXCLUDED_RE = re.compile(
    r"\b(?:rangs?|ranks?|total|totaux|absences?|abs|retards?|nb|id|identifiant|classe|class|"
    r"groupe|sexe|date|naissance|appr[ée]ciations?|commentaires?|comments?|observations?|"
    r"coef(?:ficient)?s?|points?|pts|ine|r[ée]gime)\b|n°|#",
    re.IGNORECASE,
)
AGGREGATE_ROW_RE = re.compile(
    r"moyennes?\s+(?:de\s+(?:la\s+)?classe|du\s+groupe|des\s+groupes|g[ée]n[ée]rales?\s+de\s+la\s+classe)"
    r"|\bmoy\.?\s+(?:de\s+)?classe\b|\bclass\s+average\b|\btotal\b|\btotaux\b",
    re.IGNORECASE,
)
TOKEN_RE = re.compile(r"[^\W\d_]+|\d+")
NUMERIC_CELL_RE = re.compile(r"^\d+(?:[.,]\d+)?(?:\s*/\s*\d+)?$")
GENERAL_WORDS = frozenset(
    {
        "générale", "generale", "général", "general", "gén", "gen", "gle", "g", "overall",
        "élève", "eleve", "de", "l", "du", "la", "trimestrielle", "semestrielle", "annuelle",
        "trim", "student", "term", "of", "the",
    }
)
CLASS_WORDS = frozenset({"classe", "class", "groupe", "group", "promo"})

BY_KEYWORDS = "keywords"
BY_AVERAGE_MARKERS = "average_markers"
BY_SPREADSHEET = "spreadsheet_header"

MIN_HEADER_FRAGMENTS = 3
MIN_AVERAGE_MARKERS = 3
MIN_DATA_FRAGMENTS = 2
LAST_COLUMN_WIDTH = 1e9


@dataclass(frozen=True)
class TableSection:
    """Data rows read with one column model."""

    model: ColumnModel
    rows: tuple[Row, ...]


def _tokens(text: str) -> set[str]:
    return {token.lower() for token in TOKEN_RE.findall(text)}


def is_average_marker(text: str) -> bool:
    """Return whether ``text`` is a bare per-column average marker such as ``Moy``."""

    return text.strip().lower() in AVERAGE_MARKERS


def classify_header(label: str) -> ColumnRole:
    """Classify one header label into a column role.

    An average word qualified by a class word (``Moy. classe``) is a class-level
    column and therefore ``OTHER``; qualified by anything else than general
    qualifiers (``Moy. Maths``) it names a per-subject column.

    Args:
        label: Header text.

    Returns:
        The column role.
    """

    text = label.strip()
    if not text:
        return ColumnRole.OTHER
    if AVERAGE_WORD_RE.search(text):
        rest = _tokens(AVERAGE_WORD_RE.sub(" ", text))
        if rest & CLASS_WORDS:
            return ColumnRole.OTHER
        if not rest - GENERAL_WORDS:
            return ColumnRole.AVERAGE
        return ColumnRole.SUBJECT
    if NAME_RE.search(text):
        return ColumnRole.NAME
    if EXCLUDED_RE.search(text):
        return ColumnRole.OTHER
    return ColumnRole.SUBJECT


def display_label(text: str, role: ColumnRole) -> str:
    """Return the label used as column key, dropping average words from subjects."""

    if role is ColumnRole.SUBJECT and AVERAGE_WORD_RE.search(text):
        stripped = AVERAGE_WORD_RE.sub(" ", text).strip(" .:-")
        stripped = re.sub(r"\s+", " ", stripped)
        if stripped:
            return stripped
    return text.strip()


def _dedupe(labels: Sequence[str]) -> list[str]:
    seen: dict[str, int] = {}
    out: list[str] = []
    for label in labels:
        count = seen.get(label, 0) + 1
        seen[label] = count
        out.append(label if count == 1 else f"{label} ({count})")
    return out


def _anchors(specs: Sequence[tuple[ColumnRole, str, float]], page: int) -> tuple[ColumnAnchor, ...]:
    """Build non-overlapping anchors from ``(role, label, x)`` specs."""

    ordered = sorted(specs, key=lambda spec: (spec[2], spec[1]))
    labels = _dedupe([label for _, label, _ in ordered])
    anchors: list[ColumnAnchor] = []
    for idx, ((role, _, x), label) in enumerate(zip(ordered, labels)):
        width = ordered[idx + 1][2] - x if idx + 1 < len(ordered) else LAST_COLUMN_WIDTH
        anchors.append(ColumnAnchor(role=role, label=label, x=x, width=width, page=page))
    return tuple(anchors)


def _looks_like_header(row: Row) -> bool:
    if len(row.fragments) < MIN_HEADER_FRAGMENTS or is_aggregate_row(row.text):
        return False
    return bool(HEADER_KEYWORD_RE.search(row.text))


def repeats_header(row: Row, model: ColumnModel) -> bool:
    """Return whether ``row`` repeats the header that produced ``model``.

    Most fragments (and at least two) must equal a column label. A remark such
    as "Élève sérieuse" holds a header keyword but equals no label, so the row
    stays data.
    """

    labels = {anchor.label.casefold() for anchor in model.anchors}
    matches = 0
    for fragment in row.fragments:
        text = fragment.text.strip()
        if model.detected_by == BY_AVERAGE_MARKERS and is_average_marker(text):
            matches += 1
        elif text.casefold() in labels or display_label(text, classify_header(text)).casefold() in labels:
            matches += 1
    return matches >= 2 and matches * 2 > len(row.fragments)


def _continuation_header(rows: Sequence[Row], start: int, end: int, model: ColumnModel) -> tuple[int, str] | None:
    """Find a header on a continuation page.

    A repeat of the current header always qualifies; for marker headers that
    is the marker row, the label row above it being read with it. Otherwise a
    keyword row only qualifies when no fragment is a bare number, since data
    rows carry grades.
    """

    for idx in range(start, end):
        row = rows[idx]
        if model.detected_by == BY_AVERAGE_MARKERS:
            markers = sum(1 for fragment in row.fragments if is_average_marker(fragment.text))
            if markers >= MIN_AVERAGE_MARKERS:
                return idx, BY_AVERAGE_MARKERS
        elif repeats_header(row, model):
            return idx, BY_KEYWORDS
    for idx in range(start, end):
        row = rows[idx]
        if _looks_like_header(row) and not any(NUMERIC_CELL_RE.match(f.text.strip()) for f in row.fragments):
            return idx, BY_KEYWORDS
    return None


def find_header_row(
    rows: Sequence[Row],
    start: int = 0,
    stop: int | None = None,
) -> tuple[int, str] | None:
    """Find the header row within ``rows[start:stop]``.

    Returns:
        ``(index, detected_by)`` or ``None`` when no row qualifies.
    """

    stop = len(rows) if stop is None else stop
    for idx in range(start, stop):
        if _looks_like_header(rows[idx]):
            return idx, BY_KEYWORDS
    for idx in range(start, stop):
        markers = sum(1 for fragment in rows[idx].fragments if is_average_marker(fragment.text))
        if markers >= MIN_AVERAGE_MARKERS:
            return idx, BY_AVERAGE_MARKERS
    return None


def build_column_model(rows: Sequence[Row], header_idx: int, detected_by: str) -> ColumnModel:
    """Derive the column model from the header row at ``header_idx``.

    In average-marker mode each marker takes the label of the nearest fragment
    of the row above; fragments of that row claimed by no marker (typically
    the student-name label) become anchors of their own.
    """

    header = rows[header_idx]
    label_row: Row | None = None
    if detected_by == BY_AVERAGE_MARKERS and header_idx > 0 and rows[header_idx - 1].page == header.page:
        label_row = rows[header_idx - 1]

    specs: list[tuple[ColumnRole, str, float]] = []
    claimed: set[int] = set()
    for position, fragment in enumerate(header.fragments, start=1):
        text = fragment.text
        if detected_by == BY_AVERAGE_MARKERS and is_average_marker(text):
            if label_row is None or not label_row.fragments:
                specs.append((ColumnRole.SUBJECT, f"{text} {position}", fragment.x))
                continue
            nearest = min(
                range(len(label_row.fragments)),
                key=lambda idx: (abs(label_row.fragments[idx].x - fragment.x), idx),
            )
            claimed.add(nearest)
            text = label_row.fragments[nearest].text
        role = classify_header(text)
        specs.append((role, display_label(text, role), fragment.x))

    if label_row is not None:
        for idx, fragment in enumerate(label_row.fragments):
            if idx in claimed:
                continue
            role = classify_header(fragment.text)
            specs.append((role, display_label(fragment.text, role), fragment.x))

    return ColumnModel(
        page=header.page,
        header_y=header.y,
        anchors=_anchors(specs, header.page),
        detected_by=detected_by,
    )


def _page_spans(rows: Sequence[Row]) -> list[tuple[int, int]]:
    spans: list[tuple[int, int]] = []
    start = 0
    for idx in range(1, len(rows) + 1):
        if idx == len(rows) or rows[idx].page != rows[start].page:
            spans.append((start, idx))
            start = idx
    return spans if rows else []


def locate_tables(rows: Sequence[Row]) -> list[TableSection]:
    """Split document rows into table sections, one per header occurrence.

    Rows above the first header (titles, banners) are not table data.

    Raises:
        NoHeaderDetected: If no header row exists anywhere in the document.
    """

    found = find_header_row(rows)
    if found is None:
        raise NoHeaderDetected(f"No grade-table header found in {len(rows)} row(s)")

    header_idx, detected_by = found
    model = build_column_model(rows, header_idx, detected_by)
    logger.info(
        "Header detected on page %d by %s with %d column(s)",
        model.page,
        detected_by,
        len(model.anchors),
    )

    sections: list[TableSection] = []
    data: list[Row] = []
    for start, end in _page_spans(rows):
        if end <= header_idx:
            continue
        if start <= header_idx < end:
            data.extend(rows[header_idx + 1 : end])
            continue
        page_header = _continuation_header(rows, start, end, model)
        if page_header is None:
            data.extend(rows[start:end])
            continue
        data.extend(rows[start : page_header[0]])
        sections.append(TableSection(model=model, rows=tuple(data)))
        model = build_column_model(rows, *page_header)
        data = list(rows[page_header[0] + 1 : end])
    sections.append(TableSection(model=model, rows=tuple(data)))
    return sections


def nearest_anchor_index(x: float, anchors: Sequence[ColumnAnchor]) -> int:
    """Return the index of the anchor minimizing ``|x - anchor.x|``; ties go left."""

    return min(range(len(anchors)), key=lambda idx: (abs(x - anchors[idx].x), idx))


def assign_row(row: Row, model: ColumnModel) -> RecordRow:
    """Assign every fragment of ``row`` to its nearest column anchor.

    Fragments landing in the same column are joined with one space in left to
    right order.
    """

    buckets: dict[int, list[str]] = {}
    for fragment in row.fragments:
        buckets.setdefault(nearest_anchor_index(fragment.x, model.anchors), []).append(fragment.text)
    cells = {model.anchors[idx].label: " ".join(buckets[idx]) for idx in sorted(buckets)}
    return RecordRow(page=row.page, cells=cells)


def is_aggregate_row(text: str) -> bool:
    """Return whether a row is a class-level summary (class average, totals).

    The summary label opens the row; a header holding a ``Moy. classe``
    column is not a summary row.
    """

    return bool(AGGREGATE_ROW_RE.match(text.strip()))


def assign_section(section: TableSection) -> tuple[list[RecordRow], list[RecordRow]]:
    """Resolve the rows of one section into record rows.

    Returns:
        ``(student_rows, aggregate_rows)``. Rows with fewer than two fragments
        and repeated header rows are skipped with a warning.
    """

    student_rows: list[RecordRow] = []
    aggregate_rows: list[RecordRow] = []
    for row in section.rows:
        if len(row.fragments) < MIN_DATA_FRAGMENTS:
            logger.warning("Skipping single-fragment row on page %d: %r", row.page, row.text)
            continue
        if repeats_header(row, section.model):
            logger.warning("Skipping repeated header row on page %d: %r", row.page, row.text)
            continue
        record_row = assign_row(row, section.model)
        if is_aggregate_row(row.text):
            aggregate_rows.append(record_row)
        else:
            student_rows.append(record_row)
    return student_rows, aggregate_rows


def model_from_labels(labels: Sequence[str]) -> ColumnModel:
    """Build a column model for spreadsheet input where columns are given by position."""

    specs = []
    for idx, label in enumerate(labels):
        role = classify_header(label)
        specs.append((role, display_label(label, role), float(idx)))
    anchors = tuple(
        ColumnAnchor(role=anchor.role, label=anchor.label, x=anchor.x, width=1.0, page=1)
        for anchor in _anchors(specs, page=1)
    )
    return ColumnModel(page=1, header_y=0.0, anchors=anchors, detected_by=BY_SPREADSHEET)


def record_rows_from_table(
    header: Sequence[str],
    rows: Sequence[Mapping[str, str]],
) -> tuple[ColumnModel, list[RecordRow], list[RecordRow]]:
    """Turn spreadsheet rows into record rows keyed by column-model labels.

    Returns:
        ``(model, student_rows, aggregate_rows)``.
    """

    model = model_from_labels(header)
    # The summary label sits in the name column, or in the first column of sheets without one.
    name_labels = model.labels(ColumnRole.NAME) + tuple(anchor.label for anchor in model.anchors[:1])
    student_rows: list[RecordRow] = []
    aggregate_rows: list[RecordRow] = []
    for row in rows:
        cells = {
            anchor.label: str(row.get(source, "") or "").strip()
            for anchor, source in zip(model.anchors, header)
        }
        record_row = RecordRow(page=1, cells=cells)
        if any(is_aggregate_row(cells.get(label, "")) for label in name_labels):
            aggregate_rows.append(record_row)
        else:
            student_rows.append(record_row)
    return model, student_rows, aggregate_rows
