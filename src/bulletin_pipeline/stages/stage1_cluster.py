"""Stage 1: Cluster positioned fragments into ordered rows.

Fragments are sorted by ``(page, y)`` and walked once; a fragment joins the
current row while its vertical distance from the row's first fragment stays
within the tolerance (inclusive). Each finished row is sorted left to right.
Every sort key ends with the fragment text so identical input always yields
identical rows.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from bulletin_pipeline.config import DEFAULT_ROW_TOLERANCE
from bulletin_pipeline.models import Row, TextFragment


def _vertical_key(fragment: TextFragment) -> tuple[int, float, float, str]:
    return fragment.page, fragment.y, fragment.x, fragment.text


def _horizontal_key(fragment: TextFragment) -> tuple[float, float, str]:
    return fragment.x, fragment.y, fragment.text


def _finish_row(fragments: list[TextFragment], page: int, reference_y: float) -> Row:
    return Row(page=page, y=reference_y, fragments=tuple(sorted(fragments, key=_horizontal_key)))


def cluster_rows(
    fragments: Iterable[TextFragment],
    tolerance: float = DEFAULT_ROW_TOLERANCE,
) -> list[Row]:
    """Group fragments into rows ordered top to bottom, page by page.

    Args:
        fragments: Unordered fragments of one document, possibly multi-page.
        tolerance: Maximum distance from the row's reference ``y``; a fragment
            exactly at the tolerance stays in the current row.

    Returns:
        Rows in reading order; fragments inside each row are sorted by ``x``.
    """

    rows: list[Row] = []
    current: list[TextFragment] = []
    reference_y = 0.0
    page = 0

    for fragment in sorted(fragments, key=_vertical_key):
        if current and (fragment.page != page or fragment.y - reference_y > tolerance):
            rows.append(_finish_row(current, page, reference_y))
            current = []
        if not current:
            reference_y = fragment.y
            page = fragment.page
        current.append(fragment)

    if current:
        rows.append(_finish_row(current, page, reference_y))
    return rows


def rows_to_lines(rows: Sequence[Row]) -> list[str]:
    """Render rows as text lines, one per row."""

    return [row.text for row in rows]


def document_text(fragments: Iterable[TextFragment], tolerance: float = DEFAULT_ROW_TOLERANCE) -> str:
    """Return the reading-order text of a document, one row per line."""

    return "\n".join(rows_to_lines(cluster_rows(fragments, tolerance=tolerance)))
