"""PDF acquisition: turn a document into positioned text fragments.

``pdfplumber`` provides words with their bounding boxes. The adapter keeps the
left edge (``x0``) and top edge (``top``) of each word and normalizes them into
:class:`~bulletin_pipeline.models.TextFragment` values grouped per page.
Fragment order inside a page is whatever the primitive emits; ordering is the
row clusterer's job.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

import pdfplumber

from bulletin_pipeline.errors import AcquisitionFailure
from bulletin_pipeline.models import TextFragment
from bulletin_pipeline.progress import RunControl, ensure_control

logger = logging.getLogger(__name__)

WHITESPACE_RE = re.compile(r"\s+")

# ``keep_blank_chars`` keeps multi-word cells like "Dupont Jean" in one word;
# columns remain separate because their gap exceeds ``x_tolerance``.
WORD_OPTIONS = {"keep_blank_chars": True, "x_tolerance": 3, "y_tolerance": 3}


@dataclass(frozen=True)
class PageText:
    """Fragments extracted from one page."""

    page_number: int
    fragments: tuple[TextFragment, ...]


@dataclass(frozen=True)
class AcquiredDocument:
    """Positioned text of a whole document, one entry per page."""

    pages: tuple[PageText, ...]

    @property
    def fragments(self) -> tuple[TextFragment, ...]:
        """Return all fragments of all pages in page order."""

        return tuple(fragment for page in self.pages for fragment in page.fragments)


def normalize_text(text: str) -> str:
    """Collapse internal whitespace runs and trim the text."""

    return WHITESPACE_RE.sub(" ", text).strip()


def fragments_from_words(words: Iterable[Mapping[str, object]], page_number: int) -> tuple[TextFragment, ...]:
    """Convert ``pdfplumber`` word dictionaries into text fragments.

    Args:
        words: Word mappings carrying at least ``text``, ``x0`` and ``top``.
        page_number: 1-based page number assigned to every fragment.

    Returns:
        Fragments for non-blank words, in input order.
    """

    fragments: list[TextFragment] = []
    for word in words:
        text = normalize_text(str(word.get("text", "") or ""))
        if not text:
            continue
        fragments.append(
            TextFragment(
                text=text,
                x=float(word.get("x0", 0.0) or 0.0),
                y=float(word.get("top", 0.0) or 0.0),
                page=page_number,
            )
        )
    return tuple(fragments)


def extract_pdf(
    source: Path | bytes,
    page_start: int | None = None,
    page_end: int | None = None,
    control: RunControl | None = None,
) -> AcquiredDocument:
    """Extract positioned text fragments from selected PDF pages.

    Page boundaries are inclusive and 1-based. Pages are read one at a time
    and the control handle is checked between pages, so a timeout interrupts
    long documents at page granularity.

    Args:
        source: PDF path or raw PDF bytes.
        page_start: 1-based first page, ``None`` for the first page.
        page_end: 1-based last page, ``None`` for the last page.
        control: Optional cancellation/timeout handle.

    Returns:
        The acquired document.

    Raises:
        AcquisitionFailure: If the PDF cannot be opened or a page cannot be read.
    """

    control = ensure_control(control)
    handle = io.BytesIO(source) if isinstance(source, (bytes, bytearray)) else source
    label = "<bytes>" if isinstance(source, (bytes, bytearray)) else str(source)

    try:
        pdf = pdfplumber.open(handle)
    except Exception as exc:
        raise AcquisitionFailure(f"Cannot open PDF {label}: {exc}") from exc

    pages: list[PageText] = []
    with pdf:
        try:
            total_pages = len(pdf.pages)
        except Exception as exc:
            raise AcquisitionFailure(f"Cannot read page list of {label}: {exc}") from exc
        start_idx = 0 if page_start is None else max(page_start - 1, 0)
        end_idx = total_pages - 1 if page_end is None else min(page_end - 1, total_pages - 1)

        for page_idx in range(start_idx, end_idx + 1):
            control.check()
            try:
                words = pdf.pages[page_idx].extract_words(**WORD_OPTIONS)
            except Exception as exc:
                raise AcquisitionFailure(
                    f"Cannot read page {page_idx + 1} of {label}: {exc}"
                ) from exc
            pages.append(PageText(page_number=page_idx + 1, fragments=fragments_from_words(words, page_idx + 1)))

    logger.info("Acquired %d page(s) from %s", len(pages), label)
    return AcquiredDocument(pages=tuple(pages))
