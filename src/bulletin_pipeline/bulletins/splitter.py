"""Bulletin splitter: cut a concatenated document into per-student blocks."""

from __future__ import annotations

import logging
import re
from typing import Sequence

from bulletin_pipeline.candidates import compile_pattern
from bulletin_pipeline.config import DEFAULT_ANCHOR_PATTERN
from bulletin_pipeline.errors import NoDelimiterMatch
from bulletin_pipeline.models import BulletinBlock

logger = logging.getLogger(__name__)


def anchor_regex(pattern: str | re.Pattern) -> re.Pattern:
    """Compile an anchor pattern case-insensitively unless already compiled."""

    if isinstance(pattern, re.Pattern):
        return pattern
    return compile_pattern("anchor_pattern", pattern, re.IGNORECASE)


def count_anchors(lines: Sequence[str], pattern: str | re.Pattern = DEFAULT_ANCHOR_PATTERN) -> int:
    """Return how many lines match the anchor pattern."""

    regex = anchor_regex(pattern)
    return sum(1 for line in lines if regex.search(line))


def split_bulletins(
    lines: Sequence[str],
    pattern: str | re.Pattern = DEFAULT_ANCHOR_PATTERN,
) -> list[BulletinBlock]:
    """Partition document lines into bulletin blocks.

    A line matching the anchor opens a new block that runs up to the next
    anchor line or the end of the document. Lines before the first anchor are
    a document preamble and belong to no block. When no line matches, the
    whole document is returned as a single block with ``anchored=False`` so
    the caller can tell that splitting did not happen.

    Args:
        lines: Document text, one line per clustered row.
        pattern: Anchor regex, matched case-insensitively with ``search``.

    Returns:
        Blocks in document order.

    Raises:
        NoDelimiterMatch: If the document holds no text at all.
        InvalidTemplatePattern: If ``pattern`` does not compile.
    """

    regex = anchor_regex(pattern)
    if not any(line.strip() for line in lines):
        raise NoDelimiterMatch("Document has no text to split into bulletins")

    starts = [idx for idx, line in enumerate(lines) if regex.search(line)]
    if not starts:
        logger.info("No bulletin anchor found; treating %d line(s) as one block", len(lines))
        return [BulletinBlock(index=0, start_line=0, lines=tuple(lines), anchored=False)]

    if starts[0] > 0:
        logger.debug("Dropped %d preamble line(s) before the first anchor", starts[0])

    blocks: list[BulletinBlock] = []
    for index, start in enumerate(starts):
        end = starts[index + 1] if index + 1 < len(starts) else len(lines)
        blocks.append(
            BulletinBlock(index=index, start_line=start, lines=tuple(lines[start:end]), anchored=True)
        )
    logger.info("Split document into %d bulletin block(s)", len(blocks))
    return blocks


def split_text(text: str, pattern: str | re.Pattern = DEFAULT_ANCHOR_PATTERN) -> list[BulletinBlock]:
    """Split raw text (newline-separated) into bulletin blocks."""

    return split_bulletins(text.splitlines(), pattern)
