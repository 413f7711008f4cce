"""Ordered candidate extractors.

Fields that can be found in several ways are described by a tuple of
:class:`FieldCandidate` values tried in priority order; the first candidate
that matches wins. Keeping the battery as data makes each guess testable on
its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Sequence

from bulletin_pipeline.errors import InvalidTemplatePattern


@dataclass(frozen=True)
class FieldCandidate:
    """One way of finding a field in text.

    Attributes:
        name: Short identifier shown in logs and tests.
        pattern: Compiled regex; the ``value`` group, else group 1, else the
            whole match is the captured value.
        transform: Optional post-processing of the captured value.
    """

    name: str
    pattern: re.Pattern
    transform: Callable[[str], str] | None = None

    def search(self, text: str) -> str | None:
        match = self.pattern.search(text)
        if match is None:
            return None
        value = capture(match).strip()
        if self.transform is not None:
            value = self.transform(value)
        return value or None


def capture(match: re.Match) -> str:
    """Return the meaningful capture of ``match``.

    The named group ``value`` wins, then the first group that participated,
    then the whole match.
    """

    if "value" in match.re.groupindex and match.group("value") is not None:
        return match.group("value")
    for group in match.groups():
        if group is not None:
            return group
    return match.group(0)


def first_match(candidates: Iterable[FieldCandidate], text: str) -> tuple[str, str] | None:
    """Try ``candidates`` in order.

    Returns:
        ``(candidate_name, value)`` for the first candidate that matches, else
        ``None``.
    """

    for candidate in candidates:
        value = candidate.search(text)
        if value is not None:
            return candidate.name, value
    return None


def first_value(candidates: Iterable[FieldCandidate], text: str) -> str | None:
    """Return only the value of :func:`first_match`."""

    found = first_match(candidates, text)
    return None if found is None else found[1]


def compile_pattern(field_name: str, pattern: str, flags: int = 0) -> re.Pattern:
    """Compile a user-supplied pattern.

    Raises:
        InvalidTemplatePattern: If ``pattern`` is not a valid regular expression.
    """

    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise InvalidTemplatePattern(field_name, pattern, str(exc)) from exc


def most_frequent(values: Sequence[str]) -> str | None:
    """Return the most frequent non-empty value; ties go to the first seen."""

    counts: dict[str, int] = {}
    for value in values:
        key = value.strip()
        if key:
            counts[key] = counts.get(key, 0) + 1
    if not counts:
        return None
    return max(counts, key=lambda key: counts[key])
