"""Tunable extraction settings."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ROW_TOLERANCE = 5.0
DEFAULT_GRADE_SCALE = 20.0
DEFAULT_BUCKET_BOUNDS = (0.0, 5.0, 10.0, 13.0, 15.0, 20.0)
DEFAULT_ANCHOR_PATTERN = (
    r"bulletin\s+(?:scolaire\s+)?(?:du|de)\s+"
    r"(?:premier|deuxi[èe]me|second|troisi[èe]me|\d+\s*(?:er|re|nd|e|[èe]me)?)\s*"
    r"(?:trimestre|semestre)"
)


@dataclass(frozen=True)
class ExtractionSettings:
    """Settings shared read-only by every stage of one run.

    Attributes:
        row_tolerance: Maximum vertical distance (inclusive) between a fragment
            and the first fragment of the current row.
        grade_scale: Native grade scale used when a cell carries no ``/N``.
        anchor_pattern: Regex matching the line that opens each bulletin.
        progress_every: Rows or blocks processed between progress reports.
        timeout: Seconds allowed for one document, ``None`` for no limit.
        expand_subject_abbreviations: Rewrite headers like ``MATHS`` into full
            subject names.
        infer_template_on_failure: Try an auto-inferred mapping template when
            the built-in table heuristics find no header.
        bucket_bounds: Ascending bounds of the average distribution buckets.
    """

    row_tolerance: float = DEFAULT_ROW_TOLERANCE
    grade_scale: float = DEFAULT_GRADE_SCALE
    anchor_pattern: str = DEFAULT_ANCHOR_PATTERN
    progress_every: int = 25
    timeout: float | None = None
    expand_subject_abbreviations: bool = False
    infer_template_on_failure: bool = True
    bucket_bounds: tuple[float, ...] = DEFAULT_BUCKET_BOUNDS

    def __post_init__(self) -> None:
        if self.row_tolerance < 0:
            raise ValueError(f"row_tolerance must be >= 0, got {self.row_tolerance}")
        if self.grade_scale <= 0:
            raise ValueError(f"grade_scale must be > 0, got {self.grade_scale}")
        if self.progress_every < 1:
            raise ValueError(f"progress_every must be >= 1, got {self.progress_every}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be > 0 when set, got {self.timeout}")
        bounds = tuple(self.bucket_bounds)
        if len(bounds) < 2 or any(low >= high for low, high in zip(bounds, bounds[1:])):
            raise ValueError(f"bucket_bounds must be strictly ascending, got {bounds}")


DEFAULT_SETTINGS = ExtractionSettings()
