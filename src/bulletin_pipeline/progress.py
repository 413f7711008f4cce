"""Progress reporting, cooperative cancellation and time budgets."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from bulletin_pipeline.errors import AcquisitionTimeout, ExtractionCancelled

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

# Milestones reported by the pipeline, in percent.
ACQUIRED = 30
CLUSTERED = 40
STRUCTURED = 50
EXTRACTED = 95
DONE = 100


class CancellationToken:
    """Thread-safe flag a caller sets to stop extraction between steps."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class RunControl:
    """Control-flow handle threaded through one document's extraction.

    Stages call :meth:`check` between units of work and :meth:`report` at
    milestones. The handle holds no extraction state, so one instance per
    document is enough and instances are never shared across documents.

    Args:
        on_progress: Callback receiving an integer percentage in ``0..100``.
        token: Cancellation token shared with the caller.
        timeout: Seconds allowed from construction, ``None`` for no limit.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_progress = on_progress
        self._token = token
        self._timeout = timeout
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout
        self._last = -1

    def report(self, percent: float) -> None:
        """Emit ``percent`` to the callback, clamped and never decreasing.

        A failing callback is logged and otherwise ignored so rendering
        problems in the caller never abort extraction.
        """

        value = max(0, min(100, int(percent)))
        if value <= self._last:
            return
        self._last = value
        if self._on_progress is None:
            return
        try:
            self._on_progress(value)
        except Exception:
            logger.warning("Progress callback failed at %d%%", value, exc_info=True)

    def report_step(self, done: int, total: int, start: int = STRUCTURED, end: int = EXTRACTED) -> None:
        """Report progress of ``done`` out of ``total`` units within ``start..end``."""

        if total <= 0:
            self.report(end)
            return
        self.report(start + (end - start) * min(done, total) / total)

    def check(self) -> None:
        """Raise when the caller cancelled or the time budget is exhausted.

        Raises:
            ExtractionCancelled: If the cancellation token is set.
            AcquisitionTimeout: If the deadline has passed.
        """

        if self._token is not None and self._token.cancelled:
            raise ExtractionCancelled("Extraction cancelled by caller")
        if self._deadline is not None and self._clock() > self._deadline:
            raise AcquisitionTimeout(f"Extraction exceeded the {self._timeout:g}s time budget")


def ensure_control(control: RunControl | None, timeout: float | None = None) -> RunControl:
    """Return ``control`` or a fresh handle honoring ``timeout``."""

    if control is not None:
        return control
    return RunControl(timeout=timeout)
