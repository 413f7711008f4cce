"""Unit tests for progress reporting, time budgets and cancellation."""

from __future__ import annotations

import pytest

from bulletin_pipeline.errors import AcquisitionTimeout, ExtractionCancelled
from bulletin_pipeline.progress import CancellationToken, RunControl, ensure_control


class _Clock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_check_raises_after_deadline() -> None:
    clock = _Clock()
    control = RunControl(timeout=5, clock=clock)

    clock.now = 5.0
    control.check()

    clock.now = 5.5
    with pytest.raises(AcquisitionTimeout, match="5s time budget"):
        control.check()


def test_check_raises_when_token_cancelled() -> None:
    token = CancellationToken()
    control = RunControl(token=token)
    control.check()

    token.cancel()

    assert token.cancelled
    with pytest.raises(ExtractionCancelled):
        control.check()


def test_report_is_monotonic_and_clamped() -> None:
    seen: list[int] = []
    control = RunControl(on_progress=seen.append)

    for value in (10, 50, 40, 50, 130, -5):
        control.report(value)

    assert seen == [10, 50, 100]


def test_report_step_maps_into_range() -> None:
    seen: list[int] = []
    control = RunControl(on_progress=seen.append)

    control.report_step(1, 4, start=0, end=100)
    control.report_step(3, 4, start=0, end=100)
    control.report_step(0, 0, start=0, end=80)

    assert seen == [25, 75, 80]


def test_failing_callback_does_not_abort() -> None:
    def explode(value: int) -> None:
        raise RuntimeError("render failed")

    control = RunControl(on_progress=explode)

    control.report(30)
    control.check()


def test_ensure_control_reuses_given_handle() -> None:
    control = RunControl()

    assert ensure_control(control) is control
    assert isinstance(ensure_control(None, timeout=1.0), RunControl)
