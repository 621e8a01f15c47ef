from __future__ import annotations

from bracketdesk.core.drag.reconcile import DragReconciler, needs_modify
from bracketdesk.core.orders.models import LegKind
from bracketdesk.core.sizing.calculator import round_price_to_tick


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _round(price: float) -> float:
    return round_price_to_tick(price, tick=0.25)


def test_follow_entry_moves_only_legs_that_were_not_dragged() -> None:
    drag = DragReconciler(clock=_Clock())
    drag.seed_offsets(5000.25, 4995.25, 5010.25, tick=0.25)

    detection = drag.detect(LegKind.STOP, 4990.0, 4995.25, tick=0.25, round_to_tick=_round)
    moved = drag.follow_entry(5001.25, tick=0.25, round_to_tick=_round)

    assert detection is not None and detection.started
    assert moved == {LegKind.TARGET: 5011.25}
    assert drag.adjustment(LegKind.STOP).manually_adjusted


def test_sub_threshold_marker_noise_is_not_a_drag() -> None:
    drag = DragReconciler(clock=_Clock())

    detection = drag.detect(LegKind.TARGET, 5010.30, 5010.25, tick=0.25, round_to_tick=_round)

    assert detection is None
    assert not drag.is_dragging(LegKind.TARGET)


def test_continued_drag_is_not_a_new_start() -> None:
    drag = DragReconciler(clock=_Clock())

    first = drag.detect(LegKind.STOP, 4990.0, 4995.25, tick=0.25, round_to_tick=_round)
    second = drag.detect(LegKind.STOP, 4989.0, 4990.0, tick=0.25, round_to_tick=_round)

    assert first is not None and first.started
    assert second is not None and not second.started
    assert second.price == 4989.0


def test_finalize_is_not_reentrant() -> None:
    drag = DragReconciler(clock=_Clock())

    assert drag.try_begin_finalize()
    assert not drag.try_begin_finalize()
    drag.end_finalize()


def test_repeat_finalize_inside_window_is_suppressed() -> None:
    clock = _Clock()
    drag = DragReconciler(clock=clock, duplicate_window=0.25)
    assert drag.try_begin_finalize()
    drag.end_finalize()

    clock.now += 0.1
    assert not drag.try_begin_finalize()

    clock.now += 0.3
    assert drag.try_begin_finalize()
    drag.end_finalize()


def test_finalize_after_a_new_drag_runs_inside_window() -> None:
    clock = _Clock()
    drag = DragReconciler(clock=clock)
    assert drag.try_begin_finalize()
    drag.end_finalize()

    clock.now += 0.05
    drag.detect(LegKind.TARGET, 5012.0, 5010.25, tick=0.25, round_to_tick=_round)

    assert drag.try_begin_finalize()
    drag.end_finalize()
    assert not drag.is_dragging(LegKind.TARGET)


def test_modify_tolerance_is_an_eighth_of_a_tick() -> None:
    assert needs_modify(None, 5000.0, tick=0.25)
    assert not needs_modify(5000.0, 5000.01, tick=0.25)
    assert needs_modify(5000.0, 5000.25, tick=0.25)
