from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from bracketdesk.core.orders.models import LegKind

DRAG_TOLERANCE_TICKS = 0.25
MODIFY_TOLERANCE_TICKS = 0.125
FINALIZE_DUPLICATE_WINDOW_SECONDS = 0.25
DRAG_LOG_INTERVAL_SECONDS = 0.2

_EXIT_LEGS = (LegKind.STOP, LegKind.TARGET)


@dataclass
class LegAdjustment:
    offset_ticks: float = 0.0
    manually_adjusted: bool = False


@dataclass(frozen=True)
class DragDetection:
    leg: LegKind
    price: float
    started: bool


def moved_at_least(a: float, b: float, *, tick: float, fraction: float) -> bool:
    return abs(a - b) >= tick * fraction


def needs_modify(order_price: Optional[float], new_price: float, *, tick: float) -> bool:
    if order_price is None:
        return True
    return moved_at_least(order_price, new_price, tick=tick, fraction=MODIFY_TOLERANCE_TICKS)


class DragReconciler:
    """Per-leg drag state for the stop and target markers.

    Tracks each leg's offset from entry and whether the user has moved it by hand. A
    manually adjusted leg stops following entry until the offsets are re-seeded. The
    finalize section is guarded by a non-blocking lock; a repeat finalize inside the
    duplicate window with no drag in between is suppressed.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        duplicate_window: float = FINALIZE_DUPLICATE_WINDOW_SECONDS,
    ) -> None:
        self._clock = clock
        self._duplicate_window = duplicate_window
        self._adjustments: dict[LegKind, LegAdjustment] = {leg: LegAdjustment() for leg in _EXIT_LEGS}
        self._dragging: dict[LegKind, bool] = {leg: False for leg in _EXIT_LEGS}
        self._finalize_lock = threading.Lock()
        self._last_finalize: Optional[float] = None
        self._drag_since_finalize = False
        self._last_drag_log: dict[LegKind, float] = {}

    def adjustment(self, leg: LegKind) -> LegAdjustment:
        return self._adjustments[leg]

    def is_dragging(self, leg: LegKind) -> bool:
        return self._dragging.get(leg, False)

    def any_dragging(self) -> bool:
        return any(self._dragging.values())

    def reset(self) -> None:
        for leg in _EXIT_LEGS:
            self._adjustments[leg] = LegAdjustment()
            self._dragging[leg] = False
        self._drag_since_finalize = False

    def seed_offsets(self, entry: float, stop: float, target: float, *, tick: float) -> None:
        if tick <= 0:
            return
        self._adjustments[LegKind.STOP] = LegAdjustment(offset_ticks=(stop - entry) / tick)
        self._adjustments[LegKind.TARGET] = LegAdjustment(offset_ticks=(target - entry) / tick)

    def follow_entry(
        self,
        entry: float,
        *,
        tick: float,
        round_to_tick: Callable[[float], float],
    ) -> dict[LegKind, float]:
        """Prices for the legs that still follow entry, each at its stored offset."""
        moved: dict[LegKind, float] = {}
        for leg in _EXIT_LEGS:
            adjustment = self._adjustments[leg]
            if adjustment.manually_adjusted:
                continue
            moved[leg] = round_to_tick(entry + adjustment.offset_ticks * tick)
        return moved

    def detect(
        self,
        leg: LegKind,
        marker_price: Optional[float],
        tracked_price: float,
        *,
        tick: float,
        round_to_tick: Callable[[float], float],
    ) -> Optional[DragDetection]:
        if marker_price is None or tick <= 0:
            return None
        snapped = round_to_tick(marker_price)
        if not moved_at_least(snapped, tracked_price, tick=tick, fraction=DRAG_TOLERANCE_TICKS):
            return None
        started = not self._dragging[leg]
        self._dragging[leg] = True
        self._drag_since_finalize = True
        self._adjustments[leg].manually_adjusted = True
        self._log_drag("DragStart" if started else "DragMove", leg, snapped)
        return DragDetection(leg=leg, price=snapped, started=started)

    def try_begin_finalize(self) -> bool:
        if not self._finalize_lock.acquire(blocking=False):
            logger.debug("Finalize skipped: already in progress")
            return False
        now = self._clock()
        if (
            not self._drag_since_finalize
            and not self.any_dragging()
            and self._last_finalize is not None
            and now - self._last_finalize < self._duplicate_window
        ):
            self._finalize_lock.release()
            logger.debug("Finalize skipped: duplicate within window")
            return False
        return True

    def end_finalize(self) -> None:
        for leg in _EXIT_LEGS:
            if self._dragging[leg]:
                self._log_drag("DragEnd", leg, None)
            self._dragging[leg] = False
        self._drag_since_finalize = False
        self._last_finalize = self._clock()
        self._finalize_lock.release()

    def _log_drag(self, prefix: str, leg: LegKind, price: Optional[float]) -> None:
        now = self._clock()
        last = self._last_drag_log.get(leg)
        if last is not None and now - last < DRAG_LOG_INTERVAL_SECONDS:
            return
        self._last_drag_log[leg] = now
        label = "SL" if leg == LegKind.STOP else "TP"
        if price is None:
            logger.debug("{} {}", prefix, label)
        else:
            logger.debug("{} {} at {:.2f}", prefix, label, price)
