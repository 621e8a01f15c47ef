from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from bracketdesk.core.market_data.models import Quote
from bracketdesk.core.orders.models import Direction

_PRICE_EPSILON = 1e-9


@dataclass(frozen=True)
class ClampResult:
    stop: float
    target: float
    clamped: bool
    stop_clamped: bool = False
    target_clamped: bool = False


@dataclass(frozen=True)
class ValidityBounds:
    """Closest prices a resting stop and target may sit at without triggering at once."""

    stop_limit: float
    target_limit: float


def validity_bounds(direction: Direction, quote: Quote, *, tick: float) -> Optional[ValidityBounds]:
    bid = quote.bid_or_last()
    ask = quote.ask_or_last()
    if bid is None or ask is None or tick <= 0:
        return None
    if direction == Direction.LONG:
        return ValidityBounds(stop_limit=bid - tick, target_limit=ask + tick)
    return ValidityBounds(stop_limit=ask + tick, target_limit=bid - tick)


def enforce_validity(
    direction: Direction,
    stop: float,
    target: float,
    *,
    quote: Quote,
    tick: float,
    round_to_tick: Callable[[float], float],
) -> ClampResult:
    """Push stop/target at least one tick off the market on their adverse side.

    Long: stop <= bid - tick, target >= ask + tick. Short is mirrored. Missing or
    non-positive bid/ask fall back to the last trade price; with no price at all the
    inputs are returned unchanged.
    """
    bounds = validity_bounds(direction, quote, tick=tick)
    if bounds is None:
        return ClampResult(stop=stop, target=target, clamped=False)

    stop_clamped = False
    target_clamped = False
    if direction == Direction.LONG:
        if stop > bounds.stop_limit + _PRICE_EPSILON:
            stop = round_to_tick(bounds.stop_limit)
            stop_clamped = True
        if target < bounds.target_limit - _PRICE_EPSILON:
            target = round_to_tick(bounds.target_limit)
            target_clamped = True
    else:
        if stop < bounds.stop_limit - _PRICE_EPSILON:
            stop = round_to_tick(bounds.stop_limit)
            stop_clamped = True
        if target > bounds.target_limit + _PRICE_EPSILON:
            target = round_to_tick(bounds.target_limit)
            target_clamped = True

    return ClampResult(
        stop=stop,
        target=target,
        clamped=stop_clamped or target_clamped,
        stop_clamped=stop_clamped,
        target_clamped=target_clamped,
    )
