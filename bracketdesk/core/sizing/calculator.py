from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from bracketdesk.core.sizing.models import QuantityBreakdown, SizingInputs, TickMetadata

FALLBACK_TICK_SIZE = 0.01


class InstrumentTicks:
    """Tick metadata for the traded instrument.

    Metadata can arrive late or drop out (e.g. after a reconnect). The last known-good
    value is cached for the session; only `tick_size_or_fallback` ever substitutes the
    fixed fallback tick.
    """

    def __init__(self, metadata: Optional[TickMetadata] = None) -> None:
        self._current: Optional[TickMetadata] = None
        self._last_known_good: Optional[TickMetadata] = None
        self.update(metadata)

    def update(self, metadata: Optional[TickMetadata]) -> None:
        self._current = metadata
        if metadata is not None and metadata.is_known_good:
            self._last_known_good = metadata

    @property
    def current(self) -> Optional[TickMetadata]:
        return self._current

    @property
    def last_known_good(self) -> Optional[TickMetadata]:
        return self._last_known_good

    def resolved(self) -> Optional[TickMetadata]:
        if self._current is not None and self._current.tick_size > 0:
            return self._current
        return self._last_known_good

    def tick_size_or_fallback(self) -> float:
        metadata = self.resolved()
        if metadata is not None and metadata.tick_size > 0:
            return metadata.tick_size
        return FALLBACK_TICK_SIZE

    def tick_size(self) -> float:
        return self.tick_size_or_fallback()

    def tick_value(self) -> float:
        metadata = self.resolved()
        if metadata is None:
            return 0.0
        return metadata.tick_value

    def currency(self) -> str:
        metadata = self.resolved()
        if metadata is None:
            return "USD"
        return metadata.currency

    def round_to_tick(self, price: float) -> float:
        return round_price_to_tick(price, tick=self.tick_size_or_fallback())

    def calculate_quantity(self, entry: float, stop: float, inputs: SizingInputs) -> int:
        return calculate_quantity(
            entry,
            stop,
            tick_size=self.tick_size_or_fallback(),
            tick_value=self.tick_value(),
            fixed_risk_usd=inputs.fixed_risk_usd,
            commission_on=inputs.commission_on,
            commission_per_contract=inputs.commission_per_contract,
            max_contracts=inputs.max_contracts,
        )


def round_price_to_tick(price: float, *, tick: float) -> float:
    if tick <= 0 or not math.isfinite(price):
        return price
    try:
        tick_dec = Decimal(str(tick))
        price_dec = Decimal(str(price))
        steps = (price_dec / tick_dec).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return float(steps * tick_dec)
    except (InvalidOperation, OverflowError, ValueError):
        return price


def quantity_breakdown(
    entry: float,
    stop: float,
    *,
    tick_size: float,
    tick_value: float,
    fixed_risk_usd: float,
    commission_on: bool,
    commission_per_contract: float,
    max_contracts: int,
) -> QuantityBreakdown:
    if tick_size <= 0:
        return QuantityBreakdown(0.0, 0.0, 0.0, 0, False, tick_size)
    distance_ticks = abs(entry - stop) / tick_size
    if distance_ticks <= 0:
        return QuantityBreakdown(0.0, 0.0, 0.0, 0, False, tick_size)

    per_contract_risk = distance_ticks * tick_value
    if commission_on:
        per_contract_risk += commission_per_contract

    raw_qty = fixed_risk_usd / per_contract_risk if per_contract_risk > 0 else 0.0
    qty = int(math.floor(raw_qty + 0.5))
    capped = qty > max_contracts
    qty = max(min(qty, max_contracts), 0)
    return QuantityBreakdown(
        distance_ticks=distance_ticks,
        per_contract_risk=per_contract_risk,
        raw_qty=raw_qty,
        qty=qty,
        capped=capped,
        tick_size=tick_size,
    )


def calculate_quantity(
    entry: float,
    stop: float,
    *,
    tick_size: float,
    tick_value: float,
    fixed_risk_usd: float,
    commission_on: bool = False,
    commission_per_contract: float = 0.0,
    max_contracts: int,
) -> int:
    """Contracts that risk `fixed_risk_usd` between entry and stop, rounded half-up."""
    return quantity_breakdown(
        entry,
        stop,
        tick_size=tick_size,
        tick_value=tick_value,
        fixed_risk_usd=fixed_risk_usd,
        commission_on=commission_on,
        commission_per_contract=commission_per_contract,
        max_contracts=max_contracts,
    ).qty
