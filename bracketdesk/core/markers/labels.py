from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from bracketdesk.core.markers.models import LineKind
from bracketdesk.core.orders.models import Direction
from bracketdesk.core.sizing.calculator import quantity_breakdown
from bracketdesk.core.sizing.models import SizingInputs

PLACEHOLDER = "CALC…"
_EPSILON = 1e-12

_CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}


@dataclass(frozen=True)
class LabelSnapshot:
    entry_price: float
    stop_price: float
    target_price: float
    risk_reference: Optional[float]
    display_qty: int
    inputs: SizingInputs
    tick_size: Optional[float]
    tick_value: Optional[float]
    currency: str = "USD"


def currency_symbol(currency: Optional[str]) -> str:
    return _CURRENCY_SYMBOLS.get(str(currency or "USD").strip().upper(), "$")


def effective_warning_threshold(inputs: SizingInputs) -> float:
    if inputs.max_risk_warning_usd > 0:
        return inputs.max_risk_warning_usd
    return inputs.fixed_risk_usd


def format_points_and_ticks(distance_ticks: float, tick: float) -> str:
    """Render a distance as `<points>.<ticks>`, e.g. 20.3 is 20 points and 3 ticks."""
    if tick <= 0 or not math.isfinite(distance_ticks):
        return PLACEHOLDER
    points = distance_ticks * tick
    whole_points = math.floor(points + 1e-9)
    ticks_per_point = max(1, int(round(1.0 / tick)))
    remaining_ticks = int(round((points - whole_points) / tick))
    remaining_ticks = max(0, min(remaining_ticks, ticks_per_point - 1))
    return f"{int(whole_points)}.{remaining_ticks}"


def label_price(
    kind: LineKind,
    line_price: float,
    direction: Optional[Direction],
    *,
    offset_ticks: int,
    tick: float,
) -> float:
    """Place a label off its line: stop labels on the risk side, the others on the reward side."""
    if direction is None or offset_ticks <= 0 or tick <= 0:
        return line_price
    offset = offset_ticks * tick
    if kind == LineKind.STOP:
        offset = -offset
    return line_price + offset * direction.sign


def sizing_problem(snapshot: LabelSnapshot) -> Optional[str]:
    if snapshot.tick_size is None or snapshot.tick_value is None:
        return "instrument missing"
    if snapshot.tick_size <= 0 or not math.isfinite(snapshot.tick_size):
        return "tick_size<=0"
    if snapshot.tick_value <= 0 or not math.isfinite(snapshot.tick_value):
        return "tick_value<=0"
    ref = snapshot.risk_reference
    if ref is None or not math.isfinite(ref) or ref <= 0:
        return "entry reference invalid"
    return None


def _sizing_values(snapshot: LabelSnapshot) -> Optional[tuple[float, float, float]]:
    if sizing_problem(snapshot) is not None:
        return None
    return (
        float(snapshot.tick_size or 0.0),
        float(snapshot.tick_value or 0.0),
        float(snapshot.risk_reference or 0.0),
    )


class HudLabels:
    """Label text for the entry/stop/target lines.

    Each label falls back to its last good text (or a placeholder) when sizing cannot be
    computed, so the display never flickers to empty while metadata is missing.
    """

    def __init__(self) -> None:
        self._qty: Optional[str] = None
        self._stop: Optional[str] = None
        self._target: Optional[str] = None
        self._rr: Optional[str] = None
        self._entry: Optional[str] = None

    def reset(self) -> None:
        self._qty = None
        self._stop = None
        self._target = None
        self._rr = None
        self._entry = None

    def entry_label(self, snapshot: LabelSnapshot) -> str:
        qty_text = self.qty_label(snapshot)
        rr_text = self.risk_reward_text(snapshot)
        if not qty_text or qty_text == "0 contracts":
            qty_text = self._qty or PLACEHOLDER
        if not rr_text or rr_text == "R0.00":
            rr_text = self._rr or "R?"
        combined = f"{qty_text} | {rr_text}"
        self._entry = combined
        return combined

    def qty_label(self, snapshot: LabelSnapshot) -> str:
        values = _sizing_values(snapshot)
        if values is None:
            return self._cached(self._qty)
        tick, tick_value, _ = values
        breakdown = quantity_breakdown(
            snapshot.entry_price,
            snapshot.stop_price,
            tick_size=tick,
            tick_value=tick_value,
            fixed_risk_usd=snapshot.inputs.fixed_risk_usd,
            commission_on=snapshot.inputs.commission_on,
            commission_per_contract=snapshot.inputs.commission_per_contract,
            max_contracts=snapshot.inputs.max_contracts,
        )
        if breakdown.qty < 1:
            label = f"{breakdown.raw_qty:.2f} (min 1)"
        else:
            label = f"{breakdown.qty} contracts"
        self._qty = label
        return label

    def stop_label(self, snapshot: LabelSnapshot) -> str:
        values = _sizing_values(snapshot)
        if values is None:
            return self._cached(self._stop)
        tick, tick_value, reference = values
        distance_ticks = abs(reference - snapshot.stop_price) / tick
        if not math.isfinite(distance_ticks):
            return self._cached(self._stop)
        if distance_ticks <= _EPSILON:
            self._stop = "SL: BE"
            return self._stop

        per_contract = distance_ticks * tick_value
        if snapshot.inputs.commission_on:
            per_contract += snapshot.inputs.commission_per_contract
        total_risk = per_contract * max(1, snapshot.display_qty)
        distance_text = format_points_and_ticks(distance_ticks, tick)
        label = f"SL: -{currency_symbol(snapshot.currency)}{total_risk:.2f} ({distance_text})"
        if total_risk > effective_warning_threshold(snapshot.inputs):
            label = f"!! {label} !!"
        self._stop = label
        return label

    def target_label(self, snapshot: LabelSnapshot) -> str:
        values = _sizing_values(snapshot)
        if values is None:
            return self._cached(self._target)
        tick, tick_value, reference = values
        reward_ticks = abs(snapshot.target_price - reference) / tick
        if not math.isfinite(reward_ticks):
            return self._cached(self._target)
        reward = reward_ticks * tick_value * max(1, snapshot.display_qty)
        distance_text = format_points_and_ticks(reward_ticks, tick)
        label = f"TP: +{currency_symbol(snapshot.currency)}{reward:.2f} ({distance_text})"
        self._target = label
        return label

    def risk_reward_text(self, snapshot: LabelSnapshot) -> str:
        values = _sizing_values(snapshot)
        if values is None:
            return self._cached(self._rr)
        tick, _, reference = values
        stop_ticks = abs(reference - snapshot.stop_price) / tick
        reward_ticks = abs(snapshot.target_price - reference) / tick
        if stop_ticks <= _EPSILON or not math.isfinite(stop_ticks):
            return self._cached(self._rr)
        ratio = reward_ticks / stop_ticks
        text = "R1" if abs(ratio - 1.0) < 0.005 else f"R{ratio:.2f}"
        self._rr = text
        return text

    @staticmethod
    def _cached(value: Optional[str]) -> str:
        return value or PLACEHOLDER
