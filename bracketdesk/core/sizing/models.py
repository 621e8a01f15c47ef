from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TickMetadata:
    tick_size: float
    point_value: float
    currency: str = "USD"

    @property
    def tick_value(self) -> float:
        return self.tick_size * self.point_value

    @property
    def is_known_good(self) -> bool:
        return self.tick_size > 0 and self.point_value > 0


@dataclass(frozen=True)
class SizingInputs:
    fixed_risk_usd: float
    commission_on: bool = False
    commission_per_contract: float = 0.0
    max_contracts: int = 10
    max_risk_warning_usd: float = 0.0


@dataclass(frozen=True)
class QuantityBreakdown:
    distance_ticks: float
    per_contract_risk: float
    raw_qty: float
    qty: int
    capped: bool
    tick_size: Optional[float] = None
