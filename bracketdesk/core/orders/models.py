from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self == Direction.LONG else Direction.LONG

    @property
    def sign(self) -> int:
        return 1 if self == Direction.LONG else -1


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MARKET"
    STOP = "STOP"
    LIMIT = "LIMIT"


class OrderState(str, Enum):
    SUBMITTED = "SUBMITTED"
    ACCEPTED = "ACCEPTED"
    WORKING = "WORKING"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"
    UNKNOWN = "UNKNOWN"


_TERMINAL_STATES = {OrderState.FILLED, OrderState.CANCELLED, OrderState.REJECTED}


def is_terminal_state(state: OrderState) -> bool:
    return state in _TERMINAL_STATES


class LegKind(str, Enum):
    ENTRY = "entry"
    STOP = "stop"
    TARGET = "target"


def entry_side(direction: Direction) -> OrderSide:
    return OrderSide.BUY if direction == Direction.LONG else OrderSide.SELL


def exit_side(direction: Direction) -> OrderSide:
    return OrderSide.SELL if direction == Direction.LONG else OrderSide.BUY


@dataclass(frozen=True)
class OrderRef:
    """Broker-side identity of an order; the desk observes it, it never owns it."""

    order_id: Optional[str]
    name: str

    def key(self) -> str:
        if self.order_id:
            return str(self.order_id)
        return self.name


@dataclass(frozen=True)
class BracketOrderSpec:
    direction: Direction
    qty: int
    stop_price: float
    target_price: float
    oco_id: str
    entry_name: str
    stop_name: str
    target_name: str


@dataclass(frozen=True)
class BracketRefs:
    entry: OrderRef
    stop: OrderRef
    target: OrderRef


@dataclass(frozen=True)
class OrderModifySpec:
    ref: OrderRef
    qty: int
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None


@dataclass(frozen=True)
class ExitOrderSpec:
    side: OrderSide
    qty: int
    name: str


@dataclass(frozen=True)
class PositionSnapshot:
    direction: Optional[Direction]
    qty: int
    avg_price: float
    timestamp: datetime

    @property
    def is_flat(self) -> bool:
        return self.direction is None or self.qty == 0

    @classmethod
    def flat(cls) -> "PositionSnapshot":
        return cls(direction=None, qty=0, avg_price=0.0, timestamp=datetime.now(timezone.utc))
