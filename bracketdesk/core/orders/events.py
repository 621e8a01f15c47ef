from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    Direction,
    LegKind,
    OrderRef,
    OrderState,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OrderStateChanged:
    ref: OrderRef
    state: OrderState
    timestamp: datetime
    avg_fill_price: Optional[float] = None
    filled_qty: Optional[float] = None
    total_qty: Optional[float] = None
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    error: Optional[str] = None
    replayed: bool = False

    @classmethod
    def now(
        cls,
        ref: OrderRef,
        state: OrderState,
        *,
        avg_fill_price: Optional[float] = None,
        filled_qty: Optional[float] = None,
        total_qty: Optional[float] = None,
        limit_price: Optional[float] = None,
        stop_price: Optional[float] = None,
        error: Optional[str] = None,
        replayed: bool = False,
    ) -> "OrderStateChanged":
        return cls(
            ref=ref,
            state=state,
            timestamp=_now(),
            avg_fill_price=avg_fill_price,
            filled_qty=filled_qty,
            total_qty=total_qty,
            limit_price=limit_price,
            stop_price=stop_price,
            error=error,
            replayed=replayed,
        )


@dataclass(frozen=True)
class ExecutionOccurred:
    ref: OrderRef
    execution_id: Optional[str]
    qty: float
    price: float
    timestamp: datetime
    avg_fill_price: Optional[float] = None

    @classmethod
    def now(
        cls,
        ref: OrderRef,
        *,
        execution_id: Optional[str],
        qty: float,
        price: float,
        avg_fill_price: Optional[float] = None,
    ) -> "ExecutionOccurred":
        return cls(
            ref=ref,
            execution_id=execution_id,
            qty=qty,
            price=price,
            timestamp=_now(),
            avg_fill_price=avg_fill_price,
        )


@dataclass(frozen=True)
class PositionChanged:
    direction: Optional[Direction]
    qty: int
    avg_price: float
    timestamp: datetime

    @classmethod
    def now(cls, *, direction: Optional[Direction], qty: int, avg_price: float) -> "PositionChanged":
        return cls(direction=direction, qty=qty, avg_price=avg_price, timestamp=_now())


@dataclass(frozen=True)
class BracketSubmitted:
    spec: BracketOrderSpec
    entry_ref: OrderRef
    stop_ref: OrderRef
    target_ref: OrderRef
    timestamp: datetime

    @classmethod
    def now(
        cls,
        spec: BracketOrderSpec,
        *,
        entry_ref: OrderRef,
        stop_ref: OrderRef,
        target_ref: OrderRef,
    ) -> "BracketSubmitted":
        return cls(
            spec=spec,
            entry_ref=entry_ref,
            stop_ref=stop_ref,
            target_ref=target_ref,
            timestamp=_now(),
        )


@dataclass(frozen=True)
class EntryFilled:
    direction: Direction
    avg_fill_price: float
    qty: int
    timestamp: datetime

    @classmethod
    def now(cls, *, direction: Direction, avg_fill_price: float, qty: int) -> "EntryFilled":
        return cls(direction=direction, avg_fill_price=avg_fill_price, qty=qty, timestamp=_now())


@dataclass(frozen=True)
class ExitFilled:
    leg: LegKind
    exit_key: str
    order_name: str
    timestamp: datetime

    @classmethod
    def now(cls, *, leg: LegKind, exit_key: str, order_name: str) -> "ExitFilled":
        return cls(leg=leg, exit_key=exit_key, order_name=order_name, timestamp=_now())


@dataclass(frozen=True)
class LegModified:
    leg: LegKind
    order_name: str
    old_price: Optional[float]
    new_price: float
    reason: str
    timestamp: datetime

    @classmethod
    def now(
        cls,
        *,
        leg: LegKind,
        order_name: str,
        old_price: Optional[float],
        new_price: float,
        reason: str,
    ) -> "LegModified":
        return cls(
            leg=leg,
            order_name=order_name,
            old_price=old_price,
            new_price=new_price,
            reason=reason,
            timestamp=_now(),
        )


@dataclass(frozen=True)
class LegCancelled:
    leg: LegKind
    order_name: str
    timestamp: datetime

    @classmethod
    def now(cls, *, leg: LegKind, order_name: str) -> "LegCancelled":
        return cls(leg=leg, order_name=order_name, timestamp=_now())


@dataclass(frozen=True)
class LegRejected:
    leg: LegKind
    order_name: str
    error: Optional[str]
    timestamp: datetime

    @classmethod
    def now(cls, *, leg: LegKind, order_name: str, error: Optional[str]) -> "LegRejected":
        return cls(leg=leg, order_name=order_name, error=error, timestamp=_now())
