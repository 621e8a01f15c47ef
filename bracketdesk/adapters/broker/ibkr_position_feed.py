from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional

from loguru import logger

from bracketdesk.adapters.broker._ib_client import IB, Contract
from bracketdesk.adapters.broker._ib_compat import event_add, event_remove, maybe_float
from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection
from bracketdesk.adapters.broker.ibkr_contracts import contract_multiplier
from bracketdesk.core.orders.events import PositionChanged
from bracketdesk.core.orders.models import Direction, PositionSnapshot
from bracketdesk.core.orders.ports import EventBus


def position_fields(item: Any, multiplier: float) -> tuple[Optional[Direction], int, float]:
    """Direction, absolute quantity and per-unit average price of an IB position row.

    IB reports futures `avgCost` per contract, i.e. already multiplied.
    """
    qty = maybe_float(getattr(item, "position", None)) or 0.0
    if qty == 0:
        return None, 0, 0.0
    direction = Direction.LONG if qty > 0 else Direction.SHORT
    avg_cost = maybe_float(getattr(item, "avgCost", None)) or 0.0
    avg_price = avg_cost / multiplier if multiplier > 0 else avg_cost
    return direction, int(abs(qty)), avg_price


class IBKRPositionFeed:
    def __init__(self, connection: IBKRConnection, contract: Contract, event_bus: EventBus) -> None:
        self._ib: IB = connection.ib
        self._contract = contract
        self._event_bus = event_bus
        self._multiplier = contract_multiplier(contract)
        self._started = False

    def snapshot(self) -> PositionSnapshot:
        for item in self._ib.positions():
            if self._matches(item):
                direction, qty, avg_price = position_fields(item, self._multiplier)
                return PositionSnapshot(
                    direction=direction,
                    qty=qty,
                    avg_price=avg_price,
                    timestamp=datetime.now(timezone.utc),
                )
        return PositionSnapshot.flat()

    def start(self) -> Callable[[], None]:
        if not self._started:
            self._started = event_add(self._ib, "positionEvent", self._on_position)

        def _stop() -> None:
            if self._started:
                event_remove(self._ib, "positionEvent", self._on_position)
                self._started = False

        return _stop

    def _on_position(self, item: Any) -> None:
        if not self._matches(item):
            return
        direction, qty, avg_price = position_fields(item, self._multiplier)
        logger.debug("Position update: {} {} @ {:.4f}", direction.value if direction else "FLAT", qty, avg_price)
        self._event_bus.publish(
            PositionChanged.now(
                direction=direction,
                qty=qty,
                avg_price=avg_price,
            )
        )

    def _matches(self, item: Any) -> bool:
        contract = getattr(item, "contract", None)
        return getattr(contract, "conId", None) == self._contract.conId
