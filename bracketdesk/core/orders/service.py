from __future__ import annotations

from typing import Optional

from bracketdesk.core.orders.events import BracketSubmitted
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    Direction,
    ExitOrderSpec,
    OrderModifySpec,
    OrderRef,
)
from bracketdesk.core.orders.ports import EventBus, OrderGateway


class OrderValidationError(ValueError):
    """Raised when an order spec fails validation."""


class OrderService:
    """Validates order specs and forwards them to the gateway.

    The gateway is fire-and-forget; fills and state changes come back as broker events.
    """

    def __init__(
        self,
        gateway: OrderGateway,
        event_bus: Optional[EventBus] = None,
        *,
        max_contracts: int,
    ) -> None:
        self._gateway = gateway
        self._event_bus = event_bus
        self._max_contracts = max_contracts

    @property
    def max_contracts(self) -> int:
        return self._max_contracts

    def submit_bracket(self, spec: BracketOrderSpec) -> BracketRefs:
        self._validate_bracket(spec)
        refs = self._gateway.submit_bracket(spec)
        if self._event_bus:
            self._event_bus.publish(
                BracketSubmitted.now(
                    spec,
                    entry_ref=refs.entry,
                    stop_ref=refs.stop,
                    target_ref=refs.target,
                )
            )
        return refs

    def modify_order(self, spec: OrderModifySpec) -> None:
        self._validate_modify(spec)
        self._gateway.modify_order(spec)

    def cancel_order(self, ref: OrderRef) -> None:
        if not ref.key():
            raise OrderValidationError("order ref has neither id nor name")
        self._gateway.cancel_order(ref)

    def submit_exit(self, spec: ExitOrderSpec) -> OrderRef:
        if spec.qty <= 0:
            raise OrderValidationError("qty must be greater than zero")
        if not spec.name:
            raise OrderValidationError("name is required")
        return self._gateway.submit_exit(spec)

    def _validate_bracket(self, spec: BracketOrderSpec) -> None:
        if spec.qty < 1:
            raise OrderValidationError("qty must be at least 1")
        if spec.qty > self._max_contracts:
            raise OrderValidationError(f"qty must not exceed max_contracts ({self._max_contracts})")
        if spec.stop_price <= 0 or spec.target_price <= 0:
            raise OrderValidationError("stop_price and target_price must be greater than zero")
        if spec.direction == Direction.LONG and spec.stop_price >= spec.target_price:
            raise OrderValidationError("stop_price must be below target_price for long brackets")
        if spec.direction == Direction.SHORT and spec.stop_price <= spec.target_price:
            raise OrderValidationError("stop_price must be above target_price for short brackets")
        if not spec.oco_id:
            raise OrderValidationError("oco_id is required")
        if not (spec.entry_name and spec.stop_name and spec.target_name):
            raise OrderValidationError("order names are required")

    def _validate_modify(self, spec: OrderModifySpec) -> None:
        if spec.qty <= 0:
            raise OrderValidationError("qty must be greater than zero")
        if spec.limit_price is None and spec.stop_price is None:
            raise OrderValidationError("limit_price or stop_price is required")
        if spec.limit_price is not None and spec.stop_price is not None:
            raise OrderValidationError("only one of limit_price or stop_price may be set")
        price = spec.limit_price if spec.limit_price is not None else spec.stop_price
        if price is None or price <= 0:
            raise OrderValidationError("price must be greater than zero")
