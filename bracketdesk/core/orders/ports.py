from __future__ import annotations

from typing import Awaitable, Callable, Protocol, TypeVar

from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    ExitOrderSpec,
    OrderModifySpec,
    OrderRef,
)

EventT = TypeVar("EventT")
EventHandler = Callable[[EventT], Awaitable[None] | None]


class OrderGateway(Protocol):
    def submit_bracket(self, spec: BracketOrderSpec) -> BracketRefs:
        """Submit entry, stop and target as one OCO-tagged bracket and return the leg refs."""
        raise NotImplementedError

    def modify_order(self, spec: OrderModifySpec) -> None:
        """Request a price change on a working order."""
        raise NotImplementedError

    def cancel_order(self, ref: OrderRef) -> None:
        """Request cancellation of a working order."""
        raise NotImplementedError

    def submit_exit(self, spec: ExitOrderSpec) -> OrderRef:
        """Submit a market order that flattens the live position."""
        raise NotImplementedError


class EventBus(Protocol):
    def publish(self, event: object) -> None:
        """Publish an event to subscribers."""
        raise NotImplementedError

    def subscribe(self, event_type: type[EventT], handler: EventHandler[EventT]) -> Callable[[], None]:
        """Subscribe a handler to events of a given type."""
        raise NotImplementedError
