from bracketdesk.core.orders.events import (
    BracketSubmitted,
    EntryFilled,
    ExecutionOccurred,
    ExitFilled,
    LegCancelled,
    LegModified,
    LegRejected,
    OrderStateChanged,
    PositionChanged,
)
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    Direction,
    ExitOrderSpec,
    LegKind,
    OrderModifySpec,
    OrderRef,
    OrderSide,
    OrderState,
    OrderType,
    PositionSnapshot,
)
from bracketdesk.core.orders.ports import EventBus, OrderGateway
from bracketdesk.core.orders.service import OrderService, OrderValidationError

__all__ = [
    "BracketOrderSpec",
    "BracketRefs",
    "Direction",
    "ExitOrderSpec",
    "LegKind",
    "OrderModifySpec",
    "OrderRef",
    "OrderSide",
    "OrderState",
    "OrderType",
    "PositionSnapshot",
    "OrderStateChanged",
    "ExecutionOccurred",
    "PositionChanged",
    "BracketSubmitted",
    "EntryFilled",
    "ExitFilled",
    "LegModified",
    "LegCancelled",
    "LegRejected",
    "OrderGateway",
    "EventBus",
    "OrderService",
    "OrderValidationError",
]
