from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from bracketdesk.core.arming.controller import TradeController
from bracketdesk.core.config import DeskConfig
from bracketdesk.core.market_data.models import Quote
from bracketdesk.core.markers.models import (
    LineKind,
    MarkerCommand,
    RemoveAllMarkers,
    SetLinePrice,
    ShowNotification,
    UpsertLine,
)
from bracketdesk.core.orders.events import OrderStateChanged
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    ExitOrderSpec,
    OrderModifySpec,
    OrderRef,
    OrderState,
    PositionSnapshot,
)
from bracketdesk.core.orders.service import OrderService
from bracketdesk.core.sizing.models import TickMetadata

ES = TickMetadata(tick_size=0.25, point_value=50.0)


class FakeGateway:
    def __init__(self) -> None:
        self.brackets: list[BracketOrderSpec] = []
        self.modifies: list[OrderModifySpec] = []
        self.cancels: list[OrderRef] = []
        self.exits: list[ExitOrderSpec] = []
        self.fail_submit = False
        self.fail_cancel = False

    def submit_bracket(self, spec: BracketOrderSpec) -> BracketRefs:
        if self.fail_submit:
            raise RuntimeError("IBKR is not connected")
        self.brackets.append(spec)
        return BracketRefs(
            entry=OrderRef("1", spec.entry_name),
            stop=OrderRef("2", spec.stop_name),
            target=OrderRef("3", spec.target_name),
        )

    def modify_order(self, spec: OrderModifySpec) -> None:
        self.modifies.append(spec)

    def cancel_order(self, ref: OrderRef) -> None:
        if self.fail_cancel:
            raise RuntimeError(f"Order {ref.key()} not found in current session")
        self.cancels.append(ref)

    def submit_exit(self, spec: ExitOrderSpec) -> OrderRef:
        self.exits.append(spec)
        return OrderRef("4", spec.name)


class FakeMarkers:
    def __init__(self) -> None:
        self.sent: list[MarkerCommand] = []
        self.prices: dict[LineKind, float] = {}

    def send(self, command: MarkerCommand) -> None:
        self.sent.append(command)
        if isinstance(command, (UpsertLine, SetLinePrice)):
            self.prices[command.kind] = command.price
        elif isinstance(command, RemoveAllMarkers):
            self.prices.clear()

    def get_line_price(self, kind: LineKind) -> Optional[float]:
        return self.prices.get(kind)

    def user_move(self, kind: LineKind, price: float) -> None:
        self.prices[kind] = price

    def notifications(self) -> list[str]:
        return [command.text for command in self.sent if isinstance(command, ShowNotification)]

    def upserts(self) -> dict[LineKind, float]:
        return {command.kind: command.price for command in self.sent if isinstance(command, UpsertLine)}


class FakeMarket:
    def __init__(self, quote: Quote) -> None:
        self.quote = quote

    def current_quote(self) -> Quote:
        return self.quote

    def subscribe_quotes(self, handler: Callable[[Quote], None]) -> Callable[[], None]:
        return lambda: None


class RecordingBus:
    def __init__(self) -> None:
        self.events: list[object] = []

    def publish(self, event: object) -> None:
        self.events.append(event)

    def subscribe(self, event_type: type, handler: Callable[[object], None]) -> Callable[[], None]:
        return lambda: None

    def of_type(self, event_type: type) -> list[object]:
        return [event for event in self.events if isinstance(event, event_type)]


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@dataclass
class Desk:
    controller: TradeController
    gateway: FakeGateway
    markers: FakeMarkers
    market: FakeMarket
    bus: RecordingBus
    clock: Clock
    config: DeskConfig = field(default_factory=DeskConfig)

    def set_quote(self, bid: Optional[float], ask: Optional[float]) -> Quote:
        self.market.quote = Quote.now(bid=bid, ask=ask)
        return self.market.quote

    def fill_entry(self, avg_price: float, name: str = "BD_ENTRY_LONG") -> None:
        self.controller.on_order_state(
            OrderStateChanged.now(OrderRef("1", name), OrderState.FILLED, avg_fill_price=avg_price)
        )


def make_desk(
    config: Optional[DeskConfig] = None,
    *,
    metadata: Optional[TickMetadata] = ES,
    position: Optional[PositionSnapshot] = None,
) -> Desk:
    config = config or DeskConfig()
    gateway = FakeGateway()
    markers = FakeMarkers()
    market = FakeMarket(Quote.now(bid=5000.00, ask=5000.25))
    bus = RecordingBus()
    clock = Clock()
    controller = TradeController(
        config,
        orders=OrderService(gateway, bus, max_contracts=config.max_contracts),
        markers=markers,
        market=market,
        event_bus=bus,
        clock=clock,
        oco_id_factory=lambda: "OCO-1",
    )
    controller.start_session(metadata, position)
    return Desk(
        controller=controller,
        gateway=gateway,
        markers=markers,
        market=market,
        bus=bus,
        clock=clock,
        config=config,
    )

