from __future__ import annotations

from types import SimpleNamespace
from typing import Any

from bracketdesk.adapters.broker._ib_client import Future
from bracketdesk.adapters.broker.ibkr_contracts import contract_multiplier, tick_metadata_from_details
from bracketdesk.adapters.broker.ibkr_position_feed import IBKRPositionFeed, position_fields
from bracketdesk.core.orders.events import PositionChanged
from bracketdesk.core.orders.models import Direction
from bracketdesk.core.sizing.models import TickMetadata

MES = Future(conId=730283085, symbol="MES", exchange="CME", multiplier="5", currency="USD")


class _Event:
    def __init__(self) -> None:
        self.handlers: list[Any] = []

    def __iadd__(self, handler: Any) -> "_Event":
        self.handlers.append(handler)
        return self

    def __isub__(self, handler: Any) -> "_Event":
        if handler in self.handlers:
            self.handlers.remove(handler)
        return self


class _FakeIb:
    def __init__(self, rows: list[Any]) -> None:
        self.rows = rows
        self.positionEvent = _Event()

    def positions(self) -> list[Any]:
        return list(self.rows)


class _Bus:
    def __init__(self) -> None:
        self.events: list[object] = []

    def publish(self, event: object) -> None:
        self.events.append(event)


def _row(con_id: int, position: float, avg_cost: float) -> SimpleNamespace:
    return SimpleNamespace(contract=SimpleNamespace(conId=con_id), position=position, avgCost=avg_cost)


def test_position_fields_divide_avg_cost_by_multiplier() -> None:
    assert position_fields(_row(1, -2.0, 25001.25), 5.0) == (Direction.SHORT, 2, 5000.25)
    assert position_fields(_row(1, 0.0, 0.0), 5.0) == (None, 0, 0.0)


def test_snapshot_reads_the_traded_contract_only() -> None:
    ib = _FakeIb([_row(1, 10.0, 150.0), _row(730283085, 3.0, 25000.0)])
    feed = IBKRPositionFeed(SimpleNamespace(ib=ib), MES, _Bus())

    snapshot = feed.snapshot()

    assert (snapshot.direction, snapshot.qty, snapshot.avg_price) == (Direction.LONG, 3, 5000.0)


def test_snapshot_without_a_row_is_flat() -> None:
    feed = IBKRPositionFeed(SimpleNamespace(ib=_FakeIb([_row(1, 10.0, 150.0)])), MES, _Bus())

    assert feed.snapshot().is_flat


def test_position_updates_are_published_until_stopped() -> None:
    ib = _FakeIb([])
    bus = _Bus()
    feed = IBKRPositionFeed(SimpleNamespace(ib=ib), MES, bus)

    stop = feed.start()
    assert len(ib.positionEvent.handlers) == 1
    handler = ib.positionEvent.handlers[0]
    handler(_row(1, 4.0, 100.0))
    handler(_row(730283085, 0.0, 0.0))
    stop()

    assert ib.positionEvent.handlers == []
    assert len(bus.events) == 1
    event = bus.events[0]
    assert isinstance(event, PositionChanged)
    assert (event.direction, event.qty) == (None, 0)


def test_tick_metadata_uses_min_tick_and_multiplier() -> None:
    details = SimpleNamespace(minTick=0.25)

    assert contract_multiplier(MES) == 5.0
    assert tick_metadata_from_details(details, MES) == TickMetadata(tick_size=0.25, point_value=5.0, currency="USD")
    assert tick_metadata_from_details(SimpleNamespace(minTick=0.0), MES) is None
    assert contract_multiplier(SimpleNamespace(multiplier="")) == 1.0
