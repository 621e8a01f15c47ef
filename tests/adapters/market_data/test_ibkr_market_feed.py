from __future__ import annotations

from datetime import datetime
from types import SimpleNamespace
from typing import Any

import pytest

from bracketdesk.adapters.market_data.ibkr_market_feed import IBKRMarketFeed, quote_from_ticker
from bracketdesk.core.market_data.models import Quote


class _Event:
    def __init__(self) -> None:
        self.handlers: list[Any] = []

    def __iadd__(self, handler: Any) -> "_Event":
        self.handlers.append(handler)
        return self

    def __isub__(self, handler: Any) -> "_Event":
        self.handlers.remove(handler)
        return self

    def emit(self, *args: Any) -> None:
        for handler in list(self.handlers):
            handler(*args)


class _FakeIb:
    def __init__(self) -> None:
        self.connected = True
        self.ticker = SimpleNamespace(updateEvent=_Event(), bid=None, ask=None, last=None, close=None, time=None)
        self.market_data_types: list[int] = []
        self.cancelled: list[Any] = []

    def isConnected(self) -> bool:
        return self.connected

    def reqMarketDataType(self, data_type: int) -> None:
        self.market_data_types.append(data_type)

    def reqMktData(self, contract: Any, generic_ticks: str, *, snapshot: bool, regulatorySnapshot: bool) -> Any:
        return self.ticker

    def cancelMktData(self, contract: Any) -> None:
        self.cancelled.append(contract)


def _feed(ib: _FakeIb) -> IBKRMarketFeed:
    return IBKRMarketFeed(SimpleNamespace(ib=ib), SimpleNamespace(conId=730283085))


def test_quote_from_ticker_falls_back_to_close() -> None:
    quote = quote_from_ticker(SimpleNamespace(bid=float("nan"), ask=5000.25, last=None, close=4999.5, time=None))

    assert (quote.bid, quote.ask, quote.last) == (None, 5000.25, 4999.5)
    assert quote.timestamp.tzinfo is not None


def test_ticker_updates_refresh_cache_and_notify(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("IB_MARKET_DATA_TYPE", raising=False)
    ib = _FakeIb()
    feed = _feed(ib)
    seen: list[Quote] = []
    feed.subscribe_quotes(seen.append)
    feed.start()

    ib.ticker.bid, ib.ticker.ask = 5000.0, 5000.25
    ib.ticker.time = datetime(2026, 3, 2, 14, 30)
    ib.ticker.updateEvent.emit(ib.ticker)

    assert ib.market_data_types == []
    assert feed.current_quote().ask == 5000.25
    assert feed.current_quote().timestamp.tzinfo is not None
    assert len(seen) == 1


def test_empty_ticker_updates_are_ignored() -> None:
    ib = _FakeIb()
    feed = _feed(ib)
    seen: list[Quote] = []
    feed.subscribe_quotes(seen.append)
    feed.start()

    ib.ticker.updateEvent.emit(ib.ticker)

    assert seen == []
    assert feed.current_quote().bid is None


def test_delayed_data_type_is_requested(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IB_MARKET_DATA_TYPE", "3")
    ib = _FakeIb()

    _feed(ib).start()

    assert ib.market_data_types == [3]


def test_stop_detaches_and_cancels() -> None:
    ib = _FakeIb()
    feed = _feed(ib)
    unsubscribe = feed.subscribe_quotes(lambda quote: None)
    feed.start()

    feed.stop()
    unsubscribe()

    assert ib.ticker.updateEvent.handlers == []
    assert len(ib.cancelled) == 1


def test_start_needs_a_connection() -> None:
    ib = _FakeIb()
    ib.connected = False

    with pytest.raises(RuntimeError, match="not connected"):
        _feed(ib).start()
