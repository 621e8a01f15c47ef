from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from loguru import logger

from bracketdesk.adapters.broker._ib_client import IB, Contract, Ticker
from bracketdesk.adapters.broker._ib_compat import event_add, event_remove, maybe_price
from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection
from bracketdesk.core.market_data.models import Quote

QuoteHandler = Callable[[Quote], None]

# 1 live, 2 frozen, 3 delayed, 4 delayed-frozen
_DEFAULT_MARKET_DATA_TYPE = 1


def quote_from_ticker(ticker: Any) -> Quote:
    return Quote(
        timestamp=_normalize_timestamp(getattr(ticker, "time", None)),
        bid=maybe_price(getattr(ticker, "bid", None)),
        ask=maybe_price(getattr(ticker, "ask", None)),
        last=maybe_price(getattr(ticker, "last", None)) or maybe_price(getattr(ticker, "close", None)),
    )


class IBKRMarketFeed:
    """Streaming top-of-book for the traded contract.

    `current_quote` always answers from the cache, so it is safe to call from any
    handler without awaiting the broker.
    """

    def __init__(self, connection: IBKRConnection, contract: Contract) -> None:
        self._ib: IB = connection.ib
        self._contract = contract
        self._ticker: Optional[Ticker] = None
        self._quote = Quote(timestamp=datetime.now(timezone.utc))
        self._handlers: list[QuoteHandler] = []

    def current_quote(self) -> Quote:
        return self._quote

    def subscribe_quotes(self, handler: QuoteHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def start(self) -> None:
        if not self._ib.isConnected():
            raise RuntimeError("IBKR is not connected")
        if self._ticker is not None:
            return
        data_type = int(os.getenv("IB_MARKET_DATA_TYPE", str(_DEFAULT_MARKET_DATA_TYPE)))
        if data_type != _DEFAULT_MARKET_DATA_TYPE:
            self._ib.reqMarketDataType(data_type)
        self._ticker = self._ib.reqMktData(self._contract, "", snapshot=False, regulatorySnapshot=False)
        event_add(self._ticker, "updateEvent", self._on_ticker)
        logger.info("Market data subscribed (type {})", data_type)

    def stop(self) -> None:
        ticker = self._ticker
        if ticker is None:
            return
        event_remove(ticker, "updateEvent", self._on_ticker)
        self._ticker = None
        if self._ib.isConnected():
            self._ib.cancelMktData(self._contract)

    def _on_ticker(self, ticker: Any) -> None:
        quote = quote_from_ticker(ticker)
        if quote.bid is None and quote.ask is None and quote.last is None:
            return
        self._quote = quote
        for handler in list(self._handlers):
            handler(quote)


def _normalize_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.now(timezone.utc)
