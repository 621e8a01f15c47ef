from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from bracketdesk.core.orders.models import Direction


@dataclass(frozen=True)
class Quote:
    timestamp: datetime
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None

    @classmethod
    def now(
        cls,
        *,
        bid: Optional[float] = None,
        ask: Optional[float] = None,
        last: Optional[float] = None,
    ) -> "Quote":
        return cls(timestamp=datetime.now(timezone.utc), bid=bid, ask=ask, last=last)

    def bid_or_last(self) -> Optional[float]:
        if _positive(self.bid):
            return self.bid
        return self.last_price()

    def ask_or_last(self) -> Optional[float]:
        if _positive(self.ask):
            return self.ask
        return self.last_price()

    def last_price(self) -> Optional[float]:
        if _positive(self.last):
            return self.last
        return None


def entry_reference(quote: Quote, direction: Direction, *, use_bid_ask: bool = True) -> Optional[float]:
    """Price an entry in `direction` would trade at right now."""
    if not use_bid_ask:
        return quote.last_price()
    if direction == Direction.LONG:
        return quote.ask_or_last()
    return quote.bid_or_last()


def exit_reference(quote: Quote, direction: Direction) -> Optional[float]:
    """Price a position in `direction` would be closed at right now."""
    if direction == Direction.LONG:
        return quote.bid_or_last()
    return quote.ask_or_last()


def _positive(value: Optional[float]) -> bool:
    return value is not None and value > 0
