from __future__ import annotations

from typing import Callable, Optional, Protocol

from bracketdesk.core.market_data.models import Quote
from bracketdesk.core.sizing.models import TickMetadata


class MarketFeed(Protocol):
    def current_quote(self) -> Quote:
        """Return the latest cached bid/ask/last for the traded instrument."""
        raise NotImplementedError

    def subscribe_quotes(self, handler: Callable[[Quote], None]) -> Callable[[], None]:
        """Register a handler for quote updates and return an unsubscribe callback."""
        raise NotImplementedError


class InstrumentMetadataPort(Protocol):
    async def fetch_tick_metadata(self) -> Optional[TickMetadata]:
        """Return tick size / point value for the instrument, or None when unavailable."""
        raise NotImplementedError
