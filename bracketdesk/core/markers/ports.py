from __future__ import annotations

from typing import Optional, Protocol

from bracketdesk.core.markers.models import LineKind, MarkerCommand


class MarkerSink(Protocol):
    def send(self, command: MarkerCommand) -> None:
        """Queue a marker command for the presentation layer without waiting on it."""
        raise NotImplementedError

    def get_line_price(self, kind: LineKind) -> Optional[float]:
        """Return the last price reported for a line, or None when it is not drawn."""
        raise NotImplementedError


class PriceMarkerDisplay(Protocol):
    def upsert_line(self, kind: LineKind, price: float, label: str) -> None:
        raise NotImplementedError

    def set_line_price(self, kind: LineKind, price: float) -> None:
        raise NotImplementedError

    def update_line_label(self, kind: LineKind, label: str, label_price: Optional[float]) -> None:
        raise NotImplementedError

    def get_line_price(self, kind: LineKind) -> Optional[float]:
        raise NotImplementedError

    def remove_all(self) -> None:
        raise NotImplementedError

    def show_notification(self, text: str) -> None:
        raise NotImplementedError
