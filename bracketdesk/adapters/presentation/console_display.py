from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from bracketdesk.core.markers.models import LineKind
from bracketdesk.core.markers.tags import TagNames

_ORDER = (LineKind.TARGET, LineKind.ENTRY, LineKind.STOP)


@dataclass
class _Line:
    price: float
    label: str
    label_price: Optional[float] = None


class ConsoleMarkerDisplay:
    """Text rendition of the price markers, printed as they change."""

    def __init__(
        self,
        tags: TagNames,
        *,
        echo: Callable[[str], None] = print,
        price_format: str = "{:.2f}",
    ) -> None:
        self._tags = tags
        self._echo = echo
        self._price_format = price_format
        self._lines: dict[LineKind, _Line] = {}

    def upsert_line(self, kind: LineKind, price: float, label: str) -> None:
        line = self._lines.get(kind)
        if line is None:
            self._lines[kind] = _Line(price=price, label=label)
        else:
            line.price = price
            line.label = label
        self._echo(self._format(kind))

    def set_line_price(self, kind: LineKind, price: float) -> None:
        line = self._lines.get(kind)
        if line is None:
            return
        line.price = price
        self._echo(self._format(kind))

    def update_line_label(self, kind: LineKind, label: str, label_price: Optional[float]) -> None:
        line = self._lines.get(kind)
        if line is None:
            return
        line.label = label
        line.label_price = label_price
        self._echo(self._format(kind))

    def get_line_price(self, kind: LineKind) -> Optional[float]:
        line = self._lines.get(kind)
        return line.price if line else None

    def remove_all(self) -> None:
        if self._lines:
            self._echo("[markers cleared]")
        self._lines.clear()

    def show_notification(self, text: str) -> None:
        self._echo(f"[{self._tags.hud_notify}] {text}")

    def render(self) -> list[str]:
        return [self._format(kind) for kind in _ORDER if kind in self._lines]

    def _format(self, kind: LineKind) -> str:
        line = self._lines[kind]
        price = self._price_format.format(line.price)
        return f"[{self._tags.line_tag(kind)}] {price}  {line.label}"
