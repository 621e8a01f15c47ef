from __future__ import annotations

from dataclasses import dataclass

from bracketdesk.core.markers.models import LineKind
from bracketdesk.core.orders.models import Direction, LegKind

DEFAULT_TAG_PREFIX = "BD_"


def normalize_tag_prefix(value: object) -> str:
    text = str(value or "").strip()
    return text or DEFAULT_TAG_PREFIX


@dataclass(frozen=True)
class TagNames:
    """Per-instance namespace for drawing tags and order names."""

    prefix: str = DEFAULT_TAG_PREFIX

    @classmethod
    def from_prefix(cls, value: object) -> "TagNames":
        return cls(prefix=normalize_tag_prefix(value))

    def tag(self, suffix: str) -> str:
        return f"{self.prefix}{suffix}"

    @property
    def entry_line(self) -> str:
        return self.tag("ENTRY_LINE")

    @property
    def stop_line(self) -> str:
        return self.tag("STOP_LINE")

    @property
    def target_line(self) -> str:
        return self.tag("TARGET_LINE")

    @property
    def entry_label(self) -> str:
        return self.tag("ENTRY_LABEL")

    @property
    def stop_label(self) -> str:
        return self.tag("STOP_LABEL")

    @property
    def target_label(self) -> str:
        return self.tag("TARGET_LABEL")

    @property
    def hud_notify(self) -> str:
        return self.tag("HUD_NOTIFY")

    @property
    def entry_long(self) -> str:
        return self.tag("ENTRY_LONG")

    @property
    def entry_short(self) -> str:
        return self.tag("ENTRY_SHORT")

    @property
    def stop_order(self) -> str:
        return self.tag("SL")

    @property
    def target_order(self) -> str:
        return self.tag("TP")

    @property
    def close_order(self) -> str:
        return self.tag("CLOSE")

    @property
    def break_even(self) -> str:
        return self.tag("BE")

    @property
    def trail(self) -> str:
        return self.tag("TRAIL")

    def entry_order(self, direction: Direction) -> str:
        return self.entry_long if direction == Direction.LONG else self.entry_short

    def line_tag(self, kind: LineKind) -> str:
        if kind == LineKind.ENTRY:
            return self.entry_line
        if kind == LineKind.STOP:
            return self.stop_line
        return self.target_line

    def label_tag(self, kind: LineKind) -> str:
        if kind == LineKind.ENTRY:
            return self.entry_label
        if kind == LineKind.STOP:
            return self.stop_label
        return self.target_label

    def all_drawing_tags(self) -> tuple[str, ...]:
        return (
            self.entry_line,
            self.stop_line,
            self.target_line,
            self.entry_label,
            self.stop_label,
            self.target_label,
            self.hud_notify,
        )

    def leg_for_order_name(self, name: str) -> LegKind | None:
        if name in {self.entry_long, self.entry_short}:
            return LegKind.ENTRY
        if name == self.stop_order:
            return LegKind.STOP
        if name == self.target_order:
            return LegKind.TARGET
        return None
