from __future__ import annotations

import asyncio
from typing import Optional

from bracketdesk.adapters.presentation.console_display import ConsoleMarkerDisplay
from bracketdesk.adapters.presentation.marker_actor import MarkerActor
from bracketdesk.core.markers.models import (
    LineKind,
    RemoveAllMarkers,
    SetLinePrice,
    ShowNotification,
    UpdateLineLabel,
    UpsertLine,
)
from bracketdesk.core.markers.tags import TagNames


class _BrokenDisplay:
    def upsert_line(self, kind: LineKind, price: float, label: str) -> None:
        raise RuntimeError("chart closed")

    def set_line_price(self, kind: LineKind, price: float) -> None:
        return None

    def update_line_label(self, kind: LineKind, label: str, label_price: Optional[float]) -> None:
        return None

    def get_line_price(self, kind: LineKind) -> Optional[float]:
        return None

    def remove_all(self) -> None:
        return None

    def show_notification(self, text: str) -> None:
        return None


def test_price_cache_updates_at_send_time() -> None:
    async def _scenario() -> None:
        actor = MarkerActor(ConsoleMarkerDisplay(TagNames(), echo=lambda line: None))
        actor.send(UpsertLine(LineKind.STOP, 4995.25, "SL"))
        assert actor.get_line_price(LineKind.STOP) == 4995.25
        actor.send(SetLinePrice(LineKind.STOP, 4996.0))
        assert actor.get_line_price(LineKind.STOP) == 4996.0
        actor.send(RemoveAllMarkers())
        assert actor.get_line_price(LineKind.STOP) is None

    asyncio.run(_scenario())


def test_presenter_applies_commands_to_display() -> None:
    async def _scenario() -> tuple[list[str], list[str]]:
        echoed: list[str] = []
        display = ConsoleMarkerDisplay(TagNames(), echo=echoed.append)
        actor = MarkerActor(display)
        actor.start()
        actor.send(UpsertLine(LineKind.ENTRY, 5000.25, "1 contracts | R2.00"))
        actor.send(UpsertLine(LineKind.STOP, 4995.25, "SL: -$250.00 (5.0)"))
        actor.send(UpsertLine(LineKind.TARGET, 5010.25, "TP: +$500.00 (10.0)"))
        actor.send(UpdateLineLabel(LineKind.STOP, "SL: -$200.00 (4.0)", 4994.75))
        actor.send(ShowNotification("Lines clamped"))
        await actor.drain()
        await actor.stop()
        return echoed, display.render()

    echoed, rendered = asyncio.run(_scenario())

    assert echoed[-1] == "[BD_HUD_NOTIFY] Lines clamped"
    assert rendered == [
        "[BD_TARGET_LINE] 5010.25  TP: +$500.00 (10.0)",
        "[BD_ENTRY_LINE] 5000.25  1 contracts | R2.00",
        "[BD_STOP_LINE] 4995.25  SL: -$200.00 (4.0)",
    ]


def test_user_move_requires_a_drawn_line() -> None:
    async def _scenario() -> tuple[bool, bool, Optional[float], Optional[float]]:
        display = ConsoleMarkerDisplay(TagNames(), echo=lambda line: None)
        actor = MarkerActor(display)
        actor.start()
        missing = actor.report_user_move(LineKind.TARGET, 5012.0)
        actor.send(UpsertLine(LineKind.TARGET, 5010.25, "TP"))
        moved = actor.report_user_move(LineKind.TARGET, 5012.0)
        await actor.drain()
        await actor.stop()
        return missing, moved, actor.get_line_price(LineKind.TARGET), display.get_line_price(LineKind.TARGET)

    missing, moved, cached, shown = asyncio.run(_scenario())

    assert (missing, moved) == (False, True)
    assert cached == 5012.0
    assert shown == 5012.0


def test_display_errors_are_counted_not_raised() -> None:
    async def _scenario() -> int:
        actor = MarkerActor(_BrokenDisplay())
        actor.start()
        actor.send(UpsertLine(LineKind.ENTRY, 5000.25, "entry"))
        actor.send(ShowNotification("still running"))
        await actor.drain()
        await actor.stop()
        return actor.failures

    assert asyncio.run(_scenario()) == 1
