from __future__ import annotations

import asyncio
from typing import Optional

from loguru import logger

from bracketdesk.core.markers.models import (
    LineKind,
    MarkerCommand,
    RemoveAllMarkers,
    SetLinePrice,
    ShowNotification,
    UpdateLineLabel,
    UpsertLine,
)
from bracketdesk.core.markers.ports import PriceMarkerDisplay

_STOP = object()


class MarkerActor:
    """Fire-and-forget channel from the controller to a marker display.

    Commands are applied to the display by a presenter task. The line-price cache is
    updated at send time so `get_line_price` agrees with what the controller last asked
    for, plus any moves the user made on the display itself.
    """

    def __init__(self, display: PriceMarkerDisplay) -> None:
        self._display = display
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._prices: dict[LineKind, float] = {}
        self._task: Optional[asyncio.Task[None]] = None
        self._failures = 0

    @property
    def failures(self) -> int:
        return self._failures

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._present(), name="marker-actor")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._queue.put_nowait(_STOP)
        await task
        self._task = None

    async def drain(self) -> None:
        await self._queue.join()

    def send(self, command: MarkerCommand) -> None:
        if isinstance(command, (UpsertLine, SetLinePrice)):
            self._prices[command.kind] = command.price
        elif isinstance(command, RemoveAllMarkers):
            self._prices.clear()
        self._queue.put_nowait(command)

    def get_line_price(self, kind: LineKind) -> Optional[float]:
        return self._prices.get(kind)

    def report_user_move(self, kind: LineKind, price: float) -> bool:
        """Record a line moved on the display. Returns False when the line is not drawn."""
        if kind not in self._prices:
            return False
        self._prices[kind] = price
        self._queue.put_nowait(SetLinePrice(kind, price))
        return True

    async def _present(self) -> None:
        while True:
            command = await self._queue.get()
            try:
                if command is _STOP:
                    return
                self._apply(command)
            except Exception as exc:
                self._failures += 1
                logger.opt(exception=exc).warning("Marker command failed: {!r}", command)
            finally:
                self._queue.task_done()

    def _apply(self, command: object) -> None:
        display = self._display
        if isinstance(command, UpsertLine):
            display.upsert_line(command.kind, command.price, command.label)
        elif isinstance(command, SetLinePrice):
            display.set_line_price(command.kind, command.price)
        elif isinstance(command, UpdateLineLabel):
            display.update_line_label(command.kind, command.label, command.label_price)
        elif isinstance(command, RemoveAllMarkers):
            display.remove_all()
        elif isinstance(command, ShowNotification):
            display.show_notification(command.text)
        else:
            raise TypeError(f"unsupported marker command: {command!r}")
