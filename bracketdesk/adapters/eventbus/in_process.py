from __future__ import annotations

import asyncio
import inspect
from typing import Callable

from loguru import logger

from bracketdesk.core.orders.ports import EventHandler, EventT


class InProcessEventBus:
    """Type-filtered publish/subscribe inside one process.

    When a loop is running, handlers are scheduled with `call_soon` so a publisher never
    re-enters its subscribers mid-operation. Without a loop they run inline.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[type, EventHandler]] = []

    def publish(self, event: object) -> None:
        if not self._subscribers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for event_type, handler in list(self._subscribers):
            if not isinstance(event, event_type):
                continue
            if loop and loop.is_running():
                loop.call_soon(self._dispatch, handler, event)
            else:
                self._dispatch(handler, event)

    def subscribe(self, event_type: type[EventT], handler: EventHandler[EventT]) -> Callable[[], None]:
        entry = (event_type, handler)
        self._subscribers.append(entry)

        def _unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @staticmethod
    def _dispatch(handler: EventHandler, event: object) -> None:
        try:
            result = handler(event)
        except Exception as exc:
            logger.opt(exception=exc).error(
                "Event handler error (event={}, handler={})",
                type(event).__name__,
                _handler_name(handler),
            )
            return

        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError:
                asyncio.run(result)
            else:
                task.add_done_callback(_log_task_error)


def _log_task_error(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error("Event handler task error")


def _handler_name(handler: EventHandler) -> str:
    name = getattr(handler, "__name__", None)
    if name:
        return name
    return handler.__class__.__name__
