from __future__ import annotations

import asyncio

from bracketdesk.adapters.eventbus.in_process import InProcessEventBus
from bracketdesk.core.orders.events import OrderStateChanged, PositionChanged
from bracketdesk.core.orders.models import OrderRef, OrderState


def _state_event() -> OrderStateChanged:
    return OrderStateChanged.now(OrderRef("1", "BD_ENTRY_LONG"), OrderState.WORKING)


def test_publish_without_loop_runs_matching_handlers_inline() -> None:
    bus = InProcessEventBus()
    seen: list[object] = []
    bus.subscribe(OrderStateChanged, seen.append)
    bus.subscribe(PositionChanged, lambda event: seen.append("position"))

    event = _state_event()
    bus.publish(event)

    assert seen == [event]


def test_unsubscribe_stops_delivery() -> None:
    bus = InProcessEventBus()
    seen: list[object] = []
    unsubscribe = bus.subscribe(object, seen.append)

    unsubscribe()
    unsubscribe()
    bus.publish(_state_event())

    assert seen == []
    assert bus.subscriber_count == 0


def test_failing_handler_does_not_block_others() -> None:
    bus = InProcessEventBus()
    seen: list[object] = []

    def _boom(event: object) -> None:
        raise RuntimeError("boom")

    bus.subscribe(object, _boom)
    bus.subscribe(object, seen.append)

    bus.publish(_state_event())

    assert len(seen) == 1


def test_publish_inside_loop_defers_dispatch() -> None:
    async def _scenario() -> tuple[list[object], list[object]]:
        bus = InProcessEventBus()
        seen: list[object] = []
        bus.subscribe(object, seen.append)
        bus.publish(_state_event())
        before = list(seen)
        await asyncio.sleep(0)
        return before, seen

    before, after = asyncio.run(_scenario())

    assert before == []
    assert len(after) == 1


def test_async_handlers_are_scheduled_on_the_loop() -> None:
    async def _scenario() -> list[object]:
        bus = InProcessEventBus()
        seen: list[object] = []

        async def _handler(event: object) -> None:
            seen.append(event)

        bus.subscribe(object, _handler)
        bus.publish(_state_event())
        for _ in range(3):
            await asyncio.sleep(0)
        return seen

    assert len(asyncio.run(_scenario())) == 1
