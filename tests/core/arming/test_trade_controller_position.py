from __future__ import annotations

from datetime import datetime, timezone

from bracketdesk.core.arming.commands import Arm, BreakEven, Confirm, Trail
from bracketdesk.core.arming.controller import BREAK_EVEN_BLOCKED_TEXT
from bracketdesk.core.arming.results import RefusalReason
from bracketdesk.core.arming.state import ArmingPhase
from bracketdesk.core.config import DeskConfig
from bracketdesk.core.markers.models import LineKind, SetLinePrice
from bracketdesk.core.ops.events import PricesClamped
from bracketdesk.core.orders.events import LegModified, OrderStateChanged
from bracketdesk.core.orders.models import (
    Direction,
    OrderModifySpec,
    OrderRef,
    OrderState,
    PositionSnapshot,
)

from desk_fakes import Desk, make_desk

STOP_REF = OrderRef("2", "BD_SL")


def _in_position(desk: Desk, avg_price: float = 5000.25) -> None:
    desk.controller.handle(Arm(Direction.LONG))
    desk.controller.handle(Confirm())
    desk.fill_entry(avg_price)
    assert desk.controller.state.phase == ArmingPhase.IN_POSITION


def test_break_even_needs_one_tick_of_profit() -> None:
    desk = make_desk(DeskConfig(break_even_offset_ticks=1))
    _in_position(desk, avg_price=5000.00)

    desk.set_quote(4999.75, 5000.00)
    refused = desk.controller.handle(BreakEven())

    assert refused.reason == RefusalReason.NOT_IN_PROFIT
    assert BREAK_EVEN_BLOCKED_TEXT in desk.markers.notifications()
    assert desk.gateway.modifies == []

    desk.set_quote(5000.50, 5000.75)
    accepted = desk.controller.handle(BreakEven())

    assert accepted.is_ok
    assert desk.gateway.modifies == [OrderModifySpec(ref=STOP_REF, qty=1, stop_price=5000.25)]
    assert desk.controller.intent is not None
    assert desk.controller.intent.stop_price == 5000.25
    modified = desk.bus.of_type(LegModified)
    assert modified[-1].reason == "BD_BE"


def test_break_even_when_flat_is_refused(desk: Desk) -> None:
    result = desk.controller.handle(BreakEven())

    assert result.reason == RefusalReason.FLAT


def test_break_even_without_working_stop_is_refused(desk: Desk) -> None:
    _in_position(desk)
    desk.controller.on_order_state(OrderStateChanged.now(STOP_REF, OrderState.CANCELLED))

    result = desk.controller.handle(BreakEven())

    assert result.reason == RefusalReason.NO_LIVE_STOP
    assert not desk.controller.controls().break_even_enabled


def test_trail_moves_stop_behind_the_exit_price(desk: Desk) -> None:
    _in_position(desk)
    desk.set_quote(5010.00, 5010.25)

    result = desk.controller.handle(Trail())

    assert result.is_ok
    assert desk.gateway.modifies == [OrderModifySpec(ref=STOP_REF, qty=1, stop_price=5005.00)]
    assert [event.reason for event in desk.bus.of_type(LegModified)] == ["BD_TRAIL"]


def test_trail_when_flat_reports_no_position(desk: Desk) -> None:
    result = desk.controller.handle(Trail())

    assert result.reason == RefusalReason.FLAT
    assert result.message == "TRAIL: No open position."
    assert "TRAIL: No open position." in desk.markers.notifications()


def test_trail_without_stop_reports_missing_order(desk: Desk) -> None:
    _in_position(desk)
    desk.controller.on_order_state(OrderStateChanged.now(STOP_REF, OrderState.CANCELLED))

    result = desk.controller.handle(Trail())

    assert result.message == "TRAIL: Stop-loss order not found."


def test_dragged_stop_stops_following_the_market(desk: Desk) -> None:
    desk.controller.handle(Arm(Direction.LONG))
    desk.markers.user_move(LineKind.STOP, 4990.0)
    desk.controller.poll_markers()

    desk.controller.on_quote(desk.set_quote(5001.00, 5001.25))

    intent = desk.controller.intent
    assert intent is not None
    assert intent.stop_price == 4990.0
    assert intent.entry_price == 5001.25
    assert intent.target_price == 5011.25
    assert desk.gateway.modifies == []


def test_drag_in_position_modifies_the_working_stop_once(desk: Desk) -> None:
    _in_position(desk)

    desk.markers.user_move(LineKind.STOP, 4998.0)
    desk.controller.poll_markers()
    desk.controller.finalize_drag()

    assert desk.gateway.modifies == [OrderModifySpec(ref=STOP_REF, qty=1, stop_price=4998.0)]
    assert SetLinePrice(LineKind.STOP, 4998.0) in desk.markers.sent


def test_drag_through_the_market_is_clamped_in_position(desk: Desk) -> None:
    _in_position(desk)

    desk.markers.user_move(LineKind.STOP, 5001.0)
    desk.controller.poll_markers()

    assert desk.controller.intent is not None
    assert desk.controller.intent.stop_price == 4999.75
    assert SetLinePrice(LineKind.STOP, 4999.75) in desk.markers.sent
    assert desk.gateway.modifies == [OrderModifySpec(ref=STOP_REF, qty=1, stop_price=4999.75)]
    assert len(desk.bus.of_type(PricesClamped)) == 1


def test_repeat_finalize_inside_window_is_skipped(desk: Desk) -> None:
    _in_position(desk)
    desk.markers.user_move(LineKind.STOP, 4998.0)
    desk.controller.poll_markers()
    desk.controller.finalize_drag()

    result = desk.controller.finalize_drag()

    assert result.message == "finalize skipped"


def test_broker_price_change_updates_the_line(desk: Desk) -> None:
    desk.controller.handle(Arm(Direction.LONG))
    desk.controller.handle(Confirm())

    desk.controller.on_order_state(OrderStateChanged.now(STOP_REF, OrderState.WORKING, stop_price=4994.0))

    assert desk.controller.intent is not None
    assert desk.controller.intent.stop_price == 4994.0
    assert desk.markers.upserts()[LineKind.STOP] == 4994.0


def test_session_rebuilds_from_broker_position() -> None:
    position = PositionSnapshot(
        direction=Direction.LONG,
        qty=2,
        avg_price=5000.0,
        timestamp=datetime.now(timezone.utc),
    )
    desk = make_desk(position=position)

    assert desk.controller.describe_state() == "InPosition:Long"
    intent = desk.controller.intent
    assert intent is not None
    assert (intent.stop_price, intent.target_price) == (4995.0, 5010.0)

    replayed_stop = OrderRef("7", "BD_SL")
    desk.controller.on_order_state(
        OrderStateChanged.now(replayed_stop, OrderState.WORKING, stop_price=4990.0, total_qty=2, replayed=True)
    )

    assert intent.stop_price == 4990.0
    assert desk.controller.controls().trail_enabled

    desk.set_quote(5010.00, 5010.25)
    desk.controller.handle(Trail())

    assert desk.gateway.modifies == [OrderModifySpec(ref=replayed_stop, qty=2, stop_price=5005.0)]


def test_arming_is_refused_while_in_position(desk: Desk) -> None:
    _in_position(desk)

    result = desk.controller.handle(Arm(Direction.SHORT))

    assert result.reason == RefusalReason.POSITION_ACTIVE
