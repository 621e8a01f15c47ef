from __future__ import annotations

import pytest

from bracketdesk.core.markers.tags import TagNames
from bracketdesk.core.orders.events import ExecutionOccurred, OrderStateChanged
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    Direction,
    LegKind,
    OrderRef,
    OrderState,
)
from bracketdesk.core.orders.tracker import (
    BracketAlreadyActiveError,
    BracketOrderTracker,
    TrackerOutcome,
)

TAGS = TagNames()
ENTRY = OrderRef("1", "BD_ENTRY_LONG")
STOP = OrderRef("2", "BD_SL")
TARGET = OrderRef("3", "BD_TP")


def _spec() -> BracketOrderSpec:
    return BracketOrderSpec(
        direction=Direction.LONG,
        qty=2,
        stop_price=4995.25,
        target_price=5010.25,
        oco_id="OCO-1",
        entry_name=ENTRY.name,
        stop_name=STOP.name,
        target_name=TARGET.name,
    )


def _registered() -> BracketOrderTracker:
    tracker = BracketOrderTracker(TAGS)
    tracker.register(_spec(), BracketRefs(entry=ENTRY, stop=STOP, target=TARGET))
    return tracker


def _state(ref: OrderRef, state: OrderState, **kwargs: object) -> OrderStateChanged:
    return OrderStateChanged.now(ref, state, **kwargs)


def test_register_tracks_three_active_legs() -> None:
    tracker = _registered()

    assert [leg.kind for leg in tracker.active_legs()] == [LegKind.ENTRY, LegKind.STOP, LegKind.TARGET]
    assert tracker.has_pending_entry()
    assert tracker.pending_entry_qty() == 2
    assert tracker.last_known_price(LegKind.STOP) == 4995.25
    assert tracker.oco_group_id == "OCO-1"


def test_second_bracket_is_refused_while_legs_are_live() -> None:
    tracker = _registered()

    with pytest.raises(BracketAlreadyActiveError):
        tracker.register(_spec(), BracketRefs(entry=ENTRY, stop=STOP, target=TARGET))


def test_entry_fill_reports_average_price_once() -> None:
    tracker = _registered()

    first = tracker.on_order_state(_state(ENTRY, OrderState.FILLED, avg_fill_price=5000.25))
    second = tracker.on_order_state(_state(ENTRY, OrderState.FILLED, avg_fill_price=5000.50))

    assert first.outcome == TrackerOutcome.ENTRY_FILLED
    assert first.avg_fill_price == 5000.25
    assert second.outcome == TrackerOutcome.LEG_UPDATED
    assert tracker.avg_entry_price == 5000.50
    assert not tracker.has_pending_entry()


def test_exit_fill_delivered_twice_is_handled_once() -> None:
    tracker = _registered()
    tracker.on_order_state(_state(ENTRY, OrderState.FILLED, avg_fill_price=5000.25))

    first = tracker.on_order_state(_state(STOP, OrderState.FILLED))
    second = tracker.on_order_state(_state(STOP, OrderState.FILLED))

    assert first.outcome == TrackerOutcome.EXIT_FILLED
    assert first.leg == LegKind.STOP
    assert second.outcome == TrackerOutcome.DUPLICATE_EXIT
    assert tracker.bracket is None


def test_execution_after_order_fill_is_a_duplicate() -> None:
    tracker = _registered()
    tracker.on_order_state(_state(ENTRY, OrderState.FILLED, avg_fill_price=5000.25))

    first = tracker.on_execution(ExecutionOccurred.now(TARGET, execution_id="0001.01", qty=2, price=5010.25))
    second = tracker.on_order_state(_state(TARGET, OrderState.FILLED))

    assert first.outcome == TrackerOutcome.EXIT_FILLED
    assert first.exit_key == "3|0001.01"
    assert second.outcome == TrackerOutcome.DUPLICATE_EXIT



def test_partial_exit_execution_ends_the_trade() -> None:
    tracker = _registered()
    tracker.on_order_state(_state(ENTRY, OrderState.FILLED, avg_fill_price=5000.25))

    first = tracker.on_execution(ExecutionOccurred.now(STOP, execution_id="0002.01", qty=1, price=4995.25))
    second = tracker.on_execution(ExecutionOccurred.now(STOP, execution_id="0002.02", qty=1, price=4995.25))

    assert first.outcome == TrackerOutcome.EXIT_FILLED
    assert tracker.bracket is None
    assert second.outcome == TrackerOutcome.DUPLICATE_EXIT

def test_name_only_exit_keys_do_not_block_the_next_trade() -> None:
    tracker = _registered()
    unnamed_stop = OrderRef(None, "BD_SL")
    tracker.clear()

    first = tracker.on_order_state(_state(unnamed_stop, OrderState.FILLED))
    tracker.register(_spec(), BracketRefs(entry=ENTRY, stop=STOP, target=TARGET))
    tracker.clear()
    again = tracker.on_order_state(_state(unnamed_stop, OrderState.FILLED))

    assert first.outcome == TrackerOutcome.EXIT_FILLED
    assert again.outcome == TrackerOutcome.EXIT_FILLED


def test_rejected_leg_lists_live_siblings_for_cancellation() -> None:
    tracker = _registered()

    update = tracker.on_order_state(_state(ENTRY, OrderState.REJECTED, error="margin"))

    assert update.outcome == TrackerOutcome.REJECTED
    assert update.cancel_refs == (STOP, TARGET)
    assert update.error == "margin"
    assert tracker.bracket is None


def test_cancelled_leg_is_dropped() -> None:
    tracker = _registered()

    update = tracker.on_order_state(_state(TARGET, OrderState.CANCELLED))

    assert update.outcome == TrackerOutcome.LEG_CANCELLED
    assert tracker.leg(LegKind.TARGET) is None
    assert tracker.is_leg_active(LegKind.STOP)


def test_working_leg_from_earlier_session_is_adopted_by_name() -> None:
    tracker = BracketOrderTracker(TAGS)
    tracker.adopt_position(Direction.LONG, 2, 5000.0)

    update = tracker.on_order_state(
        _state(OrderRef("77", "BD_SL"), OrderState.WORKING, stop_price=4990.0, total_qty=2, replayed=True)
    )

    assert update.outcome == TrackerOutcome.LEG_UPDATED
    assert tracker.is_leg_active(LegKind.STOP)
    assert tracker.last_known_price(LegKind.STOP) == 4990.0


def test_unknown_order_name_is_ignored() -> None:
    tracker = _registered()

    update = tracker.on_order_state(_state(OrderRef("99", "OTHER"), OrderState.FILLED))

    assert update.outcome == TrackerOutcome.IGNORED


def test_broker_price_updates_the_leg() -> None:
    tracker = _registered()

    tracker.on_order_state(_state(STOP, OrderState.WORKING, stop_price=4994.0))

    assert tracker.last_known_price(LegKind.STOP) == 4994.0


def test_late_status_for_a_cleared_leg_is_not_adopted() -> None:
    tracker = _registered()
    tracker.on_order_state(_state(ENTRY, OrderState.FILLED, avg_fill_price=5000.25))
    tracker.on_order_state(_state(TARGET, OrderState.FILLED))

    update = tracker.on_order_state(_state(STOP, OrderState.WORKING, stop_price=4995.25))

    assert update.outcome == TrackerOutcome.IGNORED
    assert tracker.bracket is None
    assert tracker.can_register()


def test_status_from_an_older_order_leaves_the_live_leg_alone() -> None:
    tracker = _registered()

    update = tracker.on_order_state(_state(OrderRef("12", "BD_SL"), OrderState.CANCELLED))
    fill = tracker.on_order_state(_state(OrderRef("12", "BD_SL"), OrderState.FILLED))

    assert update.outcome == TrackerOutcome.IGNORED
    assert fill.outcome == TrackerOutcome.IGNORED
    assert tracker.is_leg_active(LegKind.STOP)
    assert tracker.leg(LegKind.STOP).ref == STOP
