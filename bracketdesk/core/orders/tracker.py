from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from bracketdesk.core.markers.tags import TagNames
from bracketdesk.core.orders.events import ExecutionOccurred, OrderStateChanged
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    Direction,
    LegKind,
    OrderRef,
    OrderState,
    is_terminal_state,
)


class BracketAlreadyActiveError(RuntimeError):
    """Raised when a second bracket group is registered while one is live."""


class TrackerOutcome(str, Enum):
    IGNORED = "IGNORED"
    LEG_UPDATED = "LEG_UPDATED"
    ENTRY_FILLED = "ENTRY_FILLED"
    EXIT_FILLED = "EXIT_FILLED"
    DUPLICATE_EXIT = "DUPLICATE_EXIT"
    LEG_CANCELLED = "LEG_CANCELLED"
    REJECTED = "REJECTED"


@dataclass
class LegOrder:
    ref: OrderRef
    kind: LegKind
    qty: int
    state: OrderState = OrderState.SUBMITTED
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None

    @property
    def is_active(self) -> bool:
        return not is_terminal_state(self.state)

    def working_price(self) -> Optional[float]:
        if self.kind == LegKind.STOP:
            return self.stop_price
        if self.kind == LegKind.TARGET:
            return self.limit_price
        return None


@dataclass
class BracketOrder:
    direction: Optional[Direction]
    qty: int
    oco_group_id: Optional[str]
    legs: dict[LegKind, LegOrder] = field(default_factory=dict)
    avg_entry_price: float = 0.0
    entry_filled: bool = False

    def leg(self, kind: LegKind) -> Optional[LegOrder]:
        return self.legs.get(kind)


@dataclass(frozen=True)
class TrackerUpdate:
    outcome: TrackerOutcome
    leg: Optional[LegKind] = None
    order_name: Optional[str] = None
    exit_key: Optional[str] = None
    avg_fill_price: Optional[float] = None
    cancel_refs: tuple[OrderRef, ...] = ()
    error: Optional[str] = None

    @classmethod
    def ignored(cls) -> "TrackerUpdate":
        return cls(outcome=TrackerOutcome.IGNORED)


class BracketOrderTracker:
    """Observes the three legs of the confirmed trade and reconciles broker callbacks.

    Order-level and execution-level feeds report the same fills. Exit fills are keyed by
    order id (falling back to the order name) plus the execution id when present; an
    exit is applied once per order whichever feed reports it first.
    """

    def __init__(self, tags: TagNames) -> None:
        self._tags = tags
        self._bracket: Optional[BracketOrder] = None
        self._processed_exit_keys: set[str] = set()
        self._name_exit_keys: set[str] = set()

    @property
    def bracket(self) -> Optional[BracketOrder]:
        return self._bracket

    @property
    def avg_entry_price(self) -> float:
        if self._bracket is None:
            return 0.0
        return self._bracket.avg_entry_price

    @property
    def oco_group_id(self) -> Optional[str]:
        if self._bracket is None:
            return None
        return self._bracket.oco_group_id

    @property
    def processed_exit_keys(self) -> frozenset[str]:
        return frozenset(self._processed_exit_keys)

    def can_register(self) -> bool:
        return not self.active_legs()

    def register(self, spec: BracketOrderSpec, refs: BracketRefs) -> BracketOrder:
        if not self.can_register():
            raise BracketAlreadyActiveError("a bracket group is already active")
        for key in self._name_exit_keys:
            self._processed_exit_keys.discard(key)
        self._name_exit_keys.clear()
        bracket = BracketOrder(direction=spec.direction, qty=spec.qty, oco_group_id=spec.oco_id)
        bracket.legs[LegKind.ENTRY] = LegOrder(ref=refs.entry, kind=LegKind.ENTRY, qty=spec.qty)
        bracket.legs[LegKind.STOP] = LegOrder(
            ref=refs.stop, kind=LegKind.STOP, qty=spec.qty, stop_price=spec.stop_price
        )
        bracket.legs[LegKind.TARGET] = LegOrder(
            ref=refs.target, kind=LegKind.TARGET, qty=spec.qty, limit_price=spec.target_price
        )
        self._bracket = bracket
        return bracket

    def adopt_position(self, direction: Direction, qty: int, avg_price: float) -> BracketOrder:
        """Rebuild a bracket group around a position that existed before this session."""
        bracket = self._bracket
        if bracket is None:
            bracket = BracketOrder(direction=direction, qty=qty, oco_group_id=None)
            self._bracket = bracket
        bracket.direction = direction
        bracket.qty = qty
        bracket.avg_entry_price = avg_price
        bracket.entry_filled = True
        return bracket

    def clear(self) -> None:
        self._bracket = None

    def reset_session(self) -> None:
        self._bracket = None
        self._processed_exit_keys.clear()
        self._name_exit_keys.clear()

    def leg(self, kind: LegKind) -> Optional[LegOrder]:
        if self._bracket is None:
            return None
        return self._bracket.leg(kind)

    def is_leg_active(self, kind: LegKind) -> bool:
        leg = self.leg(kind)
        return leg is not None and leg.is_active

    def active_legs(self) -> list[LegOrder]:
        if self._bracket is None:
            return []
        return [leg for leg in self._bracket.legs.values() if leg.is_active]

    def has_pending_entry(self) -> bool:
        bracket = self._bracket
        if bracket is None or bracket.entry_filled:
            return False
        return self.is_leg_active(LegKind.ENTRY)

    def pending_entry_qty(self) -> int:
        if not self.has_pending_entry():
            return 0
        leg = self.leg(LegKind.ENTRY)
        return leg.qty if leg is not None else 0

    def last_known_price(self, kind: LegKind) -> Optional[float]:
        leg = self.leg(kind)
        if leg is None:
            return None
        return leg.working_price()

    def record_requested_price(self, kind: LegKind, price: float) -> None:
        leg = self.leg(kind)
        if leg is None:
            return
        if kind == LegKind.STOP:
            leg.stop_price = price
        elif kind == LegKind.TARGET:
            leg.limit_price = price

    def identify(self, ref: OrderRef) -> Optional[LegKind]:
        leg = self._tracked_leg(ref)
        if leg is not None:
            return leg.kind
        return self._tags.leg_for_order_name(ref.name)

    def on_order_state(self, event: OrderStateChanged) -> TrackerUpdate:
        leg = self._tracked_leg(event.ref)
        if leg is None:
            kind = self._tags.leg_for_order_name(event.ref.name)
            if kind is None:
                return TrackerUpdate.ignored()
            if event.state == OrderState.FILLED and kind != LegKind.ENTRY:
                if self.is_leg_active(kind):
                    return TrackerUpdate.ignored()
                return self._handle_exit(kind, event.ref, execution_id=None)
            # Only orders replayed at startup are adopted; anything else belongs to a
            # bracket that is already gone.
            if is_terminal_state(event.state) or not event.replayed or self.leg(kind) is not None:
                return TrackerUpdate.ignored()
            leg = self._adopt_leg(kind, event)
        kind = leg.kind

        self._apply_state(leg, event)

        if event.state == OrderState.FILLED:
            if kind == LegKind.ENTRY:
                return self._handle_entry_fill(leg, event.avg_fill_price)
            return self._handle_exit(kind, leg.ref, execution_id=None)
        if event.state == OrderState.CANCELLED:
            self._drop_leg(kind)
            return TrackerUpdate(outcome=TrackerOutcome.LEG_CANCELLED, leg=kind, order_name=leg.ref.name)
        if event.state == OrderState.REJECTED:
            siblings = tuple(other.ref for other in self.active_legs() if other.kind != kind)
            self.clear()
            return TrackerUpdate(
                outcome=TrackerOutcome.REJECTED,
                leg=kind,
                order_name=leg.ref.name,
                cancel_refs=siblings,
                error=event.error,
            )
        return TrackerUpdate(outcome=TrackerOutcome.LEG_UPDATED, leg=kind, order_name=leg.ref.name)

    def on_execution(self, event: ExecutionOccurred) -> TrackerUpdate:
        leg = self._tracked_leg(event.ref)
        kind = leg.kind if leg is not None else self._tags.leg_for_order_name(event.ref.name)
        if kind is None:
            return TrackerUpdate.ignored()

        if kind == LegKind.ENTRY:
            if leg is None or self._bracket is None:
                return TrackerUpdate.ignored()
            price = event.avg_fill_price if event.avg_fill_price else event.price
            if price and price > 0:
                self._bracket.avg_entry_price = price
            return TrackerUpdate(
                outcome=TrackerOutcome.LEG_UPDATED,
                leg=kind,
                order_name=leg.ref.name,
                avg_fill_price=self._bracket.avg_entry_price,
            )

        if leg is None and self.is_leg_active(kind):
            return TrackerUpdate.ignored()
        # The first execution on an exit leg ends the trade, even when it is partial.
        ref = event.ref
        if leg is not None and leg.ref.order_id and not ref.order_id:
            ref = leg.ref
        return self._handle_exit(kind, ref, execution_id=event.execution_id)

    def _handle_entry_fill(self, leg: LegOrder, avg_fill_price: Optional[float]) -> TrackerUpdate:
        bracket = self._bracket
        if bracket is None:
            return TrackerUpdate.ignored()
        if avg_fill_price is not None and avg_fill_price > 0:
            bracket.avg_entry_price = avg_fill_price
        if bracket.entry_filled:
            return TrackerUpdate(
                outcome=TrackerOutcome.LEG_UPDATED,
                leg=LegKind.ENTRY,
                order_name=leg.ref.name,
                avg_fill_price=bracket.avg_entry_price,
            )
        bracket.entry_filled = True
        return TrackerUpdate(
            outcome=TrackerOutcome.ENTRY_FILLED,
            leg=LegKind.ENTRY,
            order_name=leg.ref.name,
            avg_fill_price=bracket.avg_entry_price,
        )

    def _handle_exit(self, kind: LegKind, ref: OrderRef, *, execution_id: Optional[str]) -> TrackerUpdate:
        base_key = ref.key()
        exit_key = f"{base_key}|{execution_id}" if execution_id else base_key
        if base_key in self._processed_exit_keys or exit_key in self._processed_exit_keys:
            return TrackerUpdate(
                outcome=TrackerOutcome.DUPLICATE_EXIT,
                leg=kind,
                order_name=ref.name,
                exit_key=exit_key,
            )
        self._processed_exit_keys.add(base_key)
        self._processed_exit_keys.add(exit_key)
        if not ref.order_id:
            self._name_exit_keys.update({base_key, exit_key})
        self.clear()
        return TrackerUpdate(
            outcome=TrackerOutcome.EXIT_FILLED,
            leg=kind,
            order_name=ref.name,
            exit_key=exit_key,
        )

    def _tracked_leg(self, ref: OrderRef) -> Optional[LegOrder]:
        bracket = self._bracket
        if bracket is None:
            return None
        for leg in bracket.legs.values():
            if ref.order_id and leg.ref.order_id:
                if leg.ref.order_id == ref.order_id:
                    return leg
            elif leg.ref.name == ref.name:
                return leg
        return None

    def _adopt_leg(self, kind: LegKind, event: OrderStateChanged) -> LegOrder:
        bracket = self._bracket
        if bracket is None:
            direction: Optional[Direction] = None
            if event.ref.name == self._tags.entry_long:
                direction = Direction.LONG
            elif event.ref.name == self._tags.entry_short:
                direction = Direction.SHORT
            bracket = BracketOrder(direction=direction, qty=0, oco_group_id=None)
            self._bracket = bracket
        qty = int(event.total_qty or 0) or bracket.qty
        leg = LegOrder(ref=event.ref, kind=kind, qty=qty, state=event.state)
        bracket.legs[kind] = leg
        return leg

    def _apply_state(self, leg: LegOrder, event: OrderStateChanged) -> None:
        leg.state = event.state
        if event.ref.order_id and not leg.ref.order_id:
            leg.ref = replace(leg.ref, order_id=event.ref.order_id)
        if event.limit_price is not None and event.limit_price > 0:
            leg.limit_price = event.limit_price
        if event.stop_price is not None and event.stop_price > 0:
            leg.stop_price = event.stop_price

    def _drop_leg(self, kind: LegKind) -> None:
        bracket = self._bracket
        if bracket is None:
            return
        bracket.legs.pop(kind, None)
