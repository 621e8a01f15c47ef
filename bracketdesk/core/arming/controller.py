from __future__ import annotations

import time
import traceback
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from bracketdesk.core.arming.commands import (
    Arm,
    BreakEven,
    Close,
    Command,
    Confirm,
    Trail,
    command_name,
)
from bracketdesk.core.arming.results import FaultStatus, OperationResult, RefusalReason
from bracketdesk.core.arming.state import ArmingPhase, ArmingState, ControlState, TradeIntent
from bracketdesk.core.config import DeskConfig
from bracketdesk.core.drag.reconcile import DragReconciler, needs_modify
from bracketdesk.core.market_data.models import Quote, entry_reference, exit_reference
from bracketdesk.core.market_data.ports import MarketFeed
from bracketdesk.core.markers.labels import HudLabels, LabelSnapshot, label_price
from bracketdesk.core.markers.models import (
    LineKind,
    RemoveAllMarkers,
    SetLinePrice,
    ShowNotification,
    UpdateLineLabel,
    UpsertLine,
)
from bracketdesk.core.markers.ports import MarkerSink
from bracketdesk.core.markers.tags import TagNames
from bracketdesk.core.ops.events import (
    CommandRefused,
    ControllerFaultRecorded,
    PricesClamped,
    SelfCheckFailed,
    SessionStarted,
)
from bracketdesk.core.ops.throttle import NotificationThrottle
from bracketdesk.core.orders.events import (
    EntryFilled,
    ExecutionOccurred,
    ExitFilled,
    LegCancelled,
    LegModified,
    LegRejected,
    OrderStateChanged,
    PositionChanged,
)
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    Direction,
    ExitOrderSpec,
    LegKind,
    OrderModifySpec,
    PositionSnapshot,
    exit_side,
)
from bracketdesk.core.orders.ports import EventBus
from bracketdesk.core.orders.service import OrderService
from bracketdesk.core.orders.tracker import BracketOrderTracker, TrackerOutcome, TrackerUpdate
from bracketdesk.core.selfcheck.guard import SelfCheckGuard
from bracketdesk.core.sizing.calculator import InstrumentTicks
from bracketdesk.core.sizing.models import SizingInputs, TickMetadata
from bracketdesk.core.validity.clamp import enforce_validity

CLAMP_NOTICE_SECONDS = 1.0
QTY_BLOCK_NOTICE_SECONDS = 1.0
BREAK_EVEN_NOTICE_SECONDS = 2.0
SIZING_TRACE_SECONDS = 1.0

BREAK_EVEN_BLOCKED_TEXT = "BE is not allowed because the position is not in profit yet. Needs at least +1 tick."
QTY_BLOCKED_TEXT = "Qty < 1 => confirmation blocked"

_LINE_ORDER = (LineKind.ENTRY, LineKind.STOP, LineKind.TARGET)
_EXIT_LEGS = (LegKind.STOP, LegKind.TARGET)
_MODIFY_EPSILON = 1e-9


@dataclass(frozen=True)
class DeskStatus:
    description: str
    phase: ArmingPhase
    direction: Optional[Direction]
    entry_price: Optional[float]
    stop_price: Optional[float]
    target_price: Optional[float]
    avg_entry_price: float
    position_qty: int
    pending_qty: int
    tick_size: float
    self_check: Optional[str]
    faults: FaultStatus


class TradeController:
    """Single owner of the desk session: arming state, trade intent and the bracket group.

    Every input (commands, quotes, broker callbacks, marker reconciliation) goes through a
    method here and is expected to arrive on one execution context. Output is marker
    commands to the `MarkerSink` and order requests to the `OrderService`.
    """

    def __init__(
        self,
        config: DeskConfig,
        *,
        orders: OrderService,
        markers: MarkerSink,
        market: MarketFeed,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], float] = time.monotonic,
        oco_id_factory: Optional[Callable[[], str]] = None,
    ) -> None:
        self._config = config
        self._orders = orders
        self._markers = markers
        self._market = market
        self._event_bus = event_bus
        self._oco_id_factory = oco_id_factory or (lambda: uuid.uuid4().hex)
        self._tags = TagNames.from_prefix(config.tag_prefix)
        self._inputs: SizingInputs = config.sizing_inputs()
        self._ticks = InstrumentTicks()
        self._tracker = BracketOrderTracker(self._tags)
        self._drag = DragReconciler(clock=clock)
        self._throttle = NotificationThrottle(clock)
        self._self_check = SelfCheckGuard(NotificationThrottle(clock))
        self._labels = HudLabels()
        self._state = ArmingState.idle()
        self._intent: Optional[TradeIntent] = None
        self._position = PositionSnapshot.flat()
        self._faults = FaultStatus()
        self._dirty: set[LineKind] = set()
        self._drawn: dict[LineKind, float] = {}
        self._shown_labels: dict[LineKind, str] = {}

    @property
    def state(self) -> ArmingState:
        return self._state

    @property
    def intent(self) -> Optional[TradeIntent]:
        return self._intent

    @property
    def tags(self) -> TagNames:
        return self._tags

    @property
    def tracker(self) -> BracketOrderTracker:
        return self._tracker

    @property
    def ticks(self) -> InstrumentTicks:
        return self._ticks

    @property
    def self_check(self) -> SelfCheckGuard:
        return self._self_check

    def fault_status(self) -> FaultStatus:
        return self._faults

    # ---- session -------------------------------------------------------------------

    def start_session(
        self,
        metadata: Optional[TickMetadata],
        position: Optional[PositionSnapshot] = None,
    ) -> OperationResult:
        return self._guarded("start_session", lambda: self._start_session(metadata, position))

    def update_instrument(self, metadata: Optional[TickMetadata]) -> OperationResult:
        """Apply tick metadata that arrived after the session started.

        A self-check that failed for lack of metadata is re-run once known-good metadata
        is available; a passed check is never revisited.
        """

        def _update() -> OperationResult:
            had_metadata = self._ticks.last_known_good is not None
            self._ticks.update(metadata)
            if self._self_check.failed and not had_metadata and self._ticks.last_known_good is not None:
                logger.info("Instrument metadata arrived; re-running self-check")
                self._self_check.reset()
                self._ensure_self_check()
            self._render()
            return OperationResult.ok()

        return self._guarded("update_instrument", _update)

    def _start_session(
        self,
        metadata: Optional[TickMetadata],
        position: Optional[PositionSnapshot],
    ) -> OperationResult:
        self._ticks.update(metadata)
        self._tracker.reset_session()
        self._reset_to_idle()
        self._self_check.reset()
        self._ensure_self_check()

        rebuilt = False
        if position is not None and not position.is_flat and position.direction is not None:
            self._adopt_position(position)
            rebuilt = True

        self._publish(
            SessionStarted.now(
                tag_prefix=self._tags.prefix,
                self_check_passed=not self._self_check.failed,
                rebuilt_from_position=rebuilt,
            )
        )
        logger.info("Session started: state={} tag_prefix={}", self.describe_state(), self._tags.prefix)
        return OperationResult.ok()

    def _adopt_position(self, position: PositionSnapshot) -> None:
        direction = position.direction
        if direction is None:
            return
        self._position = position
        self._tracker.adopt_position(direction, position.qty, position.avg_price)
        tick = self._ticks.tick_size_or_fallback()
        entry = self._round(position.avg_price)
        self._intent = TradeIntent(
            direction=direction,
            entry_price=entry,
            stop_price=self._round(entry - direction.sign * self._config.default_stop_ticks * tick),
            target_price=self._round(entry + direction.sign * self._config.default_target_ticks * tick),
        )
        self._state = ArmingState.in_position(direction)
        self._dirty.update(_LINE_ORDER)
        self._render()
        logger.info(
            "Rebuilt from broker position: {} {} @ {:.2f}",
            direction.value,
            position.qty,
            position.avg_price,
        )

    # ---- commands ------------------------------------------------------------------

    def handle(self, command: Command) -> OperationResult:
        name = command_name(command)
        if isinstance(command, Arm):
            return self._guarded(name, lambda: self._arm(command.direction))
        if isinstance(command, Confirm):
            return self._guarded(name, self._confirm)
        if isinstance(command, Close):
            return self._guarded(name, self._close)
        if isinstance(command, BreakEven):
            return self._guarded(name, self._break_even)
        if isinstance(command, Trail):
            return self._guarded(name, self._trail)
        raise TypeError(f"unsupported command: {command!r}")

    def _arm(self, direction: Direction) -> OperationResult:
        name = f"Arm({direction.value})"
        if self._in_position():
            logger.info("Arming blocked while position active")
            return self._refuse(name, RefusalReason.POSITION_ACTIVE)
        if self._pending_entry():
            logger.info("Arming blocked while entry is working")
            return self._refuse(name, RefusalReason.PENDING_ENTRY)

        quote = self._market.current_quote()
        reference = entry_reference(quote, direction, use_bid_ask=self._config.use_bid_ask_for_entry)
        if reference is None:
            logger.info("Arming blocked: no market price")
            return self._refuse(name, RefusalReason.NO_MARKET_PRICE)

        tick = self._ticks.tick_size_or_fallback()
        entry = self._round(reference)
        stop = self._round(entry - direction.sign * self._config.default_stop_ticks * tick)
        target = self._round(entry + direction.sign * self._config.default_target_ticks * tick)
        clamp = enforce_validity(direction, stop, target, quote=quote, tick=tick, round_to_tick=self._round)
        if clamp.clamped:
            self._note_clamp(direction, stop, target, clamp.stop, clamp.target, "Default lines clamped to stay off-market")

        self._intent = TradeIntent(
            direction=direction,
            entry_price=entry,
            stop_price=clamp.stop,
            target_price=clamp.target,
        )
        self._state = ArmingState.armed(direction)
        self._drag.reset()
        self._drag.seed_offsets(entry, clamp.stop, clamp.target, tick=tick)
        self._labels.reset()
        self._shown_labels.clear()
        self._dirty.update(_LINE_ORDER)
        self._render()
        logger.info("{} ARMED", direction.value)
        return OperationResult.ok()

    def _confirm(self) -> OperationResult:
        name = "Confirm"
        intent = self._intent
        if not self._state.is_armed or intent is None:
            logger.info("Confirm ignored: not armed")
            return self._refuse(name, RefusalReason.NOT_ARMED)
        if self._in_position():
            logger.info("Confirm blocked while position active")
            return self._refuse(name, RefusalReason.POSITION_ACTIVE)
        if self._pending_entry():
            logger.info("Confirm blocked while entry is working")
            return self._refuse(name, RefusalReason.PENDING_ENTRY)
        if not self._tracker.can_register():
            logger.warning("Confirm blocked: working desk orders are still tracked")
            return self._refuse(name, RefusalReason.BRACKET_ACTIVE)
        self._ensure_self_check()
        if self._self_check.failed:
            return self._refuse_self_check(name)

        direction = intent.direction
        quote = self._market.current_quote()
        tick = self._ticks.tick_size_or_fallback()
        clamp = enforce_validity(
            direction,
            intent.stop_price,
            intent.target_price,
            quote=quote,
            tick=tick,
            round_to_tick=self._round,
        )
        if clamp.clamped:
            self._note_clamp(
                direction,
                intent.stop_price,
                intent.target_price,
                clamp.stop,
                clamp.target,
                "Lines clamped before entry to avoid immediate triggers",
            )
            intent.stop_price = clamp.stop
            intent.target_price = clamp.target
            self._dirty.update({LineKind.STOP, LineKind.TARGET})

        qty = self._ticks.calculate_quantity(intent.entry_price, intent.stop_price, self._inputs)
        if qty < 1:
            if self._throttle.allow("qty_blocked", QTY_BLOCK_NOTICE_SECONDS):
                logger.info(QTY_BLOCKED_TEXT)
                self._markers.send(ShowNotification(QTY_BLOCKED_TEXT))
            self._render()
            return self._refuse(name, RefusalReason.QUANTITY_BLOCKED, notify=False)

        spec = BracketOrderSpec(
            direction=direction,
            qty=qty,
            stop_price=intent.stop_price,
            target_price=intent.target_price,
            oco_id=self._oco_id_factory(),
            entry_name=self._tags.entry_order(direction),
            stop_name=self._tags.stop_order,
            target_name=self._tags.target_order,
        )
        refs = self._orders.submit_bracket(spec)
        self._tracker.register(spec, refs)
        self._state = ArmingState.pending_entry(direction)
        side = "BUY" if direction == Direction.LONG else "SELL SHORT"
        logger.info(
            "{} entry submitted: qty {}, SL {:.2f}, TP {:.2f}",
            side,
            qty,
            intent.stop_price,
            intent.target_price,
        )
        self._render()
        return OperationResult.ok()

    def _close(self) -> OperationResult:
        logger.info("CLOSE pressed -> cancel orders + flatten + reset")
        failures = 0
        for leg in self._tracker.active_legs():
            if not self._contain(f"Close.cancel_{leg.kind.value}", lambda ref=leg.ref: self._orders.cancel_order(ref)):
                failures += 1

        direction, qty = self._live_position()
        if direction is not None and qty > 0:
            spec = ExitOrderSpec(side=exit_side(direction), qty=qty, name=self._tags.close_order)
            if not self._contain("Close.flatten", lambda: self._orders.submit_exit(spec)):
                failures += 1
            else:
                logger.info("Flatten submitted: {} {}", spec.side.value, qty)

        self._reset_to_idle()
        if failures:
            return OperationResult.fault(f"close completed with {failures} failed broker request(s)")
        return OperationResult.ok()

    def _break_even(self) -> OperationResult:
        name = "BreakEven"
        direction = self._position_direction()
        if direction is None:
            logger.info("BE failed: no open position")
            return self._refuse(name, RefusalReason.FLAT)
        if not self._tracker.is_leg_active(LegKind.STOP):
            logger.info("BE failed: no working stop order")
            return self._refuse(name, RefusalReason.NO_LIVE_STOP)
        self._ensure_self_check()
        if self._self_check.failed:
            return self._refuse_self_check(name)

        quote = self._market.current_quote()
        reference = exit_reference(quote, direction)
        if reference is None:
            return self._refuse(name, RefusalReason.NO_MARKET_PRICE)

        tick = self._ticks.tick_size_or_fallback()
        avg = self._avg_entry_price()
        profit_ticks = (reference - avg) * direction.sign / tick
        if profit_ticks < 1.0 - 1e-9:
            logger.info("BE blocked: position not in profit")
            if self._throttle.allow("break_even_blocked", BREAK_EVEN_NOTICE_SECONDS):
                self._markers.send(ShowNotification(BREAK_EVEN_BLOCKED_TEXT))
            return self._refuse(name, RefusalReason.NOT_IN_PROFIT, notify=False)

        intent = self._ensure_intent(direction)
        requested = self._round(avg + direction.sign * self._config.break_even_offset_ticks * tick)
        clamp = enforce_validity(
            direction,
            requested,
            intent.target_price,
            quote=quote,
            tick=tick,
            round_to_tick=self._round,
        )
        if clamp.clamped:
            self._note_clamp(direction, requested, intent.target_price, clamp.stop, clamp.target, "Break-even stop clamped")
        if abs(clamp.target - intent.target_price) > tick / 8:
            intent.target_price = clamp.target
            self._dirty.add(LineKind.TARGET)
        intent.stop_price = clamp.stop
        self._dirty.add(LineKind.STOP)
        self._modify_leg(LegKind.STOP, clamp.stop, reason=self._tags.break_even, force=True)
        logger.info(
            "BE pressed: stop moved to {:.2f}{}",
            clamp.stop,
            " (clamped)" if clamp.stop_clamped else "",
        )
        self._render()
        return OperationResult.ok()

    def _trail(self) -> OperationResult:
        name = "Trail"
        direction = self._position_direction()
        if direction is None:
            return self._refuse(name, RefusalReason.FLAT, message="TRAIL: No open position.")
        if not self._tracker.is_leg_active(LegKind.STOP):
            return self._refuse(name, RefusalReason.NO_LIVE_STOP, message="TRAIL: Stop-loss order not found.")
        self._ensure_self_check()
        if self._self_check.failed:
            return self._refuse_self_check(name)

        quote = self._market.current_quote()
        reference = exit_reference(quote, direction)
        if reference is None:
            return self._refuse(name, RefusalReason.NO_MARKET_PRICE)

        tick = self._ticks.tick_size_or_fallback()
        intent = self._ensure_intent(direction)
        requested = self._round(reference - direction.sign * self._config.trail_offset_ticks * tick)
        clamp = enforce_validity(
            direction,
            requested,
            intent.target_price,
            quote=quote,
            tick=tick,
            round_to_tick=self._round,
        )
        if clamp.stop_clamped:
            self._note_clamp(direction, requested, intent.target_price, clamp.stop, intent.target_price, "Trail stop clamped")
        intent.stop_price = clamp.stop
        self._dirty.add(LineKind.STOP)
        self._modify_leg(LegKind.STOP, clamp.stop, reason=self._tags.trail, force=True)
        logger.info(
            "TRAIL pressed: move SL to {:.2f} (offset {} ticks from {:.2f})",
            clamp.stop,
            self._config.trail_offset_ticks,
            reference,
        )
        self._render()
        return OperationResult.ok()

    # ---- market and marker inputs --------------------------------------------------

    def on_quote(self, quote: Quote) -> OperationResult:
        def _on_quote() -> OperationResult:
            self._process_drags()
            self._follow_market(quote)
            self._render()
            return OperationResult.ok()

        return self._guarded("on_quote", _on_quote)

    def poll_markers(self) -> OperationResult:
        """Reconcile marker positions reported by the presentation layer."""

        def _poll() -> OperationResult:
            self._process_drags()
            self._render()
            return OperationResult.ok()

        return self._guarded("poll_markers", _poll)

    def finalize_drag(self) -> OperationResult:
        if not self._drag.try_begin_finalize():
            return OperationResult.ok("finalize skipped")
        try:
            return self._guarded("finalize_drag", self._finalize_drag)
        finally:
            self._drag.end_finalize()

    def _follow_market(self, quote: Quote) -> None:
        intent = self._intent
        if not self._state.is_armed or intent is None:
            return
        direction = intent.direction
        reference = entry_reference(quote, direction, use_bid_ask=self._config.use_bid_ask_for_entry)
        if reference is None:
            return
        tick = self._ticks.tick_size_or_fallback()
        new_entry = self._round(reference)
        if abs(new_entry - intent.entry_price) < tick / 4:
            return

        intent.entry_price = new_entry
        self._dirty.add(LineKind.ENTRY)
        following = self._drag.follow_entry(new_entry, tick=tick, round_to_tick=self._round)
        if not following:
            return
        stop = following.get(LegKind.STOP, intent.stop_price)
        target = following.get(LegKind.TARGET, intent.target_price)
        clamp = enforce_validity(direction, stop, target, quote=quote, tick=tick, round_to_tick=self._round)
        if LegKind.STOP in following:
            intent.stop_price = clamp.stop
            self._dirty.add(LineKind.STOP)
        if LegKind.TARGET in following:
            intent.target_price = clamp.target
            self._dirty.add(LineKind.TARGET)
        if (clamp.stop_clamped and LegKind.STOP in following) or (
            clamp.target_clamped and LegKind.TARGET in following
        ):
            self._note_clamp(direction, stop, target, intent.stop_price, intent.target_price, "Lines clamped while following market")

    def _process_drags(self) -> None:
        for leg in _EXIT_LEGS:
            self._process_drag(leg)

    def _process_drag(self, leg: LegKind) -> bool:
        intent = self._intent
        if intent is None:
            return False
        kind = LineKind.for_leg(leg)
        drawn_price = self._drawn.get(kind)
        if drawn_price is None:
            return False
        tick = self._ticks.tick_size_or_fallback()
        # Compare against what was last drawn; the intent may be ahead of the display.
        detection = self._drag.detect(
            leg,
            self._markers.get_line_price(kind),
            drawn_price,
            tick=tick,
            round_to_tick=self._round,
        )
        if detection is None:
            return False

        self._drawn[kind] = detection.price
        self._set_intent_price(intent, leg, detection.price)
        direction = self._clamp_direction()
        if direction is None:
            return True

        if not self._free_placement():
            quote = self._market.current_quote()
            clamp = enforce_validity(
                direction,
                intent.stop_price,
                intent.target_price,
                quote=quote,
                tick=tick,
                round_to_tick=self._round,
            )
            clamped_price = clamp.stop if leg == LegKind.STOP else clamp.target
            if abs(clamped_price - detection.price) > _MODIFY_EPSILON:
                self._note_clamp(
                    direction,
                    intent.stop_price,
                    intent.target_price,
                    clamp.stop,
                    clamp.target,
                    "Line clamped to stay off-market",
                )
                self._set_intent_price(intent, leg, clamped_price)
                self._move_line(kind, clamped_price)

        if self._tracker.is_leg_active(leg):
            self._modify_leg(leg, self._intent_price(intent, leg), reason="drag")
        return True

    def _finalize_drag(self) -> OperationResult:
        intent = self._intent
        if intent is None:
            return OperationResult.ok()
        changed = False
        for leg in _EXIT_LEGS:
            changed = self._process_drag(leg) or changed

        direction = self._clamp_direction()
        if direction is not None and not self._free_placement():
            quote = self._market.current_quote()
            tick = self._ticks.tick_size_or_fallback()
            clamp = enforce_validity(
                direction,
                intent.stop_price,
                intent.target_price,
                quote=quote,
                tick=tick,
                round_to_tick=self._round,
            )
            if clamp.clamped:
                self._note_clamp(
                    direction,
                    intent.stop_price,
                    intent.target_price,
                    clamp.stop,
                    clamp.target,
                    "Line clamped at drag end",
                )
                intent.stop_price = clamp.stop
                intent.target_price = clamp.target
                changed = True
            for leg in _EXIT_LEGS:
                self._move_line(LineKind.for_leg(leg), self._intent_price(intent, leg))
            for leg in _EXIT_LEGS:
                if self._tracker.is_leg_active(leg):
                    self._modify_leg(leg, self._intent_price(intent, leg), reason="drag_end")

        self._render()
        return OperationResult.ok("finalized" if changed else None)

    # ---- broker callbacks ----------------------------------------------------------

    def on_order_state(self, event: OrderStateChanged) -> OperationResult:
        return self._guarded("on_order_state", lambda: self._apply_tracker_update(self._tracker.on_order_state(event)))

    def on_execution(self, event: ExecutionOccurred) -> OperationResult:
        return self._guarded("on_execution", lambda: self._apply_tracker_update(self._tracker.on_execution(event)))

    def on_position(self, event: PositionChanged) -> OperationResult:
        def _on_position() -> OperationResult:
            snapshot = PositionSnapshot(
                direction=event.direction if event.qty else None,
                qty=abs(int(event.qty)),
                avg_price=event.avg_price,
                timestamp=event.timestamp,
            )
            self._position = snapshot
            if snapshot.is_flat:
                if self._state.phase == ArmingPhase.IN_POSITION:
                    logger.info("Position flat -> reset")
                    self._cancel_active_legs("PositionFlat")
                    self._reset_to_idle()
                return OperationResult.ok()
            self._render()
            return OperationResult.ok()

        return self._guarded("on_position", _on_position)

    def _apply_tracker_update(self, update: TrackerUpdate) -> OperationResult:
        outcome = update.outcome
        if outcome == TrackerOutcome.ENTRY_FILLED:
            self._on_entry_filled(update)
        elif outcome == TrackerOutcome.EXIT_FILLED:
            self._publish(
                ExitFilled.now(
                    leg=update.leg or LegKind.STOP,
                    exit_key=update.exit_key or "",
                    order_name=update.order_name or "",
                )
            )
            logger.info("Exit filled via {}", update.order_name)
            self._reset_to_idle()
        elif outcome == TrackerOutcome.DUPLICATE_EXIT:
            logger.debug("Duplicate exit fill ignored: {}", update.exit_key)
        elif outcome == TrackerOutcome.LEG_CANCELLED:
            self._on_leg_cancelled(update)
        elif outcome == TrackerOutcome.REJECTED:
            self._on_rejected(update)
        elif outcome == TrackerOutcome.LEG_UPDATED:
            self._on_leg_updated(update)
        return OperationResult.ok()

    def _on_entry_filled(self, update: TrackerUpdate) -> None:
        bracket = self._tracker.bracket
        direction = (bracket.direction if bracket else None) or self._state.direction
        if direction is None:
            logger.warning("Entry fill without a known direction ignored")
            return
        avg = update.avg_fill_price or 0.0
        qty = bracket.qty if bracket else 0
        self._state = ArmingState.in_position(direction)
        intent = self._ensure_intent(direction)
        if avg > 0:
            intent.entry_price = self._round(avg)
            self._dirty.add(LineKind.ENTRY)
        self._publish(EntryFilled.now(direction=direction, avg_fill_price=avg, qty=qty))
        logger.info("Entry filled @ {:.2f} ({} contracts)", avg, qty)
        self._render()

    def _on_leg_cancelled(self, update: TrackerUpdate) -> None:
        leg = update.leg or LegKind.ENTRY
        self._publish(LegCancelled.now(leg=leg, order_name=update.order_name or ""))
        logger.info("Order cancelled ({})", update.order_name)
        if leg == LegKind.ENTRY and self._state.phase == ArmingPhase.PENDING_ENTRY:
            self._cancel_active_legs("EntryCancelled")
            self._reset_to_idle()

    def _on_rejected(self, update: TrackerUpdate) -> None:
        self._publish(
            LegRejected.now(
                leg=update.leg or LegKind.ENTRY,
                order_name=update.order_name or "",
                error=update.error,
            )
        )
        logger.warning("Order rejected ({}): {}", update.order_name, update.error)
        for ref in update.cancel_refs:
            self._contain("Reject.cancel_sibling", lambda ref=ref: self._orders.cancel_order(ref))
        self._reset_to_idle()

    def _on_leg_updated(self, update: TrackerUpdate) -> None:
        intent = self._intent
        leg = update.leg
        if intent is None or leg is None:
            return
        if leg == LegKind.ENTRY:
            if self._state.phase == ArmingPhase.IN_POSITION and update.avg_fill_price:
                entry = self._round(update.avg_fill_price)
                if abs(entry - intent.entry_price) > _MODIFY_EPSILON:
                    intent.entry_price = entry
                    self._dirty.add(LineKind.ENTRY)
                    self._render()
            return
        if self._drag.is_dragging(leg):
            return
        broker_price = self._tracker.last_known_price(leg)
        if broker_price is None or broker_price <= 0:
            return
        tick = self._ticks.tick_size_or_fallback()
        if not needs_modify(self._intent_price(intent, leg), broker_price, tick=tick):
            return
        self._set_intent_price(intent, leg, broker_price)
        self._dirty.add(LineKind.for_leg(leg))
        self._render()

    # ---- diagnostics ---------------------------------------------------------------

    def describe_state(self) -> str:
        if self._faults.has_fault:
            return "FatalError"
        direction = self._position_direction()
        if direction is not None:
            return f"InPosition:{direction.value.title()}"
        if self._state.phase == ArmingPhase.ARMED_LONG:
            return "BuyArmed"
        if self._state.phase == ArmingPhase.ARMED_SHORT:
            return "SellArmed"
        if self._state.phase == ArmingPhase.PENDING_ENTRY:
            return "PendingEntry"
        return "Idle"

    def controls(self) -> ControlState:
        in_position = self._in_position()
        pending = self._pending_entry()
        can_arm = not in_position and not pending
        live_stop = in_position and self._tracker.is_leg_active(LegKind.STOP)
        return ControlState(
            buy_enabled=can_arm,
            sell_enabled=can_arm,
            close_enabled=self._state.is_armed or in_position or pending,
            break_even_enabled=live_stop,
            trail_enabled=live_stop,
            armed_direction=self._state.armed_direction(),
        )

    def status(self) -> DeskStatus:
        intent = self._intent
        result = self._self_check.result
        return DeskStatus(
            description=self.describe_state(),
            phase=self._state.phase,
            direction=self._state.direction,
            entry_price=intent.entry_price if intent else None,
            stop_price=intent.stop_price if intent else None,
            target_price=intent.target_price if intent else None,
            avg_entry_price=self._avg_entry_price(),
            position_qty=self._live_position()[1],
            pending_qty=self._tracker.pending_entry_qty(),
            tick_size=self._ticks.tick_size_or_fallback(),
            self_check=result.summary() if result else None,
            faults=self._faults,
        )

    # ---- helpers -------------------------------------------------------------------

    def _guarded(self, operation: str, fn: Callable[[], OperationResult]) -> OperationResult:
        try:
            return fn()
        except Exception as exc:
            self._record_fault(operation, exc)
            return OperationResult.fault(f"{operation}: {exc}")

    def _contain(self, operation: str, fn: Callable[[], object]) -> bool:
        try:
            fn()
        except Exception as exc:
            self._record_fault(operation, exc)
            return False
        return True

    def _record_fault(self, operation: str, exc: Exception) -> None:
        message = f"{operation}: {exc}"
        self._faults = FaultStatus(count=self._faults.count + 1, last_message=message)
        logger.opt(exception=exc).error("[FATAL] {}", message)
        self._publish(
            ControllerFaultRecorded.now(
                operation=operation,
                message=str(exc),
                error_type=type(exc).__name__,
                traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                fault_count=self._faults.count,
            )
        )

    def _refuse(
        self,
        command: str,
        reason: RefusalReason,
        *,
        message: Optional[str] = None,
        notify: bool = True,
    ) -> OperationResult:
        self._publish(CommandRefused.now(command=command, reason=reason.value, detail=message))
        if message and notify and self._throttle.allow(f"refused:{reason.value}", CLAMP_NOTICE_SECONDS):
            logger.info(message)
            self._markers.send(ShowNotification(message))
        return OperationResult.refused(reason, message)

    def _refuse_self_check(self, command: str) -> OperationResult:
        text = self._self_check.refusal_notification()
        if text:
            self._markers.send(ShowNotification(text))
        logger.warning("{} refused: self-check failed", command)
        self._publish(CommandRefused.now(command=command, reason=RefusalReason.SELF_CHECK_FAILED.value))
        return OperationResult.refused(RefusalReason.SELF_CHECK_FAILED, text)

    def _ensure_self_check(self) -> None:
        if self._self_check.has_run:
            return
        result = self._self_check.run(self._ticks.resolved(), self._inputs)
        if result.passed:
            logger.info("Self-check passed")
            return
        logger.error(result.summary())
        self._publish(SelfCheckFailed.now(reasons=result.reasons))
        text = self._self_check.take_failure_notification()
        if text:
            self._markers.send(ShowNotification(text))

    def _note_clamp(
        self,
        direction: Direction,
        stop_before: float,
        target_before: float,
        stop_after: float,
        target_after: float,
        message: str,
    ) -> None:
        self._publish(
            PricesClamped.now(
                direction=direction.value,
                stop_before=stop_before,
                target_before=target_before,
                stop_after=stop_after,
                target_after=target_after,
                context=message,
            )
        )
        if self._throttle.allow("clamp", CLAMP_NOTICE_SECONDS):
            logger.info(message)
            self._markers.send(ShowNotification(message))

    def _modify_leg(self, leg: LegKind, price: float, *, reason: str, force: bool = False) -> bool:
        order = self._tracker.leg(leg)
        if order is None or not order.is_active:
            return False
        old_price = order.working_price()
        tick = self._ticks.tick_size_or_fallback()
        if not force and not needs_modify(old_price, price, tick=tick):
            return False
        qty = order.qty or self._live_position()[1]
        spec = OrderModifySpec(
            ref=order.ref,
            qty=qty,
            stop_price=price if leg == LegKind.STOP else None,
            limit_price=price if leg == LegKind.TARGET else None,
        )
        self._orders.modify_order(spec)
        self._tracker.record_requested_price(leg, price)
        self._publish(
            LegModified.now(
                leg=leg,
                order_name=order.ref.name,
                old_price=old_price,
                new_price=price,
                reason=reason,
            )
        )
        logger.info("{} modified -> {:.2f} ({})", "SL" if leg == LegKind.STOP else "TP", price, reason)
        return True

    def _move_line(self, kind: LineKind, price: float) -> None:
        self._markers.send(SetLinePrice(kind, price))
        self._drawn[kind] = price

    def _cancel_active_legs(self, context: str) -> None:
        for leg in self._tracker.active_legs():
            self._contain(f"{context}.cancel_{leg.kind.value}", lambda ref=leg.ref: self._orders.cancel_order(ref))

    def _reset_to_idle(self) -> None:
        self._tracker.clear()
        self._intent = None
        self._state = ArmingState.idle()
        self._drag.reset()
        self._labels.reset()
        self._dirty.clear()
        self._drawn.clear()
        self._shown_labels.clear()
        self._markers.send(RemoveAllMarkers())

    def _render(self) -> None:
        intent = self._intent
        if intent is None:
            return
        snapshot = self._label_snapshot(intent)
        labels = {
            LineKind.ENTRY: self._labels.entry_label(snapshot),
            LineKind.STOP: self._labels.stop_label(snapshot),
            LineKind.TARGET: self._labels.target_label(snapshot),
        }
        for kind in _LINE_ORDER:
            if kind not in self._dirty:
                continue
            if kind != LineKind.ENTRY and self._drag.is_dragging(_leg_for_line(kind)):
                continue
            price = self._line_price(intent, kind)
            self._markers.send(UpsertLine(kind, price, labels[kind]))
            self._dirty.discard(kind)
            self._drawn[kind] = price
            self._shown_labels.pop(kind, None)

        self._trace_sizing(intent)
        tick = self._ticks.tick_size_or_fallback()
        direction = self._clamp_direction()
        for kind in _LINE_ORDER:
            if kind not in self._drawn:
                continue
            text = labels[kind]
            if self._shown_labels.get(kind) == text:
                continue
            price = self._line_price(intent, kind)
            self._markers.send(
                UpdateLineLabel(
                    kind,
                    text,
                    label_price(
                        kind,
                        price,
                        direction,
                        offset_ticks=self._config.label_offset_ticks,
                        tick=tick,
                    ),
                )
            )
            self._shown_labels[kind] = text

    def _trace_sizing(self, intent: TradeIntent) -> None:
        if not self._throttle.allow("sizing_trace", SIZING_TRACE_SECONDS):
            return
        tick = self._ticks.tick_size_or_fallback()
        qty = self._ticks.calculate_quantity(intent.entry_price, intent.stop_price, self._inputs)
        logger.debug(
            "Sizing: qty {}, stopTicks {:.1f}, targetTicks {:.1f}",
            qty,
            abs(intent.entry_price - intent.stop_price) / tick,
            abs(intent.target_price - intent.entry_price) / tick,
        )

    def _label_snapshot(self, intent: TradeIntent) -> LabelSnapshot:
        metadata = self._ticks.resolved()
        return LabelSnapshot(
            entry_price=intent.entry_price,
            stop_price=intent.stop_price,
            target_price=intent.target_price,
            risk_reference=self._risk_reference(intent),
            display_qty=self._display_qty(intent),
            inputs=self._inputs,
            tick_size=metadata.tick_size if metadata else None,
            tick_value=metadata.tick_value if metadata else None,
            currency=self._ticks.currency(),
        )

    def _risk_reference(self, intent: TradeIntent) -> Optional[float]:
        if self._position_direction() is not None:
            avg = self._avg_entry_price()
            if avg > 0:
                return avg
        if self._state.is_armed:
            return entry_reference(
                self._market.current_quote(),
                intent.direction,
                use_bid_ask=self._config.use_bid_ask_for_entry,
            )
        return intent.entry_price

    def _display_qty(self, intent: TradeIntent) -> int:
        _, qty = self._live_position()
        if qty > 0:
            return qty
        pending = self._tracker.pending_entry_qty()
        if pending > 0:
            return pending
        return self._ticks.calculate_quantity(intent.entry_price, intent.stop_price, self._inputs)

    def _ensure_intent(self, direction: Direction) -> TradeIntent:
        intent = self._intent
        if intent is not None:
            return intent
        avg = self._round(self._avg_entry_price())
        stop = self._tracker.last_known_price(LegKind.STOP) or avg
        target = self._tracker.last_known_price(LegKind.TARGET) or avg
        intent = TradeIntent(direction=direction, entry_price=avg, stop_price=stop, target_price=target)
        self._intent = intent
        self._dirty.update(_LINE_ORDER)
        return intent

    def _in_position(self) -> bool:
        return self._position_direction() is not None

    def _position_direction(self) -> Optional[Direction]:
        if self._state.phase == ArmingPhase.IN_POSITION:
            return self._state.direction
        if not self._position.is_flat:
            return self._position.direction
        return None

    def _pending_entry(self) -> bool:
        return self._state.phase == ArmingPhase.PENDING_ENTRY or self._tracker.has_pending_entry()

    def _live_position(self) -> tuple[Optional[Direction], int]:
        if not self._position.is_flat:
            return self._position.direction, self._position.qty
        if self._state.phase == ArmingPhase.IN_POSITION:
            bracket = self._tracker.bracket
            return self._state.direction, bracket.qty if bracket else 0
        return None, 0

    def _avg_entry_price(self) -> float:
        avg = self._tracker.avg_entry_price
        if avg > 0:
            return avg
        if not self._position.is_flat:
            return self._position.avg_price
        return 0.0

    def _clamp_direction(self) -> Optional[Direction]:
        position = self._position_direction()
        if position is not None:
            return position
        return self._state.direction

    def _free_placement(self) -> bool:
        return self._state.is_armed and not self._in_position()

    def _round(self, price: float) -> float:
        return self._ticks.round_to_tick(price)

    def _publish(self, event: object) -> None:
        if self._event_bus:
            self._event_bus.publish(event)

    @staticmethod
    def _intent_price(intent: TradeIntent, leg: LegKind) -> float:
        if leg == LegKind.STOP:
            return intent.stop_price
        if leg == LegKind.TARGET:
            return intent.target_price
        return intent.entry_price

    @staticmethod
    def _set_intent_price(intent: TradeIntent, leg: LegKind, price: float) -> None:
        if leg == LegKind.STOP:
            intent.stop_price = price
        elif leg == LegKind.TARGET:
            intent.target_price = price
        else:
            intent.entry_price = price

    def _line_price(self, intent: TradeIntent, kind: LineKind) -> float:
        return self._intent_price(intent, _leg_for_line(kind))


def _leg_for_line(kind: LineKind) -> LegKind:
    return LegKind(kind.value)
