from __future__ import annotations

import copy
from typing import Any, Optional

from loguru import logger

from bracketdesk.adapters.broker._ib_client import IB, Contract, LimitOrder, MarketOrder, StopOrder, Trade
from bracketdesk.adapters.broker._ib_compat import attach_trade_events, maybe_float, maybe_price
from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection
from bracketdesk.core.markers.tags import TagNames
from bracketdesk.core.orders.events import ExecutionOccurred, OrderStateChanged
from bracketdesk.core.orders.models import (
    BracketOrderSpec,
    BracketRefs,
    ExitOrderSpec,
    OrderModifySpec,
    OrderRef,
    OrderState,
    entry_side,
    exit_side,
)
from bracketdesk.core.orders.ports import EventBus

# Cancel the other legs in the group when one fills, with block.
_OCA_TYPE = 1

_SUBMITTED_STATUSES = {"pendingsubmit", "apipending", "presubmitted"}
_CANCELLED_STATUSES = {"cancelled", "apicancelled"}


def map_order_status(status: object, filled: object = 0) -> OrderState:
    normalized = str(status or "").strip().lower()
    filled_qty = maybe_float(filled) or 0.0
    if normalized in _SUBMITTED_STATUSES:
        return OrderState.SUBMITTED
    if normalized == "submitted":
        return OrderState.PARTIALLY_FILLED if filled_qty > 0 else OrderState.WORKING
    if normalized == "filled":
        return OrderState.FILLED
    if normalized == "pendingcancel":
        return OrderState.WORKING
    if normalized in _CANCELLED_STATUSES:
        return OrderState.CANCELLED
    if normalized == "inactive":
        return OrderState.REJECTED
    return OrderState.UNKNOWN


def order_ref_for_trade(trade: Any) -> OrderRef:
    order = getattr(trade, "order", None)
    order_id = getattr(order, "orderId", None)
    return OrderRef(
        order_id=str(order_id) if order_id else None,
        name=str(getattr(order, "orderRef", "") or ""),
    )


def order_state_event(trade: Any, *, replayed: bool = False) -> OrderStateChanged:
    status = getattr(trade, "orderStatus", None)
    order = getattr(trade, "order", None)
    raw_status = getattr(status, "status", "")
    state = map_order_status(raw_status, getattr(status, "filled", 0))
    error = None
    if state == OrderState.REJECTED:
        error = _last_log_message(trade) or str(raw_status)
    return OrderStateChanged.now(
        order_ref_for_trade(trade),
        state,
        avg_fill_price=maybe_price(getattr(status, "avgFillPrice", None)),
        filled_qty=maybe_float(getattr(status, "filled", None)),
        total_qty=maybe_float(getattr(order, "totalQuantity", None)),
        limit_price=maybe_price(getattr(order, "lmtPrice", None)),
        stop_price=maybe_price(getattr(order, "auxPrice", None)),
        error=error,
        replayed=replayed,
    )


def execution_event(trade: Any, fill: Any) -> ExecutionOccurred:
    execution = getattr(fill, "execution", None)
    return ExecutionOccurred.now(
        order_ref_for_trade(trade),
        execution_id=str(getattr(execution, "execId", "") or "") or None,
        qty=maybe_float(getattr(execution, "shares", None)) or 0.0,
        price=maybe_price(getattr(execution, "price", None)) or 0.0,
        avg_fill_price=maybe_price(getattr(execution, "avgPrice", None)),
    )


class IBKROrderGateway:
    """Places and manages the desk's orders on a single qualified contract.

    Every trade the gateway places, or finds open under one of the desk's order names,
    reports status and fills back as `OrderStateChanged` / `ExecutionOccurred` events.
    """

    def __init__(
        self,
        connection: IBKRConnection,
        contract: Contract,
        event_bus: EventBus,
        *,
        tags: TagNames,
    ) -> None:
        self._ib: IB = connection.ib
        self._contract = contract
        self._event_bus = event_bus
        self._tags = tags
        self._trades: dict[str, Trade] = {}

    def submit_bracket(self, spec: BracketOrderSpec) -> BracketRefs:
        self._ensure_connected()
        child_side = exit_side(spec.direction).value

        parent = MarketOrder(entry_side(spec.direction).value, spec.qty)
        parent.orderRef = spec.entry_name
        parent.transmit = False

        take_profit = LimitOrder(child_side, spec.qty, spec.target_price)
        take_profit.orderRef = spec.target_name
        take_profit.ocaGroup = spec.oco_id
        take_profit.ocaType = _OCA_TYPE
        take_profit.transmit = False

        stop_loss = StopOrder(child_side, spec.qty, spec.stop_price)
        stop_loss.orderRef = spec.stop_name
        stop_loss.ocaGroup = spec.oco_id
        stop_loss.ocaType = _OCA_TYPE
        stop_loss.transmit = True

        parent_trade = self._place(parent)
        parent_id = parent_trade.order.orderId
        take_profit.parentId = parent_id
        stop_loss.parentId = parent_id
        tp_trade = self._place(take_profit)
        sl_trade = self._place(stop_loss)
        logger.info(
            "Bracket placed: {} {} parent={} SL={} TP={} oco={}",
            parent.action,
            spec.qty,
            parent_id,
            sl_trade.order.orderId,
            tp_trade.order.orderId,
            spec.oco_id,
        )
        return BracketRefs(
            entry=order_ref_for_trade(parent_trade),
            stop=order_ref_for_trade(sl_trade),
            target=order_ref_for_trade(tp_trade),
        )

    def modify_order(self, spec: OrderModifySpec) -> None:
        self._ensure_connected()
        trade = self._find_trade(spec.ref)
        if trade is None:
            raise RuntimeError(f"Order {spec.ref.key()} not found in current session")
        order = copy.copy(trade.order)
        if spec.stop_price is not None:
            order.auxPrice = spec.stop_price
        if spec.limit_price is not None:
            order.lmtPrice = spec.limit_price
        if spec.qty:
            order.totalQuantity = spec.qty
        order.orderId = trade.order.orderId
        # A modify must go out on its own; the parent has already been transmitted.
        order.transmit = True
        self._place(order)

    def cancel_order(self, ref: OrderRef) -> None:
        self._ensure_connected()
        trade = self._find_trade(ref)
        if trade is None:
            raise RuntimeError(f"Order {ref.key()} not found in current session")
        if trade.isDone():
            logger.debug("Cancel skipped for {}: already {}", ref.name, trade.orderStatus.status)
            return
        self._ib.cancelOrder(trade.order)

    def submit_exit(self, spec: ExitOrderSpec) -> OrderRef:
        self._ensure_connected()
        order = MarketOrder(spec.side.value, spec.qty)
        order.orderRef = spec.name
        order.transmit = True
        trade = self._place(order)
        return order_ref_for_trade(trade)

    def replay_open_orders(self) -> int:
        """Adopt working orders left over from an earlier session and replay their state."""
        adopted = 0
        for trade in self._ib.openTrades():
            if getattr(trade.contract, "conId", None) != self._contract.conId:
                continue
            name = str(getattr(trade.order, "orderRef", "") or "")
            if self._tags.leg_for_order_name(name) is None:
                continue
            ref = order_ref_for_trade(trade)
            if ref.key() in self._trades:
                continue
            self._track(trade)
            self._event_bus.publish(order_state_event(trade, replayed=True))
            adopted += 1
        if adopted:
            logger.info("Adopted {} working order(s) from the broker", adopted)
        return adopted

    def _place(self, order: Any) -> Trade:
        trade = self._ib.placeOrder(self._contract, order)
        self._track(trade)
        return trade

    def _track(self, trade: Trade) -> None:
        key = order_ref_for_trade(trade).key()
        if self._trades.get(key) is trade:
            return
        self._trades[key] = trade
        attach_trade_events(trade, on_status=self._on_status, on_fill=self._on_fill)

    def _find_trade(self, ref: OrderRef) -> Optional[Trade]:
        trade = self._trades.get(ref.key())
        if trade is not None:
            return trade
        for candidate in self._ib.openTrades():
            candidate_ref = order_ref_for_trade(candidate)
            if ref.order_id and candidate_ref.order_id == ref.order_id:
                self._track(candidate)
                return candidate
            if not ref.order_id and candidate_ref.name == ref.name:
                self._track(candidate)
                return candidate
        return None

    def _on_status(self, trade: Trade) -> None:
        event = order_state_event(trade)
        logger.debug("Order {} ({}) -> {}", event.ref.key(), event.ref.name, event.state.value)
        self._event_bus.publish(event)

    def _on_fill(self, trade: Trade, fill: Any) -> None:
        event = execution_event(trade, fill)
        logger.debug(
            "Execution {} on {} ({}): {} @ {}",
            event.execution_id,
            event.ref.key(),
            event.ref.name,
            event.qty,
            event.price,
        )
        self._event_bus.publish(event)

    def _ensure_connected(self) -> None:
        if not self._ib.isConnected():
            raise RuntimeError("IBKR is not connected")


def _last_log_message(trade: Any) -> Optional[str]:
    for entry in reversed(list(getattr(trade, "log", None) or [])):
        message = str(getattr(entry, "message", "") or "").strip()
        if message:
            return message
    return None
