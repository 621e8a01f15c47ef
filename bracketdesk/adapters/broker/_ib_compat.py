from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Optional

from bracketdesk.adapters.broker._ib_client import IB_CLIENT_BACKEND, UNSET_DOUBLE


def attach_trade_events(
    trade: object,
    *,
    on_status: Callable[..., None] | None = None,
    on_fill: Callable[..., None] | None = None,
) -> tuple[str, ...]:
    attached: list[str] = []
    if on_status is not None and event_add(trade, "statusEvent", on_status):
        attached.append("statusEvent")
    if on_fill is not None and event_add(trade, "fillEvent", on_fill):
        attached.append("fillEvent")
    return tuple(attached)


def silence_ib_client_loggers(*, logger_names: Iterable[str] | None = None) -> tuple[str, ...]:
    if logger_names is None:
        names: tuple[str, ...] = tuple(dict.fromkeys((IB_CLIENT_BACKEND, "ib_async", "ib_insync")))
    else:
        names = tuple(dict.fromkeys(str(name) for name in logger_names if str(name).strip()))

    for name in names:
        logger = logging.getLogger(name)
        logger.setLevel(logging.CRITICAL)
        logger.propagate = False
        if not logger.handlers:
            logger.addHandler(logging.NullHandler())
    return names


def event_add(owner: object, event_name: str, handler: Callable[..., None]) -> bool:
    event = getattr(owner, event_name, None)
    if event is None:
        return False
    try:
        event += handler
        return True
    except TypeError:
        return False


def event_remove(owner: object, event_name: str, handler: Callable[..., None]) -> bool:
    event = getattr(owner, event_name, None)
    if event is None:
        return False
    try:
        event -= handler
        return True
    except (TypeError, ValueError):
        return False


def maybe_price(value: object) -> Optional[float]:
    """Positive finite price, or None for missing, NaN and IB's unset sentinel."""
    if value is None:
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if price != price or price <= 0 or price >= UNSET_DOUBLE:
        return None
    return price


def maybe_float(value: object) -> Optional[float]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or abs(number) >= UNSET_DOUBLE:
        return None
    return number


__all__ = [
    "attach_trade_events",
    "event_add",
    "event_remove",
    "maybe_float",
    "maybe_price",
    "silence_ib_client_loggers",
]
