from __future__ import annotations

from importlib import import_module
from types import SimpleNamespace
from typing import Any

_BACKEND_CANDIDATES = ("ib_async", "ib_insync")
_REQUIRED_SYMBOLS = (
    "IB",
    "Contract",
    "Future",
    "ContFuture",
    "Stock",
    "LimitOrder",
    "MarketOrder",
    "StopOrder",
    "Ticker",
    "Trade",
)
_LAST_IMPORT_ERROR: Exception | None = None
_backend: Any | None = None
_backend_name = ""

for candidate in _BACKEND_CANDIDATES:
    try:
        _backend = import_module(candidate)
        _backend_name = candidate
        break
    except Exception as exc:
        _LAST_IMPORT_ERROR = exc

if _backend is None:
    raise ModuleNotFoundError(
        "Could not import an IB client backend. Install one of: "
        + ", ".join(_BACKEND_CANDIDATES)
    ) from _LAST_IMPORT_ERROR

_missing = [name for name in _REQUIRED_SYMBOLS if getattr(_backend, name, None) is None]
if _missing:
    raise ImportError(
        f"IB client backend {_backend_name!r} is missing required symbols: " + ", ".join(_missing)
    )

try:
    _util_module = import_module(f"{_backend_name}.util")
except Exception:
    _util_module = SimpleNamespace()

IB = _backend.IB
IB_CLIENT_BACKEND = _backend_name
Contract = _backend.Contract
ContFuture = _backend.ContFuture
Future = _backend.Future
LimitOrder = _backend.LimitOrder
MarketOrder = _backend.MarketOrder
Stock = _backend.Stock
StopOrder = _backend.StopOrder
Ticker = _backend.Ticker
Trade = _backend.Trade
UNSET_DOUBLE = getattr(_util_module, "UNSET_DOUBLE", 1.7976931348623157e308)


__all__ = [
    "IB",
    "IB_CLIENT_BACKEND",
    "Contract",
    "ContFuture",
    "Future",
    "LimitOrder",
    "MarketOrder",
    "Stock",
    "StopOrder",
    "Ticker",
    "Trade",
    "UNSET_DOUBLE",
]
