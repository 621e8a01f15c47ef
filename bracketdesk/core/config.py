from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from bracketdesk.core.markers.tags import DEFAULT_TAG_PREFIX, normalize_tag_prefix
from bracketdesk.core.sizing.models import SizingInputs


class DeskConfigError(ValueError):
    """Raised when desk configuration is invalid."""


@dataclass
class DeskConfig:
    fixed_risk_usd: float = 200.0
    default_stop_ticks: int = 20
    default_target_ticks: int = 40
    use_bid_ask_for_entry: bool = True
    break_even_offset_ticks: int = 0
    commission_on: bool = False
    commission_per_contract: float = 0.0
    max_contracts: int = 10
    max_risk_warning_usd: float = 200.0
    trail_offset_ticks: int = 20
    label_offset_ticks: int = 2
    tag_prefix: str = DEFAULT_TAG_PREFIX

    @classmethod
    def from_env(cls) -> "DeskConfig":
        config = cls(
            fixed_risk_usd=_float_env("DESK_FIXED_RISK_USD", "200"),
            default_stop_ticks=_int_env("DESK_DEFAULT_STOP_TICKS", "20"),
            default_target_ticks=_int_env("DESK_DEFAULT_TARGET_TICKS", "40"),
            use_bid_ask_for_entry=os.getenv("DESK_USE_BID_ASK_FOR_ENTRY", "1") == "1",
            break_even_offset_ticks=_int_env("DESK_BREAK_EVEN_OFFSET_TICKS", "0"),
            commission_on=os.getenv("DESK_COMMISSION_ON", "0") == "1",
            commission_per_contract=_float_env("DESK_COMMISSION_PER_CONTRACT", "0"),
            max_contracts=_int_env("DESK_MAX_CONTRACTS", "10"),
            max_risk_warning_usd=_float_env("DESK_MAX_RISK_WARNING_USD", "200"),
            trail_offset_ticks=_int_env("DESK_TRAIL_OFFSET_TICKS", "20"),
            label_offset_ticks=_int_env("DESK_LABEL_OFFSET_TICKS", "2"),
            tag_prefix=normalize_tag_prefix(os.getenv("DESK_TAG_PREFIX", DEFAULT_TAG_PREFIX)),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if self.fixed_risk_usd <= 0:
            raise DeskConfigError("fixed_risk_usd must be greater than zero")
        if self.default_stop_ticks < 1:
            raise DeskConfigError("default_stop_ticks must be at least 1")
        if self.default_target_ticks < 1:
            raise DeskConfigError("default_target_ticks must be at least 1")
        if self.break_even_offset_ticks < 0:
            raise DeskConfigError("break_even_offset_ticks must not be negative")
        if self.commission_per_contract < 0:
            raise DeskConfigError("commission_per_contract must not be negative")
        if self.max_contracts < 1:
            raise DeskConfigError("max_contracts must be at least 1")
        if self.max_risk_warning_usd < 0:
            raise DeskConfigError("max_risk_warning_usd must not be negative")
        if self.trail_offset_ticks < 1:
            raise DeskConfigError("trail_offset_ticks must be at least 1")
        if self.label_offset_ticks < 0:
            raise DeskConfigError("label_offset_ticks must not be negative")

    def sizing_inputs(self) -> SizingInputs:
        return SizingInputs(
            fixed_risk_usd=self.fixed_risk_usd,
            commission_on=self.commission_on,
            commission_per_contract=self.commission_per_contract,
            max_contracts=self.max_contracts,
            max_risk_warning_usd=self.max_risk_warning_usd,
        )


@dataclass
class InstrumentConfig:
    symbol: str
    sec_type: str = "FUT"
    exchange: str = "CME"
    currency: str = "USD"
    contract_month: Optional[str] = None

    @classmethod
    def from_env(cls) -> "InstrumentConfig":
        symbol = os.getenv("DESK_SYMBOL", "MES").strip().upper()
        if not symbol:
            raise DeskConfigError("DESK_SYMBOL is required")
        sec_type = os.getenv("DESK_SEC_TYPE", "FUT").strip().upper()
        if sec_type not in {"FUT", "STK", "CONTFUT"}:
            raise DeskConfigError(f"unsupported DESK_SEC_TYPE: {sec_type}")
        month = os.getenv("DESK_CONTRACT_MONTH", "").strip() or None
        return cls(
            symbol=symbol,
            sec_type=sec_type,
            exchange=os.getenv("DESK_EXCHANGE", "CME").strip().upper(),
            currency=os.getenv("DESK_CURRENCY", "USD").strip().upper(),
            contract_month=month,
        )


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError as exc:
        raise DeskConfigError(f"{name} must be an integer (got {raw!r})") from exc


def _float_env(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError as exc:
        raise DeskConfigError(f"{name} must be a number (got {raw!r})") from exc
