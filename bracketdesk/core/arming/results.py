from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResultStatus(str, Enum):
    OK = "OK"
    REFUSED = "REFUSED"
    FAULT = "FAULT"


class RefusalReason(str, Enum):
    POSITION_ACTIVE = "position_active"
    PENDING_ENTRY = "pending_entry"
    NOT_ARMED = "not_armed"
    NO_MARKET_PRICE = "no_market_price"
    SELF_CHECK_FAILED = "self_check_failed"
    QUANTITY_BLOCKED = "quantity_blocked"
    FLAT = "flat"
    NO_LIVE_STOP = "no_live_stop"
    NOT_IN_PROFIT = "not_in_profit"
    BRACKET_ACTIVE = "bracket_active"


@dataclass(frozen=True)
class OperationResult:
    status: ResultStatus
    reason: Optional[RefusalReason] = None
    message: Optional[str] = None

    @classmethod
    def ok(cls, message: Optional[str] = None) -> "OperationResult":
        return cls(status=ResultStatus.OK, message=message)

    @classmethod
    def refused(cls, reason: RefusalReason, message: Optional[str] = None) -> "OperationResult":
        return cls(status=ResultStatus.REFUSED, reason=reason, message=message)

    @classmethod
    def fault(cls, message: str) -> "OperationResult":
        return cls(status=ResultStatus.FAULT, message=message)

    @property
    def is_ok(self) -> bool:
        return self.status == ResultStatus.OK

    @property
    def is_refused(self) -> bool:
        return self.status == ResultStatus.REFUSED

    @property
    def is_fault(self) -> bool:
        return self.status == ResultStatus.FAULT


@dataclass(frozen=True)
class FaultStatus:
    count: int = 0
    last_message: Optional[str] = None

    @property
    def has_fault(self) -> bool:
        return self.count > 0
