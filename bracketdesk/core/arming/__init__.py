from bracketdesk.core.arming.commands import (
    Arm,
    BreakEven,
    Close,
    Command,
    Confirm,
    Trail,
    command_for_direction_button,
)
from bracketdesk.core.arming.controller import DeskStatus, TradeController
from bracketdesk.core.arming.results import FaultStatus, OperationResult, RefusalReason, ResultStatus
from bracketdesk.core.arming.state import ArmingPhase, ArmingState, ControlState, TradeIntent

__all__ = [
    "Arm",
    "BreakEven",
    "Close",
    "Command",
    "Confirm",
    "Trail",
    "command_for_direction_button",
    "DeskStatus",
    "TradeController",
    "FaultStatus",
    "OperationResult",
    "RefusalReason",
    "ResultStatus",
    "ArmingPhase",
    "ArmingState",
    "ControlState",
    "TradeIntent",
]
