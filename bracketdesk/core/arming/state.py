from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bracketdesk.core.orders.models import Direction


class ArmingPhase(str, Enum):
    IDLE = "IDLE"
    ARMED_LONG = "ARMED_LONG"
    ARMED_SHORT = "ARMED_SHORT"
    PENDING_ENTRY = "PENDING_ENTRY"
    IN_POSITION = "IN_POSITION"


@dataclass(frozen=True)
class ArmingState:
    phase: ArmingPhase = ArmingPhase.IDLE
    direction: Optional[Direction] = None

    @classmethod
    def idle(cls) -> "ArmingState":
        return cls()

    @classmethod
    def armed(cls, direction: Direction) -> "ArmingState":
        phase = ArmingPhase.ARMED_LONG if direction == Direction.LONG else ArmingPhase.ARMED_SHORT
        return cls(phase=phase, direction=direction)

    @classmethod
    def pending_entry(cls, direction: Direction) -> "ArmingState":
        return cls(phase=ArmingPhase.PENDING_ENTRY, direction=direction)

    @classmethod
    def in_position(cls, direction: Direction) -> "ArmingState":
        return cls(phase=ArmingPhase.IN_POSITION, direction=direction)

    @property
    def is_armed(self) -> bool:
        return self.phase in {ArmingPhase.ARMED_LONG, ArmingPhase.ARMED_SHORT}

    def armed_direction(self) -> Optional[Direction]:
        return self.direction if self.is_armed else None


@dataclass
class TradeIntent:
    direction: Direction
    entry_price: float
    stop_price: float
    target_price: float


@dataclass(frozen=True)
class ControlState:
    """What a button panel may enable, and the armed side for blink/caption feedback."""

    buy_enabled: bool
    sell_enabled: bool
    close_enabled: bool
    break_even_enabled: bool
    trail_enabled: bool
    armed_direction: Optional[Direction]
