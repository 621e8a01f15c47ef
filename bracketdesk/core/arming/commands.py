from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from bracketdesk.core.arming.state import ArmingState
from bracketdesk.core.orders.models import Direction


@dataclass(frozen=True)
class Arm:
    direction: Direction


@dataclass(frozen=True)
class Confirm:
    pass


@dataclass(frozen=True)
class Close:
    pass


@dataclass(frozen=True)
class BreakEven:
    pass


@dataclass(frozen=True)
class Trail:
    pass


Command = Union[Arm, Confirm, Close, BreakEven, Trail]


def command_name(command: Command) -> str:
    if isinstance(command, Arm):
        return f"Arm({command.direction.value})"
    return type(command).__name__


def command_for_direction_button(direction: Direction, state: ArmingState) -> Command:
    """Pressing the armed side's button again confirms; any other press arms that side."""
    armed: Optional[Direction] = state.armed_direction()
    if armed == direction:
        return Confirm()
    return Arm(direction)
