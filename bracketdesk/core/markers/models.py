from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from bracketdesk.core.orders.models import LegKind


class LineKind(str, Enum):
    ENTRY = "entry"
    STOP = "stop"
    TARGET = "target"

    @classmethod
    def for_leg(cls, leg: LegKind) -> "LineKind":
        return cls(leg.value)


@dataclass(frozen=True)
class UpsertLine:
    kind: LineKind
    price: float
    label: str


@dataclass(frozen=True)
class SetLinePrice:
    kind: LineKind
    price: float


@dataclass(frozen=True)
class UpdateLineLabel:
    kind: LineKind
    label: str
    label_price: Optional[float] = None


@dataclass(frozen=True)
class RemoveAllMarkers:
    pass


@dataclass(frozen=True)
class ShowNotification:
    text: str


MarkerCommand = Union[UpsertLine, SetLinePrice, UpdateLineLabel, RemoveAllMarkers, ShowNotification]
