from __future__ import annotations

import json
import os
import threading
from dataclasses import fields, is_dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from bracketdesk.core.orders.ports import EventBus

DEFAULT_EVENT_LOG_PATH = "journal/events.jsonl"


class JsonlEventLogger:
    """Appends every published event to a JSON-lines journal."""

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    @classmethod
    def from_env(cls) -> Optional["JsonlEventLogger"]:
        path = os.getenv("DESK_EVENT_LOG_PATH", DEFAULT_EVENT_LOG_PATH).strip()
        if not path:
            return None
        return cls(os.path.expanduser(path))

    def attach(self, bus: EventBus, event_types: Iterable[type] = (object,)) -> Callable[[], None]:
        unsubscribers = [bus.subscribe(event_type, self.handle) for event_type in event_types]

        def _detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return _detach

    def handle(self, event: object) -> None:
        payload = {
            "event_type": type(event).__name__,
            "event": _serialize(event),
        }
        line = json.dumps(payload, ensure_ascii=False)
        with self._lock:
            directory = os.path.dirname(self._path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as handle:
                handle.write(line)
                handle.write("\n")


def _serialize(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {field.name: _serialize(getattr(value, field.name)) for field in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(timespec="microseconds")
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_serialize(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _serialize(val) for key, val in value.items()}
    if isinstance(value, float) and value != value:
        return None
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return repr(value)
