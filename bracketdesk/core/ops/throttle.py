from __future__ import annotations

import time
from typing import Callable, Optional


class NotificationThrottle:
    """Per-key minimum interval between surfaced notifications."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last: dict[str, float] = {}

    def allow(self, key: str, interval_seconds: float) -> bool:
        now = self._clock()
        last: Optional[float] = self._last.get(key)
        if last is not None and now - last < interval_seconds:
            return False
        self._last[key] = now
        return True

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._last.clear()
        else:
            self._last.pop(key, None)
