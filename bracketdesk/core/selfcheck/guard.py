from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from bracketdesk.core.ops.throttle import NotificationThrottle
from bracketdesk.core.sizing.models import SizingInputs, TickMetadata

REFUSAL_REPEAT_SECONDS = 2.0
_REFUSAL_KEY = "self_check_refusal"


@dataclass(frozen=True)
class SelfCheckResult:
    passed: bool
    reasons: tuple[str, ...] = ()

    def summary(self) -> str:
        if self.passed:
            return "self-check passed"
        return "self-check failed: " + "; ".join(self.reasons)


def evaluate(metadata: Optional[TickMetadata], inputs: SizingInputs) -> SelfCheckResult:
    reasons: list[str] = []
    if metadata is None:
        reasons.append("instrument metadata missing")
    else:
        if not _positive(metadata.tick_size):
            reasons.append(f"tick size must be > 0 (got {metadata.tick_size})")
        if not _positive(metadata.point_value):
            reasons.append(f"point value must be > 0 (got {metadata.point_value})")
        if not _positive(metadata.tick_value):
            reasons.append(f"tick value must be > 0 (got {metadata.tick_value})")
    if inputs.max_contracts <= 0:
        reasons.append(f"max contracts must be > 0 (got {inputs.max_contracts})")
    if not _positive(inputs.fixed_risk_usd):
        reasons.append(f"fixed risk must be > 0 (got {inputs.fixed_risk_usd})")
    return SelfCheckResult(passed=not reasons, reasons=tuple(reasons))


class SelfCheckGuard:
    """Session-scoped instrument validation gating order-affecting commands.

    The check runs once per session. A failure surfaces exactly one notification;
    later refusals repeat it at most once per `repeat_interval` seconds.
    """

    def __init__(
        self,
        throttle: Optional[NotificationThrottle] = None,
        *,
        repeat_interval: float = REFUSAL_REPEAT_SECONDS,
    ) -> None:
        self._throttle = throttle or NotificationThrottle()
        self._repeat_interval = repeat_interval
        self._result: Optional[SelfCheckResult] = None
        self._failure_notified = False

    @property
    def result(self) -> Optional[SelfCheckResult]:
        return self._result

    @property
    def has_run(self) -> bool:
        return self._result is not None

    @property
    def failed(self) -> bool:
        return self._result is not None and not self._result.passed

    def run(self, metadata: Optional[TickMetadata], inputs: SizingInputs) -> SelfCheckResult:
        if self._result is None:
            self._result = evaluate(metadata, inputs)
        return self._result

    def take_failure_notification(self) -> Optional[str]:
        """Return the failure text the first time it is asked for, then None."""
        if not self.failed or self._failure_notified:
            return None
        self._failure_notified = True
        self._throttle.allow(_REFUSAL_KEY, self._repeat_interval)
        return self._message()

    def refusal_notification(self) -> Optional[str]:
        if not self.failed:
            return None
        if not self._failure_notified:
            return self.take_failure_notification()
        if not self._throttle.allow(_REFUSAL_KEY, self._repeat_interval):
            return None
        return self._message()

    def reset(self) -> None:
        self._result = None
        self._failure_notified = False
        self._throttle.reset(_REFUSAL_KEY)

    def _message(self) -> str:
        result = self._result
        if result is None:
            return ""
        return "Trading disabled: " + "; ".join(result.reasons)


def _positive(value: float) -> bool:
    return math.isfinite(value) and value > 0
