from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SessionStarted:
    tag_prefix: str
    self_check_passed: bool
    rebuilt_from_position: bool
    timestamp: datetime

    @classmethod
    def now(
        cls,
        *,
        tag_prefix: str,
        self_check_passed: bool,
        rebuilt_from_position: bool,
    ) -> "SessionStarted":
        return cls(
            tag_prefix=tag_prefix,
            self_check_passed=self_check_passed,
            rebuilt_from_position=rebuilt_from_position,
            timestamp=_now(),
        )


@dataclass(frozen=True)
class SelfCheckFailed:
    reasons: tuple[str, ...]
    timestamp: datetime

    @classmethod
    def now(cls, *, reasons: tuple[str, ...]) -> "SelfCheckFailed":
        return cls(reasons=reasons, timestamp=_now())


@dataclass(frozen=True)
class CommandRefused:
    command: str
    reason: str
    timestamp: datetime
    detail: Optional[str] = None

    @classmethod
    def now(cls, *, command: str, reason: str, detail: Optional[str] = None) -> "CommandRefused":
        return cls(command=command, reason=reason, timestamp=_now(), detail=detail)


@dataclass(frozen=True)
class PricesClamped:
    direction: str
    stop_before: float
    target_before: float
    stop_after: float
    target_after: float
    context: str
    timestamp: datetime

    @classmethod
    def now(
        cls,
        *,
        direction: str,
        stop_before: float,
        target_before: float,
        stop_after: float,
        target_after: float,
        context: str,
    ) -> "PricesClamped":
        return cls(
            direction=direction,
            stop_before=stop_before,
            target_before=target_before,
            stop_after=stop_after,
            target_after=target_after,
            context=context,
            timestamp=_now(),
        )


@dataclass(frozen=True)
class ControllerFaultRecorded:
    operation: str
    message: str
    error_type: str
    traceback: str
    fault_count: int
    timestamp: datetime

    @classmethod
    def now(
        cls,
        *,
        operation: str,
        message: str,
        error_type: str,
        traceback: str,
        fault_count: int,
    ) -> "ControllerFaultRecorded":
        return cls(
            operation=operation,
            message=message,
            error_type=error_type,
            traceback=traceback,
            fault_count=fault_count,
            timestamp=_now(),
        )


@dataclass(frozen=True)
class CliErrorLogged:
    message: str
    error_type: str
    traceback: str
    timestamp: datetime
    command: Optional[str] = None
    raw_input: Optional[str] = None

    @classmethod
    def now(
        cls,
        *,
        message: str,
        error_type: str,
        traceback: str,
        command: Optional[str] = None,
        raw_input: Optional[str] = None,
    ) -> "CliErrorLogged":
        return cls(
            message=message,
            error_type=error_type,
            traceback=traceback,
            timestamp=_now(),
            command=command,
            raw_input=raw_input,
        )


@dataclass(frozen=True)
class IbkrConnectionAttempt:
    host: str
    port: int
    client_id: int
    readonly: bool
    timestamp: datetime

    @classmethod
    def now(cls, *, host: str, port: int, client_id: int, readonly: bool) -> "IbkrConnectionAttempt":
        return cls(host=host, port=port, client_id=client_id, readonly=readonly, timestamp=_now())


@dataclass(frozen=True)
class IbkrConnectionEstablished:
    host: str
    port: int
    client_id: int
    readonly: bool
    timestamp: datetime
    server_version: Optional[int] = None

    @classmethod
    def now(
        cls,
        *,
        host: str,
        port: int,
        client_id: int,
        readonly: bool,
        server_version: Optional[int] = None,
    ) -> "IbkrConnectionEstablished":
        return cls(
            host=host,
            port=port,
            client_id=client_id,
            readonly=readonly,
            timestamp=_now(),
            server_version=server_version,
        )


@dataclass(frozen=True)
class IbkrConnectionFailed:
    host: str
    port: int
    client_id: int
    error_type: str
    message: str
    timestamp: datetime

    @classmethod
    def now(
        cls,
        *,
        host: str,
        port: int,
        client_id: int,
        error_type: str,
        message: str,
    ) -> "IbkrConnectionFailed":
        return cls(
            host=host,
            port=port,
            client_id=client_id,
            error_type=error_type,
            message=message,
            timestamp=_now(),
        )


@dataclass(frozen=True)
class IbkrConnectionClosed:
    host: str
    port: int
    client_id: int
    reason: str
    timestamp: datetime

    @classmethod
    def now(cls, *, host: str, port: int, client_id: int, reason: str) -> "IbkrConnectionClosed":
        return cls(host=host, port=port, client_id=client_id, reason=reason, timestamp=_now())


@dataclass(frozen=True)
class IbGatewayLog:
    code: Optional[int]
    message: Optional[str]
    req_id: Optional[int]
    timestamp: datetime
    advanced: Optional[str] = None

    @classmethod
    def now(
        cls,
        *,
        code: Optional[int],
        message: Optional[str],
        req_id: Optional[int],
        advanced: Optional[str] = None,
    ) -> "IbGatewayLog":
        return cls(code=code, message=message, req_id=req_id, timestamp=_now(), advanced=advanced)
