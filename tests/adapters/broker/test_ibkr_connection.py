from __future__ import annotations

import asyncio
from typing import Any

import pytest

from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection, IBKRConnectionConfig
from bracketdesk.core.config import DeskConfigError
from bracketdesk.core.ops.events import (
    IbGatewayLog,
    IbkrConnectionAttempt,
    IbkrConnectionClosed,
    IbkrConnectionEstablished,
    IbkrConnectionFailed,
)


class _Event:
    def __init__(self) -> None:
        self.handlers: list[Any] = []

    def __iadd__(self, handler: Any) -> "_Event":
        self.handlers.append(handler)
        return self

    def __isub__(self, handler: Any) -> "_Event":
        self.handlers.remove(handler)
        return self

    def emit(self, *args: Any) -> None:
        for handler in list(self.handlers):
            handler(*args)


class _FakeClient:
    def serverVersion(self) -> int:
        return 176


class _FakeIb:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.connected = False
        self.connect_calls: list[tuple[str, int, int]] = []
        self.errorEvent = _Event()
        self.client = _FakeClient()

    def isConnected(self) -> bool:
        return self.connected

    async def connectAsync(self, host: str, port: int, *, clientId: int, timeout: float, readonly: bool) -> None:
        self.connect_calls.append((host, port, clientId))
        if self.fail:
            raise ConnectionRefusedError("connection refused")
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False


def _config(**overrides: Any) -> IBKRConnectionConfig:
    values: dict[str, Any] = dict(
        host="127.0.0.1",
        port=7497,
        client_id=1001,
        readonly=False,
        timeout=5.0,
        paper_only=True,
        paper_port=7497,
        live_port=7496,
    )
    values.update(overrides)
    return IBKRConnectionConfig(**values)


def test_connect_logs_attempt_and_established() -> None:
    ib = _FakeIb()
    events: list[object] = []
    connection = IBKRConnection(_config(), ib, event_logger=events.append)

    config = asyncio.run(connection.connect(client_id=7))

    assert ib.connect_calls == [("127.0.0.1", 7497, 7)]
    assert config.client_id == 7
    assert isinstance(events[0], IbkrConnectionAttempt)
    assert isinstance(events[1], IbkrConnectionEstablished)
    assert events[1].server_version == 176
    assert connection.status()["connected"] is True


def test_connect_failure_is_logged_and_raised() -> None:
    events: list[object] = []
    connection = IBKRConnection(_config(), _FakeIb(fail=True), event_logger=events.append)

    with pytest.raises(ConnectionRefusedError):
        asyncio.run(connection.connect())

    failed = events[-1]
    assert isinstance(failed, IbkrConnectionFailed)
    assert failed.error_type == "ConnectionRefusedError"


def test_paper_only_refuses_the_live_port() -> None:
    ib = _FakeIb()
    connection = IBKRConnection(_config(), ib)

    with pytest.raises(RuntimeError, match="PAPER_ONLY"):
        asyncio.run(connection.connect(mode="live"))

    assert ib.connect_calls == []


def test_gateway_errors_are_journaled_except_cancelled_queries() -> None:
    ib = _FakeIb()
    events: list[object] = []
    connection = IBKRConnection(_config(), ib, event_logger=events.append)
    asyncio.run(connection.connect())
    events.clear()

    ib.errorEvent.emit(-1, 2104, "Market data farm connection is OK:usfarm", None)
    ib.errorEvent.emit(12, 162, "Historical Market Data Service error message:API historical data query cancelled", None)
    ib.errorEvent.emit(3, 201, "Order rejected - reason: margin", None)

    assert [(event.code, event.req_id) for event in events if isinstance(event, IbGatewayLog)] == [
        (2104, -1),
        (201, 3),
    ]


def test_close_detaches_and_disconnects() -> None:
    ib = _FakeIb()
    events: list[object] = []
    connection = IBKRConnection(_config(), ib, event_logger=events.append)
    asyncio.run(connection.connect())

    connection.close()

    assert ib.errorEvent.handlers == []
    assert ib.connected is False
    assert isinstance(events[-1], IbkrConnectionClosed)


def test_config_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IB_PORT", "paper")

    with pytest.raises(DeskConfigError):
        IBKRConnectionConfig.from_env()


def test_config_from_env_defaults_to_paper(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("IB_HOST", "IB_PORT", "IB_CLIENT_ID", "IB_READONLY", "IB_TIMEOUT", "PAPER_ONLY"):
        monkeypatch.delenv(name, raising=False)

    config = IBKRConnectionConfig.from_env()

    assert (config.port, config.paper_only, config.readonly) == (7497, True, False)
