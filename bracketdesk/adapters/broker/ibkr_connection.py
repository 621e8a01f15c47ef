from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Callable, Optional

from loguru import logger

from bracketdesk.adapters.broker._ib_client import IB
from bracketdesk.adapters.broker._ib_compat import event_add, event_remove, silence_ib_client_loggers
from bracketdesk.core.config import DeskConfigError
from bracketdesk.core.ops.events import (
    IbGatewayLog,
    IbkrConnectionAttempt,
    IbkrConnectionClosed,
    IbkrConnectionEstablished,
    IbkrConnectionFailed,
)

# Informational farm/status codes the gateway sends on every connect.
_INFO_CODES = frozenset({2104, 2106, 2107, 2108, 2158})
_QUERY_CANCELLED = 162


@dataclass
class IBKRConnectionConfig:
    host: str
    port: int
    client_id: int
    readonly: bool
    timeout: float
    paper_only: bool
    paper_port: int
    live_port: int

    @classmethod
    def from_env(cls) -> "IBKRConnectionConfig":
        try:
            return cls(
                host=os.getenv("IB_HOST", "127.0.0.1"),
                port=int(os.getenv("IB_PORT", "7497")),
                client_id=int(os.getenv("IB_CLIENT_ID", "1001")),
                readonly=os.getenv("IB_READONLY", "0") == "1",
                timeout=float(os.getenv("IB_TIMEOUT", "5")),
                paper_only=os.getenv("PAPER_ONLY", "1") == "1",
                paper_port=int(os.getenv("IB_PAPER_PORT", "7497")),
                live_port=int(os.getenv("IB_LIVE_PORT", "7496")),
            )
        except ValueError as exc:
            raise DeskConfigError(f"invalid IB connection setting: {exc}") from exc


class IBKRConnection:
    def __init__(
        self,
        config: IBKRConnectionConfig,
        ib: Optional[IB] = None,
        *,
        event_logger: Optional[Callable[[object], None]] = None,
    ) -> None:
        self._config = config
        self._ib = ib or IB()
        self._event_logger = event_logger
        self._error_handler_attached = False

    @property
    def ib(self) -> IB:
        return self._ib

    @property
    def config(self) -> IBKRConnectionConfig:
        return self._config

    def _assert_paper_mode(self, port: int) -> None:
        if self._config.paper_only and port != self._config.paper_port:
            raise RuntimeError("PAPER_ONLY=1 but IB port is not the paper port.")

    async def connect(
        self,
        *,
        mode: Optional[str] = None,
        client_id: Optional[int] = None,
    ) -> IBKRConnectionConfig:
        if mode == "paper":
            port = self._config.paper_port
        elif mode == "live":
            port = self._config.live_port
        else:
            port = self._config.port
        new_client_id = client_id if client_id is not None else self._config.client_id
        self._assert_paper_mode(port)

        if self._ib.isConnected():
            self.disconnect(reason="reconnect")

        silence_ib_client_loggers()
        self._attach_error_handler()
        self._log_event(
            IbkrConnectionAttempt.now(
                host=self._config.host,
                port=port,
                client_id=new_client_id,
                readonly=self._config.readonly,
            )
        )
        logger.info("Connecting to IB at {}:{} (client {})", self._config.host, port, new_client_id)
        try:
            await self._ib.connectAsync(
                self._config.host,
                port,
                clientId=new_client_id,
                timeout=self._config.timeout,
                readonly=self._config.readonly,
            )
        except Exception as exc:
            self._log_event(
                IbkrConnectionFailed.now(
                    host=self._config.host,
                    port=port,
                    client_id=new_client_id,
                    error_type=type(exc).__name__,
                    message=str(exc),
                )
            )
            logger.error("IB connection failed: {}: {}", type(exc).__name__, exc)
            raise

        self._config = replace(self._config, port=port, client_id=new_client_id)
        server_version = None
        try:
            server_version = int(self._ib.client.serverVersion())
        except (AttributeError, TypeError, ValueError):
            server_version = None
        self._log_event(
            IbkrConnectionEstablished.now(
                host=self._config.host,
                port=port,
                client_id=new_client_id,
                readonly=self._config.readonly,
                server_version=server_version,
            )
        )
        logger.info("Connected to IB (server version {})", server_version)
        return self._config

    def disconnect(self, *, reason: str = "disconnect") -> None:
        if not self._ib.isConnected():
            return
        self._ib.disconnect()
        self._log_event(
            IbkrConnectionClosed.now(
                host=self._config.host,
                port=self._config.port,
                client_id=self._config.client_id,
                reason=reason,
            )
        )
        logger.info("Disconnected from IB ({})", reason)

    def status(self) -> dict[str, object]:
        return {
            "connected": self._ib.isConnected(),
            "host": self._config.host,
            "port": self._config.port,
            "client_id": self._config.client_id,
            "readonly": self._config.readonly,
            "paper_only": self._config.paper_only,
        }

    def close(self) -> None:
        if self._error_handler_attached:
            event_remove(self._ib, "errorEvent", self._on_error)
            self._error_handler_attached = False
        self.disconnect()

    def _attach_error_handler(self) -> None:
        if self._error_handler_attached:
            return
        self._error_handler_attached = event_add(self._ib, "errorEvent", self._on_error)

    def _on_error(self, req_id: object, code: object, message: object, *_: object) -> None:
        parsed_code = _maybe_int(code)
        if parsed_code == _QUERY_CANCELLED and "query cancelled" in str(message or "").lower():
            return
        self._log_event(
            IbGatewayLog.now(
                code=parsed_code,
                message=str(message) if message is not None else None,
                req_id=_maybe_int(req_id),
            )
        )
        if parsed_code in _INFO_CODES:
            logger.debug("IB {}: {}", parsed_code, message)
        else:
            logger.warning("IB error {} (req {}): {}", parsed_code, req_id, message)

    def _log_event(self, event: object) -> None:
        if self._event_logger:
            self._event_logger(event)


def _maybe_int(value: object) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
