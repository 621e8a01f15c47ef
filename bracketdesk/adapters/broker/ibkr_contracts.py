from __future__ import annotations

import asyncio
from typing import Any, Optional

from loguru import logger

from bracketdesk.adapters.broker._ib_client import IB, ContFuture, Contract, Future, Stock
from bracketdesk.adapters.broker._ib_compat import maybe_price
from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection
from bracketdesk.core.config import InstrumentConfig
from bracketdesk.core.sizing.models import TickMetadata

METADATA_RETRY_ATTEMPTS = 5
METADATA_RETRY_SECONDS = 10.0


def build_contract(instrument: InstrumentConfig) -> Contract:
    if instrument.sec_type == "STK":
        return Stock(instrument.symbol, instrument.exchange, instrument.currency)
    if instrument.sec_type == "CONTFUT":
        return ContFuture(instrument.symbol, instrument.exchange, currency=instrument.currency)
    return Future(
        instrument.symbol,
        instrument.contract_month or "",
        instrument.exchange,
        currency=instrument.currency,
    )


async def qualify_contract(ib: IB, instrument: InstrumentConfig) -> Contract:
    """Resolve the traded contract. A future without a month resolves to the front month."""
    contract = build_contract(instrument)
    if instrument.sec_type == "FUT" and not instrument.contract_month:
        details = await ib.reqContractDetailsAsync(contract)
        candidates = [item.contract for item in details or [] if getattr(item, "contract", None)]
        if not candidates:
            raise RuntimeError(f"No futures contracts found for {instrument.symbol}")
        candidates.sort(key=lambda item: str(getattr(item, "lastTradeDateOrContractMonth", "")))
        contract = candidates[0]
    qualified = await ib.qualifyContractsAsync(contract)
    if not qualified or qualified[0] is None:
        raise RuntimeError(f"Could not qualify contract for {instrument.symbol}")
    resolved = qualified[0]
    if instrument.sec_type == "CONTFUT":
        # Orders cannot be routed to a CONTFUT; trade the underlying month.
        resolved = Future(conId=resolved.conId)
        qualified = await ib.qualifyContractsAsync(resolved)
        resolved = qualified[0]
    logger.info(
        "Trading contract: {} {} conId={}",
        getattr(resolved, "localSymbol", "") or resolved.symbol,
        getattr(resolved, "lastTradeDateOrContractMonth", "") or "-",
        resolved.conId,
    )
    return resolved


def contract_multiplier(contract: Any) -> float:
    multiplier = maybe_price(getattr(contract, "multiplier", None))
    return multiplier if multiplier is not None else 1.0


def tick_metadata_from_details(details: Any, contract: Any) -> Optional[TickMetadata]:
    tick_size = maybe_price(getattr(details, "minTick", None))
    if tick_size is None:
        return None
    currency = str(getattr(contract, "currency", "") or "USD")
    return TickMetadata(tick_size=tick_size, point_value=contract_multiplier(contract), currency=currency)


class IBKRInstrumentMetadata:
    def __init__(self, connection: IBKRConnection, contract: Contract) -> None:
        self._connection = connection
        self._ib: IB = connection.ib
        self._contract = contract

    async def fetch_tick_metadata(self) -> Optional[TickMetadata]:
        if not self._ib.isConnected():
            raise RuntimeError("IBKR is not connected")
        details = await self._ib.reqContractDetailsAsync(self._contract)
        if not details:
            logger.warning("No contract details for conId={}", self._contract.conId)
            return None
        metadata = tick_metadata_from_details(details[0], self._contract)
        if metadata is None:
            logger.warning("Contract details missing minTick for conId={}", self._contract.conId)
        else:
            logger.info(
                "Instrument: tick {} point value {} {}",
                metadata.tick_size,
                metadata.point_value,
                metadata.currency,
            )
        return metadata

    async def wait_for_tick_metadata(
        self,
        *,
        attempts: int = METADATA_RETRY_ATTEMPTS,
        delay: float = METADATA_RETRY_SECONDS,
    ) -> Optional[TickMetadata]:
        """Re-request contract details until a known-good tick arrives or attempts run out."""
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(delay)
            try:
                metadata = await self.fetch_tick_metadata()
            except RuntimeError as exc:
                logger.warning("Tick metadata retry {}/{} failed: {}", attempt, attempts, exc)
                continue
            if metadata is not None and metadata.is_known_good:
                return metadata
        logger.error("Tick metadata still missing after {} attempt(s)", attempts)
        return None
