import asyncio
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from loguru import logger

from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection, IBKRConnectionConfig
from bracketdesk.adapters.broker.ibkr_contracts import IBKRInstrumentMetadata, qualify_contract
from bracketdesk.adapters.broker.ibkr_order_gateway import IBKROrderGateway
from bracketdesk.adapters.broker.ibkr_position_feed import IBKRPositionFeed
from bracketdesk.adapters.eventbus.in_process import InProcessEventBus
from bracketdesk.adapters.logging.jsonl_logger import JsonlEventLogger
from bracketdesk.adapters.market_data.ibkr_market_feed import IBKRMarketFeed
from bracketdesk.adapters.presentation.console_display import ConsoleMarkerDisplay
from bracketdesk.adapters.presentation.marker_actor import MarkerActor
from bracketdesk.adapters.runtime.serial_executor import SerialExecutor
from bracketdesk.cli.repl import REPL
from bracketdesk.core.arming.controller import TradeController
from bracketdesk.core.config import DeskConfig, InstrumentConfig
from bracketdesk.core.markers.tags import TagNames
from bracketdesk.core.orders.events import ExecutionOccurred, OrderStateChanged, PositionChanged
from bracketdesk.core.orders.service import OrderService


def _configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level=os.getenv("LOG_LEVEL", "INFO").upper())
    log_file = os.getenv("DESK_LOG_FILE", "").strip()
    if log_file:
        logger.add(log_file, level="DEBUG", rotation="10 MB", retention=5)


async def _late_tick_metadata(
    source: IBKRInstrumentMetadata,
    executor: SerialExecutor,
    controller: TradeController,
) -> None:
    metadata = await source.wait_for_tick_metadata()
    if metadata is not None:
        await executor.call(controller.update_instrument, metadata)


async def _async_main() -> None:
    load_dotenv()
    _configure_logging()
    desk_config = DeskConfig.from_env()
    instrument = InstrumentConfig.from_env()
    ib_config = IBKRConnectionConfig.from_env()

    bus = InProcessEventBus()
    journal = JsonlEventLogger.from_env()
    if journal:
        journal.attach(bus)
        logger.info("Event journal: {}", journal.path)

    connection = IBKRConnection(ib_config, event_logger=bus.publish)
    await connection.connect()
    contract = await qualify_contract(connection.ib, instrument)
    instrument_metadata = IBKRInstrumentMetadata(connection, contract)
    metadata = await instrument_metadata.fetch_tick_metadata()

    tags = TagNames.from_prefix(desk_config.tag_prefix)
    market = IBKRMarketFeed(connection, contract)
    gateway = IBKROrderGateway(connection, contract, bus, tags=tags)
    positions = IBKRPositionFeed(connection, contract, bus)
    orders = OrderService(gateway, bus, max_contracts=desk_config.max_contracts)
    markers = MarkerActor(ConsoleMarkerDisplay(tags))
    executor = SerialExecutor()
    controller = TradeController(
        desk_config,
        orders=orders,
        markers=markers,
        market=market,
        event_bus=bus,
    )

    markers.start()
    executor.start()
    await executor.call(controller.start_session, metadata, positions.snapshot())

    bus.subscribe(OrderStateChanged, lambda event: executor.submit(controller.on_order_state, event))
    bus.subscribe(ExecutionOccurred, lambda event: executor.submit(controller.on_execution, event))
    bus.subscribe(PositionChanged, lambda event: executor.submit(controller.on_position, event))
    market.subscribe_quotes(lambda quote: executor.submit(controller.on_quote, quote))

    market.start()
    stop_positions = positions.start()
    gateway.replay_open_orders()
    metadata_task: Optional[asyncio.Task[None]] = None
    if metadata is None or not metadata.is_known_good:
        logger.warning("Tick metadata unavailable at startup; retrying in the background")
        metadata_task = asyncio.create_task(_late_tick_metadata(instrument_metadata, executor, controller))

    repl = REPL(controller, executor, markers, connection=connection, event_bus=bus)
    try:
        await repl.run()
    finally:
        if metadata_task is not None:
            metadata_task.cancel()
        market.stop()
        stop_positions()
        await executor.stop()
        await markers.stop()
        connection.close()


def main() -> None:
    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
