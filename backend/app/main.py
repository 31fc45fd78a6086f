"""Main application entry point.

Run with ``python -m app.main`` from the backend directory.
"""

import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from app.config import Settings, get_settings
from app.bot_config import load_bot_config, resolve_bot_config
from app.clients import BinanceCandleFeed, BinanceKlineWebSocket, BinanceRestClient
from app.events import EventBus, EventEnvelope
from app.services import MonitorSupervisor, PortfolioLedger
from app.storage import (
    BotConfigRepository,
    InMemoryBotConfigRepository,
    InMemoryMonitorTaskRepository,
    InMemoryPortfolioRepository,
    InMemorySignalRepository,
    MonitorTaskRepository,
    PortfolioRepository,
    SignalRepository,
    get_database,
    init_database,
)

logger = logging.getLogger(__name__)

# Startup timeout in seconds
STARTUP_TIMEOUT = 120


def configure_logging(settings: Settings) -> None:
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine.Engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("picows").setLevel(logging.WARNING)


@dataclass
class Services:
    """Everything the running process owns."""

    settings: Settings
    events: EventBus
    feed: BinanceCandleFeed
    ledger: PortfolioLedger
    supervisor: MonitorSupervisor


async def _log_event(envelope: EventEnvelope) -> None:
    logger.debug(f"event {envelope.to_json()}")


async def _periodic_cleanup(supervisor: MonitorSupervisor, settings: Settings) -> None:
    """Background task: prune old signals and inactive monitor records."""
    interval = settings.cleanup_interval_hours * 3600
    while True:
        try:
            await supervisor.cleanup(
                signal_retention_days=settings.signal_retention_days,
                monitor_retention_days=settings.monitor_retention_days,
            )
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Cleanup error: {e}")
            await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[Services]:
    """Build, start and finally tear down all services."""
    db_initialized = False

    if settings.storage_backend == "postgres":
        try:
            await asyncio.wait_for(init_database(), timeout=30)
            db_initialized = True
            logger.info("Database initialized")
        except asyncio.TimeoutError:
            raise RuntimeError("Database initialization timed out after 30s")
        task_repo = MonitorTaskRepository()
        portfolio_repo = PortfolioRepository()
        signal_repo = SignalRepository()
        config_repo = BotConfigRepository()
    else:
        logger.warning("Using in-memory storage: state is lost on exit")
        task_repo = InMemoryMonitorTaskRepository()
        portfolio_repo = InMemoryPortfolioRepository()
        signal_repo = InMemorySignalRepository()
        config_repo = InMemoryBotConfigRepository()

    config_path = Path(settings.trading_config_path) if settings.trading_config_path else None
    config = await resolve_bot_config(config_repo, load_bot_config(config_path))

    events = EventBus()
    if settings.debug:
        events.subscribe_all(_log_event)

    feed = BinanceCandleFeed(
        rest=BinanceRestClient(base_url=settings.binance_rest_url, timeout=settings.feed_timeout),
        ws=BinanceKlineWebSocket(ws_url=settings.binance_ws_url),
    )
    ledger = PortfolioLedger(
        portfolio_repo,
        starting_balance=settings.starting_balance,
        money_management=config.money_management,
        events=events,
    )
    supervisor = MonitorSupervisor(
        feed,
        task_repo,
        ledger,
        signal_repo=signal_repo,
        config=config,
        events=events,
        history_limit=settings.history_limit,
        min_history=settings.min_history,
        feed_timeout=settings.feed_timeout,
        retry_attempts=settings.feed_retry_attempts,
        retry_delay=settings.feed_retry_delay,
    )
    services = Services(settings, events, feed, ledger, supervisor)
    cleanup_task: asyncio.Task | None = None

    try:
        await asyncio.wait_for(supervisor.restore(), timeout=STARTUP_TIMEOUT)
        for symbol, interval, account_id in settings.monitor_specs():
            try:
                await supervisor.start_monitor(symbol, interval, account_id)
            except Exception as e:
                logger.error(f"Failed to start configured monitor {symbol} {interval} {account_id}: {e}")

        cleanup_task = asyncio.create_task(_periodic_cleanup(supervisor, settings))
        logger.info(f"Started: {supervisor.get_status()['active_count']} monitors running")

        yield services
    finally:
        logger.info("Shutting down...")
        if cleanup_task:
            cleanup_task.cancel()
            try:
                await cleanup_task
            except asyncio.CancelledError:
                pass

        await supervisor.shutdown()
        await feed.close()

        if db_initialized:
            try:
                await get_database().close()
                logger.info("Database connections closed")
            except Exception as e:
                logger.warning(f"Error closing database: {e}")
        logger.info("Shutdown complete")


async def run(settings: Settings | None = None) -> None:
    """Run until SIGINT/SIGTERM."""
    settings = settings or get_settings()
    stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: fall back to KeyboardInterrupt
            pass

    logger.info("Starting consensus paper-trading bot...")
    async with lifespan(settings):
        await stop.wait()


def main() -> None:
    """Run the application."""
    settings = get_settings()
    configure_logging(settings)
    try:
        asyncio.run(run(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
