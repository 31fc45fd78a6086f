"""Data storage layer."""

from app.storage.database import Database, get_database, init_database
from app.storage.config_repo import BotConfigRepository
from app.storage.memory import (
    InMemoryBotConfigRepository,
    InMemoryMonitorTaskRepository,
    InMemoryPortfolioRepository,
    InMemorySignalRepository,
)
from app.storage.monitor_task_repo import MonitorTaskRepository
from app.storage.portfolio_repo import PortfolioRepository
from app.storage.signal_repo import SignalRepository
from app.storage.snapshot import PortfolioSnapshot, dump_snapshot, load_snapshot

__all__ = [
    "Database",
    "get_database",
    "init_database",
    "BotConfigRepository",
    "MonitorTaskRepository",
    "PortfolioRepository",
    "SignalRepository",
    "InMemoryBotConfigRepository",
    "InMemoryMonitorTaskRepository",
    "InMemoryPortfolioRepository",
    "InMemorySignalRepository",
    "PortfolioSnapshot",
    "dump_snapshot",
    "load_snapshot",
]
