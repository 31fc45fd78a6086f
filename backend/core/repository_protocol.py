"""Repository protocols for persistence backends.

Any storage backend (PostgreSQL via SQLAlchemy, in-memory for tests and
development) implements these protocols.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from core.models.config import BotConfig
from core.models.monitor import MonitorTask
from core.models.portfolio import Portfolio, Transaction
from core.models.signal import Signal


@runtime_checkable
class MonitorTaskRepository(Protocol):
    """Storage for monitor task records keyed by (symbol, interval, account_id)."""

    async def save(self, task: MonitorTask) -> None:
        """Insert or update a task record."""
        ...

    async def get(self, symbol: str, interval: str, account_id: str) -> MonitorTask | None:
        ...

    async def get_active(self) -> list[MonitorTask]:
        """Get all tasks persisted as active."""
        ...

    async def delete_inactive_older_than(self, cutoff: datetime) -> int:
        """Delete inactive tasks stopped before cutoff. Returns count deleted."""
        ...


@runtime_checkable
class PortfolioRepository(Protocol):
    """Storage for portfolios and their append-only transaction log."""

    async def get(self, account_id: str) -> Portfolio | None:
        ...

    async def save(self, portfolio: Portfolio) -> None:
        """Insert or replace a portfolio snapshot."""
        ...

    async def save_trade(self, portfolio: Portfolio, transaction: Transaction) -> None:
        """Atomically persist the new portfolio and append the transaction."""
        ...

    async def get_transactions(self, account_id: str, limit: int | None = None) -> list[Transaction]:
        """Get transactions newest first, up to limit (None = all)."""
        ...

    async def replace_history(self, portfolio: Portfolio, transactions: list[Transaction]) -> None:
        """Atomically replace a portfolio and its whole transaction log (snapshot import)."""
        ...


@runtime_checkable
class SignalRepository(Protocol):
    """Storage for emitted signals and consensus decisions."""

    async def save_signal(self, signal: Signal) -> bool:
        """Persist a signal. Returns False if its id already exists."""
        ...

    async def get_recent(
        self,
        symbol: str | None = None,
        limit: int = 100,
    ) -> list[Signal]:
        """Get signals newest first."""
        ...

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete signals with time before cutoff. Returns count deleted."""
        ...


@runtime_checkable
class BotConfigRepository(Protocol):
    """Storage for the bot configuration document."""

    async def get(self, name: str = "default") -> BotConfig | None:
        ...

    async def save(self, config: BotConfig, name: str = "default") -> None:
        ...
