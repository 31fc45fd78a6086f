"""In-memory repositories.

Same protocols as the PostgreSQL repositories; used for tests and for
running without a database (STORAGE_BACKEND=memory).
"""

from datetime import datetime

from core.models.config import BotConfig
from core.models.monitor import MonitorTask
from core.models.portfolio import Portfolio, Transaction
from core.models.signal import Signal


class InMemoryMonitorTaskRepository:
    def __init__(self):
        self._tasks: dict[tuple[str, str, str], MonitorTask] = {}

    async def save(self, task: MonitorTask) -> None:
        self._tasks[task.ident] = task.model_copy()

    async def get(self, symbol: str, interval: str, account_id: str) -> MonitorTask | None:
        task = self._tasks.get((symbol, interval, account_id))
        return task.model_copy() if task is not None else None

    async def get_active(self) -> list[MonitorTask]:
        return [t.model_copy() for t in self._tasks.values() if t.active]

    async def delete_inactive_older_than(self, cutoff: datetime) -> int:
        stale = [
            key for key, t in self._tasks.items()
            if not t.active and t.stop_time is not None and t.stop_time < cutoff
        ]
        for key in stale:
            del self._tasks[key]
        return len(stale)


class InMemoryPortfolioRepository:
    def __init__(self):
        self._portfolios: dict[str, Portfolio] = {}
        self._transactions: dict[str, list[Transaction]] = {}

    async def get(self, account_id: str) -> Portfolio | None:
        return self._portfolios.get(account_id)

    async def save(self, portfolio: Portfolio) -> None:
        self._portfolios[portfolio.account_id] = portfolio

    async def save_trade(self, portfolio: Portfolio, transaction: Transaction) -> None:
        self._portfolios[portfolio.account_id] = portfolio
        self._transactions.setdefault(transaction.account_id, []).append(transaction)

    async def get_transactions(self, account_id: str, limit: int | None = None) -> list[Transaction]:
        # Stable sort keeps insertion order for equal timestamps
        ordered = sorted(
            reversed(self._transactions.get(account_id, [])),
            key=lambda t: t.timestamp,
            reverse=True,
        )
        return ordered[:limit] if limit is not None else ordered

    async def replace_history(self, portfolio: Portfolio, transactions: list[Transaction]) -> None:
        self._transactions[portfolio.account_id] = sorted(transactions, key=lambda t: t.timestamp)
        self._portfolios[portfolio.account_id] = portfolio


class InMemorySignalRepository:
    def __init__(self):
        self._signals: dict[str, Signal] = {}

    async def save_signal(self, signal: Signal) -> bool:
        if signal.id in self._signals:
            return False
        self._signals[signal.id] = signal
        return True

    async def get_recent(self, symbol: str | None = None, limit: int = 100) -> list[Signal]:
        signals = [s for s in self._signals.values() if symbol is None or s.symbol == symbol]
        signals.sort(key=lambda s: s.time, reverse=True)
        return signals[:limit]

    async def delete_older_than(self, cutoff: datetime) -> int:
        stale = [sid for sid, s in self._signals.items() if s.time < cutoff]
        for sid in stale:
            del self._signals[sid]
        return len(stale)


class InMemoryBotConfigRepository:
    def __init__(self):
        self._configs: dict[str, BotConfig] = {}

    async def get(self, name: str = "default") -> BotConfig | None:
        config = self._configs.get(name)
        return config.model_copy(deep=True) if config is not None else None

    async def save(self, config: BotConfig, name: str = "default") -> None:
        self._configs[name] = config.model_copy(deep=True)
