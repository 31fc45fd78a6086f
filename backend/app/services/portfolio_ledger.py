"""Paper portfolio ledger service.

Serializes trades per account, persists every trade atomically and
publishes portfolio updates. The trade arithmetic itself lives in
core.ledger.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from core.errors import InvalidTradeError, PositionNotFoundError
from core.ledger import MANUAL_ORIGIN, apply_trade, replay_transactions
from core.models.config import MoneyManagement
from core.models.portfolio import Portfolio, Transaction
from core.models.signal import Action, ConsensusDecision, IndicatorName
from core.repository_protocol import PortfolioRepository
from app.events import EventBus, EventChannel
from app.storage.snapshot import PortfolioSnapshot

logger = logging.getLogger(__name__)

TRANSACTION_HISTORY_LIMIT = 100


def portfolio_to_dict(portfolio: Portfolio) -> dict:
    data = portfolio.model_dump(mode="json")
    data["positions"] = [
        {**p, "market_value": portfolio.positions[sym].market_value}
        for sym, p in data["positions"].items()
    ]
    return data


class PortfolioLedger:
    """
    Paper ledger for any number of accounts.

    - One asyncio.Lock per account: trades for the same account never
      interleave, different accounts proceed concurrently.
    - A trade is computed on a copy, saved through
      PortfolioRepository.save_trade, and only then becomes the cached
      state. A rejected or failed trade leaves the portfolio unchanged.
    """

    def __init__(
        self,
        repo: PortfolioRepository,
        starting_balance: float = 10000.0,
        money_management: MoneyManagement | None = None,
        events: EventBus | None = None,
    ):
        self.repo = repo
        self.starting_balance = starting_balance
        self.money_management = money_management or MoneyManagement()
        self.events = events
        self._portfolios: dict[str, Portfolio] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def _load_or_create(self, account_id: str) -> Portfolio:
        """Caller must hold the account lock."""
        portfolio = self._portfolios.get(account_id)
        if portfolio is not None:
            return portfolio

        portfolio = await self.repo.get(account_id)
        if portfolio is None:
            portfolio = Portfolio.new(account_id, self.starting_balance)
            await self.repo.save(portfolio)
            logger.info(
                f"Created portfolio for '{account_id}' with balance {self.starting_balance:.2f}"
            )
        self._portfolios[account_id] = portfolio
        return portfolio

    async def get_or_create(self, account_id: str = "default") -> Portfolio:
        async with self._lock(account_id):
            return await self._load_or_create(account_id)

    async def get_portfolio(self, account_id: str = "default") -> Portfolio:
        """Alias of get_or_create: reading a missing portfolio creates it."""
        return await self.get_or_create(account_id)

    async def execute_trade(
        self,
        account_id: str,
        symbol: str,
        action: Action | str,
        quantity: float,
        price: float,
        origin: str = MANUAL_ORIGIN,
        now: datetime | None = None,
    ) -> Portfolio:
        """
        Execute a paper trade.

        Raises:
            InvalidTradeError, InsufficientFundsError, PositionNotFoundError
        """
        return await self._trade(account_id, symbol, action, price, origin, now, lambda _: quantity)

    async def process_decision(
        self,
        decision: ConsensusDecision,
        account_id: str = "default",
    ) -> Portfolio:
        """
        Size and execute a trade for a consensus decision.

        BUY spends buy_percentage of the cash balance; SELL sells
        sell_percentage of the held position. Sizing reads the portfolio
        under the account lock, so it always sees the latest balance.

        Raises:
            PositionNotFoundError: SELL of a symbol that is not held
            InsufficientFundsError, InvalidTradeError
        """
        if not decision.price > 0:
            raise InvalidTradeError(f"Decision for {decision.symbol} has no usable price")

        mm = self.money_management

        def size(portfolio: Portfolio) -> float:
            if decision.action == Action.BUY:
                return portfolio.balance * mm.buy_percentage / 100 / decision.price
            position = portfolio.get_position(decision.symbol)
            if position is None:
                raise PositionNotFoundError(portfolio.account_id, decision.symbol)
            return position.quantity * mm.sell_percentage / 100

        return await self._trade(
            account_id,
            decision.symbol,
            decision.action,
            decision.price,
            IndicatorName.CONSENSUS.value,
            None,
            size,
        )

    async def _trade(
        self,
        account_id: str,
        symbol: str,
        action: Action | str,
        price: float,
        origin: str,
        now: datetime | None,
        size: Callable[[Portfolio], float],
    ) -> Portfolio:
        async with self._lock(account_id):
            current = await self._load_or_create(account_id)
            portfolio, transaction = apply_trade(
                current, symbol, action, size(current), price, origin, now
            )
            await self.repo.save_trade(portfolio, transaction)
            self._portfolios[account_id] = portfolio

        logger.info(
            f"[{account_id}] {transaction.action.value} {transaction.quantity:.8f} {symbol} "
            f"@ {price:.8f} ({origin}) -> balance {portfolio.balance:.2f}, equity {portfolio.equity:.2f}"
        )
        await self._publish(portfolio, transaction)
        return portfolio

    async def manual_trade(
        self,
        account_id: str,
        symbol: str,
        action: Action | str,
        quantity: float,
        price: float,
    ) -> Portfolio:
        try:
            quantity = float(quantity)
            price = float(price)
        except (TypeError, ValueError):
            raise InvalidTradeError(f"Invalid quantity/price: {quantity!r} @ {price!r}") from None
        return await self.execute_trade(account_id, symbol.upper(), action, quantity, price, MANUAL_ORIGIN)

    async def get_transactions(
        self,
        account_id: str = "default",
        limit: int | None = TRANSACTION_HISTORY_LIMIT,
    ) -> list[Transaction]:
        """Transaction history, newest first."""
        return await self.repo.get_transactions(account_id, limit=limit)

    async def reconcile(self, account_id: str = "default") -> Portfolio:
        """
        Rebuild the portfolio by replaying its transaction log from the
        account's opening balance, and store the result.
        """
        async with self._lock(account_id):
            current = await self._load_or_create(account_id)
            # Oldest first so equal timestamps replay in execution order
            transactions = list(reversed(await self.repo.get_transactions(account_id)))
            rebuilt = replay_transactions(
                account_id, self._opening_balance(current), transactions, created_at=current.created_at
            )
            if abs(rebuilt.balance - current.balance) > 1e-6 or set(rebuilt.positions) != set(current.positions):
                logger.warning(
                    f"[{account_id}] Reconcile corrected portfolio: balance "
                    f"{current.balance:.8f} -> {rebuilt.balance:.8f}, "
                    f"positions {sorted(current.positions)} -> {sorted(rebuilt.positions)}"
                )
            await self.repo.save(rebuilt)
            self._portfolios[account_id] = rebuilt

        logger.info(f"[{account_id}] Reconciled from {len(transactions)} transactions")
        return rebuilt

    async def export_snapshot(self, account_id: str = "default") -> PortfolioSnapshot:
        portfolio = await self.get_or_create(account_id)
        transactions = await self.repo.get_transactions(account_id)
        return PortfolioSnapshot(
            portfolio=portfolio,
            transactions=list(reversed(transactions)),
            starting_balance=self._opening_balance(portfolio),
        )

    async def import_snapshot(self, snapshot: PortfolioSnapshot) -> Portfolio:
        """Load a snapshot's transaction log and rebuild the portfolio from it."""
        account_id = snapshot.portfolio.account_id
        async with self._lock(account_id):
            rebuilt = replay_transactions(
                account_id,
                snapshot.starting_balance,
                snapshot.transactions,
                created_at=snapshot.portfolio.created_at,
            )
            await self.repo.replace_history(rebuilt, snapshot.transactions)
            self._portfolios[account_id] = rebuilt
        logger.info(
            f"[{account_id}] Imported snapshot with {len(snapshot.transactions)} transactions"
        )
        return rebuilt

    def _opening_balance(self, portfolio: Portfolio) -> float:
        if portfolio.starting_balance is not None:
            return portfolio.starting_balance
        return self.starting_balance

    async def _publish(self, portfolio: Portfolio, transaction: Transaction) -> None:
        if self.events is None:
            return
        await self.events.publish(
            EventChannel.PORTFOLIO,
            "portfolio_update",
            {
                "portfolio": portfolio_to_dict(portfolio),
                "transaction": transaction.model_dump(mode="json"),
            },
        )
