"""Paper-trading ledger math.

Pure functions: a trade takes a Portfolio value and returns a new one plus
the Transaction that produced it. Nothing here performs I/O, so a
rejected trade can never leave a half-applied portfolio behind.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable

from core.errors import InsufficientFundsError, InvalidTradeError, PositionNotFoundError
from core.models.portfolio import AssetPosition, Portfolio, Transaction
from core.models.signal import Action

logger = logging.getLogger(__name__)

MANUAL_ORIGIN = "MANUAL"


def compute_equity(balance: float, positions: dict[str, AssetPosition]) -> float:
    """equity = balance + sum(quantity * current_price)."""
    return balance + sum(p.quantity * p.current_price for p in positions.values())


def apply_trade(
    portfolio: Portfolio,
    symbol: str,
    action: Action | str,
    quantity: float,
    price: float,
    origin: str = MANUAL_ORIGIN,
    now: datetime | None = None,
) -> tuple[Portfolio, Transaction]:
    """
    Apply one BUY or SELL to a portfolio.

    BUY debits quantity * price and folds the lot into the position's
    weighted-average cost. SELL is clamped to the held quantity, credits
    the proceeds and removes the position once it reaches zero. The
    transaction records the executed (clamped) quantity.

    Args:
        portfolio: Current portfolio (not modified)
        symbol: Trading pair
        action: BUY or SELL
        quantity: Requested quantity, > 0
        price: Execution price, > 0
        origin: Signal tag that caused the trade
        now: Trade timestamp (defaults to current UTC time)

    Returns:
        Tuple of (new portfolio, transaction)

    Raises:
        InvalidTradeError: non-positive quantity or price, unknown action
        InsufficientFundsError: BUY costs more than the balance
        PositionNotFoundError: SELL of a symbol that is not held
    """
    try:
        action = Action(action)
    except ValueError:
        raise InvalidTradeError(f"Unknown trade action: {action!r}") from None
    if not quantity > 0:
        raise InvalidTradeError(f"Quantity must be positive, got {quantity}")
    if not price > 0:
        raise InvalidTradeError(f"Price must be positive, got {price}")

    now = now or datetime.now(timezone.utc)
    positions = dict(portfolio.positions)
    balance = portfolio.balance

    if action == Action.BUY:
        cost = quantity * price
        if balance < cost:
            raise InsufficientFundsError(portfolio.account_id, cost, balance)
        balance -= cost

        existing = positions.get(symbol)
        if existing is not None:
            new_quantity = existing.quantity + quantity
            average_price = (existing.average_price * existing.quantity + quantity * price) / new_quantity
        else:
            new_quantity = quantity
            average_price = price
        positions[symbol] = AssetPosition(
            symbol=symbol,
            quantity=new_quantity,
            average_price=average_price,
            current_price=price,
        )
        executed = quantity
        value = -cost
    else:
        existing = positions.get(symbol)
        if existing is None:
            raise PositionNotFoundError(portfolio.account_id, symbol)

        executed = min(quantity, existing.quantity)
        proceeds = executed * price
        balance += proceeds

        remaining = existing.quantity - executed
        if remaining <= 0:
            del positions[symbol]
        else:
            positions[symbol] = existing.model_copy(
                update={"quantity": remaining, "current_price": price}
            )
        value = proceeds

    new_portfolio = portfolio.model_copy(
        update={
            "balance": balance,
            "positions": positions,
            "equity": compute_equity(balance, positions),
            "updated_at": now,
        }
    )
    transaction = Transaction(
        account_id=portfolio.account_id,
        symbol=symbol,
        action=action,
        quantity=executed,
        price=price,
        value=value,
        signal=origin,
        timestamp=now,
    )
    return new_portfolio, transaction


def replay_transactions(
    account_id: str,
    starting_balance: float,
    transactions: Iterable[Transaction],
    created_at: datetime | None = None,
) -> Portfolio:
    """
    Rebuild a portfolio from its transaction log.

    Transactions are applied oldest first. A SELL of a symbol that is no
    longer held is skipped with a warning; any other violation means the
    log is inconsistent and is raised.
    """
    portfolio = Portfolio.new(account_id, starting_balance, now=created_at)
    for tx in sorted(transactions, key=lambda t: t.timestamp):
        try:
            portfolio, _ = apply_trade(
                portfolio, tx.symbol, tx.action, tx.quantity, tx.price, tx.signal, tx.timestamp
            )
        except PositionNotFoundError:
            logger.warning(
                f"Replay for {account_id}: SELL {tx.symbol} at {tx.timestamp.isoformat()} "
                f"has no position, skipped"
            )
    return portfolio
