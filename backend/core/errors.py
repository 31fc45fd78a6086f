"""Error taxonomy for the signal pipeline and the paper ledger.

Duplicate signals and conflicting consensus are outcomes, not errors:
they are absorbed by the signal window and the aggregator respectively.
"""


class TradingBotError(Exception):
    """Base class for all domain errors."""


class InsufficientDataError(TradingBotError):
    """Not enough candles to compute indicators (recoverable no-op)."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Not enough candles for indicators: have {available}, need {required}"
        )


class InvalidTradeError(TradingBotError, ValueError):
    """Trade parameters are malformed (non-positive quantity or price)."""


class InsufficientFundsError(TradingBotError):
    """BUY would drive the cash balance below zero."""

    def __init__(self, account_id: str, required: float, available: float):
        self.account_id = account_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance for account '{account_id}': "
            f"need {required:.8f}, have {available:.8f}"
        )


class PositionNotFoundError(TradingBotError):
    """SELL for a symbol that the account does not hold."""

    def __init__(self, account_id: str, symbol: str):
        self.account_id = account_id
        self.symbol = symbol
        super().__init__(f"Account '{account_id}' holds no position in {symbol}")


class FeedUnavailableError(TradingBotError):
    """Candle feed could not be reached, timed out or dropped the stream."""
