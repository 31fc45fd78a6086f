"""Paper portfolio models."""

from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field

from .signal import Action


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssetPosition(BaseModel):
    """Holding of one symbol in a portfolio."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    quantity: float
    average_price: float
    current_price: float

    @property
    def market_value(self) -> float:
        return self.quantity * self.current_price


class Transaction(BaseModel):
    """Executed paper trade. Value is signed: BUY negative, SELL positive."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    symbol: str
    action: Action
    quantity: float
    price: float
    value: float
    signal: str = "MANUAL"
    timestamp: datetime = Field(default_factory=_utcnow)


class Portfolio(BaseModel):
    """Cash balance plus open positions for one account.

    Treated as a value: trades produce a new Portfolio (see core.ledger).
    """

    model_config = ConfigDict(frozen=True)

    account_id: str
    balance: float
    positions: dict[str, AssetPosition] = Field(default_factory=dict)
    equity: float = 0.0
    # Cash the account was opened with; replay starts from here
    starting_balance: float | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def new(cls, account_id: str, starting_balance: float, now: datetime | None = None) -> "Portfolio":
        now = now or _utcnow()
        return cls(
            account_id=account_id,
            balance=starting_balance,
            equity=starting_balance,
            starting_balance=starting_balance,
            created_at=now,
            updated_at=now,
        )

    @property
    def positions_value(self) -> float:
        return sum(p.market_value for p in self.positions.values())

    def get_position(self, symbol: str) -> AssetPosition | None:
        return self.positions.get(symbol)
