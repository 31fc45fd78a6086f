"""Signal and consensus decision models."""

import hashlib
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict


class Action(str, Enum):
    """Trade side."""

    BUY = "BUY"
    SELL = "SELL"


class IndicatorName(str, Enum):
    """Indicators that can emit a signal."""

    RSI = "RSI"
    EMA_CROSSOVER = "EMA_CROSSOVER"
    BOLLINGER = "BOLLINGER"
    FIBONACCI = "FIBONACCI"
    CONSENSUS = "CONSENSUS"


def _generate_signal_id(symbol: str, indicator: str, action: str, signal_time: datetime) -> str:
    """Generate deterministic signal ID based on signal attributes.

    The same candle evaluated twice (backlog replay, restart) yields the
    same ID, so storage can skip it.
    """
    ts_str = signal_time.strftime("%Y%m%d%H%M%S%f")
    key = f"{symbol}:{indicator}:{action}:{ts_str}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class Signal(BaseModel):
    """Single indicator observation recommending BUY or SELL."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    symbol: str
    time: datetime
    indicator: IndicatorName
    action: Action
    price: float
    value: str = ""
    reason: str = ""

    def model_post_init(self, __context) -> None:
        if not self.id:
            object.__setattr__(
                self,
                "id",
                _generate_signal_id(
                    self.symbol, self.indicator.value, self.action.value, self.time
                ),
            )

    @property
    def key(self) -> tuple[str, str, str]:
        """Identity used for duplicate suppression and emission cooldown."""
        return (self.symbol, self.indicator.value, self.action.value)


class ConsensusDecision(BaseModel):
    """Aggregated trade recommendation derived from the signal window."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    time: datetime
    action: Action
    strength: int
    score: int
    reason: str
    price: float
    signal_count: int

    def to_signal(self) -> Signal:
        """Render as a CONSENSUS signal for storage and the signal stream."""
        return Signal(
            symbol=self.symbol,
            time=self.time,
            indicator=IndicatorName.CONSENSUS,
            action=self.action,
            price=self.price,
            value=str(self.strength),
            reason=self.reason,
        )
