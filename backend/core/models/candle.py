"""Candle (k-line) data models."""

from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class Candle(BaseModel):
    """Candlestick for one symbol and interval."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    interval: str
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    is_closed: bool = True


class CandleBuffer(BaseModel):
    """Bounded, time-ordered window of recent candles for one stream."""

    symbol: str
    interval: str
    candles: list[Candle] = Field(default_factory=list)
    max_size: int = 200

    def add(self, candle: Candle) -> bool:
        """Add a candle to the buffer, maintaining max size.

        An update for the last open_time replaces the stored candle only
        while that candle is still open. Older candles are ignored.
        Returns True when the buffer changed.
        """
        if self.candles and candle.open_time <= self.candles[-1].open_time:
            last = self.candles[-1]
            if candle.open_time == last.open_time and not last.is_closed:
                self.candles[-1] = candle
                return True
            return False

        self.candles.append(candle)
        if len(self.candles) > self.max_size:
            self.candles = self.candles[-self.max_size :]
        return True

    def extend(self, candles: list[Candle]) -> None:
        for candle in sorted(candles, key=lambda c: c.open_time):
            self.add(candle)

    def replace(self, candles: list[Candle]) -> None:
        """Reseed the buffer from a fresh history fetch."""
        self.candles = []
        self.extend(candles)

    def closed(self) -> list[Candle]:
        """Get closed candles only, oldest first."""
        return [c for c in self.candles if c.is_closed]

    def closed_count(self) -> int:
        return sum(1 for c in self.candles if c.is_closed)

    def __len__(self) -> int:
        return len(self.candles)
