"""Bot configuration models.

One explicit struct per concern instead of loosely-typed nested dicts, so the
whole configuration can be stored and loaded as a single JSON document.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator

MIN_INDICATOR_CANDLES = 30


def _default_weights() -> dict[str, int]:
    return {
        "RSI_BUY": 2,
        "RSI_SELL": -2,
        "BOLLINGER_BUY": 1,
        "BOLLINGER_SELL": -1,
        "EMA_CROSSOVER_BUY": 2,
        "EMA_CROSSOVER_SELL": -2,
        "FIBONACCI_BUY": 1,
        "FIBONACCI_SELL": -1,
    }


class Thresholds(BaseModel):
    """Consensus decision thresholds (inclusive)."""

    buy: int = 3
    sell: int = -3
    time_window_seconds: int = 300

    @model_validator(mode="after")
    def _check_order(self) -> "Thresholds":
        if self.sell >= self.buy:
            raise ValueError(f"sell threshold ({self.sell}) must be below buy threshold ({self.buy})")
        if self.time_window_seconds <= 0:
            raise ValueError("time_window_seconds must be positive")
        return self


class IndicatorPeriods(BaseModel):
    """Indicator periods and detector bounds."""

    rsi_period: int = 14
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    ema_short: int = 9
    ema_long: int = 21
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    fibonacci_lookback: int = 100
    sma_periods: tuple[int, int] = (50, 200)
    min_candles: int = MIN_INDICATOR_CANDLES

    @model_validator(mode="after")
    def _check_periods(self) -> "IndicatorPeriods":
        if self.ema_short >= self.ema_long:
            raise ValueError("ema_short must be shorter than ema_long")
        if self.min_candles < MIN_INDICATOR_CANDLES:
            self.min_candles = MIN_INDICATOR_CANDLES
        return self


class MoneyManagement(BaseModel):
    """Auto-trade sizing, as percentages."""

    buy_percentage: float = Field(default=10.0, gt=0, le=100)
    sell_percentage: float = Field(default=100.0, gt=0, le=100)


class Cooldowns(BaseModel):
    """Suppression windows, in seconds."""

    duplicate_window_seconds: int = 5
    signal_cooldown_seconds: int = 1800
    decision_cooldown_seconds: int = 1800


class BotConfig(BaseModel):
    """Complete configuration of the signal pipeline and auto-trader."""

    signal_weights: dict[str, int] = Field(default_factory=_default_weights)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    indicators: IndicatorPeriods = Field(default_factory=IndicatorPeriods)
    money_management: MoneyManagement = Field(default_factory=MoneyManagement)
    cooldowns: Cooldowns = Field(default_factory=Cooldowns)

    def weight(self, indicator: str, action: str) -> int:
        """Weight for INDICATOR_ACTION; unknown combinations count 0."""
        return self.signal_weights.get(f"{indicator}_{action}", 0)
