"""Technical indicators for signal detection.

Every series function returns a list the same length as its input, with
NaN where the indicator is not yet defined.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence

import numpy as np

from core.errors import InsufficientDataError
from core.models.candle import Candle
from core.models.config import IndicatorPeriods, MIN_INDICATOR_CANDLES

FIBONACCI_RATIOS = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)


def _nan_list(n: int) -> list[float]:
    return [float("nan")] * n


def sma(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Simple Moving Average.

    Args:
        values: Sequence of price values
        period: SMA period

    Returns:
        List of SMA values
    """
    if len(values) < period:
        return _nan_list(len(values))

    arr = np.asarray(values, dtype=np.float64)
    result = np.full_like(arr, np.nan)
    window_sums = np.convolve(arr, np.ones(period), mode="valid")
    result[period - 1 :] = window_sums / period
    return result.tolist()


def ema(values: Sequence[float], period: int) -> list[float]:
    """
    Calculate Exponential Moving Average.

    Seeded with the SMA of the first `period` values, then
    ema = price * k + prev * (1 - k) with k = 2 / (period + 1).

    Args:
        values: Sequence of price values
        period: EMA period

    Returns:
        List of EMA values (same length as input, with NaN for initial values)
    """
    if len(values) < period:
        return _nan_list(len(values))

    arr = np.asarray(values, dtype=np.float64)
    multiplier = 2.0 / (period + 1)

    result = np.empty_like(arr)
    result[: period - 1] = np.nan
    result[period - 1] = np.mean(arr[:period])

    for i in range(period, len(arr)):
        result[i] = arr[i] * multiplier + result[i - 1] * (1 - multiplier)

    return result.tolist()


def rsi(values: Sequence[float], period: int = 14) -> list[float]:
    """
    Calculate Relative Strength Index with Wilder smoothing.

    The first averages are the plain mean of the first `period` changes.
    avg_loss == 0 gives 100, or 50 when there was no movement at all.

    Args:
        values: Sequence of close prices
        period: RSI period

    Returns:
        List of RSI values in [0, 100]; first `period` entries are NaN
    """
    n = len(values)
    if n <= period:
        return _nan_list(n)

    arr = np.asarray(values, dtype=np.float64)
    deltas = np.diff(arr)
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    result = np.full(n, np.nan)
    avg_gain = float(np.mean(gains[:period]))
    avg_loss = float(np.mean(losses[:period]))
    result[period] = _rsi_from_averages(avg_gain, avg_loss)

    for i in range(period + 1, n):
        avg_gain = (avg_gain * (period - 1) + gains[i - 1]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i - 1]) / period
        result[i] = _rsi_from_averages(avg_gain, avg_loss)

    return result.tolist()


def _rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def rolling_std(values: Sequence[float], period: int) -> list[float]:
    """Population standard deviation over a sliding window."""
    if len(values) < period:
        return _nan_list(len(values))

    arr = np.asarray(values, dtype=np.float64)
    result = np.full_like(arr, np.nan)
    windows = np.lib.stride_tricks.sliding_window_view(arr, period)
    result[period - 1 :] = windows.std(axis=1)
    return result.tolist()


def bollinger_bands(
    values: Sequence[float],
    period: int = 20,
    num_std: float = 2.0,
) -> tuple[list[float], list[float], list[float]]:
    """
    Calculate Bollinger Bands.

    middle = SMA(period), upper/lower = middle +/- num_std * sigma

    Returns:
        Tuple of (upper, middle, lower) lists
    """
    middle = np.asarray(sma(values, period), dtype=np.float64)
    std = np.asarray(rolling_std(values, period), dtype=np.float64)
    upper = middle + num_std * std
    lower = middle - num_std * std
    return upper.tolist(), middle.tolist(), lower.tolist()


def highest(values: Sequence[float], period: int) -> list[float]:
    """Highest value over the lookback period."""
    if len(values) < period:
        return _nan_list(len(values))

    arr = np.asarray(values, dtype=np.float64)
    result = np.full_like(arr, np.nan)
    result[period - 1 :] = np.lib.stride_tricks.sliding_window_view(arr, period).max(axis=1)
    return result.tolist()


def lowest(values: Sequence[float], period: int) -> list[float]:
    """Lowest value over the lookback period."""
    if len(values) < period:
        return _nan_list(len(values))

    arr = np.asarray(values, dtype=np.float64)
    result = np.full_like(arr, np.nan)
    result[period - 1 :] = np.lib.stride_tricks.sliding_window_view(arr, period).min(axis=1)
    return result.tolist()


@dataclass(frozen=True, slots=True)
class FibonacciLevels:
    """Retracement levels measured down from the high."""

    level_0: float
    level_23_6: float
    level_38_2: float
    level_50: float
    level_61_8: float
    level_78_6: float
    level_100: float


def fibonacci_levels(
    highs: Sequence[float],
    lows: Sequence[float],
    lookback: int = 100,
) -> FibonacciLevels:
    """
    Calculate Fibonacci retracement levels over the last `lookback` candles.

    level_p = high - p * (high - low)

    Args:
        highs: Sequence of high prices
        lows: Sequence of low prices
        lookback: Number of most recent candles to span

    Returns:
        FibonacciLevels for the window
    """
    if not highs or not lows:
        raise ValueError("fibonacci_levels needs at least one candle")

    span = max(1, min(lookback, len(highs), len(lows)))
    high = highest(highs, span)[-1]
    low = lowest(lows, span)[-1]
    diff = high - low
    levels = [high - ratio * diff for ratio in FIBONACCI_RATIOS]
    # Pin the ends so level_100 is exactly the low.
    levels[0], levels[-1] = high, low
    return FibonacciLevels(*levels)


@dataclass(frozen=True, slots=True)
class BollingerValue:
    upper: float
    middle: float
    lower: float


@dataclass(slots=True)
class IndicatorSeries:
    """Full-length indicator series aligned with the candle window."""

    rsi: list[float] = field(default_factory=list)
    ema_short: list[float] = field(default_factory=list)
    ema_long: list[float] = field(default_factory=list)
    sma_50: list[float] = field(default_factory=list)
    sma_200: list[float] = field(default_factory=list)
    bollinger_upper: list[float] = field(default_factory=list)
    bollinger_middle: list[float] = field(default_factory=list)
    bollinger_lower: list[float] = field(default_factory=list)


@dataclass(slots=True)
class IndicatorSnapshot:
    """Latest indicator values plus the series they were read from."""

    rsi: float
    ema_short: float
    ema_long: float
    sma_50: float
    sma_200: float
    bollinger: BollingerValue
    fibonacci: FibonacciLevels
    last_price: float
    time: datetime
    series: IndicatorSeries

    @property
    def previous_ema_short(self) -> float:
        return _previous(self.series.ema_short)

    @property
    def previous_ema_long(self) -> float:
        return _previous(self.series.ema_long)

    def to_dict(self) -> dict:
        """Latest values only, for events and logging."""
        return {
            "rsi": self.rsi,
            "ema_short": self.ema_short,
            "ema_long": self.ema_long,
            "sma_50": self.sma_50,
            "sma_200": self.sma_200,
            "bollinger": {
                "upper": self.bollinger.upper,
                "middle": self.bollinger.middle,
                "lower": self.bollinger.lower,
            },
            "fibonacci": {
                "level_0": self.fibonacci.level_0,
                "level_23_6": self.fibonacci.level_23_6,
                "level_38_2": self.fibonacci.level_38_2,
                "level_50": self.fibonacci.level_50,
                "level_61_8": self.fibonacci.level_61_8,
                "level_78_6": self.fibonacci.level_78_6,
                "level_100": self.fibonacci.level_100,
            },
            "last_price": self.last_price,
            "time": self.time.isoformat(),
        }


def _previous(series: list[float]) -> float:
    return series[-2] if len(series) >= 2 else float("nan")


class IndicatorCalculator:
    """Calculator for all technical indicators used by the signal detector."""

    def __init__(self, periods: IndicatorPeriods | None = None):
        self.periods = periods or IndicatorPeriods()
        self.min_candles = max(self.periods.min_candles, MIN_INDICATOR_CANDLES)

    def calculate(self, candles: Sequence[Candle]) -> IndicatorSnapshot:
        """
        Calculate all indicators for the given candle window.

        Args:
            candles: Candles ordered oldest first

        Returns:
            IndicatorSnapshot for the last candle

        Raises:
            InsufficientDataError: fewer than `min_candles` candles
        """
        if len(candles) < self.min_candles:
            raise InsufficientDataError(len(candles), self.min_candles)

        p = self.periods
        closes = [c.close for c in candles]
        highs = [c.high for c in candles]
        lows = [c.low for c in candles]
        sma_short_period, sma_long_period = p.sma_periods

        upper, middle, lower = bollinger_bands(closes, p.bollinger_period, p.bollinger_std)
        series = IndicatorSeries(
            rsi=rsi(closes, p.rsi_period),
            ema_short=ema(closes, p.ema_short),
            ema_long=ema(closes, p.ema_long),
            sma_50=sma(closes, sma_short_period),
            sma_200=sma(closes, sma_long_period),
            bollinger_upper=upper,
            bollinger_middle=middle,
            bollinger_lower=lower,
        )

        return IndicatorSnapshot(
            rsi=series.rsi[-1],
            ema_short=series.ema_short[-1],
            ema_long=series.ema_long[-1],
            sma_50=series.sma_50[-1],
            sma_200=series.sma_200[-1],
            bollinger=BollingerValue(upper[-1], middle[-1], lower[-1]),
            fibonacci=fibonacci_levels(highs, lows, p.fibonacci_lookback),
            last_price=closes[-1],
            time=candles[-1].open_time,
            series=series,
        )

    def calculate_latest(self, candles: Sequence[Candle]) -> IndicatorSnapshot | None:
        """Same as calculate(), or None if not enough data."""
        try:
            return self.calculate(candles)
        except InsufficientDataError:
            return None
