"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
    ema,
    sma,
    rsi,
    rolling_std,
    bollinger_bands,
    highest,
    lowest,
    fibonacci_levels,
    BollingerValue,
    FibonacciLevels,
    IndicatorCalculator,
    IndicatorSeries,
    IndicatorSnapshot,
)

__all__ = [
    "ema",
    "sma",
    "rsi",
    "rolling_std",
    "bollinger_bands",
    "highest",
    "lowest",
    "fibonacci_levels",
    "BollingerValue",
    "FibonacciLevels",
    "IndicatorCalculator",
    "IndicatorSeries",
    "IndicatorSnapshot",
]
