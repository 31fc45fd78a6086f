"""Signal detection: turn an indicator snapshot into per-indicator signals.

Pure functions, no I/O. Each rule fires at most once per candle, so a
single closed candle yields between zero and four signals.
"""

import math
from typing import Sequence

from core.indicators import IndicatorSnapshot
from core.models.candle import Candle
from core.models.config import IndicatorPeriods
from core.models.signal import Action, IndicatorName, Signal


def _valid(*values: float) -> bool:
    return all(v is not None and not math.isnan(v) for v in values)


def detect_signals(
    symbol: str,
    candles: Sequence[Candle],
    snapshot: IndicatorSnapshot | None,
    periods: IndicatorPeriods | None = None,
) -> list[Signal]:
    """
    Evaluate the detector rules for the last candle.

    Args:
        symbol: Trading pair
        candles: Candle window the snapshot was computed from, oldest first
        snapshot: Indicator values for the last candle
        periods: Detector bounds (RSI oversold/overbought)

    Returns:
        Signals for the last candle; empty if the candle is still open
    """
    if snapshot is None or not candles:
        return []

    current = candles[-1]
    if not current.is_closed:
        return []

    periods = periods or IndicatorPeriods()
    previous = candles[-2] if len(candles) >= 2 else None

    signals: list[Signal] = []
    for rule in (_rsi_rule, _ema_crossover_rule, _fibonacci_rule, _bollinger_rule):
        signal = rule(symbol, current, previous, snapshot, periods)
        if signal is not None:
            signals.append(signal)
    return signals


def _make(
    symbol: str,
    candle: Candle,
    indicator: IndicatorName,
    action: Action,
    value: str,
    reason: str,
) -> Signal:
    return Signal(
        symbol=symbol,
        time=candle.open_time,
        indicator=indicator,
        action=action,
        price=candle.close,
        value=value,
        reason=reason,
    )


def _rsi_rule(symbol, candle, previous, snapshot, periods) -> Signal | None:
    value = snapshot.rsi
    if not _valid(value):
        return None

    if value < periods.rsi_oversold:
        return _make(
            symbol, candle, IndicatorName.RSI, Action.BUY,
            f"{value:.2f}",
            f"RSI is oversold ({value:.2f} < {periods.rsi_oversold:g})",
        )
    if value > periods.rsi_overbought:
        return _make(
            symbol, candle, IndicatorName.RSI, Action.SELL,
            f"{value:.2f}",
            f"RSI is overbought ({value:.2f} > {periods.rsi_overbought:g})",
        )
    return None


def _ema_crossover_rule(symbol, candle, previous, snapshot, periods) -> Signal | None:
    prev_short = snapshot.previous_ema_short
    prev_long = snapshot.previous_ema_long
    cur_short = snapshot.ema_short
    cur_long = snapshot.ema_long
    if previous is None or not _valid(prev_short, prev_long, cur_short, cur_long):
        return None

    value = f"{cur_short:.2f}/{cur_long:.2f}"
    short_name = f"EMA{periods.ema_short}"
    long_name = f"EMA{periods.ema_long}"

    # Golden cross
    if prev_short <= prev_long and cur_short > cur_long:
        return _make(
            symbol, candle, IndicatorName.EMA_CROSSOVER, Action.BUY, value,
            f"{short_name} crossed above {long_name} ({cur_short:.2f} > {cur_long:.2f})",
        )
    # Death cross
    if prev_short >= prev_long and cur_short < cur_long:
        return _make(
            symbol, candle, IndicatorName.EMA_CROSSOVER, Action.SELL, value,
            f"{short_name} crossed below {long_name} ({cur_short:.2f} < {cur_long:.2f})",
        )
    return None


def _fibonacci_rule(symbol, candle, previous, snapshot, periods) -> Signal | None:
    if previous is None:
        return None

    fib = snapshot.fibonacci
    prev_close = previous.close
    price = candle.close
    if not _valid(fib.level_61_8, fib.level_38_2):
        return None

    if prev_close < fib.level_61_8 <= price:
        return _make(
            symbol, candle, IndicatorName.FIBONACCI, Action.BUY,
            f"{fib.level_61_8:.2f}",
            f"Price bounced up from 61.8% Fibonacci level ({fib.level_61_8:.2f})",
        )
    if prev_close > fib.level_38_2 >= price:
        return _make(
            symbol, candle, IndicatorName.FIBONACCI, Action.SELL,
            f"{fib.level_38_2:.2f}",
            f"Price broke below 38.2% Fibonacci level ({fib.level_38_2:.2f})",
        )
    return None


def _bollinger_rule(symbol, candle, previous, snapshot, periods) -> Signal | None:
    upper = snapshot.bollinger.upper
    lower = snapshot.bollinger.lower
    if not _valid(upper, lower):
        return None

    price = candle.close
    value = f"{lower:.2f}/{upper:.2f}"
    if price <= lower:
        return _make(
            symbol, candle, IndicatorName.BOLLINGER, Action.BUY, value,
            f"Price reached lower Bollinger Band ({lower:.2f})",
        )
    if price >= upper:
        return _make(
            symbol, candle, IndicatorName.BOLLINGER, Action.SELL, value,
            f"Price reached upper Bollinger Band ({upper:.2f})",
        )
    return None
