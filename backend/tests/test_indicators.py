"""Tests for technical indicators."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import InsufficientDataError
from core.indicators import (
    IndicatorCalculator,
    bollinger_bands,
    ema,
    fibonacci_levels,
    highest,
    lowest,
    rsi,
    sma,
)
from core.models import Candle, IndicatorPeriods

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_candles(closes, symbol="BTCUSDT", interval="5m"):
    return [
        Candle(
            symbol=symbol,
            interval=interval,
            open_time=T0 + timedelta(minutes=5 * i),
            open=c,
            high=c + 1,
            low=c - 1,
            close=c,
            volume=10.0,
        )
        for i, c in enumerate(closes)
    ]


class TestSMA:
    """Tests for SMA calculation."""

    def test_sma_basic(self):
        values = [float(i) for i in range(1, 11)]
        result = sma(values, 5)

        assert len(result) == 10
        assert math.isnan(result[3])
        assert result[4] == pytest.approx(3.0)
        assert result[-1] == pytest.approx(8.0)

    def test_sma_insufficient_data(self):
        result = sma([1.0, 2.0], 5)
        assert len(result) == 2
        assert all(math.isnan(v) for v in result)


class TestEMA:
    """Tests for EMA calculation."""

    def test_ema_seeded_with_sma(self):
        values = [float(i) for i in range(1, 11)]
        result = ema(values, 5)

        assert math.isnan(result[0])
        assert math.isnan(result[3])
        # Seed is SMA of first 5 = 3
        assert result[4] == pytest.approx(3.0)
        # k = 1/3: 6 * 1/3 + 3 * 2/3 = 4
        assert result[5] == pytest.approx(4.0)

    def test_ema_insufficient_data(self):
        result = ema([100.0, 101.0, 102.0], 10)
        assert len(result) == 3
        assert all(math.isnan(v) for v in result)


class TestRSI:
    """Tests for RSI calculation."""

    def test_rsi_rising_series(self):
        values = [100.0 + i for i in range(30)]
        result = rsi(values, 14)

        assert all(math.isnan(v) for v in result[:14])
        assert result[14] == pytest.approx(100.0)
        assert result[-1] == pytest.approx(100.0)

    def test_rsi_falling_series(self):
        values = [200.0 - i for i in range(30)]
        assert rsi(values, 14)[-1] == pytest.approx(0.0)

    def test_rsi_flat_series_is_neutral(self):
        assert rsi([100.0] * 30, 14)[-1] == pytest.approx(50.0)

    def test_rsi_bounded(self):
        values = [100.0, 102.0, 101.0, 104.0, 99.0, 98.0, 103.0, 105.0] * 5
        for v in rsi(values, 14)[14:]:
            assert 0.0 <= v <= 100.0

    def test_rsi_needs_more_than_period(self):
        result = rsi([float(i) for i in range(14)], 14)
        assert all(math.isnan(v) for v in result)


class TestBollinger:
    """Tests for Bollinger Bands."""

    def test_flat_series_collapses_bands(self):
        upper, middle, lower = bollinger_bands([50.0] * 25, 20, 2.0)

        assert middle[-1] == pytest.approx(50.0)
        assert upper[-1] == pytest.approx(50.0)
        assert lower[-1] == pytest.approx(50.0)

    def test_bands_are_symmetric(self):
        values = [100.0 + (i % 5) for i in range(40)]
        upper, middle, lower = bollinger_bands(values, 20, 2.0)

        assert upper[-1] > middle[-1] > lower[-1]
        assert upper[-1] - middle[-1] == pytest.approx(middle[-1] - lower[-1])
        assert math.isnan(upper[18])


class TestHighLow:
    def test_highest_lowest(self):
        values = [3.0, 1.0, 4.0, 1.0, 5.0, 9.0, 2.0]
        assert highest(values, 3)[-1] == 9.0
        assert lowest(values, 3)[-1] == 2.0
        assert math.isnan(highest(values, 3)[1])


class TestFibonacci:
    """Tests for Fibonacci retracement levels."""

    def test_levels(self):
        levels = fibonacci_levels([110.0, 105.0], [100.0, 102.0])

        assert levels.level_0 == pytest.approx(110.0)
        assert levels.level_23_6 == pytest.approx(107.64)
        assert levels.level_38_2 == pytest.approx(106.18)
        assert levels.level_50 == pytest.approx(105.0)
        assert levels.level_61_8 == pytest.approx(103.82)
        assert levels.level_78_6 == pytest.approx(102.14)
        assert levels.level_100 == pytest.approx(100.0)

    def test_lookback_limits_window(self):
        highs = [500.0] + [110.0] * 10
        lows = [1.0] + [100.0] * 10
        levels = fibonacci_levels(highs, lows, lookback=10)

        assert levels.level_0 == 110.0
        assert levels.level_100 == 100.0

    def test_empty_input(self):
        with pytest.raises(ValueError):
            fibonacci_levels([], [])


class TestIndicatorCalculator:
    """Tests for IndicatorCalculator."""

    def test_insufficient_data_raises(self):
        calc = IndicatorCalculator()
        candles = make_candles([100.0] * 29)

        with pytest.raises(InsufficientDataError) as exc_info:
            calc.calculate(candles)
        assert exc_info.value.available == 29
        assert exc_info.value.required == 30

    def test_calculate_latest_returns_none(self):
        calc = IndicatorCalculator()
        assert calc.calculate_latest(make_candles([100.0] * 10)) is None

    def test_min_candles_floor(self):
        periods = IndicatorPeriods(min_candles=5)
        assert IndicatorCalculator(periods).min_candles == 30

    def test_snapshot_values(self):
        closes = [100.0 + i * 0.5 for i in range(60)]
        candles = make_candles(closes)
        snapshot = IndicatorCalculator().calculate(candles)

        assert snapshot.last_price == closes[-1]
        assert snapshot.time == candles[-1].open_time
        assert snapshot.rsi == pytest.approx(100.0)
        assert snapshot.ema_short > snapshot.ema_long
        assert snapshot.sma_50 == pytest.approx(sum(closes[-50:]) / 50)
        # Not enough candles for SMA200 yet
        assert math.isnan(snapshot.sma_200)
        assert snapshot.fibonacci.level_0 == pytest.approx(closes[-1] + 1)
        assert len(snapshot.series.rsi) == 60

    def test_previous_ema_values(self):
        candles = make_candles([100.0 + i for i in range(40)])
        snapshot = IndicatorCalculator().calculate(candles)

        assert snapshot.previous_ema_short == snapshot.series.ema_short[-2]
        assert snapshot.previous_ema_long == snapshot.series.ema_long[-2]

    def test_to_dict(self):
        snapshot = IndicatorCalculator().calculate(make_candles([100.0 + i for i in range(40)]))
        data = snapshot.to_dict()

        assert set(data["bollinger"]) == {"upper", "middle", "lower"}
        assert "level_61_8" in data["fibonacci"]
        assert data["time"] == snapshot.time.isoformat()
