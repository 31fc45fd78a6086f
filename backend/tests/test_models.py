"""Tests for core data models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from core.models import (
    Action,
    Candle,
    CandleBuffer,
    IndicatorName,
    MonitorTask,
    Portfolio,
    Signal,
    monitor_key,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_candle(minutes, close=100.0, is_closed=True):
    return Candle(
        symbol="BTCUSDT",
        interval="5m",
        open_time=T0 + timedelta(minutes=minutes),
        open=close,
        high=close + 1,
        low=close - 1,
        close=close,
        is_closed=is_closed,
    )


class TestCandleBuffer:
    def test_add_and_trim(self):
        buffer = CandleBuffer(symbol="BTCUSDT", interval="5m", max_size=3)
        for i in range(5):
            assert buffer.add(make_candle(5 * i, close=100.0 + i)) is True

        assert len(buffer) == 3
        assert [c.close for c in buffer.candles] == [102.0, 103.0, 104.0]

    def test_open_candle_is_replaced(self):
        buffer = CandleBuffer(symbol="BTCUSDT", interval="5m")
        buffer.add(make_candle(0))
        buffer.add(make_candle(5, close=101.0, is_closed=False))
        assert buffer.add(make_candle(5, close=102.0, is_closed=False)) is True
        assert buffer.add(make_candle(5, close=103.0)) is True

        assert len(buffer) == 2
        assert buffer.candles[-1].close == 103.0
        assert buffer.closed_count() == 2

    def test_closed_candle_is_final(self):
        buffer = CandleBuffer(symbol="BTCUSDT", interval="5m")
        buffer.add(make_candle(0, close=100.0))

        assert buffer.add(make_candle(0, close=999.0)) is False
        assert buffer.candles[-1].close == 100.0

    def test_older_candles_ignored(self):
        buffer = CandleBuffer(symbol="BTCUSDT", interval="5m")
        buffer.add(make_candle(10))

        assert buffer.add(make_candle(5)) is False
        assert len(buffer) == 1

    def test_closed_excludes_open(self):
        buffer = CandleBuffer(symbol="BTCUSDT", interval="5m")
        buffer.extend([make_candle(5, is_closed=False), make_candle(0)])

        assert [c.open_time for c in buffer.candles] == [T0, T0 + timedelta(minutes=5)]
        assert len(buffer.closed()) == 1

    def test_replace(self):
        buffer = CandleBuffer(symbol="BTCUSDT", interval="5m")
        buffer.add(make_candle(100))
        buffer.replace([make_candle(0), make_candle(5)])

        assert len(buffer) == 2
        assert buffer.candles[-1].open_time == T0 + timedelta(minutes=5)

    def test_candle_is_frozen(self):
        with pytest.raises(ValidationError):
            make_candle(0).close = 5.0


class TestSignal:
    def test_deterministic_id(self):
        a = Signal(symbol="BTCUSDT", time=T0, indicator=IndicatorName.RSI, action=Action.BUY, price=1.0)
        b = Signal(symbol="BTCUSDT", time=T0, indicator=IndicatorName.RSI, action=Action.BUY, price=2.0)
        c = Signal(symbol="BTCUSDT", time=T0, indicator=IndicatorName.RSI, action=Action.SELL, price=1.0)

        assert a.id == b.id
        assert a.id != c.id
        assert len(a.id) == 32

    def test_key(self):
        signal = Signal(symbol="BTCUSDT", time=T0, indicator=IndicatorName.BOLLINGER, action=Action.SELL, price=1.0)
        assert signal.key == ("BTCUSDT", "BOLLINGER", "SELL")


class TestMonitorTask:
    def test_key(self):
        task = MonitorTask(symbol="BTCUSDT", interval="1h", account_id="alice")

        assert task.key == "BTCUSDT-1h-alice"
        assert monitor_key("ethusdt", "5m", "default") == "ETHUSDT-5m-default"
        assert task.ident == ("BTCUSDT", "1h", "alice")


class TestPortfolio:
    def test_new(self):
        portfolio = Portfolio.new("default", 2500.0, now=T0)

        assert portfolio.balance == portfolio.equity == 2500.0
        assert portfolio.created_at == portfolio.updated_at == T0
        assert portfolio.positions_value == 0.0
