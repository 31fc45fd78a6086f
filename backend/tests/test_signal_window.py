"""Tests for SignalWindow duplicate suppression and cooldowns."""

from datetime import datetime, timedelta, timezone

import pytest

from core.models import Action, ConsensusDecision, Cooldowns, IndicatorName, Signal
from core.signal_window import SignalWindow

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_signal(seconds=0, indicator=IndicatorName.RSI, action=Action.BUY, symbol="BTCUSDT"):
    return Signal(
        symbol=symbol,
        time=T0 + timedelta(seconds=seconds),
        indicator=indicator,
        action=action,
        price=100.0,
    )


def make_decision(seconds=0, action=Action.BUY, symbol="BTCUSDT"):
    return ConsensusDecision(
        symbol=symbol,
        time=T0 + timedelta(seconds=seconds),
        action=action,
        strength=5,
        score=5,
        reason="test",
        price=100.0,
        signal_count=3,
    )


@pytest.fixture
def window():
    return SignalWindow(Cooldowns(), time_window_seconds=300)


class TestDuplicateSuppression:
    @pytest.mark.asyncio
    async def test_duplicate_within_window_is_absorbed(self, window):
        first = await window.ingest("BTCUSDT", [make_signal(0)], T0)
        second = await window.ingest("BTCUSDT", [make_signal(3)], T0 + timedelta(seconds=3))

        assert len(first.accepted) == 1
        assert second.accepted == []
        assert len(second.window) == 1

    @pytest.mark.asyncio
    async def test_duplicate_window_is_inclusive(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        update = await window.ingest("BTCUSDT", [make_signal(5)], T0 + timedelta(seconds=5))

        assert update.accepted == []

    @pytest.mark.asyncio
    async def test_outside_duplicate_window_is_accepted(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        update = await window.ingest("BTCUSDT", [make_signal(6)], T0 + timedelta(seconds=6))

        assert len(update.accepted) == 1
        assert len(update.window) == 2

    @pytest.mark.asyncio
    async def test_other_action_is_not_duplicate(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        update = await window.ingest(
            "BTCUSDT", [make_signal(1, action=Action.SELL)], T0 + timedelta(seconds=1)
        )

        assert len(update.accepted) == 1

    @pytest.mark.asyncio
    async def test_duplicates_in_one_batch(self, window):
        update = await window.ingest("BTCUSDT", [make_signal(0), make_signal(2)], T0 + timedelta(seconds=2))

        assert len(update.accepted) == 1


class TestEmissionCooldown:
    @pytest.mark.asyncio
    async def test_repeat_is_accepted_but_not_emitted(self, window):
        first = await window.ingest("BTCUSDT", [make_signal(0)], T0)
        second = await window.ingest("BTCUSDT", [make_signal(60)], T0 + timedelta(seconds=60))

        assert first.emitted == first.accepted
        assert len(second.accepted) == 1
        assert second.emitted == []
        # Suppressed signal still counts toward consensus
        assert len(second.window) == 2

    @pytest.mark.asyncio
    async def test_emitted_again_after_cooldown(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        later = 1800
        update = await window.ingest("BTCUSDT", [make_signal(later)], T0 + timedelta(seconds=later))

        assert len(update.emitted) == 1


class TestPruning:
    @pytest.mark.asyncio
    async def test_old_signals_leave_the_window(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        update = await window.ingest(
            "BTCUSDT",
            [make_signal(400, indicator=IndicatorName.BOLLINGER)],
            T0 + timedelta(seconds=400),
        )

        assert [s.indicator for s in update.window] == [IndicatorName.BOLLINGER]
        assert window.snapshot("BTCUSDT") == update.window

    @pytest.mark.asyncio
    async def test_symbols_and_scopes_are_separate(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        eth = await window.ingest("ETHUSDT", [make_signal(0, symbol="ETHUSDT")], T0)
        other = await window.ingest("BTCUSDT", [make_signal(0)], T0, scope="alice")

        assert len(eth.accepted) == 1
        assert len(other.accepted) == 1
        assert len(other.emitted) == 1
        assert len(window.snapshot("BTCUSDT")) == 1
        assert len(window.snapshot("BTCUSDT", scope="alice")) == 1

    @pytest.mark.asyncio
    async def test_clear(self, window):
        await window.ingest("BTCUSDT", [make_signal(0)], T0)
        await window.ingest("ETHUSDT", [make_signal(0, symbol="ETHUSDT")], T0)
        await window.clear(symbol="BTCUSDT")

        assert window.snapshot("BTCUSDT") == []
        assert len(window.snapshot("ETHUSDT")) == 1
        # Cooldown state went with it
        update = await window.ingest("BTCUSDT", [make_signal(60)], T0 + timedelta(seconds=60))
        assert len(update.emitted) == 1


class TestDecisionCooldown:
    @pytest.mark.asyncio
    async def test_one_decision_per_action_within_cooldown(self, window):
        assert await window.admit_decision(make_decision(0)) is True
        assert await window.admit_decision(make_decision(600)) is False

    @pytest.mark.asyncio
    async def test_opposite_action_not_blocked(self, window):
        assert await window.admit_decision(make_decision(0)) is True
        assert await window.admit_decision(make_decision(60, action=Action.SELL)) is True

    @pytest.mark.asyncio
    async def test_admitted_after_cooldown(self, window):
        assert await window.admit_decision(make_decision(0)) is True
        assert await window.admit_decision(make_decision(1800)) is True

    @pytest.mark.asyncio
    async def test_scopes_have_separate_cooldowns(self, window):
        assert await window.admit_decision(make_decision(0)) is True
        assert await window.admit_decision(make_decision(0), scope="alice") is True
