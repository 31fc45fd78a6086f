"""Tests for the PortfolioLedger service."""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from core.errors import InsufficientFundsError, InvalidTradeError, PositionNotFoundError
from core.models import Action, ConsensusDecision, MoneyManagement, Portfolio
from app.events import EventBus, EventChannel
from app.services import PortfolioLedger
from app.storage import InMemoryPortfolioRepository


def make_decision(action=Action.BUY, price=100.0, symbol="BTCUSDT"):
    return ConsensusDecision(
        symbol=symbol,
        time=datetime(2024, 1, 1, tzinfo=timezone.utc),
        action=action,
        strength=6,
        score=5,
        reason="Strong buy signals (3) with consensus score 5",
        price=price,
        signal_count=3,
    )


@pytest.fixture
def repo():
    return InMemoryPortfolioRepository()


@pytest.fixture
def ledger(repo):
    return PortfolioLedger(repo, starting_balance=10000.0)


class TestPortfolioCreation:
    @pytest.mark.asyncio
    async def test_get_or_create_persists_new_portfolio(self, ledger, repo):
        portfolio = await ledger.get_or_create("alice")

        assert portfolio.balance == 10000.0
        assert portfolio.equity == 10000.0
        assert portfolio.positions == {}
        assert (await repo.get("alice")).balance == 10000.0

    @pytest.mark.asyncio
    async def test_loads_existing_portfolio(self, repo):
        await repo.save(Portfolio.new("bob", 500.0))
        ledger = PortfolioLedger(repo, starting_balance=10000.0)

        assert (await ledger.get_portfolio("bob")).balance == 500.0


class TestManualTrades:
    @pytest.mark.asyncio
    async def test_buy_and_sell(self, ledger):
        await ledger.manual_trade("default", "btcusdt", "BUY", 0.1, 50000.0)
        portfolio = await ledger.manual_trade("default", "BTCUSDT", Action.SELL, 0.1, 55000.0)

        assert portfolio.balance == pytest.approx(10500.0)
        assert portfolio.positions == {}

        transactions = await ledger.get_transactions("default")
        assert [tx.action for tx in transactions] == [Action.SELL, Action.BUY]
        assert all(tx.signal == "MANUAL" for tx in transactions)
        assert transactions[1].symbol == "BTCUSDT"

    @pytest.mark.asyncio
    async def test_string_amounts_are_coerced(self, ledger):
        portfolio = await ledger.manual_trade("default", "ETHUSDT", "BUY", "2", "1500")
        assert portfolio.get_position("ETHUSDT").quantity == 2.0

    @pytest.mark.asyncio
    async def test_garbage_amount_rejected(self, ledger):
        with pytest.raises(InvalidTradeError):
            await ledger.manual_trade("default", "ETHUSDT", "BUY", "abc", 1500.0)

    @pytest.mark.asyncio
    async def test_rejected_trade_leaves_state_unchanged(self, ledger, repo):
        await ledger.manual_trade("default", "BTCUSDT", "BUY", 0.1, 50000.0)

        with pytest.raises(InsufficientFundsError):
            await ledger.manual_trade("default", "BTCUSDT", "BUY", 1.0, 50000.0)

        portfolio = await ledger.get_portfolio("default")
        assert portfolio.balance == pytest.approx(5000.0)
        assert portfolio.get_position("BTCUSDT").quantity == pytest.approx(0.1)
        assert len(await repo.get_transactions("default")) == 1

    @pytest.mark.asyncio
    async def test_failed_save_leaves_state_unchanged(self, ledger, repo):
        repo.save_trade = AsyncMock(side_effect=ConnectionError("db down"))

        with pytest.raises(ConnectionError):
            await ledger.manual_trade("default", "BTCUSDT", "BUY", 0.1, 50000.0)

        portfolio = await ledger.get_portfolio("default")
        assert portfolio.balance == 10000.0
        assert portfolio.positions == {}

    @pytest.mark.asyncio
    async def test_accounts_are_independent(self, ledger):
        await ledger.manual_trade("alice", "BTCUSDT", "BUY", 0.1, 50000.0)

        assert (await ledger.get_portfolio("bob")).balance == 10000.0
        assert await ledger.get_transactions("bob") == []

    @pytest.mark.asyncio
    async def test_concurrent_trades_serialize(self, ledger):
        # Ten BUYs of 1500 each: only six fit in 10000
        results = await asyncio.gather(
            *[ledger.manual_trade("default", "ETHUSDT", "BUY", 1.0, 1500.0) for _ in range(10)],
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, InsufficientFundsError)]
        assert len(failures) == 4
        portfolio = await ledger.get_portfolio("default")
        assert portfolio.balance == pytest.approx(1000.0)
        assert portfolio.get_position("ETHUSDT").quantity == pytest.approx(6.0)
        assert len(await ledger.get_transactions("default")) == 6

    @pytest.mark.asyncio
    async def test_transaction_history_limit(self, ledger):
        for _ in range(3):
            await ledger.manual_trade("default", "ETHUSDT", "BUY", 0.1, 100.0)

        assert len(await ledger.get_transactions("default", limit=2)) == 2


class TestProcessDecision:
    @pytest.mark.asyncio
    async def test_buy_spends_percentage_of_balance(self, ledger):
        portfolio = await ledger.process_decision(make_decision(Action.BUY, price=100.0))

        assert portfolio.balance == pytest.approx(9000.0)
        assert portfolio.get_position("BTCUSDT").quantity == pytest.approx(10.0)
        tx = (await ledger.get_transactions())[0]
        assert tx.signal == "CONSENSUS"

    @pytest.mark.asyncio
    async def test_sell_without_position(self, ledger):
        with pytest.raises(PositionNotFoundError):
            await ledger.process_decision(make_decision(Action.SELL))

        assert await ledger.get_transactions() == []

    @pytest.mark.asyncio
    async def test_sell_percentage_of_position(self, repo):
        ledger = PortfolioLedger(
            repo,
            starting_balance=10000.0,
            money_management=MoneyManagement(buy_percentage=50, sell_percentage=50),
        )
        await ledger.process_decision(make_decision(Action.BUY, price=100.0))
        portfolio = await ledger.process_decision(make_decision(Action.SELL, price=120.0))

        assert portfolio.get_position("BTCUSDT").quantity == pytest.approx(25.0)
        assert portfolio.balance == pytest.approx(5000.0 + 25.0 * 120.0)

    @pytest.mark.asyncio
    async def test_full_sell_removes_position(self, ledger):
        await ledger.process_decision(make_decision(Action.BUY, price=100.0))
        portfolio = await ledger.process_decision(make_decision(Action.SELL, price=100.0))

        assert portfolio.positions == {}
        assert portfolio.balance == pytest.approx(10000.0)

    @pytest.mark.asyncio
    async def test_publishes_portfolio_update(self, repo):
        events = EventBus()
        received = []

        async def on_portfolio(envelope):
            received.append(envelope)

        events.subscribe(EventChannel.PORTFOLIO, on_portfolio)
        ledger = PortfolioLedger(repo, events=events)
        await ledger.process_decision(make_decision(Action.BUY, price=100.0))

        assert len(received) == 1
        assert received[0].type == "portfolio_update"
        data = received[0].data
        assert data["transaction"]["signal"] == "CONSENSUS"
        assert data["portfolio"]["positions"][0]["symbol"] == "BTCUSDT"
        assert data["portfolio"]["positions"][0]["market_value"] == pytest.approx(1000.0)


class TestReconcile:
    @pytest.mark.asyncio
    async def test_reconcile_repairs_drift(self, ledger, repo):
        await ledger.manual_trade("default", "BTCUSDT", "BUY", 0.1, 50000.0)
        await ledger.manual_trade("default", "ETHUSDT", "BUY", 1.0, 2000.0)
        await ledger.manual_trade("default", "ETHUSDT", "SELL", 0.5, 2200.0)
        expected = await ledger.get_portfolio("default")

        # Corrupt the stored portfolio and load it with a fresh ledger
        await repo.save(expected.model_copy(update={"balance": 1.0, "positions": {}}))
        fresh = PortfolioLedger(repo, starting_balance=10000.0)
        rebuilt = await fresh.reconcile("default")

        assert rebuilt.balance == pytest.approx(expected.balance)
        assert set(rebuilt.positions) == {"BTCUSDT", "ETHUSDT"}
        assert rebuilt.positions["ETHUSDT"].quantity == pytest.approx(0.5)
        assert (await repo.get("default")).balance == pytest.approx(expected.balance)

    @pytest.mark.asyncio
    async def test_snapshot_export_import(self, ledger):
        await ledger.manual_trade("default", "BTCUSDT", "BUY", 0.1, 50000.0)
        await ledger.manual_trade("default", "BTCUSDT", "SELL", 0.04, 60000.0)
        snapshot = await ledger.export_snapshot("default")

        assert [tx.action for tx in snapshot.transactions] == [Action.BUY, Action.SELL]

        other = PortfolioLedger(InMemoryPortfolioRepository(), starting_balance=10000.0)
        restored = await other.import_snapshot(snapshot)

        assert restored.balance == pytest.approx(snapshot.portfolio.balance)
        assert restored.get_position("BTCUSDT").quantity == pytest.approx(0.06)
        assert len(await other.get_transactions("default")) == 2

    @pytest.mark.asyncio
    async def test_reconcile_after_import_uses_snapshot_opening_balance(self):
        source = PortfolioLedger(InMemoryPortfolioRepository(), starting_balance=5000.0)
        await source.manual_trade("default", "BTCUSDT", "BUY", 0.05, 40000.0)
        snapshot = await source.export_snapshot("default")
        assert snapshot.starting_balance == 5000.0

        other = PortfolioLedger(InMemoryPortfolioRepository(), starting_balance=10000.0)
        restored = await other.import_snapshot(snapshot)
        reconciled = await other.reconcile("default")

        assert restored.balance == pytest.approx(3000.0)
        assert reconciled.balance == pytest.approx(restored.balance)
        assert reconciled.starting_balance == 5000.0

    @pytest.mark.asyncio
    async def test_failed_import_keeps_previous_history(self, ledger, repo):
        await ledger.manual_trade("default", "ETHUSDT", "BUY", 1.0, 2000.0)
        before = await ledger.get_portfolio("default")

        source = PortfolioLedger(InMemoryPortfolioRepository(), starting_balance=10000.0)
        await source.manual_trade("default", "BTCUSDT", "BUY", 0.1, 50000.0)
        await source.manual_trade("default", "BTCUSDT", "SELL", 0.1, 51000.0)
        snapshot = await source.export_snapshot("default")

        repo.replace_history = AsyncMock(side_effect=ConnectionError("database unavailable"))
        with pytest.raises(ConnectionError):
            await ledger.import_snapshot(snapshot)

        repo.replace_history.assert_awaited_once()
        written, log = repo.replace_history.await_args.args
        assert written.balance == pytest.approx(10100.0)
        assert len(log) == 2

        assert (await ledger.get_portfolio("default")).balance == pytest.approx(before.balance)
        assert (await repo.get("default")).balance == pytest.approx(before.balance)
        transactions = await ledger.get_transactions("default")
        assert [tx.symbol for tx in transactions] == ["ETHUSDT"]
