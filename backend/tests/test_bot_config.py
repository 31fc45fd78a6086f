"""Tests for bot configuration loading and settings."""

import pytest
from pydantic import ValidationError

from core.models import BotConfig, IndicatorPeriods, MoneyManagement, Thresholds
from app.bot_config import load_bot_config, resolve_bot_config
from app.config import Settings
from app.storage import InMemoryBotConfigRepository


class TestBotConfigModel:
    def test_defaults(self):
        config = BotConfig()

        assert config.weight("RSI", "BUY") == 2
        assert config.weight("FIBONACCI", "SELL") == -1
        assert config.thresholds.buy == 3
        assert config.thresholds.sell == -3
        assert config.thresholds.time_window_seconds == 300
        assert config.money_management.buy_percentage == 10.0
        assert config.money_management.sell_percentage == 100.0
        assert config.cooldowns.duplicate_window_seconds == 5

    def test_unknown_weight_is_zero(self):
        assert BotConfig().weight("MACD", "BUY") == 0

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValidationError):
            Thresholds(buy=-1, sell=2)

    def test_ema_periods_must_be_ordered(self):
        with pytest.raises(ValidationError):
            IndicatorPeriods(ema_short=30, ema_long=10)

    def test_min_candles_clamped(self):
        assert IndicatorPeriods(min_candles=3).min_candles == 30

    @pytest.mark.parametrize("pct", [0, -5, 101])
    def test_percentages_bounded(self, pct):
        with pytest.raises(ValidationError):
            MoneyManagement(buy_percentage=pct)

    def test_json_round_trip(self):
        config = BotConfig(thresholds=Thresholds(buy=4, sell=-4))
        restored = BotConfig.model_validate_json(config.model_dump_json())

        assert restored.thresholds.buy == 4
        assert restored.indicators.sma_periods == (50, 200)


class TestLoadBotConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_bot_config(tmp_path / "trading.yaml")
        assert config == BotConfig()

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "trading.yaml"
        path.write_text(
            "thresholds:\n"
            "  buy: 4\n"
            "  sell: -5\n"
            "money_management:\n"
            "  buy_percentage: 25\n"
            "signal_weights:\n"
            "  RSI_BUY: 3\n"
        )
        config = load_bot_config(path)

        assert config.thresholds.buy == 4
        assert config.thresholds.sell == -5
        assert config.thresholds.time_window_seconds == 300
        assert config.money_management.buy_percentage == 25
        assert config.signal_weights == {"RSI_BUY": 3}

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "trading.yaml"
        path.write_text("")
        assert load_bot_config(path) == BotConfig()

    def test_invalid_yaml_values(self, tmp_path):
        path = tmp_path / "trading.yaml"
        path.write_text("thresholds:\n  buy: 1\n  sell: 5\n")
        with pytest.raises(ValidationError):
            load_bot_config(path)


class TestResolveBotConfig:
    @pytest.mark.asyncio
    async def test_saves_fallback_when_nothing_stored(self):
        repo = InMemoryBotConfigRepository()
        fallback = BotConfig(thresholds=Thresholds(buy=6, sell=-6))

        resolved = await resolve_bot_config(repo, fallback)

        assert resolved.thresholds.buy == 6
        assert (await repo.get("default")).thresholds.buy == 6

    @pytest.mark.asyncio
    async def test_stored_config_wins(self):
        repo = InMemoryBotConfigRepository()
        await repo.save(BotConfig(thresholds=Thresholds(buy=8, sell=-8)), "default")

        resolved = await resolve_bot_config(repo, BotConfig())

        assert resolved.thresholds.buy == 8


class TestSettings:
    def test_monitor_specs(self):
        settings = Settings(
            _env_file=None,
            monitors=["btcusdt:1m:alice", "ETHUSDT", " solusdt : 15m "],
            default_interval="5m",
        )

        assert settings.monitor_specs() == [
            ("BTCUSDT", "1m", "alice"),
            ("ETHUSDT", "5m", "default"),
            ("SOLUSDT", "15m", "default"),
        ]

    def test_starting_balance_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, starting_balance=0)

    def test_storage_backend_choices(self):
        assert Settings(_env_file=None, storage_backend="memory").storage_backend == "memory"
        with pytest.raises(ValidationError):
            Settings(_env_file=None, storage_backend="redis")
