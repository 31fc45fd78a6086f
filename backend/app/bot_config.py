"""Bot configuration loaded from trading.yaml and the config repository.

Resolution order on startup:
1. Stored configuration for the account (BotConfigRepository)
2. trading.yaml next to the backend package (or TRADING_CONFIG_PATH)
3. Built-in defaults

When nothing is stored yet, the resolved file/default config is saved so
later edits through storage take effect on the next boot.
"""

import logging
from pathlib import Path

import yaml
from dotenv import load_dotenv

from core.models.config import BotConfig
from core.repository_protocol import BotConfigRepository

logger = logging.getLogger(__name__)

_DEFAULT_PATH = Path(__file__).parent.parent / "trading.yaml"


def load_bot_config(path: Path | str | None = None) -> BotConfig:
    """Load bot config from YAML file.

    Falls back to defaults if the file doesn't exist.
    """
    config_path = Path(path) if path else _DEFAULT_PATH

    env_path = config_path.parent / ".env"
    load_dotenv(env_path, override=False)

    if not config_path.exists():
        logger.info("No trading.yaml found at %s, using default bot config", config_path)
        return BotConfig()

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    config = BotConfig(**raw)
    logger.info(
        "Loaded bot config: thresholds buy=%d sell=%d window=%ds, buy %.1f%% / sell %.1f%%",
        config.thresholds.buy,
        config.thresholds.sell,
        config.thresholds.time_window_seconds,
        config.money_management.buy_percentage,
        config.money_management.sell_percentage,
    )
    return config


async def resolve_bot_config(
    repo: BotConfigRepository,
    fallback: BotConfig,
    account_id: str = "default",
) -> BotConfig:
    """Return the stored config, saving `fallback` first if none exists."""
    stored = await repo.get(account_id)
    if stored is not None:
        logger.info(f"Using stored bot config for '{account_id}'")
        return stored

    await repo.save(fallback, account_id)
    logger.info(f"No stored bot config for '{account_id}', saved defaults")
    return fallback
