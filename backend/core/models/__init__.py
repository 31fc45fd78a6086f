from .candle import Candle, CandleBuffer
from .config import BotConfig, Cooldowns, IndicatorPeriods, MoneyManagement, Thresholds
from .monitor import MonitorState, MonitorTask, monitor_key
from .portfolio import AssetPosition, Portfolio, Transaction
from .signal import Action, ConsensusDecision, IndicatorName, Signal

__all__ = [
    "Action",
    "AssetPosition",
    "BotConfig",
    "Candle",
    "CandleBuffer",
    "ConsensusDecision",
    "Cooldowns",
    "IndicatorName",
    "IndicatorPeriods",
    "MoneyManagement",
    "MonitorState",
    "MonitorTask",
    "Portfolio",
    "Signal",
    "Thresholds",
    "Transaction",
    "monitor_key",
]
