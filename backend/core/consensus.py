"""Consensus aggregation over a window of indicator signals."""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from core.models.config import BotConfig
from core.models.signal import Action, ConsensusDecision, Signal

logger = logging.getLogger(__name__)

CONFLICT_RATIO_LIMIT = 0.5


@dataclass
class SignalTally:
    """Signal counts for one side (BUY or SELL)."""

    total: int = 0
    by_indicator: Counter = field(default_factory=Counter)

    def add(self, signal: Signal) -> None:
        self.total += 1
        self.by_indicator[signal.indicator.value] += 1

    @property
    def distinct_indicators(self) -> int:
        return sum(1 for count in self.by_indicator.values() if count > 0)


class ConsensusAggregator:
    """Turns a window of signals into at most one ConsensusDecision.

    Stateless apart from its configuration; the decision cooldown is
    enforced by SignalWindow.admit_decision.
    """

    def __init__(self, config: BotConfig | None = None):
        self.config = config or BotConfig()

    @property
    def time_window(self) -> timedelta:
        return timedelta(seconds=self.config.thresholds.time_window_seconds)

    def score(self, signals: Sequence[Signal]) -> int:
        return sum(self.config.weight(s.indicator.value, s.action.value) for s in signals)

    def analyze(
        self,
        symbol: str,
        signals: Sequence[Signal],
        now: datetime,
    ) -> ConsensusDecision | None:
        """
        Score the signal window and decide BUY, SELL or nothing.

        Args:
            symbol: Trading pair the window belongs to
            signals: Window contents (any order)
            now: Evaluation time; signals older than the time window are ignored

        Returns:
            ConsensusDecision, or None when there is no consensus
        """
        window = self.time_window
        recent = [s for s in signals if s.symbol == symbol and now - s.time <= window]
        if not recent:
            return None

        total_score = self.score(recent)
        tallies = {Action.BUY: SignalTally(), Action.SELL: SignalTally()}
        for signal in recent:
            tallies[signal.action].add(signal)

        buy_count = tallies[Action.BUY].total
        sell_count = tallies[Action.SELL].total
        larger = max(buy_count, sell_count)
        conflict_ratio = min(buy_count, sell_count) / larger
        if conflict_ratio > CONFLICT_RATIO_LIMIT and larger > 1:
            logger.debug(
                f"[{symbol}] Conflicting signals (buy={buy_count}, sell={sell_count}), no decision"
            )
            return None

        thresholds = self.config.thresholds
        if total_score >= thresholds.buy:
            action = Action.BUY
            reason = f"Strong buy signals ({buy_count}) with consensus score {total_score}"
        elif total_score <= thresholds.sell:
            action = Action.SELL
            reason = f"Strong sell signals ({sell_count}) with consensus score {total_score}"
        else:
            return None

        strength = abs(total_score)
        diversity = tallies[action].distinct_indicators
        if diversity >= 2:
            strength += diversity - 1
            reason += f" with confirmation from {diversity} different indicators"

        latest = max(recent, key=lambda s: s.time)
        return ConsensusDecision(
            symbol=symbol,
            time=now,
            action=action,
            strength=strength,
            score=total_score,
            reason=reason,
            price=latest.price,
            signal_count=len(recent),
        )
