"""Per-symbol signal window with duplicate suppression and cooldowns.

The window is the only shared mutable state in the signal pipeline.
Monitors for the same symbol on different intervals feed the same
window, so every mutation happens under the (scope, symbol) lock.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from core.models.config import Cooldowns
from core.models.signal import ConsensusDecision, Signal

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "default"

WindowKey = tuple[str, str]


@dataclass
class WindowUpdate:
    """Result of SignalWindow.ingest()."""

    accepted: list[Signal] = field(default_factory=list)
    emitted: list[Signal] = field(default_factory=list)
    window: list[Signal] = field(default_factory=list)


class SignalWindow:
    """
    Holds recent signals per (scope, symbol) for consensus scoring.

    - Duplicate window: a signal whose (symbol, indicator, action) was seen
      within `duplicate_window_seconds` (inclusive) is dropped.
    - Emission cooldown: an accepted signal is forwarded to the output
      stream only if its key was not emitted within `signal_cooldown_seconds`.
      Suppressed signals still count toward consensus.
    - Decision cooldown: at most one decision per (symbol, action) within
      `decision_cooldown_seconds`.
    """

    def __init__(self, cooldowns: Cooldowns | None = None, time_window_seconds: int = 300):
        self.cooldowns = cooldowns or Cooldowns()
        self.time_window = timedelta(seconds=time_window_seconds)
        self.duplicate_window = timedelta(seconds=self.cooldowns.duplicate_window_seconds)
        self.signal_cooldown = timedelta(seconds=self.cooldowns.signal_cooldown_seconds)
        self.decision_cooldown = timedelta(seconds=self.cooldowns.decision_cooldown_seconds)

        self._buffers: dict[WindowKey, list[Signal]] = {}
        self._locks: dict[WindowKey, asyncio.Lock] = {}
        self._last_emitted: dict[tuple[str, tuple[str, str, str]], datetime] = {}
        self._last_decision: dict[tuple[str, str, str], datetime] = {}

    def _lock(self, key: WindowKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _is_duplicate(self, buffer: list[Signal], signal: Signal) -> bool:
        for existing in buffer:
            if existing.key == signal.key and abs(existing.time - signal.time) <= self.duplicate_window:
                return True
        return False

    async def ingest(
        self,
        symbol: str,
        signals: list[Signal],
        now: datetime,
        scope: str = DEFAULT_SCOPE,
    ) -> WindowUpdate:
        """
        Add signals to the window for (scope, symbol).

        Args:
            symbol: Trading pair
            signals: New signals, typically from one closed candle
            now: Evaluation time used for pruning
            scope: Account the window belongs to

        Returns:
            WindowUpdate with accepted/emitted signals and the pruned window
        """
        key = (scope, symbol)
        async with self._lock(key):
            buffer = self._buffers.setdefault(key, [])
            update = WindowUpdate()

            for signal in signals:
                if self._is_duplicate(buffer, signal):
                    logger.debug(
                        f"[{symbol}] Duplicate {signal.indicator.value} {signal.action.value} "
                        f"at {signal.time.isoformat()} absorbed"
                    )
                    continue

                buffer.append(signal)
                update.accepted.append(signal)

                emit_key = (scope, signal.key)
                last = self._last_emitted.get(emit_key)
                if last is not None and abs(signal.time - last) < self.signal_cooldown:
                    logger.debug(
                        f"[{symbol}] {signal.indicator.value} {signal.action.value} in emission cooldown"
                    )
                    continue
                self._last_emitted[emit_key] = signal.time
                update.emitted.append(signal)

            cutoff = now - self.time_window
            buffer[:] = [s for s in buffer if s.time >= cutoff]
            update.window = list(buffer)
            return update

    async def admit_decision(self, decision: ConsensusDecision, scope: str = DEFAULT_SCOPE) -> bool:
        """Check-and-set the decision cooldown. Returns False if suppressed."""
        key = (scope, decision.symbol)
        async with self._lock(key):
            cooldown_key = (scope, decision.symbol, decision.action.value)
            last = self._last_decision.get(cooldown_key)
            if last is not None and abs(decision.time - last) < self.decision_cooldown:
                logger.debug(
                    f"[{decision.symbol}] {decision.action.value} decision suppressed by cooldown"
                )
                return False
            self._last_decision[cooldown_key] = decision.time
            return True

    def snapshot(self, symbol: str, scope: str = DEFAULT_SCOPE) -> list[Signal]:
        """Copy of the current window contents."""
        return list(self._buffers.get((scope, symbol), []))

    async def clear(self, symbol: str | None = None, scope: str | None = None) -> None:
        """Drop buffered signals and cooldown state matching symbol/scope."""

        def matches(s: str, sym: str) -> bool:
            return (scope is None or s == scope) and (symbol is None or sym == symbol)

        for key in [k for k in self._buffers if matches(*k)]:
            async with self._lock(key):
                self._buffers.pop(key, None)
        for key in [k for k in self._last_emitted if matches(k[0], k[1][0])]:
            del self._last_emitted[key]
        for key in [k for k in self._last_decision if matches(k[0], k[1])]:
            del self._last_decision[key]
