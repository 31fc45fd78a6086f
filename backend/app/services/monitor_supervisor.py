"""Monitor supervisor: one candle pipeline per (symbol, interval, account).

Each monitor moves through Stopped -> Starting -> Running -> Stopped:

- Starting: fetch history, seed the candle buffer, evaluate the backlog
  once, subscribe to the feed, start the consumer task.
- Running: closed candles run indicators -> detector -> signal window ->
  consensus -> ledger; open candles only produce a price tick.
- Stopped: unsubscribed; the in-flight evaluation finishes and nothing
  else is scheduled.

Feed updates are queued per runner and consumed by a single task, so
candles for one monitor are processed in delivery order. Failures are
isolated to the monitor that owns them.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, TypeVar

from core.consensus import ConsensusAggregator
from core.errors import FeedUnavailableError, TradingBotError
from core.feed_protocol import CandleFeed, SubscriptionHandle
from core.indicators import IndicatorCalculator, IndicatorSnapshot
from core.models.candle import Candle, CandleBuffer
from core.models.config import BotConfig
from core.models.monitor import MonitorState, MonitorTask
from core.models.portfolio import Portfolio
from core.models.signal import Action, ConsensusDecision, Signal
from core.repository_protocol import MonitorTaskRepository, SignalRepository
from core.signal_detector import detect_signals
from core.signal_window import SignalWindow
from app.events import EventBus, EventChannel
from app.services.portfolio_ledger import PortfolioLedger

logger = logging.getLogger(__name__)

T = TypeVar("T")

MonitorKey = tuple[str, str, str]

MAX_RETRY_DELAY = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineResult:
    """Outcome of evaluating one closed candle."""

    snapshot: IndicatorSnapshot | None = None
    signals: list[Signal] = field(default_factory=list)
    emitted: list[Signal] = field(default_factory=list)
    decision: ConsensusDecision | None = None
    portfolio: Portfolio | None = None


class MonitorRunner:
    """Runtime state for one monitor key."""

    def __init__(self, task: MonitorTask, buffer_size: int):
        self.task = task
        self.buffer = CandleBuffer(symbol=task.symbol, interval=task.interval, max_size=buffer_size)
        self.queue: asyncio.Queue[Candle | None] = asyncio.Queue()
        self.handle: SubscriptionHandle | None = None
        self.consumer: asyncio.Task | None = None
        self.stopping = False

    @property
    def key(self) -> MonitorKey:
        return self.task.ident

    async def on_candle(self, candle: Candle) -> None:
        """Feed callback: enqueue only, processing happens in the consumer."""
        if self.stopping:
            return
        self.queue.put_nowait(candle)


class MonitorSupervisor:
    """
    Owns every monitor runner plus the shared signal window.

    The control surface (start/stop/status/manual trade) is what an API
    layer calls; everything else is internal.
    """

    def __init__(
        self,
        feed: CandleFeed,
        task_repo: MonitorTaskRepository,
        ledger: PortfolioLedger,
        signal_repo: SignalRepository | None = None,
        config: BotConfig | None = None,
        events: EventBus | None = None,
        history_limit: int = 200,
        min_history: int = 50,
        feed_timeout: float = 10.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.feed = feed
        self.task_repo = task_repo
        self.ledger = ledger
        self.signal_repo = signal_repo
        self.config = config or BotConfig()
        self.events = events
        self.history_limit = history_limit
        self.min_history = min_history
        self.feed_timeout = feed_timeout
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay

        self.calculator = IndicatorCalculator(self.config.indicators)
        self.aggregator = ConsensusAggregator(self.config)
        self.window = SignalWindow(self.config.cooldowns, self.config.thresholds.time_window_seconds)

        self._runners: dict[MonitorKey, MonitorRunner] = {}
        self._stopped: dict[MonitorKey, MonitorTask] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def start_monitor(
        self,
        symbol: str,
        interval: str = "5m",
        account_id: str = "default",
    ) -> MonitorTask:
        """
        Start monitoring a symbol/interval for an account.

        Returns the running task (or the existing one if already started).
        A stop that lands while starting wins and its Stopped task is returned.

        Raises:
            FeedUnavailableError: history or subscription failed after retries
        """
        symbol = symbol.upper()
        key = (symbol, interval, account_id)

        async with self._lock:
            existing = self._runners.get(key)
            if existing is not None:
                logger.info(f"Monitor {existing.task.key} already {existing.task.state.value}")
                return existing.task.model_copy()

            task = MonitorTask(
                symbol=symbol,
                interval=interval,
                account_id=account_id,
                state=MonitorState.STARTING,
                start_time=_utcnow(),
            )
            runner = MonitorRunner(task, buffer_size=max(self.history_limit, self.min_history))
            self._runners[key] = runner
            self._stopped.pop(key, None)

        logger.info(f"Starting monitor {task.key}")
        try:
            history = await self._call_feed(
                f"history {task.key}",
                lambda: self.feed.get_historical(symbol, interval, self.history_limit),
            )
            if runner.stopping:
                return await self._cancel_start(runner)
            runner.buffer.replace(history)
            await self._evaluate(runner)

            if runner.stopping:
                return await self._cancel_start(runner)

            runner.handle = await self._call_feed(
                f"subscribe {task.key}",
                lambda: self.feed.subscribe(
                    symbol, interval, runner.on_candle, self._error_callback(runner)
                ),
            )
            if runner.stopping:
                return await self._cancel_start(runner)
            runner.consumer = asyncio.create_task(self._consume(runner), name=f"monitor:{task.key}")

            task.state = MonitorState.RUNNING
            task.active = True
            task.last_error = None
            await self.task_repo.save(task)
        except Exception as e:
            if runner.stopping:
                logger.warning(f"Monitor {task.key} start failed after stop: {e}")
                return await self._cancel_start(runner)
            await self._abort_start(runner, e)
            raise

        logger.info(f"Monitor {task.key} running ({len(runner.buffer)} candles buffered)")
        await self._publish(EventChannel.MONITORS, "monitor_started", self._task_info(task))
        return task.model_copy()

    async def stop_monitor(
        self,
        symbol: str,
        interval: str = "5m",
        account_id: str = "default",
    ) -> bool:
        """Stop a monitor. Returns False if it was not running."""
        key = (symbol.upper(), interval, account_id)
        async with self._lock:
            runner = self._runners.pop(key, None)
        if runner is None:
            return False

        await self._halt(runner)
        task = runner.task
        task.state = MonitorState.STOPPED
        task.active = False
        task.stop_time = _utcnow()
        self._stopped[key] = task
        await self.task_repo.save(task)

        logger.info(f"Monitor {task.key} stopped")
        await self._publish(EventChannel.MONITORS, "monitor_stopped", self._task_info(task))
        return True

    async def restore(self) -> int:
        """
        Restart every monitor persisted as active.

        A monitor that fails to start is left Stopped. Returns the number
        of running monitors afterwards.
        """
        tasks = await self.task_repo.get_active()
        logger.info(f"Restoring {len(tasks)} active monitors")
        for task in tasks:
            try:
                await self.start_monitor(task.symbol, task.interval, task.account_id)
            except Exception as e:
                logger.error(f"Failed to restore monitor {task.key}: {e}")
        running = sum(1 for r in self._runners.values() if r.task.state == MonitorState.RUNNING)
        logger.info(f"Restored {running}/{len(tasks)} monitors")
        return running

    def get_status(self) -> dict[str, Any]:
        running = [r.task for r in self._runners.values() if r.task.state == MonitorState.RUNNING]
        return {
            "is_running": bool(running),
            "active_count": len(running),
            "active": [self._task_info(t) for t in running],
            "stopped": [self._task_info(t) for t in self._stopped.values()],
        }

    def get_active_symbols(self, account_id: str | None = None) -> list[dict[str, Any]]:
        now = _utcnow()
        result = []
        for runner in self._runners.values():
            task = runner.task
            if task.state != MonitorState.RUNNING:
                continue
            if account_id is not None and task.account_id != account_id:
                continue
            uptime = (now - task.start_time).total_seconds() if task.start_time else 0.0
            result.append(
                {
                    "symbol": task.symbol,
                    "interval": task.interval,
                    "account_id": task.account_id,
                    "start_time": task.start_time,
                    "uptime_seconds": uptime,
                }
            )
        return result

    def get_task(self, symbol: str, interval: str = "5m", account_id: str = "default") -> MonitorTask | None:
        key = (symbol.upper(), interval, account_id)
        runner = self._runners.get(key)
        if runner is not None:
            return runner.task.model_copy()
        task = self._stopped.get(key)
        return task.model_copy() if task is not None else None

    async def manual_trade(
        self,
        account_id: str,
        symbol: str,
        action: Action | str,
        quantity: float,
        price: float,
    ) -> Portfolio:
        """Execute a manual paper trade (errors propagate to the caller)."""
        return await self.ledger.manual_trade(account_id, symbol, action, quantity, price)

    async def flush(self, symbol: str, interval: str = "5m", account_id: str = "default") -> None:
        """Wait until every queued candle for a monitor has been processed."""
        runner = self._runners.get((symbol.upper(), interval, account_id))
        if runner is not None:
            await runner.queue.join()

    async def shutdown(self) -> None:
        """Stop all runners, leaving them active in storage for restore()."""
        async with self._lock:
            runners = list(self._runners.values())
            self._runners.clear()
        for runner in runners:
            await self._halt(runner)
        logger.info(f"Monitor supervisor shut down ({len(runners)} runners)")

    async def cleanup(
        self,
        signal_retention_days: int = 30,
        monitor_retention_days: int = 7,
        now: datetime | None = None,
    ) -> dict[str, int]:
        """Delete old signals and long-inactive monitor records."""
        now = now or _utcnow()
        deleted_signals = 0
        if self.signal_repo is not None:
            deleted_signals = await self.signal_repo.delete_older_than(
                now - timedelta(days=signal_retention_days)
            )
        deleted_tasks = await self.task_repo.delete_inactive_older_than(
            now - timedelta(days=monitor_retention_days)
        )
        logger.info(f"Cleanup removed {deleted_signals} signals, {deleted_tasks} inactive monitors")
        return {"signals": deleted_signals, "monitors": deleted_tasks}

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _consume(self, runner: MonitorRunner) -> None:
        while True:
            candle = await runner.queue.get()
            try:
                if candle is None:
                    return
                if not runner.stopping:
                    await self._handle_candle(runner, candle)
            except Exception as e:
                logger.error(f"Monitor {runner.task.key} candle processing error: {e}")
            finally:
                runner.queue.task_done()

    async def _handle_candle(self, runner: MonitorRunner, candle: Candle) -> PipelineResult | None:
        task = runner.task
        if not runner.buffer.add(candle):
            return None

        await self._publish(
            EventChannel.PRICES,
            "price_update",
            {
                "symbol": task.symbol,
                "interval": task.interval,
                "account_id": task.account_id,
                "price": candle.close,
                "time": candle.open_time,
                "is_closed": candle.is_closed,
            },
        )
        if not candle.is_closed:
            return None

        if runner.buffer.closed_count() < self.min_history:
            await self._refill(runner, candle)

        return await self._evaluate(runner)

    async def _refill(self, runner: MonitorRunner, candle: Candle) -> None:
        task = runner.task
        logger.info(
            f"Monitor {task.key}: {runner.buffer.closed_count()} closed candles buffered, refetching history"
        )
        try:
            history = await self._call_feed(
                f"history {task.key}",
                lambda: self.feed.get_historical(task.symbol, task.interval, self.history_limit),
            )
        except FeedUnavailableError as e:
            logger.warning(f"Monitor {task.key}: history refetch failed, continuing: {e}")
            return
        runner.buffer.replace(history)
        runner.buffer.add(candle)

    async def _evaluate(self, runner: MonitorRunner) -> PipelineResult:
        """Run indicators -> detector -> window -> consensus -> ledger."""
        task = runner.task
        symbol = task.symbol
        result = PipelineResult()

        closed = runner.buffer.closed()
        snapshot = self.calculator.calculate_latest(closed)
        if snapshot is None:
            logger.info(
                f"Monitor {task.key}: not enough candles for indicators "
                f"({len(closed)}/{self.calculator.min_candles})"
            )
            return result
        result.snapshot = snapshot

        await self._publish(
            EventChannel.INDICATORS,
            "indicators_update",
            {"symbol": symbol, "interval": task.interval, "indicators": snapshot.to_dict()},
        )

        signals = detect_signals(symbol, closed, snapshot, self.config.indicators)
        now = closed[-1].open_time
        update = await self.window.ingest(symbol, signals, now, scope=task.account_id)
        result.signals = update.accepted
        result.emitted = update.emitted

        for signal in update.accepted:
            await self._save_signal(signal)
        for signal in update.emitted:
            logger.info(f"[{symbol}] {signal.indicator.value} {signal.action.value}: {signal.reason}")
            await self._publish(
                EventChannel.SIGNALS, "signal", {**signal.model_dump(mode="json"), "interval": task.interval}
            )

        decision = self.aggregator.analyze(symbol, update.window, now)
        if decision is None or not await self.window.admit_decision(decision, scope=task.account_id):
            return result
        result.decision = decision

        logger.info(f"[{symbol}] Consensus {decision.action.value} (strength {decision.strength}): {decision.reason}")
        await self._save_signal(decision.to_signal())
        await self._publish(
            EventChannel.DECISIONS,
            "decision",
            {**decision.model_dump(mode="json"), "interval": task.interval, "account_id": task.account_id},
        )

        try:
            result.portfolio = await self.ledger.process_decision(decision, task.account_id)
        except TradingBotError as e:
            logger.warning(f"[{task.account_id}] Auto {decision.action.value} {symbol} rejected: {e}")
        return result

    async def _save_signal(self, signal: Signal) -> None:
        if self.signal_repo is None:
            return
        try:
            await self.signal_repo.save_signal(signal)
        except Exception as e:
            logger.error(f"Failed to persist {signal.indicator.value} signal for {signal.symbol}: {e}")

    # ------------------------------------------------------------------
    # Feed plumbing
    # ------------------------------------------------------------------

    async def _call_feed(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run a feed call with timeout and exponential backoff retries."""
        delay = self.retry_delay
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return await asyncio.wait_for(call(), timeout=self.feed_timeout)
            except asyncio.TimeoutError:
                last_error = TimeoutError(f"timed out after {self.feed_timeout}s")
            except Exception as e:
                last_error = e

            if attempt < self.retry_attempts:
                logger.warning(
                    f"Feed {what} failed (attempt {attempt}/{self.retry_attempts}): {last_error}; "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)

        raise FeedUnavailableError(
            f"Feed {what} failed after {self.retry_attempts} attempts: {last_error}"
        ) from last_error

    def _error_callback(self, runner: MonitorRunner) -> Callable[[Exception], Awaitable[None]]:
        async def on_error(error: Exception) -> None:
            await self._fail_runner(runner, error)

        return on_error

    async def _fail_runner(self, runner: MonitorRunner, error: Exception) -> None:
        """Feed failure for one monitor: stop it, keep the others running."""
        async with self._lock:
            if self._runners.get(runner.key) is not runner:
                return
            del self._runners[runner.key]

        logger.error(f"Monitor {runner.task.key} feed error: {error}")
        await self._halt(runner)
        task = runner.task
        task.state = MonitorState.STOPPED
        task.active = False
        task.stop_time = _utcnow()
        task.last_error = str(error)
        self._stopped[runner.key] = task
        await self.task_repo.save(task)
        await self._publish(EventChannel.MONITORS, "monitor_stopped", self._task_info(task))

    async def _halt(self, runner: MonitorRunner) -> None:
        """Unsubscribe and let the consumer finish its current candle."""
        runner.stopping = True
        if runner.handle is not None:
            handle, runner.handle = runner.handle, None
            try:
                await asyncio.wait_for(self.feed.unsubscribe(handle), timeout=self.feed_timeout)
            except Exception as e:
                logger.warning(f"Unsubscribe for {runner.task.key} failed: {e}")

        if runner.consumer is not None:
            runner.queue.put_nowait(None)
            if runner.consumer is not asyncio.current_task():
                await runner.consumer

    async def _cancel_start(self, runner: MonitorRunner) -> MonitorTask:
        """Finish a start that lost the race with stop_monitor, keeping its stop record."""
        await self._halt(runner)
        logger.info(f"Monitor {runner.task.key} stopped while starting")
        return runner.task.model_copy()

    async def _abort_start(self, runner: MonitorRunner, error: Exception) -> None:
        async with self._lock:
            if self._runners.get(runner.key) is runner:
                del self._runners[runner.key]

        await self._halt(runner)
        task = runner.task
        task.state = MonitorState.STOPPED
        task.active = False
        task.stop_time = _utcnow()
        task.last_error = str(error)
        self._stopped[runner.key] = task
        logger.error(f"Monitor {task.key} failed to start: {error}")
        try:
            await self.task_repo.save(task)
        except Exception as e:
            logger.error(f"Failed to persist stopped monitor {task.key}: {e}")

    # ------------------------------------------------------------------

    @staticmethod
    def _task_info(task: MonitorTask) -> dict[str, Any]:
        return {
            "key": task.key,
            "symbol": task.symbol,
            "interval": task.interval,
            "account_id": task.account_id,
            "state": task.state.value,
            "start_time": task.start_time,
            "stop_time": task.stop_time,
            "last_error": task.last_error,
        }

    async def _publish(self, channel: EventChannel, event_type: str, data: dict[str, Any]) -> None:
        if self.events is not None:
            await self.events.publish(channel, event_type, data)
