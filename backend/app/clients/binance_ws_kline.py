"""Binance WebSocket client for real-time candle data using picows."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Callable, Awaitable

from picows import ws_connect, WSFrame, WSTransport, WSListener, WSMsgType, WSCloseCode

from core.errors import FeedUnavailableError
from core.models.candle import Candle

logger = logging.getLogger(__name__)

CandleCallback = Callable[[Candle], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


def stream_name(symbol: str, interval: str) -> str:
    return f"{symbol.lower()}@kline_{interval}"


def parse_kline_event(data: dict) -> Candle:
    """Convert a kline stream event to a Candle."""
    k = data["k"]
    return Candle(
        symbol=data["s"],
        interval=k["i"],
        open_time=datetime.fromtimestamp(k["t"] / 1000, tz=timezone.utc),
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
        is_closed=k["x"],
    )


class BinanceKlineListener(WSListener):
    """picows listener for Binance kline streams."""

    def __init__(
        self,
        callbacks: dict[str, list[CandleCallback]],
        on_connected: Callable[[], None],
        on_disconnected: Callable[[], None],
        loop: asyncio.AbstractEventLoop,
    ):
        self._callbacks = callbacks
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._transport: WSTransport | None = None
        # picows callbacks may run off the loop thread
        self._loop = loop

    def on_ws_connected(self, transport: WSTransport):
        self._transport = transport
        logger.info("picows: kline WebSocket connected")

        if self._callbacks:
            self.send_method("SUBSCRIBE", list(self._callbacks.keys()))

        self._on_connected()

    def on_ws_disconnected(self, transport: WSTransport):
        logger.info("picows: kline WebSocket disconnected")
        self._transport = None
        self._on_disconnected()

    def on_ws_frame(self, transport: WSTransport, frame: WSFrame):
        if frame.msg_type == WSMsgType.TEXT:
            self._handle_message(frame.get_payload_as_utf8_text())
        elif frame.msg_type == WSMsgType.PING:
            transport.send_pong(frame.get_payload_as_bytes())

    def send_method(self, method: str, streams: list[str]) -> None:
        """Send a SUBSCRIBE/UNSUBSCRIBE request."""
        if not self._transport or not streams:
            return

        msg = {
            "method": method,
            "params": streams,
            "id": int(datetime.now().timestamp() * 1000),
        }
        self._transport.send(WSMsgType.TEXT, json.dumps(msg).encode())
        logger.info(f"{method} kline streams: {streams}")

    def _handle_message(self, message: str) -> None:
        try:
            data = json.loads(message)

            # Ignore subscription confirmations
            if "result" in data or "id" in data:
                return

            if data.get("e") == "kline":
                self._dispatch(parse_kline_event(data))

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse kline message: {e}")
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Malformed kline message: {e}")

    def _dispatch(self, candle: Candle) -> None:
        stream = stream_name(candle.symbol, candle.interval)
        for callback in list(self._callbacks.get(stream, [])):
            asyncio.run_coroutine_threadsafe(self._safe_callback(callback, candle), self._loop)

    async def _safe_callback(self, callback: CandleCallback, candle: Candle) -> None:
        try:
            await callback(candle)
        except Exception as e:
            logger.error(f"Kline callback error: {e}")

    def disconnect(self) -> None:
        if self._transport:
            self._transport.send_close(WSCloseCode.OK)
            self._transport.disconnect()


class BinanceKlineWebSocket:
    """WebSocket client for Binance Spot kline streams using picows.

    One connection multiplexes every subscribed stream. After
    `max_failures` consecutive failed connection attempts, every
    registered error callback receives a FeedUnavailableError; the client
    keeps retrying in the background.
    """

    WS_URL = "wss://stream.binance.com:9443/ws"

    def __init__(self, ws_url: str | None = None, max_failures: int = 5):
        self.ws_url = ws_url or self.WS_URL
        self.max_failures = max_failures
        self._callbacks: dict[str, list[CandleCallback]] = {}
        self._error_callbacks: dict[str, list[ErrorCallback]] = {}
        self._running = False
        self._reconnect_delay = 1.0
        self._max_reconnect_delay = 60.0
        self._failures = 0
        self._task: asyncio.Task | None = None
        self._listener: BinanceKlineListener | None = None
        self._connected = asyncio.Event()
        self._disconnected = asyncio.Event()

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    async def subscribe(
        self,
        symbol: str,
        interval: str,
        callback: CandleCallback,
        on_error: ErrorCallback | None = None,
    ) -> str:
        """
        Subscribe to candle updates for a symbol.

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            interval: Candle interval (e.g., "5m")
            callback: Async function to call with each Candle update
            on_error: Async function called when the stream is unavailable

        Returns:
            Stream name
        """
        stream = stream_name(symbol, interval)
        is_new = stream not in self._callbacks
        self._callbacks.setdefault(stream, []).append(callback)
        if on_error is not None:
            self._error_callbacks.setdefault(stream, []).append(on_error)

        if is_new and self._listener and self._connected.is_set():
            self._listener.send_method("SUBSCRIBE", [stream])

        await self.start()
        return stream

    async def unsubscribe(
        self,
        stream: str,
        callback: CandleCallback,
        on_error: ErrorCallback | None = None,
    ) -> None:
        callbacks = self._callbacks.get(stream, [])
        if callback in callbacks:
            callbacks.remove(callback)
        errors = self._error_callbacks.get(stream, [])
        if on_error is not None and on_error in errors:
            errors.remove(on_error)

        if not callbacks:
            self._callbacks.pop(stream, None)
            self._error_callbacks.pop(stream, None)
            if self._listener and self._connected.is_set():
                self._listener.send_method("UNSUBSCRIBE", [stream])

    async def start(self) -> None:
        """Start the WebSocket connection and message processing."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the WebSocket connection."""
        self._running = False
        if self._listener:
            self._listener.disconnect()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def _on_connected(self) -> None:
        self._connected.set()
        self._disconnected.clear()
        self._reconnect_delay = 1.0
        self._failures = 0

    def _on_disconnected(self) -> None:
        self._connected.clear()
        self._disconnected.set()

    async def _run(self) -> None:
        """Main WebSocket loop with reconnection."""
        while self._running:
            try:
                await self._connect_and_process()
            except Exception as e:
                self._failures += 1
                logger.error(f"picows kline error: {e}")
                if self._failures == self.max_failures:
                    await self._notify_errors(
                        FeedUnavailableError(
                            f"Kline stream unavailable after {self._failures} attempts: {e}"
                        )
                    )

            if self._running:
                logger.info(f"Reconnecting kline WS in {self._reconnect_delay} seconds...")
                await asyncio.sleep(self._reconnect_delay)
                self._reconnect_delay = min(self._reconnect_delay * 2, self._max_reconnect_delay)

    async def _notify_errors(self, error: Exception) -> None:
        for stream, callbacks in list(self._error_callbacks.items()):
            for callback in list(callbacks):
                try:
                    await callback(error)
                except Exception as e:
                    logger.error(f"Kline error callback for {stream} failed: {e}")

    async def _connect_and_process(self) -> None:
        """Connect to WebSocket and wait for disconnection."""
        self._disconnected.clear()
        loop = asyncio.get_running_loop()

        def listener_factory():
            self._listener = BinanceKlineListener(
                callbacks=self._callbacks,
                on_connected=self._on_connected,
                on_disconnected=self._on_disconnected,
                loop=loop,
            )
            return self._listener

        logger.info(f"Connecting to {self.ws_url}")
        await ws_connect(
            listener_factory,
            self.ws_url,
            enable_auto_ping=True,
            auto_ping_idle_timeout=30,
            auto_ping_reply_timeout=10,
        )

        await self._disconnected.wait()
