"""CandleFeed implementation backed by Binance REST + kline WebSocket."""

import itertools
import logging

from core.feed_protocol import CandleCallback, FeedErrorCallback, SubscriptionHandle
from core.models.candle import Candle
from app.clients.binance_rest import BinanceRestClient
from app.clients.binance_ws_kline import BinanceKlineWebSocket

logger = logging.getLogger(__name__)


class BinanceCandleFeed:
    """Live candles from the kline stream, history from the REST API."""

    def __init__(
        self,
        rest: BinanceRestClient | None = None,
        ws: BinanceKlineWebSocket | None = None,
    ):
        self.rest = rest or BinanceRestClient()
        self.ws = ws or BinanceKlineWebSocket()
        self._ids = itertools.count(1)
        self._handles: dict[str, tuple[str, CandleCallback, FeedErrorCallback | None]] = {}

    async def subscribe(
        self,
        symbol: str,
        interval: str,
        on_candle: CandleCallback,
        on_error: FeedErrorCallback | None = None,
    ) -> SubscriptionHandle:
        stream = await self.ws.subscribe(symbol, interval, on_candle, on_error)
        handle = SubscriptionHandle(id=f"{stream}#{next(self._ids)}", symbol=symbol, interval=interval)
        self._handles[handle.id] = (stream, on_candle, on_error)
        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        entry = self._handles.pop(handle.id, None)
        if entry is None:
            return
        stream, on_candle, on_error = entry
        await self.ws.unsubscribe(stream, on_candle, on_error)

    async def get_historical(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        return await self.rest.get_klines(symbol, interval, limit=limit)

    async def close(self) -> None:
        await self.ws.stop()
        await self.rest.close()
        logger.info("Binance candle feed closed")
