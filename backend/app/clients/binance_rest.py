"""Binance REST API client for fetching historical candles."""

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx

from core.models.candle import Candle


class RateLimiter:
    """Simple rate limiter for API calls."""

    def __init__(self, calls_per_minute: int = 1200):
        self.calls_per_minute = calls_per_minute
        self.interval = 60.0 / calls_per_minute
        self.last_call = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limit."""
        async with self._lock:
            now = asyncio.get_running_loop().time()
            wait_time = self.last_call + self.interval - now
            if wait_time > 0:
                await asyncio.sleep(wait_time)
            self.last_call = asyncio.get_running_loop().time()


def parse_kline_row(symbol: str, interval: str, item: list, now: datetime | None = None) -> Candle:
    """Convert one /api/v3/klines row to a Candle.

    The newest row is the still-forming candle; it is closed only once its
    close time has passed.
    """
    now = now or datetime.now(timezone.utc)
    close_time = datetime.fromtimestamp(item[6] / 1000, tz=timezone.utc)
    return Candle(
        symbol=symbol,
        interval=interval,
        open_time=datetime.fromtimestamp(item[0] / 1000, tz=timezone.utc),
        open=float(item[1]),
        high=float(item[2]),
        low=float(item[3]),
        close=float(item[4]),
        volume=float(item[5]),
        is_closed=close_time < now,
    )


class BinanceRestClient:
    """Binance Spot REST API client (public market data only)."""

    BASE_URL = "https://api.binance.com"
    MAX_LIMIT = 1000

    def __init__(self, base_url: str | None = None, timeout: float = 30.0):
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout
        self.rate_limiter = RateLimiter()
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, endpoint: str, params: dict[str, Any] | None = None
    ) -> Any:
        """Make an API request with rate limiting."""
        await self.rate_limiter.acquire()
        client = await self._get_client()
        response = await client.request(method, endpoint, params=params)
        response.raise_for_status()
        return response.json()

    async def get_klines(
        self,
        symbol: str,
        interval: str,
        limit: int = 200,
        end_time: datetime | None = None,
    ) -> list[Candle]:
        """
        Fetch the most recent candles from Binance.

        Args:
            symbol: Trading pair (e.g., "BTCUSDT")
            interval: Candle interval (e.g., "5m", "1h")
            limit: Maximum number of candles (max 1000)
            end_time: Last open time to include (defaults to now)

        Returns:
            List of Candle objects, oldest first
        """
        params: dict[str, Any] = {
            "symbol": symbol,
            "interval": interval,
            "limit": min(limit, self.MAX_LIMIT),
        }
        if end_time:
            params["endTime"] = int(end_time.timestamp() * 1000)

        data = await self._request("GET", "/api/v3/klines", params)

        now = datetime.now(timezone.utc)
        return [parse_kline_row(symbol, interval, item, now) for item in data]
