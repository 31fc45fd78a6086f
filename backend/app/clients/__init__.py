"""Exchange clients."""

from app.clients.binance_rest import BinanceRestClient, RateLimiter
from app.clients.binance_ws_kline import BinanceKlineWebSocket
from app.clients.candle_feed import BinanceCandleFeed

__all__ = [
    "BinanceRestClient",
    "RateLimiter",
    "BinanceKlineWebSocket",
    "BinanceCandleFeed",
]
