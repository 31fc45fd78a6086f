"""Candle feed protocol.

The monitor supervisor consumes candles through this interface only; the
Binance client in app/clients implements it for production and tests use
a scripted fake.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, runtime_checkable

from core.models.candle import Candle

CandleCallback = Callable[[Candle], Awaitable[None]]
FeedErrorCallback = Callable[[Exception], Awaitable[None]]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token returned by subscribe(); pass it back to unsubscribe()."""

    id: str
    symbol: str
    interval: str


@runtime_checkable
class CandleFeed(Protocol):
    """Protocol that candle sources must implement.

    Candles for one subscription must arrive in non-decreasing open_time
    order.
    """

    async def subscribe(
        self,
        symbol: str,
        interval: str,
        on_candle: CandleCallback,
        on_error: FeedErrorCallback | None = None,
    ) -> SubscriptionHandle:
        """Start delivering live candle updates to on_candle."""
        ...

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        """Stop delivering updates for handle. Unknown handles are ignored."""
        ...

    async def get_historical(self, symbol: str, interval: str, limit: int) -> list[Candle]:
        """Get the most recent `limit` candles, oldest first."""
        ...
