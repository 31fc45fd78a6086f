"""In-process event channels.

Services publish domain events here; transports (push channels, polling
endpoints, log sinks) subscribe with on_<channel> style registration.
A failing subscriber is logged and never breaks the publisher.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable

import orjson
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EventChannel(str, Enum):
    SIGNALS = "signals"
    DECISIONS = "decisions"
    PORTFOLIO = "portfolio"
    PRICES = "prices"
    INDICATORS = "indicators"
    MONITORS = "monitors"


def _orjson_dumps(obj: Any) -> str:
    """Serialize object to JSON string using orjson."""
    return orjson.dumps(obj, default=str).decode("utf-8")


class EventEnvelope(BaseModel):
    """Event message format."""

    channel: EventChannel
    type: str  # "signal", "decision", "portfolio_update", "price_update", ...
    data: dict[str, Any]
    timestamp: datetime

    def to_json(self) -> str:
        """Serialize to JSON string using orjson for performance."""
        return _orjson_dumps(self.model_dump(mode="json"))


EventCallback = Callable[[EventEnvelope], Awaitable[None]]


class EventBus:
    """Fan out events to per-channel subscribers."""

    def __init__(self):
        self._subscribers: dict[EventChannel, list[EventCallback]] = {
            channel: [] for channel in EventChannel
        }
        self.published = 0

    def subscribe(self, channel: EventChannel, callback: EventCallback) -> None:
        """Register callback for a channel.

        Note: Duplicate callbacks are ignored.
        """
        callbacks = self._subscribers[EventChannel(channel)]
        if callback not in callbacks:
            callbacks.append(callback)

    def unsubscribe(self, channel: EventChannel, callback: EventCallback) -> None:
        callbacks = self._subscribers[EventChannel(channel)]
        if callback in callbacks:
            callbacks.remove(callback)

    def subscribe_all(self, callback: EventCallback) -> None:
        for channel in EventChannel:
            self.subscribe(channel, callback)

    async def publish(self, channel: EventChannel, event_type: str, data: dict[str, Any]) -> EventEnvelope:
        envelope = EventEnvelope(
            channel=channel,
            type=event_type,
            data=data,
            timestamp=datetime.now(timezone.utc),
        )
        self.published += 1
        for callback in list(self._subscribers[envelope.channel]):
            try:
                await callback(envelope)
            except Exception as e:
                logger.error(f"Event callback error on {envelope.channel.value}: {e}")
        return envelope
