"""Monitor task model."""

from datetime import datetime
from enum import Enum
from pydantic import BaseModel


class MonitorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


def monitor_key(symbol: str, interval: str, account_id: str) -> str:
    """Key format: 'SYMBOL-interval-account'."""
    return f"{symbol.upper()}-{interval}-{account_id}"


class MonitorTask(BaseModel):
    """Persisted record of a (symbol, interval, account) monitor."""

    symbol: str
    interval: str
    account_id: str = "default"
    state: MonitorState = MonitorState.STOPPED
    active: bool = False
    start_time: datetime | None = None
    stop_time: datetime | None = None
    last_error: str | None = None

    @property
    def key(self) -> str:
        return monitor_key(self.symbol, self.interval, self.account_id)

    @property
    def ident(self) -> tuple[str, str, str]:
        return (self.symbol, self.interval, self.account_id)
