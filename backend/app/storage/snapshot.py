"""Portfolio snapshot export/import as JSON.

A snapshot carries the portfolio and its full transaction log, so a
reloaded snapshot can be checked by replaying the log (see
PortfolioLedger.reconcile).
"""

from dataclasses import dataclass
from pathlib import Path

import orjson

from core.models.portfolio import Portfolio, Transaction

SNAPSHOT_VERSION = 1


@dataclass
class PortfolioSnapshot:
    portfolio: Portfolio
    transactions: list[Transaction]
    starting_balance: float


def dump_snapshot(snapshot: PortfolioSnapshot) -> bytes:
    """Serialize a snapshot to JSON bytes."""
    return orjson.dumps(
        {
            "version": SNAPSHOT_VERSION,
            "starting_balance": snapshot.starting_balance,
            "portfolio": snapshot.portfolio.model_dump(mode="json"),
            "transactions": [tx.model_dump(mode="json") for tx in snapshot.transactions],
        },
        option=orjson.OPT_INDENT_2,
    )


def load_snapshot(data: bytes | str) -> PortfolioSnapshot:
    """Parse JSON produced by dump_snapshot()."""
    raw = orjson.loads(data)
    version = raw.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version!r}")
    return PortfolioSnapshot(
        portfolio=Portfolio.model_validate(raw["portfolio"]),
        transactions=[Transaction.model_validate(tx) for tx in raw["transactions"]],
        starting_balance=float(raw["starting_balance"]),
    )


def write_snapshot(path: Path | str, snapshot: PortfolioSnapshot) -> None:
    Path(path).write_bytes(dump_snapshot(snapshot))


def read_snapshot(path: Path | str) -> PortfolioSnapshot:
    return load_snapshot(Path(path).read_bytes())
