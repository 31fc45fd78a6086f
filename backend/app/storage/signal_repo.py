"""Signal repository."""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from core.models.signal import Action, IndicatorName, Signal
from app.storage.database import Database, SignalTable, get_database


class SignalRepository:
    """Repository for signal data operations."""

    def __init__(self, db: Database | None = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db or get_database()

    async def save_signal(self, signal: Signal) -> bool:
        """Save a signal; returns False if the id is already stored."""
        async with self.db.session() as session:
            stmt = insert(SignalTable).values(
                id=signal.id,
                symbol=signal.symbol,
                time=signal.time,
                indicator=signal.indicator.value,
                action=signal.action.value,
                price=signal.price,
                value=signal.value,
                reason=signal.reason,
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
            result = await session.execute(stmt)
            return bool(result.rowcount)

    async def get_recent(self, symbol: str | None = None, limit: int = 100) -> list[Signal]:
        """Get recent signals, newest first."""
        async with self.db.session() as session:
            stmt = select(SignalTable)
            if symbol:
                stmt = stmt.where(SignalTable.symbol == symbol)
            stmt = stmt.order_by(SignalTable.time.desc()).limit(limit)

            result = await session.execute(stmt)
            return [self._row_to_signal(row) for row in result.scalars().all()]

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self.db.session() as session:
            result = await session.execute(delete(SignalTable).where(SignalTable.time < cutoff))
            return result.rowcount or 0

    @staticmethod
    def _row_to_signal(row: SignalTable) -> Signal:
        return Signal(
            id=row.id,
            symbol=row.symbol,
            time=row.time,
            indicator=IndicatorName(row.indicator),
            action=Action(row.action),
            price=row.price,
            value=row.value,
            reason=row.reason,
        )
