"""Monitor task repository."""

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert

from core.models.monitor import MonitorState, MonitorTask
from app.storage.database import Database, MonitorTaskTable, get_database


class MonitorTaskRepository:
    """Repository for monitor task records."""

    def __init__(self, db: Database | None = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db or get_database()

    async def save(self, task: MonitorTask) -> None:
        """Insert or update a task record."""
        async with self.db.session() as session:
            stmt = insert(MonitorTaskTable).values(
                symbol=task.symbol,
                interval=task.interval,
                account_id=task.account_id,
                state=task.state.value,
                active=task.active,
                start_time=task.start_time,
                stop_time=task.stop_time,
                last_error=task.last_error,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["symbol", "interval", "account_id"],
                set_={
                    "state": stmt.excluded.state,
                    "active": stmt.excluded.active,
                    "start_time": stmt.excluded.start_time,
                    "stop_time": stmt.excluded.stop_time,
                    "last_error": stmt.excluded.last_error,
                },
            )
            await session.execute(stmt)

    async def get(self, symbol: str, interval: str, account_id: str) -> MonitorTask | None:
        async with self.db.session() as session:
            stmt = select(MonitorTaskTable).where(
                MonitorTaskTable.symbol == symbol,
                MonitorTaskTable.interval == interval,
                MonitorTaskTable.account_id == account_id,
            )
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            return self._row_to_task(row) if row is not None else None

    async def get_active(self) -> list[MonitorTask]:
        """Get all tasks persisted as active."""
        async with self.db.session() as session:
            stmt = select(MonitorTaskTable).where(MonitorTaskTable.active.is_(True))
            result = await session.execute(stmt)
            return [self._row_to_task(row) for row in result.scalars().all()]

    async def delete_inactive_older_than(self, cutoff: datetime) -> int:
        """Delete inactive tasks stopped before cutoff."""
        async with self.db.session() as session:
            stmt = delete(MonitorTaskTable).where(
                MonitorTaskTable.active.is_(False),
                MonitorTaskTable.stop_time < cutoff,
            )
            result = await session.execute(stmt)
            return result.rowcount or 0

    @staticmethod
    def _row_to_task(row: MonitorTaskTable) -> MonitorTask:
        return MonitorTask(
            symbol=row.symbol,
            interval=row.interval,
            account_id=row.account_id,
            state=MonitorState(row.state),
            active=row.active,
            start_time=row.start_time,
            stop_time=row.stop_time,
            last_error=row.last_error,
        )
