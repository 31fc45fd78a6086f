"""Bot configuration repository."""

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert

from core.models.config import BotConfig
from app.storage.database import BotConfigTable, Database, get_database


class BotConfigRepository:
    """Stores BotConfig documents as JSONB, keyed by name (account id)."""

    def __init__(self, db: Database | None = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db or get_database()

    async def get(self, name: str = "default") -> BotConfig | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(BotConfigTable.data).where(BotConfigTable.name == name)
            )
            data = result.scalar_one_or_none()
            return BotConfig.model_validate(data) if data is not None else None

    async def save(self, config: BotConfig, name: str = "default") -> None:
        async with self.db.session() as session:
            stmt = insert(BotConfigTable).values(name=name, data=config.model_dump(mode="json"))
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={"data": stmt.excluded.data},
            )
            await session.execute(stmt)
