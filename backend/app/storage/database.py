"""Database connection and table definitions."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from app.config import get_settings

Base = declarative_base()


class MonitorTaskTable(Base):
    """Monitor task records, one per (symbol, interval, account)."""

    __tablename__ = "monitor_tasks"

    symbol = Column(String(20), primary_key=True)
    interval = Column(String(10), primary_key=True)
    account_id = Column(String(64), primary_key=True)
    state = Column(String(10), nullable=False, default="stopped")
    active = Column(Boolean, nullable=False, default=False)
    start_time = Column(DateTime(timezone=True), nullable=True)
    stop_time = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    __table_args__ = (
        Index("idx_monitor_tasks_active", "active"),
    )


class PortfolioTable(Base):
    """Paper portfolio header (cash side)."""

    __tablename__ = "portfolios"

    account_id = Column(String(64), primary_key=True)
    balance = Column(Float, nullable=False)
    equity = Column(Float, nullable=False)
    starting_balance = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class PositionTable(Base):
    """Open positions of a portfolio."""

    __tablename__ = "positions"

    account_id = Column(
        String(64), ForeignKey("portfolios.account_id", ondelete="CASCADE"), primary_key=True
    )
    symbol = Column(String(20), primary_key=True)
    quantity = Column(Float, nullable=False)
    average_price = Column(Float, nullable=False)
    current_price = Column(Float, nullable=False)


class TransactionTable(Base):
    """Append-only transaction log."""

    __tablename__ = "transactions"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    account_id = Column(String(64), nullable=False)
    symbol = Column(String(20), nullable=False)
    action = Column(String(4), nullable=False)
    quantity = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    value = Column(Float, nullable=False)
    signal = Column(String(32), nullable=False, default="MANUAL")
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_transactions_account_time", "account_id", "timestamp"),
    )


class SignalTable(Base):
    """Accepted indicator signals and emitted consensus decisions."""

    __tablename__ = "signals"

    id = Column(String(36), primary_key=True)
    symbol = Column(String(20), nullable=False)
    time = Column(DateTime(timezone=True), nullable=False)
    indicator = Column(String(20), nullable=False)
    action = Column(String(4), nullable=False)
    price = Column(Float, nullable=False)
    value = Column(String(64), nullable=False, default="")
    reason = Column(Text, nullable=False, default="")

    __table_args__ = (
        Index("idx_signals_symbol_time", "symbol", "time"),
        Index("idx_signals_time", "time"),
    )


class BotConfigTable(Base):
    """Bot configuration documents."""

    __tablename__ = "bot_configs"

    name = Column(String(64), primary_key=True)
    data = Column(JSONB, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("NOW()"), onupdate=text("NOW()"))


class Database:
    """Database connection manager."""

    def __init__(self, database_url: str | None = None):
        settings = get_settings()
        url = database_url or settings.database_url

        # Convert postgresql:// to postgresql+asyncpg://
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

        self.engine = create_async_engine(
            url,
            echo=settings.debug,
            pool_size=10,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_timeout=30,
            connect_args={
                "timeout": 10,
                "command_timeout": 60,
            },
        )
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get a database session; commits on success, rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self.engine.dispose()


# Global database instance
_db: Database | None = None


def get_database() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db


async def init_database() -> Database:
    """Initialize the database and create tables."""
    db = get_database()
    await db.create_tables()
    return db
