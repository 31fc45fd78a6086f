"""Portfolio and transaction repository."""

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.models.portfolio import AssetPosition, Portfolio, Transaction
from core.models.signal import Action
from app.storage.database import (
    Database,
    PortfolioTable,
    PositionTable,
    TransactionTable,
    get_database,
)


class PortfolioRepository:
    """Repository for paper portfolios and their transaction log."""

    def __init__(self, db: Database | None = None):
        self._db = db

    @property
    def db(self) -> Database:
        return self._db or get_database()

    async def get(self, account_id: str) -> Portfolio | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(PortfolioTable).where(PortfolioTable.account_id == account_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None

            result = await session.execute(
                select(PositionTable).where(PositionTable.account_id == account_id)
            )
            positions = {
                p.symbol: AssetPosition(
                    symbol=p.symbol,
                    quantity=p.quantity,
                    average_price=p.average_price,
                    current_price=p.current_price,
                )
                for p in result.scalars().all()
            }
            return Portfolio(
                account_id=row.account_id,
                balance=row.balance,
                positions=positions,
                equity=row.equity,
                starting_balance=row.starting_balance,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )

    async def save(self, portfolio: Portfolio) -> None:
        """Insert or replace a portfolio snapshot (header and positions)."""
        async with self.db.session() as session:
            await self._write_portfolio(session, portfolio)

    async def save_trade(self, portfolio: Portfolio, transaction: Transaction) -> None:
        """Persist the new portfolio and append the transaction in one commit."""
        async with self.db.session() as session:
            await self._write_portfolio(session, portfolio)
            await session.execute(
                insert(TransactionTable).values(
                    account_id=transaction.account_id,
                    symbol=transaction.symbol,
                    action=transaction.action.value,
                    quantity=transaction.quantity,
                    price=transaction.price,
                    value=transaction.value,
                    signal=transaction.signal,
                    timestamp=transaction.timestamp,
                )
            )

    async def get_transactions(self, account_id: str, limit: int | None = None) -> list[Transaction]:
        """Get transactions newest first."""
        async with self.db.session() as session:
            stmt = (
                select(TransactionTable)
                .where(TransactionTable.account_id == account_id)
                .order_by(TransactionTable.timestamp.desc(), TransactionTable.id.desc())
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            return [self._row_to_transaction(row) for row in result.scalars().all()]

    async def replace_history(self, portfolio: Portfolio, transactions: list[Transaction]) -> None:
        """Replace the portfolio and its whole transaction log in one commit."""
        account_id = portfolio.account_id
        async with self.db.session() as session:
            await session.execute(
                delete(TransactionTable).where(TransactionTable.account_id == account_id)
            )
            for tx in sorted(transactions, key=lambda t: t.timestamp):
                await session.execute(
                    insert(TransactionTable).values(
                        account_id=account_id,
                        symbol=tx.symbol,
                        action=tx.action.value,
                        quantity=tx.quantity,
                        price=tx.price,
                        value=tx.value,
                        signal=tx.signal,
                        timestamp=tx.timestamp,
                    )
                )
            await self._write_portfolio(session, portfolio)

    @staticmethod
    async def _write_portfolio(session: AsyncSession, portfolio: Portfolio) -> None:
        stmt = insert(PortfolioTable).values(
            account_id=portfolio.account_id,
            balance=portfolio.balance,
            equity=portfolio.equity,
            starting_balance=portfolio.starting_balance,
            created_at=portfolio.created_at,
            updated_at=portfolio.updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id"],
            set_={
                "balance": stmt.excluded.balance,
                "equity": stmt.excluded.equity,
                "starting_balance": stmt.excluded.starting_balance,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await session.execute(stmt)

        # Positions are small; rewrite them wholesale
        await session.execute(
            delete(PositionTable).where(PositionTable.account_id == portfolio.account_id)
        )
        for position in portfolio.positions.values():
            await session.execute(
                insert(PositionTable).values(
                    account_id=portfolio.account_id,
                    symbol=position.symbol,
                    quantity=position.quantity,
                    average_price=position.average_price,
                    current_price=position.current_price,
                )
            )

    @staticmethod
    def _row_to_transaction(row: TransactionTable) -> Transaction:
        return Transaction(
            account_id=row.account_id,
            symbol=row.symbol,
            action=Action(row.action),
            quantity=row.quantity,
            price=row.price,
            value=row.value,
            signal=row.signal,
            timestamp=row.timestamp,
        )
