#!/usr/bin/env python3
"""Initialize the database and create tables."""

import asyncio

from app.storage.database import init_database


async def main():
    print("Initializing database...")
    db = await init_database()
    print("Database initialized successfully!")
    print("Tables created: monitor_tasks, portfolios, positions, transactions, signals, bot_configs")
    await db.close()


if __name__ == "__main__":
    asyncio.run(main())
