#!/usr/bin/env python3
"""
Portfolio snapshot tool.

Usage:
    python scripts/portfolio_snapshot.py export --account default --out snap.json
    python scripts/portfolio_snapshot.py import snap.json
    python scripts/portfolio_snapshot.py reconcile --account default
"""

import argparse
import asyncio

from app.config import get_settings
from app.services import PortfolioLedger
from app.storage import PortfolioRepository, get_database, init_database
from app.storage.snapshot import read_snapshot, write_snapshot


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    await init_database()
    ledger = PortfolioLedger(PortfolioRepository(), starting_balance=settings.starting_balance)

    try:
        if args.command == "export":
            snapshot = await ledger.export_snapshot(args.account)
            write_snapshot(args.out, snapshot)
            print(f"Exported {len(snapshot.transactions)} transactions to {args.out}")
        elif args.command == "import":
            snapshot = read_snapshot(args.path)
            portfolio = await ledger.import_snapshot(snapshot)
            print(f"Imported {portfolio.account_id}: balance {portfolio.balance:.2f}, equity {portfolio.equity:.2f}")
        else:
            portfolio = await ledger.reconcile(args.account)
            print(f"Reconciled {portfolio.account_id}: balance {portfolio.balance:.2f}, equity {portfolio.equity:.2f}")
    finally:
        await get_database().close()


def main():
    parser = argparse.ArgumentParser(description="Export, import or reconcile paper portfolios")
    sub = parser.add_subparsers(dest="command", required=True)

    export = sub.add_parser("export", help="Write portfolio + transaction log to JSON")
    export.add_argument("--account", default="default")
    export.add_argument("--out", required=True)

    imp = sub.add_parser("import", help="Load a snapshot and rebuild the portfolio from it")
    imp.add_argument("path")

    rec = sub.add_parser("reconcile", help="Rebuild a portfolio from its transaction log")
    rec.add_argument("--account", default="default")

    asyncio.run(run(parser.parse_args()))


if __name__ == "__main__":
    main()
