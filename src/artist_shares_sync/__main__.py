"""Command-line entry point.

    python -m artist_shares_sync run
    python -m artist_shares_sync init-db
    python -m artist_shares_sync register <artist_id> <contract_address>
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys

from artist_shares_sync.config import Settings, get_settings
from artist_shares_sync.pipeline import Pipeline
from artist_shares_sync.registry import ContractRegistry
from artist_shares_sync.storage.database import DatabaseManager

logger = logging.getLogger("artist_shares_sync")


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _run(settings: Settings, *, dry_run: bool | None) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, pipeline.request_stop)
    await pipeline.run()


async def _init_db(settings: Settings) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()


async def _register(settings: Settings, artist_id: int, address: str) -> None:
    db = DatabaseManager(settings.database.url)
    try:
        await ContractRegistry(db).register(artist_id, address)
    finally:
        await db.dispose_async()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="artist_shares_sync", description="Artist shares sync engine")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Backfill, subscribe and ingest until interrupted")
    run.add_argument("--dry-run", action="store_true", default=None, help="Do not publish broadcasts")

    sub.add_parser("init-db", help="Create database tables (use alembic in production)")
    sub.add_parser("config", help="Print the effective configuration with secrets redacted")

    register = sub.add_parser("register", help="Register an artist's share contract")
    register.add_argument("artist_id", type=int)
    register.add_argument("contract_address")

    args = parser.parse_args(argv)
    settings = get_settings()
    _configure_logging(settings)

    if args.command == "config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return 0
    if args.command == "init-db":
        asyncio.run(_init_db(settings))
        logger.info("Schema created")
        return 0
    if args.command == "register":
        asyncio.run(_register(settings, args.artist_id, args.contract_address))
        return 0

    logger.info("Configuration: %s", settings.redacted_summary())
    asyncio.run(_run(settings, dry_run=args.dry_run))
    return 0


if __name__ == "__main__":
    sys.exit(main())
