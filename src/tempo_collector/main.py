#!/usr/bin/env python3
"""
Tempo collector CLI.

Usage:
    tempo-collector init-db
    tempo-collector ingest 123456
    tempo-collector ingest 0xabc...
    tempo-collector backfill --from 100 --to 200
    tempo-collector cleanup --ttl-days 30
    tempo-collector inspect-tx 0xdef...
    tempo-collector address 0x1234...
    tempo-collector stablecoins
    tempo-collector run

Configuration comes from the environment / .env (TEMPO_RPC_URL,
DATABASE_URL, TRANSACTION_TTL_DAYS, ...); flags override it.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

import orjson
import structlog
from pydantic import BaseModel

from .config import Settings
from .detector import StablecoinDetector
from .ingestion import BlockIngestor, IngestionError
from .jobs import JobManager
from .models import serialize_for_storage
from .retention import RetentionSweeper
from .rpc import RPCClient
from .stats import StablecoinStatsAggregator
from .storage import (
    StablecoinStore,
    TransactionStore,
    create_engine,
    create_session_factory,
    init_db,
)

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


class App:
    """The wired-up collector components for one process."""

    def __init__(self, settings: Settings, rpc: RPCClient, engine):
        self.settings = settings
        self.rpc = rpc
        self.engine = engine

        session_factory = create_session_factory(engine)
        self.transactions = TransactionStore(session_factory)
        self.stablecoins = StablecoinStore(session_factory)
        self.detector = StablecoinDetector(
            rpc,
            self.stablecoins,
            concurrency=settings.detection_concurrency,
            call_timeout=settings.detection_call_timeout,
        )
        self.aggregator = StablecoinStatsAggregator(self.stablecoins)
        self.ingestor = BlockIngestor(rpc, self.transactions, self.detector, self.aggregator)
        self.sweeper = RetentionSweeper(self.transactions, batch_size=settings.cleanup_batch_size)


@asynccontextmanager
async def open_app(settings: Settings) -> AsyncIterator[App]:
    """Create the RPC client and database engine, and close both on exit."""
    engine = create_engine(settings.database_url)
    try:
        async with RPCClient(
            endpoints=settings.rpc_urls,
            max_concurrent=settings.rpc_max_concurrent,
            timeout=settings.rpc_timeout,
            max_retries=settings.rpc_max_retries,
        ) as rpc:
            yield App(settings, rpc, engine)
    finally:
        await engine.dispose()


def emit(payload) -> None:
    """Print a result as JSON. Integers are written as decimal strings, volumes exceed 64 bits."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [p.model_dump(mode="json") if isinstance(p, BaseModel) else p for p in payload]
    sys.stdout.write(orjson.dumps(serialize_for_storage(payload), option=orjson.OPT_INDENT_2).decode() + "\n")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Tempo block, transaction and stablecoin collector")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("--rpc", action="append", dest="rpcs", help="RPC URL (can be repeated)")
    parser.add_argument("--database-url", help="SQLAlchemy async database URL")
    parser.add_argument("--log-level", help="Log level (default: INFO)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create tables")

    ingest = sub.add_parser("ingest", help="Ingest one block by number or hash")
    ingest.add_argument("block_id")

    backfill = sub.add_parser("backfill", help="Ingest a range of blocks")
    backfill.add_argument("--from", dest="start", type=int, required=True)
    backfill.add_argument("--to", dest="end", type=int, required=True)

    cleanup = sub.add_parser("cleanup", help="Delete transactions older than the TTL")
    cleanup.add_argument("--ttl-days", type=float, help="Retention in days (default: TRANSACTION_TTL_DAYS)")

    inspect = sub.add_parser("inspect-tx", help="Show stablecoin activity of one transaction")
    inspect.add_argument("tx_hash")

    address = sub.add_parser("address", help="Recent transactions of an address")
    address.add_argument("address")
    address.add_argument("--limit", type=int, default=20)

    sub.add_parser("stablecoins", help="List detected stablecoins")

    run = sub.add_parser("run", help="Run the scheduled ingestion and cleanup jobs")
    run.add_argument("--ingest-interval", type=float, help="Seconds between head ingestions")
    run.add_argument("--cleanup-interval", type=float, help="Seconds between retention sweeps")
    run.add_argument("--ttl-days", type=float, help="Retention in days")

    return parser.parse_args(argv)


def load_settings(args) -> Settings:
    settings = Settings.from_env(args.env_file)
    overrides = {}
    if args.rpcs:
        overrides["rpc_urls"] = args.rpcs
    if args.database_url:
        overrides["database_url"] = args.database_url
    if args.log_level:
        overrides["log_level"] = args.log_level
    if getattr(args, "ttl_days", None) is not None:
        overrides["ttl_days"] = args.ttl_days
    if getattr(args, "ingest_interval", None) is not None:
        overrides["ingest_interval"] = args.ingest_interval
    if getattr(args, "cleanup_interval", None) is not None:
        overrides["cleanup_interval"] = args.cleanup_interval
    return settings.model_copy(update=overrides)


async def backfill(app: App, start: int, end: int) -> dict:
    ingested = 0
    transactions = 0
    for block_number in range(start, end + 1):
        result = await app.ingestor.ingest_block(str(block_number))
        ingested += 1
        transactions += result.transactions_ingested
    return {"blocks_ingested": ingested, "transactions_ingested": transactions}


async def main(argv=None) -> int:
    args = parse_args(argv)
    settings = load_settings(args)
    configure_logging(settings.log_level)

    async with open_app(settings) as app:
        if args.command == "init-db":
            await init_db(app.engine)
            return 0

        try:
            if args.command == "ingest":
                emit(await app.ingestor.ingest_block(args.block_id))
            elif args.command == "backfill":
                if args.end < args.start:
                    logger.error("--to must not be below --from", start=args.start, end=args.end)
                    return 2
                emit(await backfill(app, args.start, args.end))
            elif args.command == "cleanup":
                emit(await app.sweeper.cleanup_expired(settings.ttl_days))
            elif args.command == "inspect-tx":
                emit(await app.ingestor.inspect_transaction(args.tx_hash))
            elif args.command == "address":
                records = await app.transactions.list_for_address(args.address, limit=args.limit)
                emit([r.model_dump(mode="json", exclude={"raw_transaction", "raw_receipt"}) for r in records])
            elif args.command == "stablecoins":
                emit(await app.stablecoins.list_all())
            elif args.command == "run":
                manager = JobManager(
                    app.rpc,
                    app.ingestor,
                    app.sweeper,
                    ingest_interval=settings.ingest_interval,
                    cleanup_interval=settings.cleanup_interval,
                    ttl_days=settings.ttl_days,
                    max_attempts=settings.job_max_attempts,
                )
                await manager.run()
        except IngestionError as e:
            logger.error("Ingestion failed", command=args.command, error=str(e))
            return 1

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
