"""Command line entry point for one-off pipeline runs.

Usage:
    fleet-ingest nightly
    fleet-ingest backfill --limit 10
    fleet-ingest backfill --temporal
    fleet-ingest init-db
    fleet-ingest schedule
"""

import argparse
import asyncio
import json
import sys
from typing import Optional, Sequence

from app.core.config import Settings, load_settings
from app.core.context import build_context
from app.core.database import DatabaseClient, create_engine
from app.core.exceptions import ConfigurationError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


async def run_nightly(settings: Settings) -> dict:
    context = build_context(settings)
    try:
        return await context.nightly_pipeline().run()
    finally:
        await context.aclose()


async def run_backfill(settings: Settings, limit: Optional[int]) -> dict:
    context = build_context(settings)
    try:
        return await context.backfill_pipeline().run(limit=limit)
    finally:
        await context.aclose()


async def init_db(settings: Settings) -> dict:
    client = DatabaseClient(create_engine(settings.database))
    try:
        await client.connect()
        await client.create_tables()
        return await client.health_check()
    finally:
        await client.disconnect()


async def schedule(settings: Settings) -> dict:
    # Imported here so non-Temporal commands work without a Temporal server
    from app.temporal.client import NIGHTLY_WORKFLOW_ID, TemporalClientManager, start_nightly_schedule

    manager = TemporalClientManager(settings.temporal)
    try:
        client = await manager.get_client()
        handle = await start_nightly_schedule(client, settings.temporal)
    finally:
        await manager.close()
    return {"workflow_id": NIGHTLY_WORKFLOW_ID, "started": handle is not None}


async def submit_backfill(settings: Settings, limit: Optional[int]) -> dict:
    from app.temporal.client import TemporalClientManager, start_backfill

    manager = TemporalClientManager(settings.temporal)
    try:
        handle = await start_backfill(await manager.get_client(), settings.temporal, limit)
    finally:
        await manager.close()
    return {"workflow_id": handle.id, "run_id": handle.result_run_id}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-ingest",
        description="Fleet invoice ingestion pipeline",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("nightly", help="Ingest invoices created since the last successful nightly run")

    backfill = commands.add_parser("backfill", help="Parse every historical invoice not yet processed")
    backfill.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Only enqueue this many unprocessed invoices (for trial runs)",
    )
    backfill.add_argument(
        "--temporal",
        action="store_true",
        help="Submit the backfill to the Temporal worker instead of running it here",
    )

    commands.add_parser("init-db", help="Create the pgvector extension and all tables")
    commands.add_parser("schedule", help="Start the Temporal cron workflow for the nightly run")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point with CLI argument parsing."""
    args = build_parser().parse_args(argv)
    settings = load_settings()

    if args.command == "nightly":
        operation = run_nightly(settings)
    elif args.command == "backfill" and args.temporal:
        operation = submit_backfill(settings, args.limit)
    elif args.command == "backfill":
        operation = run_backfill(settings, args.limit)
    elif args.command == "init-db":
        operation = init_db(settings)
    else:
        operation = schedule(settings)

    try:
        result = asyncio.run(operation)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 2
    except Exception as e:
        LOGGER.error(f"{args.command} failed: {e}", exc_info=True)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
