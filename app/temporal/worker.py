"""Temporal worker service for invoice ingestion.

This worker:
- Connects to the configured Temporal server
- Registers the ingestion workflows and activities
- Ensures the nightly cron workflow is scheduled
- Polls the ingestion task queue
"""

import asyncio

from temporalio.worker import Worker

from app.core.config import load_settings
from app.temporal.activities.ingestion import run_backfill_activity, run_nightly_ingest_activity
from app.temporal.client import TemporalClientManager, start_nightly_schedule
from app.temporal.workflows.nightly_ingest import BackfillWorkflow, NightlyIngestWorkflow
from app.utils.logging import get_logger

logger = get_logger(__name__)

# One pipeline run at a time; each run paces its own LLM calls
MAX_CONCURRENT_ACTIVITIES = 1


async def main():
    """Start the Temporal worker."""
    settings = load_settings()
    temporal = settings.temporal

    logger.info(f"Connecting to Temporal server at {temporal.target_host}")
    client = await TemporalClientManager(temporal).get_client()
    logger.info("Successfully connected to Temporal server")

    await start_nightly_schedule(client, temporal)

    worker = Worker(
        client,
        task_queue=temporal.task_queue,
        workflows=[NightlyIngestWorkflow, BackfillWorkflow],
        activities=[run_nightly_ingest_activity, run_backfill_activity],
        max_concurrent_activities=MAX_CONCURRENT_ACTIVITIES,
    )

    logger.info("=" * 60)
    logger.info("Temporal Worker Started Successfully")
    logger.info(f"Task Queue: {temporal.task_queue}")
    logger.info(f"Nightly Schedule: {temporal.nightly_cron} (UTC)")
    logger.info("=" * 60)

    await worker.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
    except Exception as e:
        logger.error(f"Worker failed: {e}", exc_info=True)
        raise
