"""Temporal client connection management and workflow starters."""

from typing import Optional

from temporalio.client import Client as TemporalClient
from temporalio.client import WorkflowHandle
from temporalio.exceptions import WorkflowAlreadyStartedError

from app.core.config import TemporalSettings
from app.temporal.workflows.nightly_ingest import BackfillWorkflow, NightlyIngestWorkflow
from app.utils.logging import get_logger

logger = get_logger(__name__)

# Fixed ids so Temporal rejects a second concurrent run of the same pipeline
NIGHTLY_WORKFLOW_ID = "nightly-ingest-cron"
BACKFILL_WORKFLOW_ID = "backfill"


class TemporalClientManager:
    """Manages Temporal client connection."""

    def __init__(self, settings: TemporalSettings):
        self.settings = settings
        self._client: TemporalClient | None = None

    async def get_client(self) -> TemporalClient:
        """Get or create Temporal client instance.

        Returns:
            TemporalClient: Connected Temporal client
        """
        if self._client is None:
            self._client = await TemporalClient.connect(
                self.settings.target_host,
                namespace=self.settings.namespace,
            )
        return self._client

    async def close(self) -> None:
        """Drop the cached client; the SDK releases the connection when unreferenced."""
        self._client = None


async def start_nightly_schedule(
    client: TemporalClient, settings: TemporalSettings
) -> Optional[WorkflowHandle]:
    """Start the cron workflow for the nightly pipeline.

    Returns:
        The workflow handle, or None if the schedule is already running
    """
    try:
        handle = await client.start_workflow(
            NightlyIngestWorkflow.run,
            id=NIGHTLY_WORKFLOW_ID,
            task_queue=settings.task_queue,
            cron_schedule=settings.nightly_cron,
        )
    except WorkflowAlreadyStartedError:
        logger.info(f"Nightly schedule already running as {NIGHTLY_WORKFLOW_ID}")
        return None

    logger.info(
        f"Started nightly schedule {NIGHTLY_WORKFLOW_ID} ({settings.nightly_cron} UTC) "
        f"on queue {settings.task_queue}"
    )
    return handle


async def start_backfill(
    client: TemporalClient, settings: TemporalSettings, limit: int | None = None
) -> WorkflowHandle:
    """Start the backfill workflow; fails if one is already running."""
    handle = await client.start_workflow(
        BackfillWorkflow.run,
        limit,
        id=BACKFILL_WORKFLOW_ID,
        task_queue=settings.task_queue,
    )
    logger.info(f"Started backfill workflow {BACKFILL_WORKFLOW_ID} (limit={limit})")
    return handle
