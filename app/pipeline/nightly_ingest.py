"""Nightly incremental ingestion.

New documents since the last successful run are enqueued as pending and
drained through the orchestrator. Documents that previously failed are
requeued; only completed ones are left alone. Insights are then
regenerated for every fleet with a completed invoice and expired insights
are purged. The checkpoint advances only when every step succeeds, so a
failed run is re-covered by the next one.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import ProcessingSettings
from app.pipeline.checkpoint import CheckpointStore
from app.repositories.insight_cache_repository import InsightCacheRepository
from app.services.ingestion.batch_orchestrator import BatchOrchestrator
from app.services.ingestion.invoice_persister import InvoicePersister
from app.services.insights import InsightRegenerator
from app.services.source_system_client import SourceSystemClient
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

PIPELINE_NAME = "nightly_ingest"


class NightlyIngestPipeline:
    """Incremental ingest followed by insight regeneration."""

    def __init__(
        self,
        source: SourceSystemClient,
        persister: InvoicePersister,
        orchestrator: BatchOrchestrator,
        insights: InsightRegenerator,
        checkpoint: CheckpointStore,
        session_factory: async_sessionmaker[AsyncSession],
        processing: ProcessingSettings,
        insight_cache_factory: Callable[[AsyncSession], InsightCacheRepository] = InsightCacheRepository,
    ):
        self.source = source
        self.persister = persister
        self.orchestrator = orchestrator
        self.insights = insights
        self.checkpoint = checkpoint
        self.session_factory = session_factory
        self.processing = processing
        self.insight_cache_factory = insight_cache_factory

    async def run(self) -> Dict[str, Any]:
        """Run one nightly pass.

        Returns:
            Run counters, as stored in the checkpoint metadata

        Raises:
            Exception: Any step failure, after the checkpoint is marked failed
        """
        LOGGER.info("Nightly pipeline starting")
        await self.checkpoint.mark_running(PIPELINE_NAME)

        try:
            since = await self.checkpoint.last_success_at(PIPELINE_NAME)
            if since is None:
                since = datetime.now(timezone.utc) - timedelta(hours=self.processing.nightly_lookback_hours)

            LOGGER.info("Fetching new invoices", extra={"since": since.isoformat()})
            references = await self.source.get_new_invoices_since(since)
            enqueued = await self.persister.enqueue_pending(references, requeue_failed=True)

            drain = await self.orchestrator.drain_pending()

            fleets_refreshed = await self.regenerate_insights()
            purged = await self.purge_expired_insights()

            metadata = {
                "since": since.isoformat(),
                "fetched": len(references),
                "enqueued": enqueued,
                **drain.as_dict(),
                "fleets_refreshed": fleets_refreshed,
                "insights_purged": purged,
            }
            await self.checkpoint.mark_success(PIPELINE_NAME, drain.processed, metadata)
        except Exception as e:
            LOGGER.error("Nightly pipeline failed", extra={"error": str(e)}, exc_info=True)
            await self.checkpoint.mark_failed(PIPELINE_NAME, str(e))
            raise

        LOGGER.info("Nightly pipeline complete", extra=metadata)
        return metadata

    async def regenerate_insights(self) -> int:
        """Regenerate insights for every fleet with a completed invoice.

        A failure for any fleet propagates and fails the run.
        """
        fleet_ids = await self.persister.fleets_with_completed_invoices()
        window = self.processing.insights_window
        LOGGER.info(f"Regenerating insights for {len(fleet_ids)} fleets", extra={"window": window})

        for fleet_id in fleet_ids:
            await self.insights.regenerate(fleet_id, window)
        return len(fleet_ids)

    async def purge_expired_insights(self) -> int:
        async with self.session_factory() as session:
            async with session.begin():
                purged = await self.insight_cache_factory(session).delete_expired(datetime.now(timezone.utc))
        LOGGER.info("Expired insights purged", extra={"count": purged})
        return purged
