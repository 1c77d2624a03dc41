"""One-time historical load.

Every source document not yet completed or failed is enqueued as pending,
then drained in request-id order through the same path as the nightly run.
Restarting after a crash resumes with whatever is still pending.
"""

from typing import Any, Dict, List, Optional

from app.pipeline.checkpoint import CheckpointStore
from app.schemas.ingestion import BatchResult, DrainSummary
from app.services.ingestion.batch_orchestrator import BatchOrchestrator
from app.services.ingestion.invoice_persister import InvoicePersister
from app.services.source_system_client import SourceSystemClient
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

PIPELINE_NAME = "backfill"


class BackfillPipeline:
    def __init__(
        self,
        source: SourceSystemClient,
        persister: InvoicePersister,
        orchestrator: BatchOrchestrator,
        checkpoint: CheckpointStore,
    ):
        self.source = source
        self.persister = persister
        self.orchestrator = orchestrator
        self.checkpoint = checkpoint

    async def run(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """Enqueue and drain every unprocessed historical invoice.

        Args:
            limit: Cap on newly enqueued documents, for trial runs
        """
        LOGGER.info("Backfill starting", extra={"limit": limit})
        await self.checkpoint.mark_running(PIPELINE_NAME)

        try:
            references = await self.source.get_all_invoices()
            processed_keys = await self.persister.processed_keys()
            remaining = [reference for reference in references if reference.key not in processed_keys]
            LOGGER.info(
                "Backfill candidates",
                extra={
                    "total": len(references),
                    "already_processed": len(references) - len(remaining),
                    "remaining": len(remaining),
                },
            )

            if limit is not None:
                remaining = remaining[:limit]

            enqueued = await self.persister.enqueue_pending(remaining)

            async def record_progress(results: List[BatchResult], summary: DrainSummary) -> None:
                done = summary.processed + summary.failed
                LOGGER.info(
                    f"Backfill progress: {done}/{enqueued}",
                    extra=summary.as_dict(),
                )
                await self.checkpoint.record_progress(
                    PIPELINE_NAME,
                    summary.processed,
                    {**summary.as_dict(), "total": enqueued},
                )

            drain = await self.orchestrator.drain_pending(order_by_request_id=True, on_batch=record_progress)

            metadata = {"fetched": len(references), "enqueued": enqueued, "total": enqueued, **drain.as_dict()}
            await self.checkpoint.mark_success(PIPELINE_NAME, drain.processed, metadata)
        except Exception as e:
            LOGGER.error("Backfill failed", extra={"error": str(e)}, exc_info=True)
            await self.checkpoint.mark_failed(PIPELINE_NAME, str(e))
            raise

        LOGGER.info("Backfill complete", extra=metadata)
        return metadata
