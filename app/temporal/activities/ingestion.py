from temporalio import activity

from app.core.config import load_settings
from app.core.context import build_context
from app.utils.logging import get_logger

logger = get_logger(__name__)


@activity.defn(name="run_nightly_ingest")
async def run_nightly_ingest_activity() -> dict:
    """Temporal activity running one nightly ingestion pass.

    Builds its own pipeline context so every attempt starts from fresh
    settings and a fresh connection pool.

    Returns:
        The run counters written to the ``nightly_ingest`` checkpoint
    """
    logger.info("Starting nightly ingest activity")
    context = build_context(load_settings())
    try:
        result = await context.nightly_pipeline().run()
        logger.info("Nightly ingest activity completed", extra=result)
        return result
    except Exception as e:
        logger.error(f"Nightly ingest activity failed: {e}", exc_info=True)
        # Re-raise to let Temporal handle retry logic
        raise
    finally:
        await context.aclose()


@activity.defn(name="run_backfill")
async def run_backfill_activity(limit: int | None = None) -> dict:
    """Temporal activity running the historical backfill."""
    logger.info(f"Starting backfill activity (limit={limit})")
    context = build_context(load_settings())
    try:
        return await context.backfill_pipeline().run(limit=limit)
    except Exception as e:
        logger.error(f"Backfill activity failed: {e}", exc_info=True)
        raise
    finally:
        await context.aclose()
