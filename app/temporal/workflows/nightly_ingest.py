"""Nightly ingestion workflow.

Started on a cron schedule; the activity is referenced by name so the
workflow sandbox never imports database or HTTP modules.
"""

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

# Matched by class name, so subclasses of ConfigurationError are listed too
NON_RETRYABLE_ERROR_TYPES = ["ConfigurationError", "EmbeddingDimensionError"]


@workflow.defn
class NightlyIngestWorkflow:
    """Runs the ``nightly_ingest`` pipeline once per schedule tick."""

    @workflow.run
    async def run(self) -> dict:
        return await workflow.execute_activity(
            "run_nightly_ingest",
            start_to_close_timeout=timedelta(hours=6),
            retry_policy=RetryPolicy(
                initial_interval=timedelta(minutes=5),
                maximum_attempts=2,
                non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
            ),
        )


@workflow.defn
class BackfillWorkflow:
    """Runs the one-time ``backfill`` pipeline."""

    @workflow.run
    async def run(self, limit: int | None = None) -> dict:
        return await workflow.execute_activity(
            "run_backfill",
            limit,
            start_to_close_timeout=timedelta(hours=48),
            retry_policy=RetryPolicy(
                initial_interval=timedelta(minutes=1),
                maximum_attempts=3,
                non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
            ),
        )
