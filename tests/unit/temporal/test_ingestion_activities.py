"""Unit tests for the ingestion Temporal activities."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.temporal.activities.ingestion import run_backfill_activity, run_nightly_ingest_activity

MODULE = "app.temporal.activities.ingestion"


@pytest.fixture
def context():
    ctx = MagicMock()
    ctx.aclose = AsyncMock()
    ctx.nightly_pipeline.return_value.run = AsyncMock(return_value={"processed": 4})
    ctx.backfill_pipeline.return_value.run = AsyncMock(return_value={"processed": 2})
    with patch(f"{MODULE}.load_settings"), patch(f"{MODULE}.build_context", return_value=ctx):
        yield ctx


class TestIngestionActivities:
    @pytest.mark.asyncio
    async def test_nightly_returns_counters(self, context):
        assert await run_nightly_ingest_activity() == {"processed": 4}
        context.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_nightly_failure_is_reraised(self, context):
        context.nightly_pipeline.return_value.run.side_effect = RuntimeError("metabase down")

        with pytest.raises(RuntimeError):
            await run_nightly_ingest_activity()

        context.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backfill_passes_limit(self, context):
        assert await run_backfill_activity(25) == {"processed": 2}
        context.backfill_pipeline.return_value.run.assert_awaited_once_with(limit=25)
