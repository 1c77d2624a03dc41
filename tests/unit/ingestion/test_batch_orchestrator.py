"""Unit tests for BatchOrchestrator.

Fetcher, extractor and embedder are mocks; persistence goes through the
in-memory invoice store so idempotency and the pending queue behave as
they do against PostgreSQL.
"""

from unittest.mock import AsyncMock, patch

import pytest

from app.core.exceptions import (
    ConfigurationError,
    DocumentNotFoundError,
    EmbeddingDimensionError,
    RateLimitedError,
    SchemaViolationError,
)
from app.database.models import ParseStatus
from app.schemas.ingestion import BatchStatus
from app.services.ingestion.batch_orchestrator import BatchOrchestrator, RequestPacer

PDF_BYTES = b"%PDF-1.4 invoice"


@pytest.fixture
def fetcher():
    mock = AsyncMock()
    mock.fetch = AsyncMock(return_value=PDF_BYTES)
    return mock


@pytest.fixture
def extractor(sample_outcome):
    mock = AsyncMock()
    mock.extract = AsyncMock(return_value=sample_outcome)
    return mock


@pytest.fixture
def embedder():
    mock = AsyncMock()
    mock.embed = AsyncMock()
    return mock


@pytest.fixture
def no_sleep():
    with patch("app.services.ingestion.batch_orchestrator.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


@pytest.fixture
def orchestrator(fetcher, extractor, persister, embedder, processing_settings) -> BatchOrchestrator:
    return BatchOrchestrator(fetcher, extractor, persister, embedder, processing_settings, exemplar=b"exemplar")


def sleep_durations(sleep) -> list:
    return [call.args[0] for call in sleep.await_args_list]


class TestProcessOne:
    @pytest.mark.asyncio
    async def test_success(self, orchestrator, fetcher, extractor, embedder, invoice_store, make_reference):
        reference = make_reference()

        result = await orchestrator.process_one(reference)

        assert result.status == BatchStatus.SUCCESS
        assert result.invoice_id == invoice_store.get(*reference.key).id
        fetcher.fetch.assert_awaited_once_with(reference.pdf_url)
        extractor.extract.assert_awaited_once_with(PDF_BYTES, b"exemplar")
        embedder.embed.assert_awaited_once()
        assert embedder.embed.await_args.args[1:3] == (9, 55)

    @pytest.mark.asyncio
    async def test_completed_invoice_is_skipped(self, orchestrator, fetcher, invoice_store, make_reference):
        reference = make_reference()
        row = invoice_store.add_row(reference.request_id, reference.pdf_url, ParseStatus.COMPLETED)

        result = await orchestrator.process_one(reference)

        assert result.status == BatchStatus.SKIPPED
        assert result.invoice_id == row.id
        fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_retries_with_backoff(
        self, orchestrator, extractor, invoice_store, make_reference, no_sleep
    ):
        extractor.extract.side_effect = RateLimitedError("429 RESOURCE_EXHAUSTED")
        reference = make_reference()

        result = await orchestrator.process_one(reference)

        assert result.status == BatchStatus.FAILED
        assert extractor.extract.await_count == 4
        assert sleep_durations(no_sleep) == [2.0, 4.0, 8.0]
        row = invoice_store.get(*reference.key)
        assert row.parse_status == ParseStatus.FAILED
        assert "429" in row.parse_meta["error"]

    @pytest.mark.asyncio
    async def test_rate_limit_then_success(self, orchestrator, extractor, sample_outcome, make_reference, no_sleep):
        extractor.extract.side_effect = [RateLimitedError("429"), sample_outcome]

        result = await orchestrator.process_one(make_reference())

        assert result.status == BatchStatus.SUCCESS
        assert sleep_durations(no_sleep) == [2.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [DocumentNotFoundError("Invoice PDF not found (404)"), SchemaViolationError("bad shape"), ValueError("boom")],
    )
    async def test_other_errors_fail_immediately(
        self, orchestrator, fetcher, extractor, invoice_store, make_reference, no_sleep, error
    ):
        extractor.extract.side_effect = error
        reference = make_reference()

        result = await orchestrator.process_one(reference)

        assert result.status == BatchStatus.FAILED
        assert result.error == str(error)
        assert extractor.extract.await_count == 1
        no_sleep.assert_not_awaited()
        assert invoice_store.get(*reference.key).parse_meta["error"] == str(error)

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_extraction(self, orchestrator, fetcher, extractor, make_reference):
        fetcher.fetch.side_effect = DocumentNotFoundError("Invoice PDF not found (404)")

        result = await orchestrator.process_one(make_reference())

        assert result.status == BatchStatus.FAILED
        extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_configuration_error_aborts(self, orchestrator, fetcher, invoice_store, make_reference):
        fetcher.fetch.side_effect = ConfigurationError("No storage credentials")
        reference = make_reference()

        with pytest.raises(ConfigurationError):
            await orchestrator.process_one(reference)

        assert invoice_store.get(*reference.key) is None

    @pytest.mark.asyncio
    async def test_embedding_failure_is_isolated(self, orchestrator, embedder, invoice_store, make_reference):
        embedder.embed.side_effect = RuntimeError("embedding service unavailable")
        reference = make_reference()

        result = await orchestrator.process_one(reference)

        assert result.status == BatchStatus.SUCCESS
        assert invoice_store.get(*reference.key).parse_status == ParseStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_embedding_dimension_drift_aborts(self, orchestrator, embedder, make_reference):
        embedder.embed.side_effect = EmbeddingDimensionError(expected=768, actual=3072)

        with pytest.raises(EmbeddingDimensionError):
            await orchestrator.process_one(make_reference())

    @pytest.mark.asyncio
    async def test_no_embedding_without_raw_text(self, orchestrator, extractor, embedder, sample_outcome, make_reference):
        sample_outcome.result.raw_text = None

        await orchestrator.process_one(make_reference())

        embedder.embed.assert_not_awaited()


class TestProcessBatch:
    @pytest.mark.asyncio
    async def test_paces_after_non_skipped_documents(
        self, orchestrator, invoice_store, make_reference, no_sleep
    ):
        done = make_reference(request_id=1)
        invoice_store.add_row(done.request_id, done.pdf_url, ParseStatus.COMPLETED)

        results = await orchestrator.process_batch([done, make_reference(request_id=2), make_reference(request_id=3)])

        assert [result.status for result in results] == [
            BatchStatus.SKIPPED,
            BatchStatus.SUCCESS,
            BatchStatus.SUCCESS,
        ]
        assert sleep_durations(no_sleep) == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_batch(self, orchestrator, fetcher, make_reference, no_sleep):
        fetcher.fetch.side_effect = [DocumentNotFoundError("404"), PDF_BYTES]

        results = await orchestrator.process_batch([make_reference(request_id=1), make_reference(request_id=2)])

        assert [result.status for result in results] == [BatchStatus.FAILED, BatchStatus.SUCCESS]

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_run_once(
        self, fetcher, extractor, persister, embedder, processing_settings, make_reference
    ):
        settings = processing_settings.model_copy(update={"max_concurrency": 4, "document_delay_seconds": 0.0})
        orchestrator = BatchOrchestrator(fetcher, extractor, persister, embedder, settings)
        reference = make_reference()

        results = await orchestrator.process_batch([reference, reference, make_reference(request_id=2)])

        assert [result.status for result in results] == [
            BatchStatus.SUCCESS,
            BatchStatus.SKIPPED,
            BatchStatus.SUCCESS,
        ]
        assert fetcher.fetch.await_count == 2


class TestDrainPending:
    @pytest.mark.asyncio
    async def test_drains_in_batches(self, orchestrator, persister, invoice_store, make_reference, no_sleep):
        await persister.enqueue_pending([make_reference(request_id=i) for i in range(1, 26)])

        summary = await orchestrator.drain_pending()

        assert summary.processed == 25
        assert summary.batches == 3
        assert invoice_store.pending_queries == 4
        assert all(row.parse_status == ParseStatus.COMPLETED for row in invoice_store.rows.values())

    @pytest.mark.asyncio
    async def test_failed_rows_leave_the_queue(self, orchestrator, fetcher, persister, make_reference, no_sleep):
        fetcher.fetch.side_effect = DocumentNotFoundError("404")
        await persister.enqueue_pending([make_reference(request_id=i) for i in range(1, 4)])

        summary = await orchestrator.drain_pending()

        assert summary.failed == 3
        assert summary.batches == 1

    @pytest.mark.asyncio
    async def test_stops_when_queue_does_not_shrink(
        self, orchestrator, fetcher, persister, invoice_store, make_reference, no_sleep
    ):
        fetcher.fetch.side_effect = DocumentNotFoundError("404")
        await persister.enqueue_pending([make_reference(request_id=1)])

        with patch.object(persister, "mark_failed", new_callable=AsyncMock):
            summary = await orchestrator.drain_pending()

        assert summary.failed == 1
        assert summary.batches == 1
        assert invoice_store.pending_queries == 2
        assert fetcher.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_batch_callback(self, orchestrator, persister, make_reference, no_sleep):
        await persister.enqueue_pending([make_reference(request_id=i) for i in range(1, 13)])
        on_batch = AsyncMock()

        await orchestrator.drain_pending(order_by_request_id=True, on_batch=on_batch)

        assert on_batch.await_count == 2
        first_results, _ = on_batch.await_args_list[0].args
        assert [result.request_id for result in first_results] == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_empty_queue(self, orchestrator, invoice_store):
        summary = await orchestrator.drain_pending()

        assert summary.as_dict() == {"processed": 0, "failed": 0, "skipped": 0, "batches": 0}
        assert invoice_store.pending_queries == 1


class TestRequestPacer:
    @pytest.mark.asyncio
    async def test_zero_interval_never_sleeps(self, no_sleep):
        pacer = RequestPacer(0)

        await pacer.wait()
        await pacer.wait()

        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_second_start_waits(self, no_sleep):
        pacer = RequestPacer(5.0)

        await pacer.wait()
        await pacer.wait()

        assert no_sleep.await_count == 1
        assert 4.5 < no_sleep.await_args.args[0] <= 5.0
