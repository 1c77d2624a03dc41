"""Unit tests for repository SQL.

Statements are captured from a mocked session and compiled against the
PostgreSQL dialect.
"""

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError

from app.database.models import ChunkType, ParseStatus
from app.repositories.embedding_repository import EmbeddingRepository
from app.repositories.insight_cache_repository import InsightCacheRepository
from app.repositories.invoice_repository import InvoiceRepository
from app.repositories.pipeline_state_repository import PipelineStateRepository


def compiled(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


@pytest.fixture
def result():
    return MagicMock()


@pytest.fixture
def session(result):
    mock = MagicMock()
    mock.execute = AsyncMock(return_value=result)
    mock.flush = AsyncMock()
    return mock


def executed_sql(session, index: int = -1) -> str:
    return compiled(session.execute.await_args_list[index].args[0])


class TestInvoiceRepository:
    @pytest.mark.asyncio
    async def test_upsert_overwrites_on_key_conflict(self, session, result):
        invoice_id = uuid.uuid4()
        result.scalar_one.return_value = invoice_id

        returned = await InvoiceRepository(session).upsert(
            {"request_id": 1, "pdf_url": "https://a/1.pdf", "parse_status": ParseStatus.COMPLETED}
        )

        sql = executed_sql(session)
        assert returned == invoice_id
        assert "ON CONFLICT ON CONSTRAINT uq_parsed_invoices_request_pdf DO UPDATE" in sql
        assert "updated_at = now()" in sql
        assert "RETURNING parsed_invoices.id" in sql

    @pytest.mark.asyncio
    async def test_insert_if_absent(self, session, result):
        result.scalar_one_or_none.return_value = None

        inserted = await InvoiceRepository(session).insert_if_absent(
            {"request_id": 1, "pdf_url": "https://a/1.pdf", "parse_status": ParseStatus.PENDING}
        )

        assert inserted is False
        assert "DO NOTHING" in executed_sql(session)

    @pytest.mark.asyncio
    async def test_insert_or_requeue_only_touches_failed_rows(self, session, result):
        result.scalar_one_or_none.return_value = uuid.uuid4()

        queued = await InvoiceRepository(session).insert_or_requeue(
            {"request_id": 1, "pdf_url": "https://a/1.pdf", "parse_status": ParseStatus.PENDING}
        )

        sql = executed_sql(session)
        assert queued is True
        assert "ON CONFLICT ON CONSTRAINT uq_parsed_invoices_request_pdf DO UPDATE SET parse_status" in sql
        assert "WHERE parsed_invoices.parse_status =" in sql
        assert "RETURNING parsed_invoices.id" in sql

    @pytest.mark.asyncio
    async def test_list_pending_reads_from_offset_zero(self, session, result):
        result.scalars.return_value.all.return_value = []

        await InvoiceRepository(session).list_pending(10, order_by_request_id=True)

        sql = executed_sql(session)
        assert "OFFSET" not in sql
        assert "ORDER BY parsed_invoices.request_id ASC, parsed_invoices.pdf_url ASC" in sql
        assert "LIMIT" in sql

    @pytest.mark.asyncio
    async def test_replace_services_deletes_then_adds(self, session):
        service = MagicMock(line_items=[MagicMock()])
        invoice_id = uuid.uuid4()

        await InvoiceRepository(session).replace_services(invoice_id, [service])

        assert executed_sql(session, 0).startswith("DELETE FROM parsed_invoice_line_items")
        assert executed_sql(session, 1).startswith("DELETE FROM parsed_invoice_services")
        assert service.invoice_id == invoice_id
        assert service.line_items[0].invoice_id == invoice_id
        session.add.assert_called_once_with(service)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_database_errors_propagate(self, session):
        session.execute.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))

        with pytest.raises(OperationalError):
            await InvoiceRepository(session).upsert({"request_id": 1, "pdf_url": "https://a/1.pdf"})


class TestEmbeddingRepository:
    @pytest.mark.asyncio
    async def test_has_chunk_with_hash(self, session, result):
        result.scalar.return_value = True

        assert await EmbeddingRepository(session).has_chunk(uuid.uuid4(), ChunkType.SERVICE_CORRECTION, "abc")
        assert "invoice_embeddings.content_hash" in executed_sql(session)

    @pytest.mark.asyncio
    async def test_semantic_search_scopes_and_orders(self, session, result):
        chunk = MagicMock()
        result.all.return_value = [(chunk, 0.12)]

        matches = await EmbeddingRepository(session).semantic_search([0.1] * 768, top_k=3, fleet_id=9)

        sql = executed_sql(session)
        assert matches == [(chunk, 0.12)]
        assert "<=>" in sql
        assert "invoice_embeddings.fleet_id" in sql
        assert "ORDER BY" in sql


class TestStateRepositories:
    @pytest.mark.asyncio
    async def test_pipeline_state_upsert_maps_metadata_column(self, session):
        await PipelineStateRepository(session).upsert("nightly_ingest", last_status="success", state_metadata={"a": 1})

        sql = executed_sql(session)
        assert "ON CONFLICT (pipeline_name) DO UPDATE" in sql
        assert "metadata = " in sql
        assert "state_metadata" not in sql

    @pytest.mark.asyncio
    async def test_delete_expired_insights(self, session, result):
        result.rowcount = 4

        purged = await InsightCacheRepository(session).delete_expired(datetime.now(timezone.utc))

        assert purged == 4
        assert "DELETE FROM insight_cache WHERE insight_cache.valid_until <" in executed_sql(session)
