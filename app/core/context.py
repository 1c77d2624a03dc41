"""Explicitly constructed dependencies shared by every pipeline entry point."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.core.database import create_engine, create_session_factory
from app.core.exceptions import ConfigurationError
from app.core.llm_client import GeminiClient
from app.database.models import EMBEDDING_DIMENSIONS
from app.pipeline.backfill import BackfillPipeline
from app.pipeline.checkpoint import CheckpointStore
from app.pipeline.nightly_ingest import NightlyIngestPipeline
from app.services.ingestion.batch_orchestrator import BatchOrchestrator
from app.services.ingestion.document_fetcher import DocumentFetcher
from app.services.ingestion.invoice_embedder import InvoiceEmbedder
from app.services.ingestion.invoice_persister import InvoicePersister
from app.services.ingestion.structured_extractor import StructuredExtractor
from app.services.insights import InsightRegenerator, LoggingInsightRegenerator
from app.services.source_system_client import SourceSystemClient
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class PipelineContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    llm: GeminiClient
    persister: InvoicePersister
    orchestrator: BatchOrchestrator
    source: SourceSystemClient
    insights: InsightRegenerator
    checkpoint: CheckpointStore

    def nightly_pipeline(self) -> NightlyIngestPipeline:
        return NightlyIngestPipeline(
            source=self.source,
            persister=self.persister,
            orchestrator=self.orchestrator,
            insights=self.insights,
            checkpoint=self.checkpoint,
            session_factory=self.session_factory,
            processing=self.settings.processing,
        )

    def backfill_pipeline(self) -> BackfillPipeline:
        return BackfillPipeline(
            source=self.source,
            persister=self.persister,
            orchestrator=self.orchestrator,
            checkpoint=self.checkpoint,
        )

    async def aclose(self) -> None:
        await self.engine.dispose()
        LOGGER.info("Pipeline context closed")


def load_exemplar(path: Optional[str]) -> Optional[bytes]:
    """Read the optional few-shot exemplar PDF."""
    if not path:
        return None
    exemplar_path = Path(path)
    if not exemplar_path.is_file():
        raise ConfigurationError(f"Extraction exemplar not found: {path}")
    return exemplar_path.read_bytes()


def build_context(
    settings: Settings,
    insights: Optional[InsightRegenerator] = None,
) -> PipelineContext:
    """Wire every client and service from ``settings``.

    Raises:
        ConfigurationError: If the Gemini API key is missing or the embedding
            dimension does not fit the vector column. Also raised when the
            exemplar cannot be read
    """
    if not settings.llm.gemini_api_key:
        raise ConfigurationError("GEMINI_API_KEY must be set to run invoice extraction")
    if settings.llm.embedding_dimensions != EMBEDDING_DIMENSIONS:
        raise ConfigurationError(
            f"GEMINI_EMBEDDING_DIMENSIONS={settings.llm.embedding_dimensions} does not match "
            f"the invoice_embeddings column width of {EMBEDDING_DIMENSIONS}"
        )

    engine = create_engine(settings.database)
    session_factory = create_session_factory(engine)

    llm = GeminiClient(
        api_key=settings.llm.gemini_api_key,
        model=settings.llm.fast_model,
        timeout=settings.llm.timeout_seconds,
    )

    persister = InvoicePersister(session_factory)
    orchestrator = BatchOrchestrator(
        fetcher=DocumentFetcher(settings.storage, settings.processing),
        extractor=StructuredExtractor(llm, settings.llm),
        persister=persister,
        embedder=InvoiceEmbedder(session_factory, llm, settings.llm),
        processing=settings.processing,
        exemplar=load_exemplar(settings.llm.exemplar_pdf_path),
    )

    LOGGER.info(
        "Pipeline context built",
        extra={
            "batch_size": settings.processing.batch_size,
            "max_concurrency": settings.processing.max_concurrency,
            "exemplar": bool(settings.llm.exemplar_pdf_path),
        },
    )

    return PipelineContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        llm=llm,
        persister=persister,
        orchestrator=orchestrator,
        source=SourceSystemClient(settings.source),
        insights=insights or LoggingInsightRegenerator(),
        checkpoint=CheckpointStore(session_factory),
    )
