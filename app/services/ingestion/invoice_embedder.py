"""Embed invoice text for semantic recall.

Two chunk types are produced: one ``full_document`` chunk per invoice from
the extracted raw text, and one ``service_correction`` chunk per service
that carries a complaint/cause/correction narrative.
"""

import hashlib
from typing import Callable, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import LLMSettings
from app.core.exceptions import EmbeddingDimensionError
from app.core.llm_client import GeminiClient
from app.database.models import ChunkType
from app.repositories.embedding_repository import EmbeddingRepository
from app.schemas.ingestion import EmbedSummary
from app.schemas.invoice_extraction import Service
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

MIN_FULL_DOCUMENT_CHARS = 20
FULL_DOCUMENT_CHAR_LIMIT = 8000
CORRECTION_CHAR_LIMIT = 4000


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class InvoiceEmbedder:
    """Creates embedding chunks for a stored invoice."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm: GeminiClient,
        settings: LLMSettings,
        repository_factory: Callable[[AsyncSession], EmbeddingRepository] = EmbeddingRepository,
    ):
        self.session_factory = session_factory
        self.llm = llm
        self.settings = settings
        self.repository_factory = repository_factory

    async def embed(
        self,
        invoice_id: UUID,
        fleet_id: Optional[int],
        shop_id: Optional[int],
        raw_text: Optional[str],
        services: Sequence[Service],
    ) -> EmbedSummary:
        """Embed the full document and every service narrative.

        Raises:
            EmbeddingDimensionError: If the model returns a vector of the wrong size
        """
        summary = EmbedSummary()
        base_metadata = {"fleet_id": fleet_id, "shop_id": shop_id, "invoice_id": str(invoice_id)}

        async with self.session_factory() as session:
            repository = self.repository_factory(session)

            text = (raw_text or "").strip()
            if len(text) > MIN_FULL_DOCUMENT_CHARS:
                if await repository.has_chunk(invoice_id, ChunkType.FULL_DOCUMENT):
                    LOGGER.debug("Full document already embedded", extra={"invoice_id": str(invoice_id)})
                else:
                    chunk_text = text[:FULL_DOCUMENT_CHAR_LIMIT]
                    await self._store_chunk(
                        repository,
                        invoice_id=invoice_id,
                        fleet_id=fleet_id,
                        shop_id=shop_id,
                        chunk_type=ChunkType.FULL_DOCUMENT,
                        chunk_text=chunk_text,
                        metadata=base_metadata,
                    )
                    await session.commit()
                    summary.full_doc_embedded = True

            for service in services:
                narrative = service.narrative()
                if not narrative:
                    summary.skipped_count += 1
                    continue

                chunk_text = narrative[:CORRECTION_CHAR_LIMIT]
                if await repository.has_chunk(
                    invoice_id, ChunkType.SERVICE_CORRECTION, content_hash(chunk_text)
                ):
                    summary.skipped_count += 1
                    continue

                await self._store_chunk(
                    repository,
                    invoice_id=invoice_id,
                    fleet_id=fleet_id,
                    shop_id=shop_id,
                    chunk_type=ChunkType.SERVICE_CORRECTION,
                    chunk_text=chunk_text,
                    metadata={**base_metadata, "service_name": service.service_name},
                )
                await session.commit()
                summary.correction_count += 1

        LOGGER.info(
            "Invoice embedded",
            extra={
                "invoice_id": str(invoice_id),
                "full_doc_embedded": summary.full_doc_embedded,
                "corrections": summary.correction_count,
                "skipped": summary.skipped_count,
            },
        )
        return summary

    async def _store_chunk(
        self,
        repository: EmbeddingRepository,
        invoice_id: UUID,
        fleet_id: Optional[int],
        shop_id: Optional[int],
        chunk_type: str,
        chunk_text: str,
        metadata: dict,
    ) -> None:
        expected = self.settings.embedding_dimensions
        vector = await self.llm.embed_content(
            chunk_text,
            model=self.settings.embedding_model,
            output_dimensionality=expected,
        )
        if len(vector) != expected:
            raise EmbeddingDimensionError(expected=expected, actual=len(vector))

        await repository.add_chunk(
            invoice_id=invoice_id,
            fleet_id=fleet_id,
            shop_id=shop_id,
            chunk_type=chunk_type,
            chunk_text=chunk_text,
            content_hash=content_hash(chunk_text),
            embedding_model=self.settings.embedding_model,
            embedding=vector,
            chunk_metadata=metadata,
        )
