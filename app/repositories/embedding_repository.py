from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import InvoiceEmbedding
from app.repositories.base_repository import BaseRepository


class EmbeddingRepository(BaseRepository[InvoiceEmbedding]):
    """Repository for invoice embedding chunks."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with the InvoiceEmbedding model."""
        super().__init__(session, InvoiceEmbedding)

    async def has_chunk(
        self,
        invoice_id: UUID,
        chunk_type: str,
        content_hash: Optional[str] = None,
    ) -> bool:
        """Whether a chunk of this type (and optionally this content) exists."""
        condition = (InvoiceEmbedding.invoice_id == invoice_id) & (InvoiceEmbedding.chunk_type == chunk_type)
        if content_hash is not None:
            condition = condition & (InvoiceEmbedding.content_hash == content_hash)

        result = await self.session.execute(select(exists().where(condition)))
        return bool(result.scalar())

    async def add_chunk(self, **values) -> InvoiceEmbedding:
        """Persist one embedded chunk."""
        return await self.create(**values)

    async def semantic_search(
        self,
        embedding: List[float],
        top_k: int = 5,
        fleet_id: Optional[int] = None,
        invoice_id: Optional[UUID] = None,
        chunk_type: Optional[str] = None,
        max_distance: Optional[float] = None,
    ) -> List[Tuple[InvoiceEmbedding, float]]:
        """Nearest chunks by cosine distance, scoped by fleet/invoice.

        Returns:
            List of (chunk, distance) tuples ordered by distance
        """
        distance_expr = InvoiceEmbedding.embedding.cosine_distance(embedding)
        query = select(InvoiceEmbedding, distance_expr.label("distance"))

        if fleet_id is not None:
            query = query.where(InvoiceEmbedding.fleet_id == fleet_id)
        if invoice_id is not None:
            query = query.where(InvoiceEmbedding.invoice_id == invoice_id)
        if chunk_type is not None:
            query = query.where(InvoiceEmbedding.chunk_type == chunk_type)
        if max_distance is not None:
            query = query.where(distance_expr <= max_distance)

        query = query.order_by(distance_expr).limit(top_k)

        result = await self.session.execute(query)
        return [(row[0], float(row[1])) for row in result.all()]
