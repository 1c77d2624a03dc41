"""Database models for the invoice ingestion pipeline."""

from app.database.models import (
    ChunkType,
    InsightCache,
    InvoiceEmbedding,
    ParsedInvoice,
    ParsedInvoiceLineItem,
    ParsedInvoiceService,
    ParseStatus,
    PipelineState,
)

__all__ = [
    "ChunkType",
    "InsightCache",
    "InvoiceEmbedding",
    "ParsedInvoice",
    "ParsedInvoiceLineItem",
    "ParsedInvoiceService",
    "ParseStatus",
    "PipelineState",
]
