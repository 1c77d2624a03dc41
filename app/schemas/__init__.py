from .ingestion import (
    BatchResult,
    BatchStatus,
    DocumentReference,
    DrainSummary,
    EmbedSummary,
    ExtractionOutcome,
)
from .invoice_extraction import (
    ExtraField,
    ExtraFieldCategory,
    InvoiceExtraction,
    LineItem,
    LineItemType,
    Service,
)

__all__ = [
    "BatchResult",
    "BatchStatus",
    "DocumentReference",
    "DrainSummary",
    "EmbedSummary",
    "ExtractionOutcome",
    "ExtraField",
    "ExtraFieldCategory",
    "InvoiceExtraction",
    "LineItem",
    "LineItemType",
    "Service",
]
