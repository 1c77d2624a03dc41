"""Invoice ingestion services: fetch, extract, persist, embed and orchestrate."""

from .batch_orchestrator import BatchOrchestrator, RequestPacer
from .document_fetcher import DocumentFetcher, extract_storage_path, is_storage_url
from .invoice_embedder import InvoiceEmbedder
from .invoice_persister import InvoicePersister
from .storage_credentials import StorageCredentialsResolver
from .structured_extractor import StructuredExtractor, parse_extraction

__all__ = [
    "BatchOrchestrator",
    "DocumentFetcher",
    "InvoiceEmbedder",
    "InvoicePersister",
    "RequestPacer",
    "StorageCredentialsResolver",
    "StructuredExtractor",
    "extract_storage_path",
    "is_storage_url",
    "parse_extraction",
]
