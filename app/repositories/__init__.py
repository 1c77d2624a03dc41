from app.repositories.base_repository import BaseRepository
from app.repositories.embedding_repository import EmbeddingRepository
from app.repositories.insight_cache_repository import InsightCacheRepository
from app.repositories.invoice_repository import InvoiceRepository
from app.repositories.pipeline_state_repository import PipelineStateRepository

__all__ = [
    "BaseRepository",
    "EmbeddingRepository",
    "InsightCacheRepository",
    "InvoiceRepository",
    "PipelineStateRepository",
]
