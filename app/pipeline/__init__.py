"""Named pipelines and their checkpoint store."""

from app.pipeline.backfill import BackfillPipeline
from app.pipeline.checkpoint import CheckpointStore
from app.pipeline.nightly_ingest import NightlyIngestPipeline

__all__ = [
    "BackfillPipeline",
    "CheckpointStore",
    "NightlyIngestPipeline",
]
