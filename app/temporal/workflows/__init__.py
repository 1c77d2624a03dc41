"""Temporal workflows for invoice ingestion."""

from .nightly_ingest import BackfillWorkflow, NightlyIngestWorkflow

__all__ = [
    "BackfillWorkflow",
    "NightlyIngestWorkflow",
]
