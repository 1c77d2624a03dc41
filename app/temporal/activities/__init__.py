"""Temporal activities for invoice ingestion."""

from .ingestion import run_backfill_activity, run_nightly_ingest_activity

__all__ = [
    "run_backfill_activity",
    "run_nightly_ingest_activity",
]
