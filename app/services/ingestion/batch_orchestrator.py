"""Per-document pipeline sequencing, retries, pacing and pending-queue draining.

Per document: skip if completed, then fetch, extract, store and embed
(best-effort). Only rate limiting is retried here; every other per-document
error is recorded as a failed invoice and the batch moves on.
Configuration errors abort the run.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from app.core.config import ProcessingSettings
from app.core.exceptions import ConfigurationError, ErrorKind, PipelineError
from app.schemas.ingestion import (
    BatchResult,
    BatchStatus,
    DocumentReference,
    DrainSummary,
)
from app.services.ingestion.document_fetcher import DocumentFetcher
from app.services.ingestion.invoice_embedder import InvoiceEmbedder
from app.services.ingestion.invoice_persister import InvoicePersister
from app.services.ingestion.structured_extractor import StructuredExtractor
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

BatchCallback = Callable[[List[BatchResult], DrainSummary], Awaitable[None]]


class RequestPacer:
    """Spaces document starts at least ``interval`` seconds apart across workers."""

    def __init__(self, interval: float):
        self.interval = interval
        self._lock = asyncio.Lock()
        self._next_slot = 0.0

    async def wait(self) -> None:
        if self.interval <= 0:
            return
        async with self._lock:
            now = time.monotonic()
            delay = self._next_slot - now
            self._next_slot = max(now, self._next_slot) + self.interval
        if delay > 0:
            await asyncio.sleep(delay)


class BatchOrchestrator:
    """Runs documents through fetch → extract → store → embed."""

    def __init__(
        self,
        fetcher: DocumentFetcher,
        extractor: StructuredExtractor,
        persister: InvoicePersister,
        embedder: Optional[InvoiceEmbedder],
        processing: ProcessingSettings,
        exemplar: Optional[bytes] = None,
    ):
        self.fetcher = fetcher
        self.extractor = extractor
        self.persister = persister
        self.embedder = embedder
        self.processing = processing
        self.exemplar = exemplar

    async def process_one(self, reference: DocumentReference) -> BatchResult:
        """Process a single document.

        Raises:
            ConfigurationError: Missing credentials or embedding drift; fatal for the run
        """
        existing_id = await self.persister.find_completed(reference)
        if existing_id is not None:
            LOGGER.debug("Skipping already processed invoice", extra={"request_id": reference.request_id})
            return BatchResult(
                request_id=reference.request_id,
                status=BatchStatus.SKIPPED,
                invoice_id=existing_id,
            )

        max_retries = self.processing.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                LOGGER.info(
                    "Processing invoice",
                    extra={
                        "request_id": reference.request_id,
                        "pdf_url": reference.pdf_url[:80],
                        "attempt": attempt,
                    },
                )
                document = await self.fetcher.fetch(reference.pdf_url)
                outcome = await self.extractor.extract(document, self.exemplar)
                invoice_id = await self.persister.store(reference, outcome)
            except ConfigurationError:
                raise
            except Exception as e:
                last_error = e
                rate_limited = isinstance(e, PipelineError) and e.kind == ErrorKind.RATE_LIMITED
                if rate_limited and attempt < max_retries:
                    backoff = self.processing.rate_limit_backoff_seconds * (2 ** attempt)
                    LOGGER.warning(
                        "Rate limited, backing off",
                        extra={
                            "request_id": reference.request_id,
                            "attempt": attempt + 1,
                            "max_retries": max_retries,
                            "backoff_seconds": backoff,
                        },
                    )
                    await asyncio.sleep(backoff)
                    continue
                break
            else:
                await self._embed(reference, invoice_id, outcome)
                return BatchResult(
                    request_id=reference.request_id,
                    status=BatchStatus.SUCCESS,
                    invoice_id=invoice_id,
                )

        message = str(last_error) if last_error else "Unknown error"
        LOGGER.error(
            "Failed to process invoice",
            extra={
                "request_id": reference.request_id,
                "error": message,
                "error_kind": getattr(last_error, "kind", None),
            },
        )
        await self.persister.mark_failed(reference, message)
        return BatchResult(request_id=reference.request_id, status=BatchStatus.FAILED, error=message)

    async def _embed(self, reference: DocumentReference, invoice_id, outcome) -> None:
        """Best-effort embedding; failures never touch the invoice status."""
        if self.embedder is None or not outcome.result.raw_text:
            return

        try:
            await self.embedder.embed(
                invoice_id,
                reference.fleet_id,
                reference.shop_id,
                outcome.result.raw_text,
                outcome.result.services,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            LOGGER.error(
                "Embedding failed (invoice parse still succeeded)",
                extra={
                    "invoice_id": str(invoice_id),
                    "request_id": reference.request_id,
                    "error": str(e),
                },
            )

    async def process_batch(self, references: Sequence[DocumentReference]) -> List[BatchResult]:
        """Process references, pacing after every document that was not skipped."""
        if self.processing.max_concurrency <= 1:
            results = []
            for reference in references:
                result = await self.process_one(reference)
                results.append(result)
                if result.status != BatchStatus.SKIPPED:
                    await asyncio.sleep(self.processing.document_delay_seconds)
            return results

        return await self._process_concurrently(references)

    async def _process_concurrently(self, references: Sequence[DocumentReference]) -> List[BatchResult]:
        semaphore = asyncio.Semaphore(self.processing.max_concurrency)
        pacer = RequestPacer(self.processing.document_delay_seconds)
        # Duplicate keys in one batch run one after another
        key_locks: Dict[tuple[int, str], asyncio.Lock] = {}

        async def run(reference: DocumentReference) -> BatchResult:
            lock = key_locks.setdefault(reference.key, asyncio.Lock())
            async with lock, semaphore:
                await pacer.wait()
                return await self.process_one(reference)

        return list(await asyncio.gather(*(run(reference) for reference in references)))

    async def drain_pending(
        self,
        order_by_request_id: bool = False,
        on_batch: Optional[BatchCallback] = None,
    ) -> DrainSummary:
        """Process pending invoices until none remain.

        Each query reads the head of the pending set from offset zero:
        processed rows leave the set, so advancing an offset would skip rows.
        A key is attempted at most once per drain; when the head of the queue
        holds only keys already attempted, draining stops.
        """
        summary = DrainSummary()
        batch_size = self.processing.batch_size
        attempted: set[tuple[int, str]] = set()

        while True:
            pending = await self.persister.next_pending(batch_size, order_by_request_id=order_by_request_id)
            if not pending:
                break

            fresh = [reference for reference in pending if reference.key not in attempted]
            if not fresh:
                LOGGER.error(
                    "Pending queue is not shrinking, stopping drain",
                    extra={"stuck_request_ids": [reference.request_id for reference in pending]},
                )
                break
            attempted.update(reference.key for reference in fresh)

            summary.batches += 1
            LOGGER.info(
                f"Processing pending batch {summary.batches}",
                extra={"batch_size": len(fresh), "processed_so_far": summary.processed},
            )

            results = await self.process_batch(fresh)
            for result in results:
                summary.add(result)

            if on_batch is not None:
                await on_batch(results, summary)

        LOGGER.info("Pending queue drained", extra=summary.as_dict())
        return summary
