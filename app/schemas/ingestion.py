"""Value types passed between ingestion stages."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from app.schemas.invoice_extraction import InvoiceExtraction


class DocumentReference(BaseModel):
    """An invoice PDF link emitted by the source system.

    Identity is ``(request_id, pdf_url)``: one request may carry several PDF
    variants.
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    request_id: int
    pdf_url: str
    shop_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    fleet_id: Optional[int] = None
    shop_name: Optional[str] = None
    vin: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("pdf_url", mode="before")
    @classmethod
    def _strip_url(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @property
    def key(self) -> tuple[int, str]:
        return (self.request_id, self.pdf_url)


@dataclass
class ExtractionOutcome:
    """Validated extraction plus how it was produced."""

    result: InvoiceExtraction
    elapsed_ms: int
    model_used: str
    escalated: bool = False


class BatchStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class BatchResult:
    """Outcome of processing one document."""

    request_id: int
    status: BatchStatus
    invoice_id: Optional[UUID] = None
    error: Optional[str] = None


@dataclass
class EmbedSummary:
    full_doc_embedded: bool = False
    correction_count: int = 0
    skipped_count: int = 0


@dataclass
class DrainSummary:
    """Counters accumulated while draining the pending queue."""

    processed: int = 0
    failed: int = 0
    skipped: int = 0
    batches: int = 0
    results: list[BatchResult] = field(default_factory=list, repr=False)

    def add(self, result: BatchResult) -> None:
        self.results.append(result)
        if result.status == BatchStatus.SUCCESS:
            self.processed += 1
        elif result.status == BatchStatus.FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "skipped": self.skipped,
            "batches": self.batches,
        }
