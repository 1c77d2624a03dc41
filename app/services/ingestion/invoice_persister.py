"""Normalize validated extractions into invoice, service and line-item rows.

All writes to ``parsed_invoices`` go through this module. A store is a
full overwrite keyed by ``(request_id, pdf_url)``: the invoice columns are
replaced and its services and line items are deleted and rebuilt inside one
transaction.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database.models import ParsedInvoiceLineItem, ParsedInvoiceService, ParseStatus
from app.repositories.invoice_repository import InvoiceRepository
from app.schemas.ingestion import DocumentReference, ExtractionOutcome
from app.schemas.invoice_extraction import InvoiceExtraction, LineItem, Service
from app.utils.logging import get_logger
from app.utils.normalization import parse_date, to_cents, to_int

LOGGER = get_logger(__name__)

PLACEHOLDER_SERVICE_NAME = "General Service"

# Attributes copied into a line item's item_data bag when present
LINE_ITEM_ATTRIBUTES = (
    "description",
    "part_number", "brand", "is_oem", "is_aftermarket", "is_used", "is_remanufactured", "source",
    "hours", "rate_per_hour", "labor_type", "technician", "completion_date",
    "tire_size", "tire_brand", "tire_model", "tire_position",
    "fluid_type", "fluid_quantity", "fluid_unit",
    "operation_type", "repair_area", "sublet_vendor",
)

SERVICE_ATTRIBUTES = (
    "service_description", "service_code", "complaint", "cause", "correction",
    "is_approved", "is_recommended", "is_declined", "completion_date",
)


def build_item_data(item: LineItem) -> Dict[str, Any]:
    """Type-specific attribute bag holding only the attributes that are present."""
    data = {name: getattr(item, name) for name in LINE_ITEM_ATTRIBUTES if getattr(item, name) is not None}
    if item.is_sublet:
        data["is_sublet"] = True
    return data


def build_service_data(service: Service) -> Dict[str, Any]:
    data = {
        name: getattr(service, name)
        for name in SERVICE_ATTRIBUTES
        if getattr(service, name) not in (None, "")
    }
    if service.service_subtotal is not None:
        data["subtotal"] = service.service_subtotal
    return data


def build_services(result: InvoiceExtraction) -> List[ParsedInvoiceService]:
    """ORM services (with nested line items) for an extraction.

    An extraction with no services yields one placeholder service so every
    invoice has something to navigate to.
    """
    if not result.services:
        return [
            ParsedInvoiceService(
                service_name=PLACEHOLDER_SERVICE_NAME,
                service_data={},
                sort_order=0,
                line_items=[],
            )
        ]

    services = []
    for service_index, service in enumerate(result.services):
        line_items = [
            ParsedInvoiceLineItem(
                item_type=item.item_type.value,
                name=item.name,
                quantity=item.quantity,
                unit_price_cents=to_cents(item.unit_price),
                total_price_cents=to_cents(item.total_price),
                item_data=build_item_data(item),
                sort_order=item.sort_order if item.sort_order is not None else item_index,
            )
            for item_index, item in enumerate(service.line_items)
        ]
        services.append(
            ParsedInvoiceService(
                service_name=service.service_name or PLACEHOLDER_SERVICE_NAME,
                service_data=build_service_data(service),
                sort_order=service.sort_order if service.sort_order is not None else service_index,
                line_items=line_items,
            )
        )
    return services


def build_invoice_values(reference: DocumentReference, outcome: ExtractionOutcome) -> Dict[str, Any]:
    """Invoice column values for a successful extraction."""
    result = outcome.result
    full_payload = result.to_storage_dict()
    extracted_data = {key: value for key, value in full_payload.items() if key not in ("services", "raw_text")}

    return {
        "request_id": reference.request_id,
        "pdf_url": reference.pdf_url,
        "shop_id": reference.shop_id,
        "vehicle_id": reference.vehicle_id,
        "fleet_id": reference.fleet_id,
        "parse_status": ParseStatus.COMPLETED if result.is_valid_invoice else ParseStatus.FAILED,
        "shop_name": result.shop_name or reference.shop_name,
        "vehicle_vin": result.vehicle_vin or reference.vin,
        "vehicle_make": result.vehicle_make or reference.make,
        "vehicle_model": result.vehicle_model or reference.model,
        "vehicle_year": result.vehicle_year or reference.year,
        "invoice_number": result.invoice_number,
        "work_order_number": result.work_order_number,
        "repair_order_number": result.repair_order_number,
        "invoice_date": parse_date(result.invoice_date or result.estimate_date),
        "mileage_in": to_int(result.mileage_in),
        "mileage_out": to_int(result.mileage_out),
        "payment_terms": result.payment_terms,
        "grand_total_cents": to_cents(result.grand_total),
        "subtotal_cents": to_cents(result.subtotal),
        "labor_total_cents": to_cents(result.labor_total),
        "parts_total_cents": to_cents(result.parts_total),
        "tax_amount_cents": to_cents(result.tax_amount),
        "extracted_data": extracted_data,
        "raw_llm_response": full_payload,
        "raw_text": result.raw_text,
        "parse_meta": {
            "llm_model": outcome.model_used,
            "elapsed_ms": outcome.elapsed_ms,
            "confidence": result.parse_confidence,
            "escalated": outcome.escalated,
            "parsed_at": datetime.now(timezone.utc).isoformat(),
        },
    }


def reference_values(reference: DocumentReference) -> Dict[str, Any]:
    """Source-system columns of an invoice row."""
    return {
        "request_id": reference.request_id,
        "pdf_url": reference.pdf_url,
        "shop_id": reference.shop_id,
        "vehicle_id": reference.vehicle_id,
        "fleet_id": reference.fleet_id,
        "shop_name": reference.shop_name,
        "vehicle_vin": reference.vin,
        "vehicle_make": reference.make,
        "vehicle_model": reference.model,
        "vehicle_year": reference.year,
    }


class InvoicePersister:
    """Writes invoices and exposes the pending queue stored alongside them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        repository_factory: Callable[[AsyncSession], InvoiceRepository] = InvoiceRepository,
    ):
        self.session_factory = session_factory
        self.repository_factory = repository_factory

    async def store(self, reference: DocumentReference, outcome: ExtractionOutcome) -> UUID:
        """Upsert the invoice and rebuild its services in one transaction.

        Storage errors propagate unchanged.

        Returns:
            The invoice id
        """
        values = build_invoice_values(reference, outcome)
        services = build_services(outcome.result)

        async with self.session_factory() as session:
            async with session.begin():
                repository = self.repository_factory(session)
                invoice_id = await repository.upsert(values)
                await repository.replace_services(invoice_id, services)

        LOGGER.info(
            "Invoice stored",
            extra={
                "invoice_id": str(invoice_id),
                "request_id": reference.request_id,
                "shop_name": values["shop_name"],
                "total_cents": values["grand_total_cents"],
                "services": len(services),
                "parse_status": values["parse_status"],
            },
        )
        return invoice_id

    async def mark_failed(self, reference: DocumentReference, message: str) -> None:
        """Record a terminal failure for the document."""
        parse_meta = {"error": message, "parsed_at": datetime.now(timezone.utc).isoformat()}
        values = {
            **reference_values(reference),
            "parse_status": ParseStatus.FAILED,
            "extracted_data": {},
            "parse_meta": parse_meta,
        }

        async with self.session_factory() as session:
            async with session.begin():
                repository = self.repository_factory(session)
                await repository.upsert(
                    values,
                    update_values={"parse_status": ParseStatus.FAILED, "parse_meta": parse_meta},
                )

    async def find_completed(self, reference: DocumentReference) -> Optional[UUID]:
        """Id of a completed invoice for the reference's key, if any."""
        async with self.session_factory() as session:
            repository = self.repository_factory(session)
            return await repository.find_id(
                reference.request_id, reference.pdf_url, status=ParseStatus.COMPLETED
            )

    async def enqueue_pending(
        self,
        references: Iterable[DocumentReference],
        requeue_failed: bool = False,
    ) -> int:
        """Insert references as pending rows.

        Existing keys are left untouched, except that with ``requeue_failed``
        a ``failed`` row goes back to pending so the next drain retries it.
        References whose URL is not an http(s) link are skipped.

        Returns:
            Number of rows inserted or requeued
        """
        inserted = 0
        skipped_urls = 0

        async with self.session_factory() as session:
            async with session.begin():
                repository = self.repository_factory(session)
                for reference in references:
                    if not reference.pdf_url.startswith("http"):
                        skipped_urls += 1
                        continue
                    values = {
                        **reference_values(reference),
                        "parse_status": ParseStatus.PENDING,
                        "extracted_data": {},
                        "parse_meta": {},
                    }
                    if requeue_failed:
                        queued = await repository.insert_or_requeue(values)
                    else:
                        queued = await repository.insert_if_absent(values)
                    if queued:
                        inserted += 1

        LOGGER.info(
            "Pending invoices enqueued",
            extra={"inserted": inserted, "requeue_failed": requeue_failed, "skipped_invalid_urls": skipped_urls},
        )
        return inserted

    async def next_pending(self, limit: int, order_by_request_id: bool = False) -> List[DocumentReference]:
        """First ``limit`` pending references, always from offset zero."""
        async with self.session_factory() as session:
            repository = self.repository_factory(session)
            rows = await repository.list_pending(limit, order_by_request_id=order_by_request_id)

        # Stored keys are used as-is so the row the result is written to is the queued one
        return [
            DocumentReference.model_construct(
                request_id=row.request_id,
                pdf_url=row.pdf_url,
                shop_id=row.shop_id,
                vehicle_id=row.vehicle_id,
                fleet_id=row.fleet_id,
                shop_name=row.shop_name,
                vin=row.vehicle_vin,
                make=row.vehicle_make,
                model=row.vehicle_model,
                year=row.vehicle_year,
            )
            for row in rows
        ]

    async def processed_keys(self) -> set[tuple[int, str]]:
        """Keys already completed or failed."""
        async with self.session_factory() as session:
            repository = self.repository_factory(session)
            return await repository.list_keys_with_status([ParseStatus.COMPLETED, ParseStatus.FAILED])

    async def fleets_with_completed_invoices(self) -> List[int]:
        async with self.session_factory() as session:
            repository = self.repository_factory(session)
            return await repository.fleet_ids_with_status(ParseStatus.COMPLETED)
