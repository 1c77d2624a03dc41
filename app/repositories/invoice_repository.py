from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database.models import (
    ParsedInvoice,
    ParsedInvoiceLineItem,
    ParsedInvoiceService,
    ParseStatus,
)
from app.repositories.base_repository import BaseRepository

INVOICE_KEY_CONSTRAINT = "uq_parsed_invoices_request_pdf"


class InvoiceRepository(BaseRepository[ParsedInvoice]):
    """Repository for parsed invoices keyed by ``(request_id, pdf_url)``."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with the ParsedInvoice model."""
        super().__init__(session, ParsedInvoice)

    async def find_id(
        self, request_id: int, pdf_url: str, status: Optional[str] = None
    ) -> Optional[UUID]:
        """Return the invoice id for a key, optionally requiring a status."""
        query = select(ParsedInvoice.id).where(
            ParsedInvoice.request_id == request_id,
            ParsedInvoice.pdf_url == pdf_url,
        )
        if status is not None:
            query = query.where(ParsedInvoice.parse_status == status)

        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        values: Dict[str, Any],
        update_values: Optional[Dict[str, Any]] = None,
    ) -> UUID:
        """Insert or overwrite an invoice row and bump ``updated_at``.

        Args:
            values: Column values for the insert; must include the key columns
            update_values: Columns to overwrite on conflict (defaults to
                everything in ``values`` except the key)

        Returns:
            The invoice id
        """
        if update_values is None:
            update_values = {
                key: value for key, value in values.items() if key not in ("request_id", "pdf_url")
            }

        statement = insert(ParsedInvoice).values(**values)
        statement = statement.on_conflict_do_update(
            constraint=INVOICE_KEY_CONSTRAINT,
            set_={**update_values, "updated_at": func.now()},
        ).returning(ParsedInvoice.id)

        try:
            result = await self.session.execute(statement)
            return result.scalar_one()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error upserting invoice {values.get('request_id')}: {str(e)}",
                exc_info=True
            )
            raise

    async def insert_if_absent(self, values: Dict[str, Any]) -> bool:
        """Insert an invoice row unless its key already exists.

        Returns:
            True if a row was inserted
        """
        statement = (
            insert(ParsedInvoice)
            .values(**values)
            .on_conflict_do_nothing(constraint=INVOICE_KEY_CONSTRAINT)
            .returning(ParsedInvoice.id)
        )
        result = await self.session.execute(statement)
        return result.scalar_one_or_none() is not None

    async def insert_or_requeue(self, values: Dict[str, Any]) -> bool:
        """Insert a pending row, or flip an existing ``failed`` row back to pending.

        Completed and already pending rows are left untouched.

        Returns:
            True if a row was inserted or requeued
        """
        statement = (
            insert(ParsedInvoice)
            .values(**values)
            .on_conflict_do_update(
                constraint=INVOICE_KEY_CONSTRAINT,
                set_={"parse_status": ParseStatus.PENDING, "updated_at": func.now()},
                where=ParsedInvoice.parse_status == ParseStatus.FAILED,
            )
            .returning(ParsedInvoice.id)
        )
        try:
            result = await self.session.execute(statement)
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error requeueing invoice {values.get('request_id')}: {str(e)}",
                exc_info=True
            )
            raise

    async def replace_services(self, invoice_id: UUID, services: Sequence[ParsedInvoiceService]) -> None:
        """Delete every service and line item of an invoice and add ``services``.

        Line items are taken from each service's ``line_items`` collection.
        """
        try:
            await self.session.execute(
                delete(ParsedInvoiceLineItem).where(ParsedInvoiceLineItem.invoice_id == invoice_id)
            )
            await self.session.execute(
                delete(ParsedInvoiceService).where(ParsedInvoiceService.invoice_id == invoice_id)
            )

            for service in services:
                service.invoice_id = invoice_id
                for item in service.line_items:
                    item.invoice_id = invoice_id
                self.session.add(service)

            await self.session.flush()
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error replacing services for invoice {invoice_id}: {str(e)}",
                exc_info=True
            )
            raise

    async def list_pending(self, limit: int, order_by_request_id: bool = False) -> List[ParsedInvoice]:
        """Head of the pending queue. Always read from offset zero."""
        query = select(ParsedInvoice).where(ParsedInvoice.parse_status == ParseStatus.PENDING)
        if order_by_request_id:
            query = query.order_by(ParsedInvoice.request_id.asc(), ParsedInvoice.pdf_url.asc())
        else:
            query = query.order_by(ParsedInvoice.created_at.asc())
        query = query.limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_keys_with_status(self, statuses: Iterable[str]) -> set[tuple[int, str]]:
        """All ``(request_id, pdf_url)`` keys currently in one of ``statuses``."""
        query = select(ParsedInvoice.request_id, ParsedInvoice.pdf_url).where(
            ParsedInvoice.parse_status.in_(list(statuses))
        )
        result = await self.session.execute(query)
        return {(row.request_id, row.pdf_url) for row in result}

    async def fleet_ids_with_status(self, status: str) -> List[int]:
        """Distinct fleet ids owning at least one invoice in ``status``."""
        query = (
            select(ParsedInvoice.fleet_id)
            .where(ParsedInvoice.parse_status == status, ParsedInvoice.fleet_id.is_not(None))
            .distinct()
            .order_by(ParsedInvoice.fleet_id)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())
