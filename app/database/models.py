"""SQLAlchemy models for all database tables."""

import uuid
from datetime import date, datetime
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    BigInteger,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TIMESTAMP,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

# Column width of invoice_embeddings.embedding; GEMINI_EMBEDDING_DIMENSIONS must match.
EMBEDDING_DIMENSIONS = 768


class ParseStatus:
    """Values of ``ParsedInvoice.parse_status``."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkType:
    """Values of ``InvoiceEmbedding.chunk_type``."""

    FULL_DOCUMENT = "full_document"
    SERVICE_CORRECTION = "service_correction"


class ParsedInvoice(Base):
    """One source invoice PDF and its normalized extraction."""

    __tablename__ = "parsed_invoices"
    __table_args__ = (
        UniqueConstraint("request_id", "pdf_url", name="uq_parsed_invoices_request_pdf"),
        Index("ix_parsed_invoices_parse_status", "parse_status"),
        Index("ix_parsed_invoices_fleet_id", "fleet_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    request_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    pdf_url: Mapped[str] = mapped_column(Text, nullable=False)
    shop_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    vehicle_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fleet_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    parse_status: Mapped[str] = mapped_column(String, nullable=False, default=ParseStatus.PENDING)

    # Extracted values fall back to what the source system reported
    shop_name: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_vin: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_make: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_model: Mapped[str | None] = mapped_column(String, nullable=True)
    vehicle_year: Mapped[str | None] = mapped_column(String, nullable=True)

    invoice_number: Mapped[str | None] = mapped_column(String, nullable=True)
    work_order_number: Mapped[str | None] = mapped_column(String, nullable=True)
    repair_order_number: Mapped[str | None] = mapped_column(String, nullable=True)
    invoice_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    mileage_in: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mileage_out: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String, nullable=True)

    grand_total_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    subtotal_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    labor_total_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    parts_total_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    tax_amount_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    extracted_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    raw_llm_response: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    raw_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    parse_meta: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    # Relationships
    services: Mapped[list["ParsedInvoiceService"]] = relationship(
        "ParsedInvoiceService",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="ParsedInvoiceService.sort_order",
    )
    line_items: Mapped[list["ParsedInvoiceLineItem"]] = relationship(
        "ParsedInvoiceLineItem", back_populates="invoice", cascade="all, delete-orphan"
    )


class ParsedInvoiceService(Base):
    """A service (job) performed on an invoice."""

    __tablename__ = "parsed_invoice_services"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("parsed_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_name: Mapped[str] = mapped_column(String, nullable=False)
    service_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    # Relationships
    invoice: Mapped["ParsedInvoice"] = relationship("ParsedInvoice", back_populates="services")
    line_items: Mapped[list["ParsedInvoiceLineItem"]] = relationship(
        "ParsedInvoiceLineItem",
        back_populates="service",
        cascade="all, delete-orphan",
        order_by="ParsedInvoiceLineItem.sort_order",
    )


class ParsedInvoiceLineItem(Base):
    """A single billed line within a service."""

    __tablename__ = "parsed_invoice_line_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("parsed_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("parsed_invoice_services.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_type: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[float] = mapped_column(nullable=False, default=1)
    unit_price_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    total_price_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    item_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    # Relationships
    invoice: Mapped["ParsedInvoice"] = relationship("ParsedInvoice", back_populates="line_items")
    service: Mapped["ParsedInvoiceService"] = relationship("ParsedInvoiceService", back_populates="line_items")


class InvoiceEmbedding(Base):
    """Embedded text chunk of an invoice for semantic recall."""

    __tablename__ = "invoice_embeddings"
    __table_args__ = (
        Index("ix_invoice_embeddings_invoice_chunk", "invoice_id", "chunk_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # No FK: chunks outlive reprocessing of the invoice they were cut from
    invoice_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    fleet_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    shop_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    chunk_type: Mapped[str] = mapped_column(String, nullable=False)
    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    embedding_model: Mapped[str] = mapped_column(String, nullable=False)
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBEDDING_DIMENSIONS), nullable=False)
    chunk_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class PipelineState(Base):
    """Checkpoint row for a named pipeline."""

    __tablename__ = "pipeline_state"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    pipeline_name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    last_run_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    last_status: Mapped[str | None] = mapped_column(String, nullable=True)
    records_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    state_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )


class InsightCache(Base):
    """Derived per-fleet insights, regenerated after ingestion."""

    __tablename__ = "insight_cache"
    __table_args__ = (
        UniqueConstraint("fleet_id", "window", "insight_type", name="uq_insight_cache_fleet_window_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    fleet_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    window: Mapped[str] = mapped_column(String, nullable=False)
    insight_type: Mapped[str] = mapped_column(String, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    generated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    valid_until: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False, index=True)
