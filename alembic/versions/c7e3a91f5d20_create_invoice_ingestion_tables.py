"""create_invoice_ingestion_tables

Revision ID: c7e3a91f5d20
Revises:
Create Date: 2026-02-09 18:12:41.203117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'c7e3a91f5d20'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EMBEDDING_DIMENSIONS = 768


def upgrade() -> None:
    """Upgrade schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    op.create_table(
        'parsed_invoices',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('request_id', sa.BigInteger(), nullable=False),
        sa.Column('pdf_url', sa.Text(), nullable=False),
        sa.Column('shop_id', sa.BigInteger(), nullable=True),
        sa.Column('vehicle_id', sa.BigInteger(), nullable=True),
        sa.Column('fleet_id', sa.BigInteger(), nullable=True),
        sa.Column('parse_status', sa.String(), nullable=False, server_default='pending', comment='pending, completed or failed'),
        sa.Column('shop_name', sa.String(), nullable=True),
        sa.Column('vehicle_vin', sa.String(), nullable=True),
        sa.Column('vehicle_make', sa.String(), nullable=True),
        sa.Column('vehicle_model', sa.String(), nullable=True),
        sa.Column('vehicle_year', sa.String(), nullable=True),
        sa.Column('invoice_number', sa.String(), nullable=True),
        sa.Column('work_order_number', sa.String(), nullable=True),
        sa.Column('repair_order_number', sa.String(), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=True),
        sa.Column('mileage_in', sa.Integer(), nullable=True),
        sa.Column('mileage_out', sa.Integer(), nullable=True),
        sa.Column('payment_terms', sa.String(), nullable=True),
        sa.Column('grand_total_cents', sa.BigInteger(), nullable=True),
        sa.Column('subtotal_cents', sa.BigInteger(), nullable=True),
        sa.Column('labor_total_cents', sa.BigInteger(), nullable=True),
        sa.Column('parts_total_cents', sa.BigInteger(), nullable=True),
        sa.Column('tax_amount_cents', sa.BigInteger(), nullable=True),
        sa.Column('extracted_data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('raw_llm_response', postgresql.JSONB(), nullable=True),
        sa.Column('raw_text', sa.Text(), nullable=True),
        sa.Column('parse_meta', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('request_id', 'pdf_url', name='uq_parsed_invoices_request_pdf'),
    )
    op.create_index('ix_parsed_invoices_parse_status', 'parsed_invoices', ['parse_status'])
    op.create_index('ix_parsed_invoices_fleet_id', 'parsed_invoices', ['fleet_id'])

    op.create_table(
        'parsed_invoice_services',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('parsed_invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_name', sa.String(), nullable=False),
        sa.Column('service_data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_parsed_invoice_services_invoice_id', 'parsed_invoice_services', ['invoice_id'])

    op.create_table(
        'parsed_invoice_line_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('parsed_invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('parsed_invoice_services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_type', sa.String(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False, server_default='1'),
        sa.Column('unit_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('total_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('item_data', postgresql.JSONB(), nullable=False, server_default='{}', comment='Type-specific attributes present on the line'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_parsed_invoice_line_items_invoice_id', 'parsed_invoice_line_items', ['invoice_id'])
    op.create_index('ix_parsed_invoice_line_items_service_id', 'parsed_invoice_line_items', ['service_id'])

    op.create_table(
        'invoice_embeddings',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('invoice_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('fleet_id', sa.BigInteger(), nullable=True),
        sa.Column('shop_id', sa.BigInteger(), nullable=True),
        sa.Column('chunk_type', sa.String(), nullable=False, comment='full_document or service_correction'),
        sa.Column('chunk_text', sa.Text(), nullable=False),
        sa.Column('content_hash', sa.String(length=64), nullable=False, comment='SHA256 of chunk_text'),
        sa.Column('embedding_model', sa.String(), nullable=False),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSIONS), nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_invoice_embeddings_invoice_chunk', 'invoice_embeddings', ['invoice_id', 'chunk_type'])
    op.create_index('ix_invoice_embeddings_fleet_id', 'invoice_embeddings', ['fleet_id'])

    op.create_table(
        'pipeline_state',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('pipeline_name', sa.String(), nullable=False, unique=True),
        sa.Column('last_run_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('last_success_at', sa.TIMESTAMP(timezone=True), nullable=True, comment='Lower bound for the next incremental run'),
        sa.Column('last_status', sa.String(), nullable=True),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'insight_cache',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('fleet_id', sa.BigInteger(), nullable=False),
        sa.Column('window', sa.String(), nullable=False),
        sa.Column('insight_type', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('generated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.Column('valid_until', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.UniqueConstraint('fleet_id', 'window', 'insight_type', name='uq_insight_cache_fleet_window_type'),
    )
    op.create_index('ix_insight_cache_fleet_id', 'insight_cache', ['fleet_id'])
    op.create_index('ix_insight_cache_valid_until', 'insight_cache', ['valid_until'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_insight_cache_valid_until', table_name='insight_cache')
    op.drop_index('ix_insight_cache_fleet_id', table_name='insight_cache')
    op.drop_table('insight_cache')

    op.drop_table('pipeline_state')

    op.drop_index('ix_invoice_embeddings_fleet_id', table_name='invoice_embeddings')
    op.drop_index('ix_invoice_embeddings_invoice_chunk', table_name='invoice_embeddings')
    op.drop_table('invoice_embeddings')

    op.drop_index('ix_parsed_invoice_line_items_service_id', table_name='parsed_invoice_line_items')
    op.drop_index('ix_parsed_invoice_line_items_invoice_id', table_name='parsed_invoice_line_items')
    op.drop_table('parsed_invoice_line_items')

    op.drop_index('ix_parsed_invoice_services_invoice_id', table_name='parsed_invoice_services')
    op.drop_table('parsed_invoice_services')

    op.drop_index('ix_parsed_invoices_fleet_id', table_name='parsed_invoices')
    op.drop_index('ix_parsed_invoices_parse_status', table_name='parsed_invoices')
    op.drop_table('parsed_invoices')
