"""Order lifecycle and inventory schema.

Revision ID: 001_order_lifecycle
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001_order_lifecycle'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ### Products table ###
    op.create_table(
        'products',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku', sa.String(100), unique=True),
        sa.Column('status', sa.String(20), index=True, default='draft'),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('image_url', sa.Text()),
        sa.Column('track_quantity', sa.Boolean(), default=True),
        sa.Column('allow_backorder', sa.Boolean(), default=False),
        sa.Column('quantity', sa.Integer(), default=0),
        sa.Column('low_stock_threshold', sa.Integer(), default=5),
        sa.Column('stock_status', sa.String(20), index=True, default='in-stock'),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    # ### Product variants table ###
    op.create_table(
        'product_variants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='CASCADE'), index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('value', sa.String(100), nullable=False),
        sa.Column('price_adjustment', sa.Numeric(precision=12, scale=2), default=0),
        sa.Column('sku', sa.String(100)),
        sa.Column('quantity', sa.Integer(), default=0),
        sa.Column('low_stock_threshold', sa.Integer(), default=5),
        sa.Column('stock_status', sa.String(20), default='in-stock'),
        sa.UniqueConstraint('product_id', 'value', name='uq_product_variants_product_value'),
    )

    # ### Orders table ###
    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_number', sa.String(40), unique=True, index=True, nullable=False),
        sa.Column('user_id', sa.String(100), index=True),
        sa.Column('customer_first_name', sa.String(50), nullable=False),
        sa.Column('customer_last_name', sa.String(50), nullable=False),
        sa.Column('customer_email', sa.String(255), index=True, nullable=False),
        sa.Column('customer_phone', sa.String(50)),
        sa.Column('shipping_address', postgresql.JSONB(), nullable=False),
        sa.Column('billing_address', postgresql.JSONB(), nullable=False),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(precision=12, scale=2)),
        sa.Column('tax', sa.Numeric(precision=12, scale=2)),
        sa.Column('discount', sa.Numeric(precision=12, scale=2)),
        sa.Column('total', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(3)),
        sa.Column('payment_method', sa.String(30), nullable=False),
        sa.Column('payment_status', sa.String(30), index=True, nullable=False),
        sa.Column('payment_confirmation_number', sa.String(100)),
        sa.Column('payment_payer_name', sa.String(100)),
        sa.Column('payment_amount', sa.Numeric(precision=12, scale=2)),
        sa.Column('payment_verified_by', sa.String(100)),
        sa.Column('payment_verified_at', sa.DateTime(timezone=True)),
        sa.Column('payment_notes', sa.Text()),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('extension_count', sa.Integer(), default=0),
        sa.Column('last_extended_at', sa.DateTime(timezone=True)),
        sa.Column('tracking_number', sa.String(100)),
        sa.Column('tracking_carrier', sa.String(100)),
        sa.Column('tracking_url', sa.Text()),
        sa.Column('cancellation_reason', sa.Text()),
        sa.Column('cancelled_by', sa.String(100)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('refund_issued', sa.Boolean(), default=False),
        sa.Column('customer_note', sa.Text()),
        sa.Column('language', sa.String(2)),
        sa.Column('created_at', sa.DateTime(timezone=True), index=True),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('version', sa.Integer(), nullable=False),
    )
    op.create_index('ix_orders_status_expires_at', 'orders', ['status', 'expires_at'])

    # ### Order items table ###
    op.create_table(
        'order_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), index=True),
        sa.Column('position', sa.Integer(), default=0),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='RESTRICT'), index=True),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('product_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('product_image', sa.Text()),
        sa.Column('product_sku', sa.String(100)),
        sa.Column('variant_name', sa.String(100)),
        sa.Column('variant_value', sa.String(100)),
        sa.Column('variant_price_adjustment', sa.Numeric(precision=12, scale=2)),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('total_price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('reserved_quantity', sa.Integer(), default=0),
    )

    # ### Order timeline table (append-only) ###
    op.create_table(
        'order_timeline',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), index=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(30), nullable=False),
        sa.Column('message', sa.Text()),
        sa.Column('actor', sa.String(100)),
        sa.Column('timestamp', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('order_id', 'sequence', name='uq_order_timeline_order_sequence'),
    )


def downgrade() -> None:
    op.drop_table('order_timeline')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status_expires_at', 'orders')
    op.drop_table('orders')
    op.drop_table('product_variants')
    op.drop_table('products')
