"""create_settlement_tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Collaborator tables (maintained by catalog/user subsystems)
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
    )
    op.create_table(
        'sellers',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('total_sales', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id', name='pk_sellers'),
    )
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('price', sa.BigInteger(), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('seller_id', sa.String(length=64), nullable=False),
        sa.Column('seller_name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'], unique=False)

    # Orders
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('order_number', sa.String(length=32), nullable=False, comment='订单号 ORD-xxxxxx-XXXX'),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('user_email', sa.String(length=255), nullable=False),
        sa.Column('user_name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING_PAYMENT',
                  comment='PENDING_PAYMENT/PAID/PROCESSING/SHIPPED/DELIVERED/CANCELLED/REFUNDED'),
        sa.Column('subtotal', sa.BigInteger(), nullable=False),
        sa.Column('tax', sa.BigInteger(), nullable=False),
        sa.Column('shipping', sa.BigInteger(), nullable=False),
        sa.Column('discounts', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('grand_total', sa.BigInteger(), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=False),
        sa.Column('coupon', sa.JSON(), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=False, server_default='razorpay'),
        sa.Column('gateway_order_id', sa.String(length=64), nullable=True),
        sa.Column('payment_id', sa.String(length=64), nullable=True),
        sa.Column('payment_signature', sa.String(length=255), nullable=True),
        sa.Column('payment_status', sa.String(length=32), nullable=False, server_default='created',
                  comment='created/authorized/captured/refunded/failed'),
        sa.Column('payment_instrument', sa.String(length=32), nullable=True, comment='card/upi/netbanking...'),
        sa.Column('payment_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('refund_id', sa.String(length=64), nullable=True),
        sa.Column('stock_committed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reconciliation_notes', sa.JSON(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.UniqueConstraint('gateway_order_id', name='uq_orders_gateway_order_id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_id', 'orders', ['payment_id'], unique=False)
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'], unique=False)

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('seller_id', sa.String(length=64), nullable=False),
        sa.Column('seller_name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.BigInteger(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('variant', sa.String(length=100), nullable=True),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_order_items_order_id_orders', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)
    op.create_index('ix_order_items_seller_id', 'order_items', ['seller_id'], unique=False)

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('note', sa.Text(), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_order_status_history_order_id_orders', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_order_status_history'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'], unique=False)

    # Payouts
    op.create_table(
        'payouts',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('order_id', sa.String(length=32), nullable=False, comment='来源订单'),
        sa.Column('order_ids', sa.JSON(), nullable=False, comment='覆盖的订单ID列表'),
        sa.Column('seller_id', sa.String(length=64), nullable=False),
        sa.Column('seller_name', sa.String(length=255), nullable=False),
        sa.Column('gross_amount', sa.BigInteger(), nullable=False),
        sa.Column('platform_fee', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('processing_fee', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.BigInteger(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('method', sa.String(length=32), nullable=False, server_default='razorpay_transfer'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending',
                  comment='pending/processing/completed/failed/reversed'),
        sa.Column('transfer_id', sa.String(length=64), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('settlement_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settlement_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_payouts_order_id_orders'),
        sa.PrimaryKeyConstraint('id', name='pk_payouts'),
        sa.UniqueConstraint('transfer_id', name='uq_payouts_transfer_id'),
    )
    op.create_index('ix_payouts_order_id', 'payouts', ['order_id'], unique=False)
    op.create_index('ix_payouts_seller_created', 'payouts', ['seller_id', 'created_at'], unique=False)
    op.create_index('ix_payouts_status_created', 'payouts', ['status', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_payouts_status_created', table_name='payouts')
    op.drop_index('ix_payouts_seller_created', table_name='payouts')
    op.drop_index('ix_payouts_order_id', table_name='payouts')
    op.drop_table('payouts')

    op.drop_index('ix_order_status_history_order_id', table_name='order_status_history')
    op.drop_table('order_status_history')
    op.drop_index('ix_order_items_seller_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_user_created', table_name='orders')
    op.drop_index('ix_orders_payment_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_products_seller_id', table_name='products')
    op.drop_table('products')
    op.drop_table('sellers')
    op.drop_table('users')
