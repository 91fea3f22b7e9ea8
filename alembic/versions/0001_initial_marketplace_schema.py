"""initial_marketplace_schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

approval_status = sa.Enum('pending', 'approved', 'rejected', name='product_approval_status_enum')
order_status = sa.Enum(
    'pending_payment', 'confirmed', 'locked', 'in_batch', 'delivered', 'cancelled',
    name='order_status_enum',
)
order_payment_status = sa.Enum(
    'none', 'pending', 'requires_action', 'succeeded', 'failed', 'refunded',
    name='order_payment_status_enum',
)
credit_transaction_type = sa.Enum(
    'earned', 'bonus', 'refund', 'redeemed', name='credit_transaction_type_enum'
)
intent_status = sa.Enum(
    'pending', 'requires_action', 'succeeded', 'failed', 'canceled', 'refunded',
    name='intent_status_enum',
)
webhook_event_status = sa.Enum(
    'processing', 'completed', 'failed', name='webhook_event_status_enum'
)
payout_status = sa.Enum(
    'pending', 'completed', 'failed', 'cancelled', name='payout_status_enum'
)
recipient_type = sa.Enum(
    'seller', 'collection_point', 'fulfiller', name='recipient_type_enum'
)
payout_kind = sa.Enum('sale', 'collection_point', 'tip', name='payout_kind_enum')
batch_status = sa.Enum(
    'pending', 'assigned', 'in_progress', 'completed', name='batch_status_enum'
)
stop_status = sa.Enum('pending', 'in_progress', 'delivered', name='stop_status_enum')
scan_type = sa.Enum('loaded', 'delivered', name='scan_type_enum')


def upgrade() -> None:
    """Upgrade schema - Create marketplace tables."""

    op.create_table(
        'job_locks',
        sa.Column('name', sa.String(64), nullable=False),
        sa.Column('holder', sa.String(64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('name'),
    )

    # Store
    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('seller_id', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit', sa.String(50), server_default='each', nullable=True),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('available_quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('approval_status', approval_status, server_default='pending', nullable=True),
        sa.Column('approval_note', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('available_quantity >= 0', name='ck_products_available_quantity_nonneg'),
        sa.CheckConstraint('unit_price_cents > 0', name='ck_products_price_positive'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_seller_id', 'products', ['seller_id'])

    op.create_table(
        'market_configs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('zip_code', sa.String(10), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('timezone', sa.String(64), server_default='America/New_York', nullable=True),
        sa.Column('cutoff_time', sa.String(5), server_default='23:59', nullable=True),
        sa.Column('delivery_days', sa.JSON(), nullable=True),
        sa.Column('minimum_order_cents', sa.Integer(), server_default='2500', nullable=True),
        sa.Column('delivery_fee_cents', sa.Integer(), server_default='750', nullable=True),
        sa.Column('collection_point_seller_id', sa.String(255), nullable=True),
        sa.Column('collection_point_name', sa.String(255), nullable=True),
        sa.Column('collection_point_address', sa.String(255), nullable=True),
        sa.Column('collection_point_city', sa.String(100), nullable=True),
        sa.Column('collection_point_state', sa.String(50), nullable=True),
        sa.Column('batch_min_size', sa.Integer(), nullable=True),
        sa.Column('batch_target_size', sa.Integer(), nullable=True),
        sa.Column('batch_max_size', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('minimum_order_cents >= 0', name='ck_market_minimum_nonneg'),
        sa.CheckConstraint('delivery_fee_cents >= 0', name='ck_market_fee_nonneg'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('zip_code'),
    )

    op.create_table(
        'buyer_profiles',
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('street_address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('zip_code', sa.String(10), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )
    op.create_index('ix_buyer_profiles_zip_code', 'buyer_profiles', ['zip_code'])

    op.create_table(
        'carts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('buyer_id', sa.String(255), nullable=False),
        sa.Column('active_order_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('buyer_id'),
    )

    op.create_table(
        'cart_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('cart_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_cart_items_quantity_positive'),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id', 'product_id', name='uq_cart_items_cart_product'),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('buyer_id', sa.String(255), nullable=False),
        sa.Column('cart_id', sa.Uuid(), nullable=True),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('zip_code', sa.String(10), nullable=False),
        sa.Column('status', order_status, server_default='pending_payment', nullable=True),
        sa.Column('payment_status', order_payment_status, server_default='pending', nullable=True),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('delivery_fee_cents', sa.Integer(), nullable=True),
        sa.Column('tip_cents', sa.Integer(), nullable=True),
        sa.Column('credits_redeemed_cents', sa.Integer(), nullable=True),
        sa.Column('platform_fee_cents', sa.Integer(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('recipient_name', sa.String(255), nullable=True),
        sa.Column('street_address', sa.String(255), nullable=False),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('batch_id', sa.Uuid(), nullable=True),
        sa.Column('box_code', sa.String(20), nullable=True),
        sa.Column('inventory_restored_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('credits_refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('credits_awarded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('total_cents >= 0', name='ck_orders_total_nonneg'),
        sa.CheckConstraint('tip_cents >= 0', name='ck_orders_tip_nonneg'),
        sa.CheckConstraint('credits_redeemed_cents >= 0', name='ck_orders_credits_nonneg'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_buyer_id', 'orders', ['buyer_id'])
    op.create_index('ix_orders_status_delivery_date', 'orders', ['status', 'delivery_date'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('seller_id', sa.String(255), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    # Wallet
    op.create_table(
        'credit_ledger',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('consumer_id', sa.String(255), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.Column('transaction_type', credit_transaction_type, nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('balance_after_cents >= 0', name='ck_credit_ledger_balance_nonneg'),
        sa.CheckConstraint('amount_cents <> 0', name='ck_credit_ledger_amount_nonzero'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('consumer_id', 'sequence', name='uq_credit_ledger_sequence'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index(
        'ix_credit_ledger_consumer_created', 'credit_ledger', ['consumer_id', 'created_at']
    )

    # Payments
    op.create_table(
        'payment_intents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('provider_intent_id', sa.String(255), nullable=False),
        sa.Column('client_secret', sa.String(255), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', intent_status, nullable=False),
        sa.Column('last_event_id', sa.String(255), nullable=True),
        sa.Column('refund_id', sa.String(255), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount_cents > 0', name='ck_payment_intents_amount_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id'),
        sa.UniqueConstraint('provider_intent_id'),
    )

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('status', webhook_event_status, nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )

    op.create_table(
        'payouts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.String(255), nullable=True),
        sa.Column('recipient_type', recipient_type, nullable=False),
        sa.Column('kind', payout_kind, nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', payout_status, nullable=False),
        sa.Column('external_transfer_id', sa.String(255), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount_cents > 0', name='ck_payouts_amount_positive'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payouts_order_id', 'payouts', ['order_id'])
    op.create_index('ix_payouts_status_recipient', 'payouts', ['status', 'recipient_id'])

    op.create_table(
        'payout_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('external_account_id', sa.String(255), nullable=False),
        sa.Column('payouts_enabled', sa.Boolean(), server_default=sa.false(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
    )

    # Delivery
    op.create_table(
        'delivery_batches',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('delivery_date', sa.Date(), nullable=False),
        sa.Column('zip_code', sa.String(10), nullable=False),
        sa.Column('batch_number', sa.Integer(), nullable=False),
        sa.Column('driver_id', sa.String(255), nullable=True),
        sa.Column('status', batch_status, server_default='pending', nullable=False),
        sa.Column('is_subsidized', sa.Boolean(), server_default=sa.false(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('delivery_date', 'batch_number', name='uq_batches_date_number'),
    )
    op.create_index('ix_batches_date_status', 'delivery_batches', ['delivery_date', 'status'])

    op.create_table(
        'delivery_stops',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('batch_id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('is_collection_point', sa.Boolean(), server_default=sa.false(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', stop_status, server_default='pending', nullable=False),
        sa.Column('box_code', sa.String(20), nullable=True),
        sa.Column('recipient_name', sa.String(255), nullable=True),
        sa.Column('street_address', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('zip_code', sa.String(10), nullable=True),
        sa.Column('address_visible_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['batch_id'], ['delivery_batches.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('batch_id', 'sequence', name='uq_stops_batch_sequence'),
        sa.UniqueConstraint('batch_id', 'box_code', name='uq_stops_batch_box_code'),
    )

    op.create_table(
        'delivery_scan_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('batch_id', sa.Uuid(), nullable=False),
        sa.Column('stop_id', sa.Uuid(), nullable=True),
        sa.Column('order_id', sa.Uuid(), nullable=True),
        sa.Column('driver_id', sa.String(255), nullable=False),
        sa.Column('box_code', sa.String(20), nullable=True),
        sa.Column('scan_type', scan_type, nullable=False),
        sa.Column('scanned_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_delivery_scan_logs_batch_id', 'delivery_scan_logs', ['batch_id'])


def downgrade() -> None:
    """Downgrade schema - Drop marketplace tables."""
    op.drop_index('ix_delivery_scan_logs_batch_id', table_name='delivery_scan_logs')
    op.drop_table('delivery_scan_logs')
    op.drop_table('delivery_stops')
    op.drop_index('ix_batches_date_status', table_name='delivery_batches')
    op.drop_table('delivery_batches')
    op.drop_table('payout_accounts')
    op.drop_index('ix_payouts_status_recipient', table_name='payouts')
    op.drop_index('ix_payouts_order_id', table_name='payouts')
    op.drop_table('payouts')
    op.drop_table('webhook_events')
    op.drop_table('payment_intents')
    op.drop_index('ix_credit_ledger_consumer_created', table_name='credit_ledger')
    op.drop_table('credit_ledger')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status_delivery_date', table_name='orders')
    op.drop_index('ix_orders_buyer_id', table_name='orders')
    op.drop_table('orders')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_index('ix_buyer_profiles_zip_code', table_name='buyer_profiles')
    op.drop_table('buyer_profiles')
    op.drop_table('market_configs')
    op.drop_index('ix_products_seller_id', table_name='products')
    op.drop_table('products')
    op.drop_table('job_locks')

    bind = op.get_bind()
    for enum in (
        scan_type,
        stop_status,
        batch_status,
        payout_kind,
        recipient_type,
        payout_status,
        webhook_event_status,
        intent_status,
        credit_transaction_type,
        order_payment_status,
        order_status,
        approval_status,
    ):
        enum.drop(bind, checkfirst=True)
