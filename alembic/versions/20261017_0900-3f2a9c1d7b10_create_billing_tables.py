"""create_billing_tables

Revision ID: 3f2a9c1d7b10
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
    ]


def upgrade() -> None:
    # Catalog snapshot and tenant pricing configuration (synced from the catalog service)
    op.create_table(
        'products',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('price_configuration', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'], unique=False)

    op.create_table(
        'toppings',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False, server_default='false'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_toppings_tenant_id', 'toppings', ['tenant_id'], unique=False)

    op.create_table(
        'delivery_configurations',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('order_value_tiers', sa.JSON(), nullable=False),
        sa.Column('free_delivery_threshold', sa.Numeric(12, 2), nullable=True),
        sa.PrimaryKeyConstraint('tenant_id'),
    )

    op.create_table(
        'tax_configurations',
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('taxes', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('tenant_id'),
    )

    op.create_table(
        'coupons',
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('tenant_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('discount', sa.Numeric(5, 2), nullable=False, comment='折扣百分比'),
        sa.Column('valid_upto', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('code', 'tenant_id'),
        sa.UniqueConstraint('code', 'tenant_id', name='uq_coupons_code_tenant'),
    )

    # Orders
    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=32), nullable=False, comment='订单ID'),
        sa.Column('tenant_id', sa.String(length=64), nullable=False, comment='租户ID'),
        sa.Column('customer_id', sa.String(length=64), nullable=False, comment='下单用户ID'),
        sa.Column('items', sa.JSON(), nullable=False, comment='订单行（含下单时单价快照）'),
        sa.Column('sub_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('delivery_charge', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('taxes', sa.JSON(), nullable=False, comment='税费明细 [{name, rate, amount}]'),
        sa.Column('tax_total', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('total', sa.Numeric(12, 2), nullable=False, comment='钱包抵扣前总额'),
        sa.Column('wallet_credits_applied', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('final_total', sa.Numeric(12, 2), nullable=False, comment='需外部支付金额'),
        sa.Column('coupon_code', sa.String(length=64), nullable=True),
        sa.Column('delivery_info', sa.JSON(), nullable=True),
        sa.Column('payment_mode', sa.String(length=20), nullable=False, server_default='card'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('payment_id', sa.String(length=200), nullable=True, comment='网关支付ID'),
        sa.Column('gateway_order_id', sa.String(length=200), nullable=True, comment='网关订单/会话ID'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('total_refunded', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('wallet_refunded', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('gateway_refunded', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('refund_reserved', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('last_refunded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'], unique=False)
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_payment_id', 'orders', ['payment_id'], unique=False)
    op.create_index('ix_orders_gateway_order_id', 'orders', ['gateway_order_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_tenant_created', 'orders', ['tenant_id', 'created_at'], unique=False)
    op.create_index('ix_orders_customer_created', 'orders', ['customer_id', 'created_at'], unique=False)

    # Wallet ledger
    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False, comment='每个用户一个钱包'),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active', comment='active/frozen'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
    )

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('wallet_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='cashback/redemption/refund'),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False, comment='正数入账，负数出账'),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('balance_before', sa.Numeric(12, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='completed'),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
    )
    op.create_index('ix_wallet_transactions_wallet_id', 'wallet_transactions', ['wallet_id'], unique=False)
    op.create_index('ix_wallet_transactions_user_id', 'wallet_transactions', ['user_id'], unique=False)
    op.create_index('ix_wallet_transactions_order_id', 'wallet_transactions', ['order_id'], unique=False)
    op.create_index('ix_wallet_tx_user_created', 'wallet_transactions', ['user_id', 'created_at'], unique=False)
    op.create_index('ix_wallet_tx_order_type', 'wallet_transactions', ['order_id', 'type', 'status'], unique=False)

    # Idempotency store
    op.create_table(
        'idempotency_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('endpoint', sa.String(length=255), nullable=False, comment='METHOD path'),
        sa.Column('response', sa.JSON(), nullable=False, comment='首次请求的完整响应体'),
        sa.Column('status_code', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', 'user_id', 'endpoint', name='uq_idempotency_key_user_endpoint'),
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_idempotency_records_expires_at', table_name='idempotency_records')
    op.drop_table('idempotency_records')

    for name in (
        'ix_wallet_tx_order_type',
        'ix_wallet_tx_user_created',
        'ix_wallet_transactions_order_id',
        'ix_wallet_transactions_user_id',
        'ix_wallet_transactions_wallet_id',
    ):
        op.drop_index(name, table_name='wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_table('wallets')

    for name in (
        'ix_orders_customer_created',
        'ix_orders_tenant_created',
        'ix_orders_created_at',
        'ix_orders_status',
        'ix_orders_gateway_order_id',
        'ix_orders_payment_id',
        'ix_orders_payment_status',
        'ix_orders_customer_id',
        'ix_orders_tenant_id',
    ):
        op.drop_index(name, table_name='orders')
    op.drop_table('orders')

    op.drop_table('coupons')
    op.drop_table('tax_configurations')
    op.drop_table('delivery_configurations')
    op.drop_index('ix_toppings_tenant_id', table_name='toppings')
    op.drop_table('toppings')
    op.drop_index('ix_products_tenant_id', table_name='products')
    op.drop_table('products')
