"""Add vault tables

Revision ID: b7c8d9e0f1a2
Revises:
Create Date: 2025-11-04 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'b7c8d9e0f1a2'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum labels are the member names, as SQLAlchemy stores them
ENUMS = {
    'userrole': ('ADMIN', 'USER'),
    'ordertype': ('SUBSCRIPTION', 'ONE_TIME'),
    'orderstatus': ('PENDING', 'PAID', 'CANCELLED', 'REFUNDED'),
    'paymentstatus': (
        'PENDING', 'REQUIRES_PAYMENT_METHOD', 'REQUIRES_ACTION', 'PROCESSING', 'SUCCEEDED', 'FAILED', 'REFUNDED'
    ),
    'invoicestatus': ('NONE', 'DRAFT', 'OPEN', 'PAID', 'VOID', 'UNCOLLECTIBLE'),
    'metaltype': ('GOLD', 'SILVER'),
    'weightunit': ('GRAM', 'OUNCE'),
    'subscriptionstatus': (
        'PENDING_PAYMENT', 'ACTIVE', 'TRIALING', 'CANCELING', 'CANCELED', 'PAST_DUE', 'UNPAID',
        'INCOMPLETE', 'INCOMPLETE_EXPIRED'
    ),
    'withdrawalstatus': ('PENDING', 'IN_REVIEW', 'APPROVED', 'PROCESSING', 'REJECTED', 'COMPLETED'),
    'cancellationstatus': ('PENDING', 'APPROVED', 'REJECTED'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    for name, labels in ENUMS.items():
        postgresql.ENUM(*labels, name=name).create(bind, checkfirst=True)

    op.create_table('users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('role', _enum('userrole'), nullable=False),
        sa.Column('withdrawn_gold', sa.Float(), nullable=False),
        sa.Column('withdrawn_silver', sa.Float(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_created_at'), 'users', ['created_at'], unique=False)

    op.create_table('orders',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=True),
        sa.Column('subscription_id', sa.UUID(), nullable=True),
        sa.Column('order_type', _enum('ordertype'), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('amount_in_minor', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('status', _enum('orderstatus'), nullable=False),
        sa.Column('payment_status', _enum('paymentstatus'), nullable=False),
        sa.Column('invoice_status', _enum('invoicestatus'), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('billing_email', sa.String(length=255), nullable=True),
        sa.Column('billing_name', sa.String(length=255), nullable=True),
        sa.Column('receipt_url', sa.String(length=1024), nullable=True),
        sa.Column('stripe_session_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_invoice_id', sa.String(length=255), nullable=True),
        sa.Column('latest_stripe_event_id', sa.String(length=255), nullable=True),
        sa.Column('latest_stripe_event', sa.String(length=100), nullable=True),
        sa.Column('latest_stripe_event_received_at', sa.DateTime(), nullable=True),
        sa.Column('meta_data', sa.JSON(), nullable=True),
        sa.Column('subscription_config', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    for column in (
        'id', 'user_id', 'subscription_id', 'status', 'stripe_session_id', 'stripe_customer_id',
        'stripe_subscription_id', 'stripe_payment_intent_id', 'stripe_invoice_id', 'created_at',
    ):
        op.create_index(op.f(f'ix_orders_{column}'), 'orders', [column], unique=False)

    op.create_table('subscriptions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('metal', _enum('metaltype'), nullable=False),
        sa.Column('plan_name', sa.String(length=255), nullable=False),
        sa.Column('target_weight', sa.Float(), nullable=False),
        sa.Column('target_unit', _enum('weightunit'), nullable=False),
        sa.Column('monthly_investment', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('target_price', sa.Float(), nullable=False),
        sa.Column('accumulated_value', sa.Float(), nullable=False),
        sa.Column('accumulated_weight', sa.Float(), nullable=False),
        sa.Column('status', _enum('subscriptionstatus'), nullable=False),
        sa.Column('current_period_end', sa.DateTime(), nullable=True),
        sa.Column('stripe_customer_id', sa.String(length=255), nullable=False),
        sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_subscriptions_id'), 'subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_stripe_customer_id'), 'subscriptions', ['stripe_customer_id'], unique=False)
    op.create_index(op.f('ix_subscriptions_stripe_subscription_id'), 'subscriptions', ['stripe_subscription_id'], unique=True)
    op.create_index(op.f('ix_subscriptions_created_at'), 'subscriptions', ['created_at'], unique=False)

    op.create_table('withdrawal_requests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('subscription_id', sa.UUID(), nullable=True),
        sa.Column('metal', _enum('metaltype'), nullable=False),
        sa.Column('requested_weight', sa.Float(), nullable=False),
        sa.Column('requested_unit', _enum('weightunit'), nullable=False),
        sa.Column('estimated_value', sa.Float(), nullable=True),
        sa.Column('status', _enum('withdrawalstatus'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.UUID(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_withdrawal_requests_id'), 'withdrawal_requests', ['id'], unique=False)
    op.create_index(op.f('ix_withdrawal_requests_user_id'), 'withdrawal_requests', ['user_id'], unique=False)
    op.create_index(op.f('ix_withdrawal_requests_subscription_id'), 'withdrawal_requests', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_withdrawal_requests_created_at'), 'withdrawal_requests', ['created_at'], unique=False)

    op.create_table('cancellation_requests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('subscription_id', sa.UUID(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('preferred_cancellation_date', sa.DateTime(), nullable=True),
        sa.Column('status', _enum('cancellationstatus'), nullable=False),
        sa.Column('processed_by', sa.UUID(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cancellation_requests_id'), 'cancellation_requests', ['id'], unique=False)
    op.create_index(op.f('ix_cancellation_requests_user_id'), 'cancellation_requests', ['user_id'], unique=False)
    op.create_index(op.f('ix_cancellation_requests_subscription_id'), 'cancellation_requests', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_cancellation_requests_created_at'), 'cancellation_requests', ['created_at'], unique=False)

    op.create_table('metal_prices',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('metal_symbol', sa.String(length=20), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('last_updated', sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_metal_prices_id'), 'metal_prices', ['id'], unique=False)
    op.create_index(op.f('ix_metal_prices_metal_symbol'), 'metal_prices', ['metal_symbol'], unique=True)
    op.create_index(op.f('ix_metal_prices_created_at'), 'metal_prices', ['created_at'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    # Indexes go with their tables
    for table in ('metal_prices', 'cancellation_requests', 'withdrawal_requests', 'subscriptions', 'orders', 'users'):
        op.drop_table(table)

    for name in ENUMS:
        op.execute(f'DROP TYPE IF EXISTS {name}')
