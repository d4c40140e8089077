"""Create payment reconciliation schema.

Revision ID: create_payment_schema
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'create_payment_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = False):
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True),
                      server_default=sa.func.now(), nullable=False)
        )
    return columns


def upgrade() -> None:
    op.create_table(
        'profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, unique=True, index=True),
        sa.Column('full_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(20), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'sellers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False, unique=True, index=True),
        sa.Column('profile_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('profiles.id', ondelete='SET NULL'), nullable=True),
        sa.Column('business_name', sa.String(255), nullable=False),
        sa.Column('mp_user_id', sa.String(64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=True),
    )

    op.create_table(
        'oauth_credentials',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sellers.id', ondelete='CASCADE'),
                  nullable=False, unique=True, index=True),
        sa.Column('encrypted_access_token', sa.Text(), nullable=False),
        sa.Column('encrypted_refresh_token', sa.Text(), nullable=True),
        sa.Column('public_key', sa.String(255), nullable=True),
        sa.Column('mp_user_id', sa.String(64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=True),
    )

    op.create_table(
        'oauth_states',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('state', sa.String(128), nullable=False, unique=True, index=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'services',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sellers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'products',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sellers.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(50), nullable=False, server_default='geral'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('service_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('services.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scheduled_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(20), nullable=False),
        sa.Column('queue_position', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending_payment'),
        sa.Column('booking_type', sa.String(20), nullable=False, server_default='app'),
        sa.Column('preference_id', sa.String(128), nullable=True, index=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('preference_created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        *_timestamps(updated=True),
    )
    op.create_index(
        'ix_appointments_queue_lookup',
        'appointments',
        ['scheduled_date', 'time_slot', 'status'],
    )

    op.create_table(
        'daily_queue',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('queue_date', sa.Date(), nullable=False),
        sa.Column('time_slot', sa.String(20), nullable=False),
        sa.Column('queue_position', sa.Integer(), nullable=False),
        sa.Column('customer_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('preference_id', sa.String(128), nullable=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    # Two checkouts can never hold the same active position
    op.create_index(
        'uq_daily_queue_active_position',
        'daily_queue',
        ['queue_date', 'time_slot', 'queue_position'],
        unique=True,
        postgresql_where=sa.text("is_active"),
    )

    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('buyer_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('profiles.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sellers.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('marketplace_fee', sa.Numeric(10, 2), nullable=True),
        sa.Column('mp_application_fee', sa.Numeric(10, 2), nullable=True),
        sa.Column('mp_preference_id', sa.String(128), nullable=True, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        *_timestamps(updated=True),
    )

    op.create_table(
        'order_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('product_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'split_payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('appointment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('appointments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('seller_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('sellers.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('payment_id', sa.String(64), nullable=False, unique=True),
        sa.Column('mp_collector_id', sa.String(64), nullable=True),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('seller_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('platform_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=True),
    )

    op.create_table(
        'processed_webhook_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('event_id', sa.String(255), nullable=False, unique=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'marketplace_config',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('mercado_pago_user_id', sa.String(64), nullable=True),
        sa.Column('platform_fee_percentage', sa.Numeric(5, 2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('marketplace_config')
    op.drop_table('processed_webhook_events')
    op.drop_table('split_payments')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_index('uq_daily_queue_active_position', table_name='daily_queue')
    op.drop_table('daily_queue')
    op.drop_index('ix_appointments_queue_lookup', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('products')
    op.drop_table('services')
    op.drop_table('oauth_states')
    op.drop_table('oauth_credentials')
    op.drop_table('sellers')
    op.drop_table('profiles')
