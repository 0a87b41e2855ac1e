"""Create POS integration tables

Revision ID: 001_create_pos_tables
Revises:
Create Date: 2026-10-19

Creates stores, pos_connections, webhook_events, orders, review_sessions
and audit_events. Uniqueness on (store_id, provider) and (provider, event_id)
backs connection upserts and webhook deduplication.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_create_pos_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_stores_public_id', 'stores', ['public_id'], unique=True)

    op.create_table(
        'pos_connections',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('merchant_id', sa.String(), nullable=True),
        sa.Column('location_id', sa.String(), nullable=True),
        sa.Column('shop_domain', sa.String(), nullable=True),
        sa.Column('access_token_enc', sa.Text(), nullable=True),
        sa.Column('refresh_token_enc', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('provider_metadata', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('store_id', 'provider', name='uq_pos_connections_store_provider'),
    )
    op.create_index('ix_pos_connections_merchant_id', 'pos_connections', ['merchant_id'])
    op.create_index('ix_pos_connections_location_id', 'pos_connections', ['location_id'])
    op.create_index('ix_pos_connections_shop_domain', 'pos_connections', ['shop_domain'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='RECEIVED'),
        sa.Column('pos_connection_id', sa.Integer(), sa.ForeignKey('pos_connections.id'), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('received_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_events_provider_event'),
    )
    op.create_index('ix_webhook_events_status', 'webhook_events', ['status'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('pos_connection_id', sa.Integer(), sa.ForeignKey('pos_connections.id'), nullable=True),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('external_order_id', sa.String(), nullable=False),
        sa.Column('total_amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(), nullable=False, server_default='USD'),
        sa.Column('line_items', sa.JSON(), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('ordered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('provider', 'external_order_id', name='uq_orders_provider_external'),
    )

    op.create_table(
        'review_sessions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('public_id', sa.String(), nullable=False),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='PENDING'),
        sa.Column('star_rating', sa.Integer(), nullable=True),
        sa.Column('generated_review_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_review_sessions_public_id', 'review_sessions', ['public_id'], unique=True)

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('review_session_id', sa.Integer(), sa.ForeignKey('review_sessions.id'), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table('audit_events')
    op.drop_index('ix_review_sessions_public_id', table_name='review_sessions')
    op.drop_table('review_sessions')
    op.drop_table('orders')
    op.drop_index('ix_webhook_events_status', table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_index('ix_pos_connections_shop_domain', table_name='pos_connections')
    op.drop_index('ix_pos_connections_location_id', table_name='pos_connections')
    op.drop_index('ix_pos_connections_merchant_id', table_name='pos_connections')
    op.drop_table('pos_connections')
    op.drop_index('ix_stores_public_id', table_name='stores')
    op.drop_table('stores')
