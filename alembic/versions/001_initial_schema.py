"""Initial schema - products, listings, platform configs, sync log, notifications

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
OPEN_STATUS_CLAUSE = sa.text("status IN ('active', 'pending')")


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=False), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=False), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('sku', sa.String(), nullable=True),
        sa.Column('upc', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('brand', sa.String(), nullable=True),
        sa.Column('model', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('condition', sa.String(), nullable=True),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('images', JSONType, nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.UniqueConstraint('sku'),
    )
    op.create_index('ix_products_status', 'products', ['status'])

    op.create_table(
        'platform_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('is_connected', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('credentials', JSONType, nullable=True),
        sa.Column('settings', JSONType, nullable=True),
        sa.Column('default_settings', JSONType, nullable=True),
        sa.Column('fees', JSONType, nullable=True),
        sa.Column('rate_limits', JSONType, nullable=True),
        sa.Column('total_listings', sa.Integer(), nullable=False),
        sa.Column('active_listings', sa.Integer(), nullable=False),
        sa.Column('total_sales', sa.Integer(), nullable=False),
        sa.Column('total_revenue', sa.Float(), nullable=False),
        sa.Column('last_listing_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', JSONType, nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False),
        sa.Column('connection_history', JSONType, nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_platform_configs_platform', 'platform_configs', ['platform'], unique=True)
    op.create_index('ix_platform_configs_is_connected', 'platform_configs', ['is_connected'])
    op.create_index('ix_platform_configs_is_active', 'platform_configs', ['is_active'])

    op.create_table(
        'listings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('platform', sa.String(32), nullable=False),
        sa.Column('platform_listing_id', sa.String(), nullable=False),
        sa.Column('listing_url', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Float(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('platform_data', JSONType, nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('listed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('views', sa.Integer(), nullable=False),
        sa.Column('watchers', sa.Integer(), nullable=False),
        sa.Column('questions', sa.Integer(), nullable=False),
        sa.Column('sale_price', sa.Float(), nullable=True),
        sa.Column('buyer_info', JSONType, nullable=True),
        sa.Column('platform_fees', JSONType, nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_status', sa.String(16), nullable=False),
        sa.Column('sync_errors', JSONType, nullable=True),
        sa.Column('auto_sync_enabled', sa.Boolean(), nullable=False),
        sa.Column('sync_price', sa.Boolean(), nullable=False),
        sa.Column('sync_quantity', sa.Boolean(), nullable=False),
        sa.Column('sync_description', sa.Boolean(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_manually_managed', sa.Boolean(), nullable=False),
        sa.UniqueConstraint('platform', 'platform_listing_id', name='uq_listings_platform_listing_id'),
    )
    op.create_index('ix_listings_product_id', 'listings', ['product_id'])
    op.create_index('ix_listings_platform', 'listings', ['platform'])
    op.create_index('ix_listings_status', 'listings', ['status'])
    op.create_index('ix_listings_sold_at', 'listings', ['sold_at'])
    op.create_index('ix_listings_sync_status', 'listings', ['sync_status'])
    op.create_index('ix_listings_product_platform', 'listings', ['product_id', 'platform'])
    # At most one open listing per product/platform pair
    op.create_index(
        'uq_listings_open_product_platform',
        'listings',
        ['product_id', 'platform'],
        unique=True,
        postgresql_where=OPEN_STATUS_CLAUSE,
        sqlite_where=OPEN_STATUS_CLAUSE,
    )

    op.create_table(
        'sync_log_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('entity_type', sa.String(32), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=True),
        sa.Column('operation', sa.String(16), nullable=False),
        sa.Column('triggered_by', sa.String(16), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('platforms', JSONType, nullable=True),
        sa.Column('changes', JSONType, nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('errors', JSONType, nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
    )
    for column in ('entity_type', 'entity_id', 'operation', 'triggered_by', 'user_id', 'status', 'started_at'):
        op.create_index(f'ix_sync_log_entries_{column}', 'sync_log_entries', [column])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('priority', sa.String(16), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=True),
        sa.Column('listing_id', sa.Integer(), sa.ForeignKey('listings.id'), nullable=True),
        sa.Column('platform', sa.String(32), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('action_required', sa.Boolean(), nullable=False),
        sa.Column('action_url', sa.String(), nullable=True),
        sa.Column('is_third_party', sa.Boolean(), nullable=False),
        sa.Column('third_party_action_type', sa.String(32), nullable=True),
        sa.Column('performed_by', sa.String(), nullable=True),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('third_party_details', JSONType, nullable=True),
        sa.Column('requires_approval', sa.Boolean(), nullable=False),
        sa.Column('approved', sa.Boolean(), nullable=False),
        sa.Column('approved_by', sa.String(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actioned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_to', JSONType, nullable=True),
        sa.Column('metadata', JSONType, nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    )
    for column in ('created_at', 'type', 'priority', 'product_id', 'listing_id', 'platform', 'status', 'expires_at'):
        op.create_index(f'ix_notifications_{column}', 'notifications', [column])
    op.create_index('ix_notifications_approval', 'notifications', ['requires_approval', 'approved'])


def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('sync_log_entries')
    op.drop_index('uq_listings_open_product_platform', table_name='listings')
    op.drop_table('listings')
    op.drop_table('platform_configs')
    op.drop_index('ix_products_status', table_name='products')
    op.drop_table('products')
