"""Create provider order, storefront order and order link tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

The two order tables are filled by the external sync jobs; order_link is
owned by the reconciliation engine and has no foreign keys into them.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'provider_order',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('external_id', sa.Text(), nullable=True, comment="Provider's order number"),
        sa.Column('recipient_name', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.Text(), nullable=False, server_default='USD'),
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_provider_order_created_at', 'provider_order', ['created_at'])
    op.create_index('ix_provider_order_external_id', 'provider_order', ['external_id'])

    op.create_table(
        'provider_order_item',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('provider_order_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('variant', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['provider_order_id'], ['provider_order.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_provider_order_item_provider_order_id', 'provider_order_item', ['provider_order_id'])

    op.create_table(
        'storefront_order',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_number', sa.Text(), nullable=True),
        sa.Column('customer_name', sa.Text(), nullable=True),
        sa.Column('customer_email', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.Text(), nullable=False, server_default='USD'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('payment_status', sa.Text(), nullable=True),
        sa.Column('fulfillment_status', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_storefront_order_created_at', 'storefront_order', ['created_at'])
    op.create_index('ix_storefront_order_number', 'storefront_order', ['order_number'])

    op.create_table(
        'order_link',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('provider_order_id', sa.BigInteger(), nullable=False),
        sa.Column('storefront_order_id', sa.BigInteger(), nullable=True),
        sa.Column('link_type', sa.String(32), nullable=False),
        sa.Column('link_status', sa.String(32), nullable=False),
        sa.Column('classification', sa.String(32), nullable=False, server_default='normal'),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('match_details', postgresql.JSONB(), nullable=True),
        sa.Column('linked_by', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('link_timestamp', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # At most one active link per provider order; archived/broken/pending rows may repeat
    op.create_index(
        'uq_order_link_active_provider',
        'order_link',
        ['provider_order_id'],
        unique=True,
        postgresql_where=sa.text("link_status = 'active'")
    )

    op.create_index('ix_order_link_provider_order', 'order_link', ['provider_order_id'])
    op.create_index('ix_order_link_storefront_order', 'order_link', ['storefront_order_id'])
    op.create_index('ix_order_link_status', 'order_link', ['link_status'])
    op.create_index('ix_order_link_created_at', 'order_link', ['created_at'])

    op.create_check_constraint(
        'ck_order_link_type',
        'order_link',
        "link_type IN ('automatic', 'manual_system', 'manual_user_override')"
    )
    op.create_check_constraint(
        'ck_order_link_status',
        'order_link',
        "link_status IN ('pending_verification', 'active', 'archived', "
        "'broken_provider_deleted', 'broken_storefront_deleted')"
    )
    op.create_check_constraint(
        'ck_order_link_classification',
        'order_link',
        "classification IN ('normal', 'corrective', 'gift')"
    )
    op.create_check_constraint(
        'ck_order_link_classified_without_storefront',
        'order_link',
        "classification = 'normal' OR storefront_order_id IS NULL"
    )
    op.create_check_constraint(
        'ck_order_link_confidence',
        'order_link',
        'confidence IS NULL OR (confidence >= 0.0 AND confidence <= 1.0)'
    )


def downgrade():
    op.drop_index('ix_order_link_created_at', table_name='order_link')
    op.drop_index('ix_order_link_status', table_name='order_link')
    op.drop_index('ix_order_link_storefront_order', table_name='order_link')
    op.drop_index('ix_order_link_provider_order', table_name='order_link')
    op.drop_index('uq_order_link_active_provider', table_name='order_link')
    op.drop_table('order_link')

    op.drop_index('ix_storefront_order_number', table_name='storefront_order')
    op.drop_index('ix_storefront_order_created_at', table_name='storefront_order')
    op.drop_table('storefront_order')

    op.drop_index('ix_provider_order_item_provider_order_id', table_name='provider_order_item')
    op.drop_table('provider_order_item')

    op.drop_index('ix_provider_order_external_id', table_name='provider_order')
    op.drop_index('ix_provider_order_created_at', table_name='provider_order')
    op.drop_table('provider_order')
