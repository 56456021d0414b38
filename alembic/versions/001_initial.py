"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Price history table
    op.create_table(
        'price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('compare_at_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_reference', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_price_history_variant', 'price_history', ['shop', 'product_id', 'variant_id'])
    op.create_index('ix_price_history_timestamp', 'price_history', ['timestamp'])

    # Compliance rules table
    op.create_table(
        'compliance_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('country_code', sa.String(length=8), nullable=False),
        sa.Column('rule_type', sa.String(length=32), nullable=False),
        sa.Column('parameters', sa.JSON(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_compliance_rules_country_type', 'compliance_rules', ['country_code', 'rule_type'])

    # Product compliance table
    op.create_table(
        'product_compliance',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('product_id', sa.String(length=64), nullable=False),
        sa.Column('variant_id', sa.String(length=64), nullable=False),
        sa.Column('reference_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('last_checked', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_on_sale', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sale_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_compliant', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('issues', sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop', 'product_id', 'variant_id', name='uq_product_compliance_variant')
    )

    # Shop settings table
    op.create_table(
        'shop_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shop', sa.String(length=255), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('tracking_frequency_hours', sa.Integer(), nullable=False, server_default='12'),
        sa.Column('last_scan', sa.DateTime(timezone=True), nullable=True),
        sa.Column('country_rules', sa.String(length=64), nullable=False, server_default='NO'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shop')
    )


def downgrade() -> None:
    op.drop_table('shop_settings')
    op.drop_table('product_compliance')
    op.drop_index('ix_compliance_rules_country_type', table_name='compliance_rules')
    op.drop_table('compliance_rules')
    op.drop_index('ix_price_history_timestamp', table_name='price_history')
    op.drop_index('ix_price_history_variant', table_name='price_history')
    op.drop_table('price_history')
