"""initial payout schema

Revision ID: 3b1f2a7c9d10
Revises:
Create Date: 2025-07-01 10:12:41.204311

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3b1f2a7c9d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Ingested order lines
    op.create_table(
        'order_data',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('upload_session_id', sa.String(64), nullable=False),
        sa.Column('dropshipper_email', sa.String(255), nullable=False),
        sa.Column('order_id', sa.String(128), nullable=False),
        sa.Column('order_date', sa.DateTime(), nullable=False),
        sa.Column('waybill', sa.String(128), nullable=True),
        sa.Column('product_name', sa.String(512), nullable=False),
        sa.Column('sku', sa.String(128), nullable=True),
        sa.Column('product_uid', sa.String(512), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('product_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('mode', sa.String(32), nullable=True),
        sa.Column('status', sa.String(128), nullable=False),
        sa.Column('status_code', sa.String(32), nullable=False),
        sa.Column('delivered_date', sa.DateTime(), nullable=True),
        sa.Column('rts_date', sa.DateTime(), nullable=True),
        sa.Column('shipping_provider', sa.String(128), nullable=False),
        sa.Column('pincode', sa.String(16), nullable=True),
        sa.Column('state', sa.String(128), nullable=True),
        sa.Column('city', sa.String(128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('upload_session_id', 'dropshipper_email', 'order_id',
                            name='uq_order_per_dropshipper_batch'),
    )
    op.create_index('ix_order_data_dropshipper_order_date', 'order_data',
                    ['dropshipper_email', 'order_date'])

    # Pricing configuration
    op.create_table(
        'product_prices',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('dropshipper_email', sa.String(255), nullable=False),
        sa.Column('product_uid', sa.String(512), nullable=False),
        sa.Column('product_name', sa.String(512), nullable=False),
        sa.Column('sku', sa.String(128), nullable=True),
        sa.Column('product_weight', sa.Numeric(8, 3), nullable=True),
        sa.Column('product_cost_per_unit', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dropshipper_email', 'product_uid', name='uq_product_price_key'),
    )

    op.create_table(
        'shipping_rates',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('product_uid', sa.String(512), nullable=False),
        sa.Column('product_weight', sa.Numeric(8, 3), nullable=False),
        sa.Column('shipping_provider', sa.String(128), nullable=False),
        sa.Column('rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_uid', 'product_weight', 'shipping_provider',
                            name='uq_shipping_rate_key'),
    )

    op.create_table(
        'default_shipping_rates',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('shipping_provider', sa.String(128), nullable=False),
        sa.Column('rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(8), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shipping_provider'),
    )

    # Payout history and reversals
    op.create_table(
        'payout_log',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('order_id', sa.String(128), nullable=False),
        sa.Column('waybill', sa.String(128), nullable=True),
        sa.Column('dropshipper_email', sa.String(255), nullable=False),
        sa.Column('product_uid', sa.String(512), nullable=False),
        sa.Column('paid_on', sa.DateTime(), nullable=False),
        sa.Column('period_from', sa.Date(), nullable=False),
        sa.Column('period_to', sa.Date(), nullable=False),
        sa.Column('paid_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('cod_received', sa.Numeric(12, 2), nullable=False),
        sa.Column('status_at_payout', sa.String(128), nullable=True),
        sa.Column('settlement_export_id', sa.String(36), nullable=True),
        sa.Column('payout_data', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payout_log_order_id', 'payout_log', ['order_id'])

    op.create_table(
        'rts_rto_reconciliation',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('order_id', sa.String(128), nullable=False),
        sa.Column('waybill', sa.String(128), nullable=True),
        sa.Column('dropshipper_email', sa.String(255), nullable=False),
        sa.Column('product_uid', sa.String(512), nullable=False),
        sa.Column('original_payout_id', sa.String(36), nullable=True),
        sa.Column('original_paid_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reversal_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('rts_rto_status', sa.String(32), nullable=False),
        sa.Column('rts_rto_date', sa.DateTime(), nullable=False),
        sa.Column('reconciled_on', sa.DateTime(), nullable=False),
        sa.Column('reconciled_by', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False),
        sa.Column('applied_export_id', sa.String(36), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_rts_rto_reconciliation_order_id', 'rts_rto_reconciliation', ['order_id'])
    op.create_index('ix_rts_rto_reconciliation_applied_export_id', 'rts_rto_reconciliation', ['applied_export_id'])

    # Settlement cycle
    op.create_table(
        'settlement_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('frequency', sa.String(32), nullable=False),
        sa.Column('cutoff_offset_days', sa.Integer(), nullable=False),
        sa.Column('anchored', sa.Boolean(), nullable=False),
        sa.Column('custom_weekdays', sa.JSON(), nullable=True),
        sa.Column('last_payment_done_on', sa.Date(), nullable=True),
        sa.Column('last_delivered_cutoff', sa.Date(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'settlement_exports',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('run_date', sa.Date(), nullable=False),
        sa.Column('dropshipper_email', sa.String(255), nullable=True),
        sa.Column('order_start', sa.Date(), nullable=False),
        sa.Column('order_end', sa.Date(), nullable=False),
        sa.Column('del_start', sa.Date(), nullable=False),
        sa.Column('del_end', sa.Date(), nullable=False),
        sa.Column('shipping_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('cod_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('product_cost_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('adjustments_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('final_payable', sa.Numeric(14, 2), nullable=False),
        sa.Column('orders_count', sa.Integer(), nullable=False),
        sa.Column('charging_policy', sa.String(16), nullable=False),
        sa.Column('exported_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )


def downgrade() -> None:
    op.drop_table('settlement_exports')
    op.drop_table('settlement_settings')
    op.drop_index('ix_rts_rto_reconciliation_applied_export_id', table_name='rts_rto_reconciliation')
    op.drop_index('ix_rts_rto_reconciliation_order_id', table_name='rts_rto_reconciliation')
    op.drop_table('rts_rto_reconciliation')
    op.drop_index('ix_payout_log_order_id', table_name='payout_log')
    op.drop_table('payout_log')
    op.drop_table('default_shipping_rates')
    op.drop_table('shipping_rates')
    op.drop_table('product_prices')
    op.drop_index('ix_order_data_dropshipper_order_date', table_name='order_data')
    op.drop_table('order_data')
