"""initial replenishment schema

Revision ID: b7e2c41d9a03
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the order lifecycle / ledger schema:
- products: price source for new requests
- inventory_items: one stock counter per (product, warehouse), versioned
- product_requests: replenishment orders with price snapshot, versioned
- company_accounts: single ledger account row, versioned
- ledger_transactions: append-only ledger, one debit and one credit per request at most
- saga_logs: compensating-action log for LEDGER_MODE=remote
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7e2c41d9a03'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('supplier', sa.String(length=128), nullable=True),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('unit_price_cents >= 0', name='ck_products_price_non_negative'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # inventory_items: signed-delta counters, quantity never negative
    # ============================================================================
    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('location', sa.String(length=64), nullable=True),
        sa.Column('quantity_in_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('minimum_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('maximum_level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_stock_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'warehouse_id', name='uq_inventory_product_warehouse'),
        sa.CheckConstraint('quantity_in_stock >= 0', name='ck_inventory_quantity_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_inventory_items_product_id', 'inventory_items', ['product_id'])
    op.create_index('ix_inventory_items_warehouse_id', 'inventory_items', ['warehouse_id'])
    op.create_index('ix_inventory_low_stock', 'inventory_items', ['quantity_in_stock', 'minimum_level'])

    # ============================================================================
    # product_requests: lifecycle Pending -> Approved -> ReadyForShipment -> SoldOut
    # ============================================================================
    op.create_table(
        'product_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('requested_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='Pending'),
        sa.Column('requested_by', sa.String(length=50), nullable=False),
        sa.Column('approved_by', sa.String(length=50), nullable=True),
        sa.Column('received_by', sa.String(length=50), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('saga_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('requested_quantity > 0', name='ck_requests_quantity_positive'),
        sa.CheckConstraint('total_cost_cents >= 0', name='ck_requests_total_cost_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_requests_product_id', 'product_requests', ['product_id'])
    op.create_index('ix_product_requests_status', 'product_requests', ['status'])
    op.create_index('ix_product_requests_requested_by', 'product_requests', ['requested_by'])
    op.create_index('ix_requests_status_requested_at', 'product_requests', ['status', 'requested_at'])

    # ============================================================================
    # company_accounts: single row (id=1)
    # ============================================================================
    op.create_table(
        'company_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('current_revenue_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('available_budget_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_spent_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_by', sa.String(length=50), nullable=True),
        sa.Column('update_reason', sa.String(length=255), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('available_budget_cents >= 0', name='ck_account_budget_non_negative'),
        sa.CheckConstraint('total_spent_cents >= 0', name='ck_account_spent_non_negative'),
    )

    # ============================================================================
    # ledger_transactions: append-only, request_id deliberately not a FK
    # ============================================================================
    op.create_table(
        'ledger_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('actor', sa.String(length=50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', 'direction', name='uq_ledger_request_direction'),
        sa.CheckConstraint('amount_cents > 0', name='ck_ledger_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ledger_transactions_request_id', 'ledger_transactions', ['request_id'])
    op.create_index('ix_ledger_created', 'ledger_transactions', ['created_at', 'id'])
    op.create_index('ix_ledger_type_created', 'ledger_transactions', ['type', 'created_at'])

    # ============================================================================
    # saga_logs: STARTED -> COMPLETED | COMPENSATED
    # ============================================================================
    op.create_table(
        'saga_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='STARTED'),
        sa.Column('ledger_type', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=50), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('inventory_delta', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('snapshot', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_saga_logs_request_id', 'saga_logs', ['request_id'])
    op.create_index('ix_saga_status_created', 'saga_logs', ['status', 'created_at'])


def downgrade():
    op.drop_index('ix_saga_status_created', table_name='saga_logs')
    op.drop_index('ix_saga_logs_request_id', table_name='saga_logs')
    op.drop_table('saga_logs')

    op.drop_index('ix_ledger_type_created', table_name='ledger_transactions')
    op.drop_index('ix_ledger_created', table_name='ledger_transactions')
    op.drop_index('ix_ledger_transactions_request_id', table_name='ledger_transactions')
    op.drop_table('ledger_transactions')

    op.drop_table('company_accounts')

    op.drop_index('ix_requests_status_requested_at', table_name='product_requests')
    op.drop_index('ix_product_requests_requested_by', table_name='product_requests')
    op.drop_index('ix_product_requests_status', table_name='product_requests')
    op.drop_index('ix_product_requests_product_id', table_name='product_requests')
    op.drop_table('product_requests')

    op.drop_index('ix_inventory_low_stock', table_name='inventory_items')
    op.drop_index('ix_inventory_items_warehouse_id', table_name='inventory_items')
    op.drop_index('ix_inventory_items_product_id', table_name='inventory_items')
    op.drop_table('inventory_items')

    op.drop_table('products')
