"""ledger idempotency keys

Revision ID: c3f8a12e7b45
Revises: b7e2c41d9a03
Create Date: 2026-10-18 00:00:00.000000

Ledger entries are deduplicated by a caller-supplied idempotency key instead
of (request_id, direction). Request ids are only unique per instance, so two
instances sharing one remote ledger could otherwise claim each other's debit.

- ledger_transactions.idempotency_key: unique; existing request-linked rows
  get the per-request default "request:<id>:<direction>"
- saga_logs.idempotency_key: the key the saga sends; NULL for older sagas,
  which were sent without one
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c3f8a12e7b45'
down_revision = 'b7e2c41d9a03'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('ledger_transactions', schema=None) as batch_op:
        batch_op.add_column(sa.Column('idempotency_key', sa.String(length=64), nullable=True))

    op.execute(
        "UPDATE ledger_transactions "
        "SET idempotency_key = 'request:' || request_id || ':' || direction "
        "WHERE request_id IS NOT NULL"
    )

    with op.batch_alter_table('ledger_transactions', schema=None) as batch_op:
        batch_op.drop_constraint('uq_ledger_request_direction', type_='unique')
        batch_op.create_unique_constraint('uq_ledger_idempotency_key', ['idempotency_key'])

    with op.batch_alter_table('saga_logs', schema=None) as batch_op:
        batch_op.add_column(sa.Column('idempotency_key', sa.String(length=64), nullable=True))
        batch_op.create_unique_constraint('uq_saga_idempotency_key', ['idempotency_key'])


def downgrade():
    # Fails if two instances have since written entries for the same request id.
    with op.batch_alter_table('saga_logs', schema=None) as batch_op:
        batch_op.drop_constraint('uq_saga_idempotency_key', type_='unique')
        batch_op.drop_column('idempotency_key')

    with op.batch_alter_table('ledger_transactions', schema=None) as batch_op:
        batch_op.drop_constraint('uq_ledger_idempotency_key', type_='unique')
        batch_op.create_unique_constraint('uq_ledger_request_direction', ['request_id', 'direction'])
        batch_op.drop_column('idempotency_key')
