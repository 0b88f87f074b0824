"""003 Payment idempotency key

Revision ID: 003_payment_idempotency_key
Revises: 002_telemetry_tables
Create Date: 2026-10-19

Client-supplied key that makes intent creation safe to retry. Unique but
nullable; intents created without a key never collide.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '003_payment_idempotency_key'
down_revision = '002_telemetry_tables'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('payments', sa.Column('idempotency_key', sa.String(255), nullable=True))
    op.create_index('uq_payment_idempotency_key', 'payments', ['idempotency_key'], unique=True)


def downgrade():
    op.drop_index('uq_payment_idempotency_key', table_name='payments')
    op.drop_column('payments', 'idempotency_key')
