"""001 Core tables - bookings, payments, webhook_events

Revision ID: 001_core_tables
Revises:
Create Date: 2026-10-19

webhook_events carries the UNIQUE (provider, event_id) pair that the
webhook pipeline uses as its idempotency lock.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_core_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'bookings',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('reference', sa.String(32), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(30), nullable=False, server_default='draft'),
        sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('contact', sa.JSON(), nullable=True),
        sa.Column('travelers', sa.JSON(), nullable=True),
        sa.Column('offer_id', sa.String(255), nullable=True),
        sa.Column('offer_snapshot', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_intent_id', sa.String(64), nullable=True),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('status_timeline', sa.JSON(), nullable=True),
        sa.Column('draft_at', sa.String(40), nullable=True),
        sa.Column('pending_payment_at', sa.String(40), nullable=True),
        sa.Column('paid_at', sa.String(40), nullable=True),
        sa.Column('confirmed_at', sa.String(40), nullable=True),
        sa.Column('failed_at', sa.String(40), nullable=True),
        sa.Column('cancelled_at', sa.String(40), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
        sa.Column('updated_at', sa.String(40), nullable=True),
        sa.UniqueConstraint('reference', name='uq_booking_reference'),
    )
    op.create_index('ix_booking_status', 'bookings', ['status', 'created_at'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('booking_id', sa.String(36), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('amount_captured', sa.Float(), nullable=True),
        sa.Column('amount_refunded', sa.Float(), nullable=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='requires_action'),
        sa.Column('provider', sa.String(50), nullable=False, server_default='manual'),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('provider_order_id', sa.String(255), nullable=True),
        sa.Column('webhook_event_id', sa.String(255), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
        sa.Column('updated_at', sa.String(40), nullable=True),
    )
    op.create_index('ix_payment_booking', 'payments', ['booking_id', 'created_at'])
    op.create_index('ix_payment_webhook_event', 'payments', ['webhook_event_id'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=True),
        sa.Column('booking_id', sa.String(36), nullable=True),
        sa.Column('payment_id', sa.String(64), nullable=True),
        sa.Column('status', sa.String(20), server_default='processing'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
        sa.Column('updated_at', sa.String(40), nullable=True),
        sa.UniqueConstraint('provider', 'event_id', name='uq_webhook_event_provider_event'),
    )
    op.create_index('ix_webhook_event_status', 'webhook_events', ['status', 'created_at'])
    op.create_index('ix_webhook_event_booking', 'webhook_events', ['booking_id'])


def downgrade():
    op.drop_index('ix_webhook_event_booking', table_name='webhook_events')
    op.drop_index('ix_webhook_event_status', table_name='webhook_events')
    op.drop_table('webhook_events')
    op.drop_index('ix_payment_webhook_event', table_name='payments')
    op.drop_index('ix_payment_booking', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_booking_status', table_name='bookings')
    op.drop_table('bookings')
