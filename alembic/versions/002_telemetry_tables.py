"""002 Telemetry tables

Revision ID: 002_telemetry_tables
Revises: 001_core_tables
Create Date: 2026-10-19

All optional at runtime: writers fall back to other tables when any of
these is missing. event_failures keeps the older layout (error, no
attempts/last_error).
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_telemetry_tables'
down_revision = '001_core_tables'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'automation_failures',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('booking_id', sa.String(36), nullable=True),
        sa.Column('event', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='failed'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
        sa.Column('updated_at', sa.String(40), nullable=True),
    )
    op.create_index('ix_automation_failure_status', 'automation_failures', ['status', 'updated_at'])

    op.create_table(
        'event_failures',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('booking_id', sa.String(36), nullable=True),
        sa.Column('event', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='failed'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
    )

    op.create_table(
        'system_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('level', sa.String(10), nullable=True),
        sa.Column('event', sa.String(100), nullable=True),
        sa.Column('booking_id', sa.String(36), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
    )
    op.create_index('ix_system_log_event', 'system_logs', ['event', 'created_at'])

    op.create_table(
        'system_heartbeats',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
    )
    op.create_index('ix_system_heartbeat_kind', 'system_heartbeats', ['kind', 'created_at'])

    op.create_table(
        'analytics_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('booking_id', sa.String(36), nullable=True),
        sa.Column('properties', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.String(40), nullable=True),
    )


def downgrade():
    op.drop_table('analytics_events')
    op.drop_index('ix_system_heartbeat_kind', table_name='system_heartbeats')
    op.drop_table('system_heartbeats')
    op.drop_index('ix_system_log_event', table_name='system_logs')
    op.drop_table('system_logs')
    op.drop_table('event_failures')
    op.drop_index('ix_automation_failure_status', table_name='automation_failures')
    op.drop_table('automation_failures')
