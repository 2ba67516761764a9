"""otp challenges, status events and notification template configs

Revision ID: 0002_otp_events_templates
Revises: 0001_initial_tickets
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision = '0002_otp_events_templates'
down_revision = '0001_initial_tickets'
branch_labels = None
depends_on = None

def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)

    if not insp.has_table('otp_challenges'):
        op.create_table('otp_challenges',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('ticket_kind', sa.String(length=16), nullable=False),
            sa.Column('ticket_id', sa.Integer(), nullable=False),
            sa.Column('recipient_type', sa.String(length=16), nullable=False, server_default='primary'),
            sa.Column('recipient_name', sa.String(length=120), nullable=False),
            sa.Column('mobile', sa.String(length=32), nullable=False),
            sa.Column('code', sa.String(length=6), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('consumed', sa.Boolean(), nullable=False, server_default=sa.text('0')),
            sa.Column('verified', sa.Boolean(), nullable=False, server_default=sa.text('0')),
            sa.Column('consumed_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_otp_challenges_ticket_live', 'otp_challenges', ['ticket_kind', 'ticket_id', 'consumed'])

    if not insp.has_table('ticket_status_events'):
        op.create_table('ticket_status_events',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('ticket_kind', sa.String(length=16), nullable=False),
            sa.Column('ticket_id', sa.Integer(), nullable=False),
            sa.Column('from_status', sa.String(length=40), nullable=True),
            sa.Column('to_status', sa.String(length=40), nullable=False),
            sa.Column('source', sa.String(length=20), nullable=False, server_default='machine'),
            sa.Column('actor_user_id', sa.Integer(), nullable=True),
            sa.Column('note', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        )
        op.create_index('ix_ticket_status_events_ticket', 'ticket_status_events', ['ticket_kind', 'ticket_id'])
        op.create_index('ix_ticket_status_events_actor_user_id', 'ticket_status_events', ['actor_user_id'])

    if not insp.has_table('notification_template_configs'):
        op.create_table('notification_template_configs',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('version', sa.Integer(), nullable=False, unique=True),
            sa.Column('bindings', sa.JSON(), nullable=False),
            sa.Column('created_by', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        )
        op.create_index('ix_notification_template_configs_version', 'notification_template_configs', ['version'])


def downgrade():
    op.drop_index('ix_notification_template_configs_version', table_name='notification_template_configs')
    op.drop_table('notification_template_configs')
    op.drop_index('ix_ticket_status_events_actor_user_id', table_name='ticket_status_events')
    op.drop_index('ix_ticket_status_events_ticket', table_name='ticket_status_events')
    op.drop_table('ticket_status_events')
    op.drop_index('ix_otp_challenges_ticket_live', table_name='otp_challenges')
    op.drop_table('otp_challenges')
