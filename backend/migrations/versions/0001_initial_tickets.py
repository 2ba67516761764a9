"""receipts, service complaints and visits

Revision ID: 0001_initial_tickets
Revises: 
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_tickets'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table('receipts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('receipt_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('customer_name', sa.String(length=120), nullable=False),
        sa.Column('mobile', sa.String(length=32), nullable=False),
        sa.Column('is_company_item', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('company_name', sa.String(length=120), nullable=True),
        sa.Column('company_mobile', sa.String(length=32), nullable=True),
        sa.Column('product', sa.String(length=120), nullable=False),
        sa.Column('model', sa.String(length=120), nullable=True),
        sa.Column('problem_description', sa.Text(), nullable=True),
        sa.Column('estimated_amount', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=40), nullable=False, server_default='Pending'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='Pending'),
        sa.Column('delivery_note', sa.Text(), nullable=True),
        sa.Column('delivered_to', sa.String(length=120), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_receipts_receipt_number', 'receipts', ['receipt_number'])
    op.create_index('ix_receipts_status', 'receipts', ['status'])

    op.create_table('service_complaints',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('complaint_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('customer_name', sa.String(length=120), nullable=False),
        sa.Column('mobile', sa.String(length=32), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('product', sa.String(length=120), nullable=False),
        sa.Column('model', sa.String(length=120), nullable=True),
        sa.Column('issue_description', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=40), nullable=False, server_default='Pending'),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='Normal'),
        sa.Column('assigned_engineer_id', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_service_complaints_complaint_number', 'service_complaints', ['complaint_number'])
    op.create_index('ix_service_complaints_status', 'service_complaints', ['status'])
    op.create_index('ix_service_complaints_assigned_engineer_id', 'service_complaints', ['assigned_engineer_id'])

    op.create_table('service_visits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('complaint_id', sa.Integer(), sa.ForeignKey('service_complaints.id', ondelete='CASCADE'), nullable=False),
        sa.Column('engineer_id', sa.Integer(), nullable=False),
        sa.Column('check_in_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('check_out_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('work_description', sa.Text(), nullable=True),
        sa.Column('parts_issued', sa.Text(), nullable=True),
        sa.Column('visit_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_service_visits_complaint_id', 'service_visits', ['complaint_id'])


def downgrade():
    op.drop_index('ix_service_visits_complaint_id', table_name='service_visits')
    op.drop_table('service_visits')
    op.drop_index('ix_service_complaints_assigned_engineer_id', table_name='service_complaints')
    op.drop_index('ix_service_complaints_status', table_name='service_complaints')
    op.drop_index('ix_service_complaints_complaint_number', table_name='service_complaints')
    op.drop_table('service_complaints')
    op.drop_index('ix_receipts_status', table_name='receipts')
    op.drop_index('ix_receipts_receipt_number', table_name='receipts')
    op.drop_table('receipts')
