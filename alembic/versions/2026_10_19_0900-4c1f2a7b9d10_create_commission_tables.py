"""create_commission_tables

Revision ID: 4c1f2a7b9d10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4c1f2a7b9d10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'commission_headers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_commission_headers_id', 'commission_headers', ['id'])
    op.create_index('ix_commission_headers_name', 'commission_headers', ['name'])

    op.create_table(
        'commission_details',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('header_id', sa.Integer(), sa.ForeignKey('commission_headers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('course_id', sa.String(64), nullable=True),
        sa.Column('category_id', sa.String(64), nullable=True),
        sa.Column('scope_key', sa.String(80), nullable=False),
        sa.Column('platform_rate', sa.Integer(), nullable=False),
        sa.Column('instructor_rate', sa.Integer(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('header_id', 'scope_key', 'priority', name='uq_commission_detail_scope_priority'),
        sa.CheckConstraint('course_id IS NULL OR category_id IS NULL', name='ck_commission_detail_single_scope'),
        sa.CheckConstraint('platform_rate BETWEEN 1 AND 99', name='ck_commission_detail_platform_rate'),
        sa.CheckConstraint('platform_rate + instructor_rate = 100', name='ck_commission_detail_rate_sum'),
    )
    op.create_index('ix_commission_details_id', 'commission_details', ['id'])
    op.create_index('ix_commission_details_header_id', 'commission_details', ['header_id'])
    op.create_index('ix_commission_details_course_id', 'commission_details', ['course_id'])
    op.create_index('ix_commission_details_category_id', 'commission_details', ['category_id'])

    op.create_table(
        'commission_usages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('detail_id', sa.Integer(), sa.ForeignKey('commission_details.id'), nullable=False),
        sa.Column('header_id', sa.Integer(), sa.ForeignKey('commission_headers.id'), nullable=False),
        sa.Column('transaction_ref', sa.String(128), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_commission_usages_id', 'commission_usages', ['id'])
    op.create_index('ix_commission_usages_detail_id', 'commission_usages', ['detail_id'])
    op.create_index('ix_commission_usages_header_id', 'commission_usages', ['header_id'])
    op.create_index('ix_commission_usages_transaction_ref', 'commission_usages', ['transaction_ref'], unique=True)

    op.create_table(
        'commission_header_revisions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('header_id', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_commission_header_revisions_id', 'commission_header_revisions', ['id'])
    op.create_index('ix_commission_header_revisions_lookup', 'commission_header_revisions', ['header_id', 'recorded_at'])

    op.create_table(
        'commission_detail_revisions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('detail_id', sa.Integer(), nullable=False),
        sa.Column('header_id', sa.Integer(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('course_id', sa.String(64), nullable=True),
        sa.Column('category_id', sa.String(64), nullable=True),
        sa.Column('platform_rate', sa.Integer(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('deleted', sa.Boolean(), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_commission_detail_revisions_id', 'commission_detail_revisions', ['id'])
    op.create_index('ix_commission_detail_revisions_lookup', 'commission_detail_revisions', ['detail_id', 'recorded_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('commission_detail_revisions')
    op.drop_table('commission_header_revisions')
    op.drop_table('commission_usages')
    op.drop_table('commission_details')
    op.drop_table('commission_headers')
