"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the template, query, project, sync history and lock tables."""

    # Response templates
    op.create_table(
        'response_templates',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('template_source', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    # Sync queries
    op.create_table(
        'sync_queries',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('query_expression', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('template_id', sa.Uuid(), nullable=False),
        sa.Column('priority', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('priority >= 0', name='check_query_priority_non_negative'),
        sa.ForeignKeyConstraint(['template_id'], ['response_templates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )
    op.create_index('ix_sync_queries_template_id', 'sync_queries', ['template_id'])
    op.create_index('ix_sync_queries_is_active', 'sync_queries', ['is_active'])
    op.create_index(
        'idx_sync_queries_active_priority',
        'sync_queries',
        ['is_active', 'priority', 'created_at']
    )

    # Projects
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.String(length=1000), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='PLANNING', nullable=False),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('issue_key', sa.String(length=50), nullable=False),
        sa.Column('custom_fields', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('updated_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            "status IN ('PLANNING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')",
            name='check_valid_project_status'
        ),
        sa.CheckConstraint(
            'end_date IS NULL OR start_date IS NULL OR end_date >= start_date',
            name='check_project_date_order'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_projects_issue_key', 'projects', ['issue_key'], unique=True)
    op.create_index('ix_projects_status', 'projects', ['status'])

    # Sync runs
    op.create_table(
        'sync_runs',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('trigger_type', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('triggered_by', sa.String(length=100), nullable=True),
        sa.Column('started_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('processed_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('success_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('error_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('error_summary', sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('in_progress', 'completed', 'failed')",
            name='check_valid_sync_status'
        ),
        sa.CheckConstraint(
            "trigger_type IN ('manual', 'scheduled')",
            name='check_valid_sync_trigger'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_runs_status', 'sync_runs', ['status'])
    op.create_index('ix_sync_runs_started_at', 'sync_runs', ['started_at'])

    # Sync run details
    op.create_table(
        'sync_run_details',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('sync_run_id', sa.Uuid(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint("status IN ('success', 'error')", name='check_valid_detail_status'),
        sa.ForeignKeyConstraint(['sync_run_id'], ['sync_runs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sync_run_id', 'seq', name='uq_sync_run_detail_seq')
    )
    op.create_index('ix_sync_run_details_sync_run_id', 'sync_run_details', ['sync_run_id'])

    # Scheduler locks
    op.create_table(
        'scheduler_locks',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('lock_until', sa.DateTime(), nullable=False),
        sa.Column('locked_at', sa.DateTime(), nullable=False),
        sa.Column('locked_by', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table('scheduler_locks')
    op.drop_index('ix_sync_run_details_sync_run_id', table_name='sync_run_details')
    op.drop_table('sync_run_details')
    op.drop_index('ix_sync_runs_started_at', table_name='sync_runs')
    op.drop_index('ix_sync_runs_status', table_name='sync_runs')
    op.drop_table('sync_runs')
    op.drop_index('ix_projects_status', table_name='projects')
    op.drop_index('ix_projects_issue_key', table_name='projects')
    op.drop_table('projects')
    op.drop_index('idx_sync_queries_active_priority', table_name='sync_queries')
    op.drop_index('ix_sync_queries_is_active', table_name='sync_queries')
    op.drop_index('ix_sync_queries_template_id', table_name='sync_queries')
    op.drop_table('sync_queries')
    op.drop_table('response_templates')
