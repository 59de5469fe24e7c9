"""create job_queue table

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

from septo_worker.entities.base import utc_now


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'job_queue',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('target_url', sa.Text(), nullable=False),
        sa.Column('target_username', sa.String(length=255), nullable=True),
        sa.Column('platform', sa.String(length=50), nullable=True),
        sa.Column('search_type', sa.String(length=20), nullable=False, server_default='username'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='queued'),
        sa.Column('scraped_data', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('next_run_at', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=utc_now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=utc_now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_job_queue_status'), 'job_queue', ['status'])
    op.create_index('ix_job_queue_status_created_at', 'job_queue', ['status', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_job_queue_status_created_at', table_name='job_queue')
    op.drop_index(op.f('ix_job_queue_status'), table_name='job_queue')
    op.drop_table('job_queue')
