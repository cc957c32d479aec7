"""Videos table with transcode pipeline state.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'videos',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('video_url', sa.String(2048), nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=True),
        sa.Column('storage_bucket', sa.String(20), nullable=False, server_default='media'),
        sa.Column('thumbnail_url', sa.String(2048), nullable=True),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ready'),
        sa.Column('transcode_progress', sa.Integer(), nullable=True),
        sa.Column('last_transcode_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            'transcode_progress IS NULL OR (transcode_progress >= 0 AND transcode_progress <= 100)',
            name='ck_videos_transcode_progress_range',
        ),
    )
    op.create_index('ix_videos_status_updated_at', 'videos', ['status', 'updated_at'])


def downgrade() -> None:
    op.drop_index('ix_videos_status_updated_at', table_name='videos')
    op.drop_table('videos')
