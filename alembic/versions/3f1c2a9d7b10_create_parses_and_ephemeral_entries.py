"""Create parses and ephemeral_entries tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'parses',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='PENDING'),
        sa.Column('page_count', sa.Integer(), nullable=True),
        sa.Column('critical_pages', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('raw_document_key', sa.String(), nullable=True),
        sa.Column('classification_cache_key', sa.String(), nullable=True),
        sa.Column('render_key', sa.String(), nullable=True),
        sa.Column('preview_key', sa.String(), nullable=True),
        sa.Column('raw_extractions', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('canonical_extraction', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('confidence_summary', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('overall_confidence', sa.Float(), nullable=True),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('validation_warnings', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('active_run_id', sa.String(), nullable=True),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('finalized_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('archived_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_parses_owner_id', 'parses', ['owner_id'])
    op.create_index('ix_parses_status', 'parses', ['status'])

    op.create_table(
        'ephemeral_entries',
        sa.Column('key', sa.String(), nullable=False),
        sa.Column('value', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )
    op.create_index('ix_ephemeral_entries_expires_at', 'ephemeral_entries', ['expires_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_ephemeral_entries_expires_at', table_name='ephemeral_entries')
    op.drop_table('ephemeral_entries')
    op.drop_index('ix_parses_status', table_name='parses')
    op.drop_index('ix_parses_owner_id', table_name='parses')
    op.drop_table('parses')
