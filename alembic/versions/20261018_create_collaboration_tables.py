"""Create collaboration tables.

Revision ID: c0a1b2c3d4e5
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates spaces, content items, version snapshots, the operation log,
role grants and comments.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c0a1b2c3d4e5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the collaboration tables."""
    op.create_table(
        'CollaborativeSpaces',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('space_type', sa.String(length=50), nullable=False),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'CollaborativeContents',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('space_id', sa.Uuid(), nullable=False),
        sa.Column('content_type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('current_version', sa.Integer(), nullable=False),
        sa.Column('last_sequence', sa.Integer(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('archived_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['space_id'], ['CollaborativeSpaces.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_CollaborativeContents_space_id',
        'CollaborativeContents',
        ['space_id'],
        unique=False,
    )

    op.create_table(
        'ContentVersions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('content_id', sa.Uuid(), nullable=False),
        sa.Column('version_number', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('diff', sa.Text(), nullable=True),
        sa.Column('content_data', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['content_id'], ['CollaborativeContents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('content_id', 'version_number', name='uq_content_versions_number'),
    )
    op.create_index('ix_ContentVersions_content_id', 'ContentVersions', ['content_id'], unique=False)

    op.create_table(
        'Operations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('content_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('position', sa.Integer(), nullable=True),
        sa.Column('length', sa.Integer(), nullable=True),
        sa.Column('text', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('applied_sequence', sa.Integer(), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['content_id'], ['CollaborativeContents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('content_id', 'applied_sequence', name='uq_operations_sequence'),
    )
    op.create_index('ix_Operations_content_id', 'Operations', ['content_id'], unique=False)

    op.create_table(
        'ContentPermissions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('content_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('granted_by', sa.Uuid(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['content_id'], ['CollaborativeContents.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('content_id', 'user_id', name='uq_content_permissions_user'),
    )
    op.create_index(
        'ix_ContentPermissions_content_id',
        'ContentPermissions',
        ['content_id'],
        unique=False,
    )

    op.create_table(
        'ContentComments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('content_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('position', sa.JSON(), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False),
        sa.Column('parent_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['content_id'], ['CollaborativeContents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_id'], ['ContentComments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_ContentComments_content_id', 'ContentComments', ['content_id'], unique=False)
    op.create_index('ix_ContentComments_parent_id', 'ContentComments', ['parent_id'], unique=False)


def downgrade() -> None:
    """Drop the collaboration tables."""
    op.drop_index('ix_ContentComments_parent_id', table_name='ContentComments')
    op.drop_index('ix_ContentComments_content_id', table_name='ContentComments')
    op.drop_table('ContentComments')
    op.drop_index('ix_ContentPermissions_content_id', table_name='ContentPermissions')
    op.drop_table('ContentPermissions')
    op.drop_index('ix_Operations_content_id', table_name='Operations')
    op.drop_table('Operations')
    op.drop_index('ix_ContentVersions_content_id', table_name='ContentVersions')
    op.drop_table('ContentVersions')
    op.drop_index('ix_CollaborativeContents_space_id', table_name='CollaborativeContents')
    op.drop_table('CollaborativeContents')
    op.drop_table('CollaborativeSpaces')
