"""create_library_catalog

Revision ID: 3f9a1c7d2b40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9a1c7d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create tags, resources and the resource_tags association."""
    op.create_table(
        'tags',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(1024), nullable=False),
        sa.Column('group', sa.String(50), nullable=True),
        sa.Column('parent_id', sa.String(36),
                  sa.ForeignKey('tags.id', ondelete='SET NULL'),
                  nullable=True),
        sa.Column('source', sa.String(20), nullable=False, server_default='USER'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_index('ix_tags_slug', 'tags', ['slug'], unique=True)
    op.create_index('ix_tags_group', 'tags', ['group'])
    op.create_index('ix_tags_parent_id', 'tags', ['parent_id'])
    op.create_index('ix_tags_source', 'tags', ['source'])
    op.create_index('ix_tags_name_parent', 'tags', ['name', 'parent_id'])
    op.create_index('ix_tags_group_parent', 'tags', ['group', 'parent_id'])

    op.create_table(
        'resources',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.String(1024), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),

        # Remote store identity
        sa.Column('external_file_id', sa.String(255), nullable=True),
        sa.Column('original_external_file_id', sa.String(255), nullable=True),

        # File metadata
        sa.Column('mime_type', sa.String(255), nullable=True),
        sa.Column('file_size', sa.BigInteger(), nullable=True),

        # Lifecycle
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('source', sa.String(20), nullable=False, server_default='USER'),
        sa.Column('uploader_id', sa.String(255), nullable=True),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('downloads', sa.Integer(), nullable=False, server_default='0'),

        # Timestamps
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    )

    op.create_index('ix_resources_title', 'resources', ['title'])
    op.create_index('ix_resources_external_file_id', 'resources', ['external_file_id'], unique=True)
    op.create_index('ix_resources_original_external_file_id', 'resources',
                    ['original_external_file_id'], unique=True)
    op.create_index('ix_resources_status', 'resources', ['status'])
    op.create_index('ix_resources_source', 'resources', ['source'])

    op.create_table(
        'resource_tags',
        sa.Column('resource_id', sa.String(36),
                  sa.ForeignKey('resources.id', ondelete='CASCADE'),
                  primary_key=True),
        sa.Column('tag_id', sa.String(36),
                  sa.ForeignKey('tags.id', ondelete='CASCADE'),
                  primary_key=True),
    )

    op.create_index('ix_resource_tags_tag_id', 'resource_tags', ['tag_id'])


def downgrade() -> None:
    """Drop the library catalog tables."""
    op.drop_index('ix_resource_tags_tag_id', table_name='resource_tags')
    op.drop_table('resource_tags')

    op.drop_index('ix_resources_source', table_name='resources')
    op.drop_index('ix_resources_status', table_name='resources')
    op.drop_index('ix_resources_original_external_file_id', table_name='resources')
    op.drop_index('ix_resources_external_file_id', table_name='resources')
    op.drop_index('ix_resources_title', table_name='resources')
    op.drop_table('resources')

    op.drop_index('ix_tags_group_parent', table_name='tags')
    op.drop_index('ix_tags_name_parent', table_name='tags')
    op.drop_index('ix_tags_source', table_name='tags')
    op.drop_index('ix_tags_parent_id', table_name='tags')
    op.drop_index('ix_tags_group', table_name='tags')
    op.drop_index('ix_tags_slug', table_name='tags')
    op.drop_table('tags')
