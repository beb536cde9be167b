"""create product_categories table

Revision ID: 001_create_product_categories
Revises:
Create Date: 2026-10-18

Self-referencing category tree with a materialized path:

- path:  /<root id>/.../<own id>/, nullable only for legacy rows awaiting
         scripts/backfill_category_paths.py
- depth: number of ancestors (root = 0)

Indexes Added:
1. path - descendant lookups use path LIKE '<prefix>%'
2. parent_id - children lookups and the parent FK
3. (parent_id, position) - ordered sibling reads
4. deleted_at - soft delete filter on every default read
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_create_product_categories'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'product_categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('slug', sa.String(length=150), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('meta_title', sa.String(length=100), nullable=True),
        sa.Column('meta_description', sa.String(length=255), nullable=True),
        sa.Column('status', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('depth', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('path', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('deleted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['parent_id'], ['product_categories.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_product_categories_id', 'product_categories', ['id'])
    op.create_index('ix_product_categories_slug', 'product_categories', ['slug'], unique=True)
    op.create_index('ix_product_categories_parent_id', 'product_categories', ['parent_id'])
    op.create_index('ix_product_categories_path', 'product_categories', ['path'])
    op.create_index('ix_product_categories_deleted_at', 'product_categories', ['deleted_at'])
    op.create_index(
        'ix_product_categories_parent_position',
        'product_categories',
        ['parent_id', 'position'],
    )


def downgrade():
    op.drop_index('ix_product_categories_parent_position', table_name='product_categories')
    op.drop_index('ix_product_categories_deleted_at', table_name='product_categories')
    op.drop_index('ix_product_categories_path', table_name='product_categories')
    op.drop_index('ix_product_categories_parent_id', table_name='product_categories')
    op.drop_index('ix_product_categories_slug', table_name='product_categories')
    op.drop_index('ix_product_categories_id', table_name='product_categories')
    op.drop_table('product_categories')
