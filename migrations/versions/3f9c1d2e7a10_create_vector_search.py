"""create vector_search

Revision ID: 3f9c1d2e7a10
Revises: 
Create Date: 2026-10-17 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = '3f9c1d2e7a10'
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = 1536


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        'vector_search',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('driver_id', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('record_id', sa.String(), nullable=False),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=True),
        sa.Column('checksum', sa.String(), nullable=False),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSIONS), nullable=True),
        sa.Column('result_title', sa.String(), nullable=False),
        sa.Column('result_subtitle', sa.String(), nullable=True),
        sa.Column('result_icon', sa.String(), nullable=True),
        sa.Column('result_badge', sa.String(), nullable=True),
        sa.Column('result_snapshot', sa.String(), nullable=True),
        sa.Column('primary_link_href', sa.String(), nullable=True),
        sa.Column('primary_link_label', sa.String(), nullable=True),
        sa.Column('url', sa.String(), nullable=True),
        sa.Column('links', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'driver_id', 'entity_id', 'record_id', 'tenant_id',
            name='vector_search_driver_entity_record_tenant_uq',
        ),
    )
    op.create_index('ix_vector_search_driver_id', 'vector_search', ['driver_id'], unique=False)
    op.create_index('ix_vector_search_entity_id', 'vector_search', ['entity_id'], unique=False)
    op.create_index('ix_vector_search_tenant_id', 'vector_search', ['tenant_id'], unique=False)
    op.create_index('ix_vector_search_organization_id', 'vector_search', ['organization_id'], unique=False)
    op.create_index('ix_vector_search_updated_at', 'vector_search', ['updated_at'], unique=False)
    op.create_index('idx_vector_search_tenant_entity', 'vector_search', ['tenant_id', 'entity_id'], unique=False)

    op.create_index('vector_search_embedding_hnsw_idx', 'vector_search', ['embedding'], unique=False, postgresql_using='hnsw', postgresql_with={'m': 16, 'ef_construction': 64}, postgresql_ops={'embedding': 'vector_cosine_ops'})


def downgrade() -> None:
    op.drop_index('vector_search_embedding_hnsw_idx', table_name='vector_search', postgresql_using='hnsw')
    op.drop_index('idx_vector_search_tenant_entity', table_name='vector_search')
    op.drop_index('ix_vector_search_updated_at', table_name='vector_search')
    op.drop_index('ix_vector_search_organization_id', table_name='vector_search')
    op.drop_index('ix_vector_search_tenant_id', table_name='vector_search')
    op.drop_index('ix_vector_search_entity_id', table_name='vector_search')
    op.drop_index('ix_vector_search_driver_id', table_name='vector_search')
    op.drop_table('vector_search')
