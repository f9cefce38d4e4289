"""add_query_caches

Revision ID: d95a0e37c4b8
Revises: 7c4e2a91b5f3
Create Date: 2026-10-12 10:02:19.774015

"""

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = "d95a0e37c4b8"
down_revision = "7c4e2a91b5f3"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "query_embedding_cache",
        sa.Column(
            "id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("query_key", sa.String(128), nullable=False),
        sa.Column("query_normalized", sa.Text(), nullable=True),
        # Untyped: knowledge and help-article embeddings differ in size
        sa.Column("embedding", Vector(), nullable=False),
        sa.Column("embedding_dim", sa.Integer(), nullable=False),
        sa.Column(
            "hit_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "agent_id", "query_key", name="uq_query_embedding_cache_agent_key"
        ),
    )
    op.create_index(
        "ix_query_embedding_cache_expires_at", "query_embedding_cache", ["expires_at"]
    )

    op.create_table(
        "response_cache",
        sa.Column(
            "id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("fingerprint", sa.String(128), nullable=False),
        sa.Column("response", sa.Text(), nullable=False),
        sa.Column("similarity_score", sa.Float(), nullable=True),
        sa.Column(
            "hit_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "agent_id", "fingerprint", name="uq_response_cache_agent_fingerprint"
        ),
    )
    op.create_index("ix_response_cache_expires_at", "response_cache", ["expires_at"])


def downgrade() -> None:
    op.drop_index("ix_response_cache_expires_at", table_name="response_cache")
    op.drop_table("response_cache")
    op.drop_index(
        "ix_query_embedding_cache_expires_at", table_name="query_embedding_cache"
    )
    op.drop_table("query_embedding_cache")
