"""add_knowledge_tables

Revision ID: 7c4e2a91b5f3
Revises: 3b1f0c6a9d21
Create Date: 2026-10-12 09:31:47.502611

"""

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

from knowledge_core.config import get_settings

# revision identifiers, used by Alembic.
revision = "7c4e2a91b5f3"
down_revision = "3b1f0c6a9d21"
branch_labels = None
depends_on = None

settings = get_settings()

# Qwen3 truncated to 1024 for sources/chunks; help articles use their own model
KNOWLEDGE_EMBEDDING_DIM = settings.knowledge_embedding_dim
HELP_ARTICLE_EMBEDDING_DIM = settings.help_article_embedding_dim
IVFFLAT_LISTS = settings.ivfflat_lists


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def _ivfflat_index(table: str) -> None:
    op.execute(
        f"""
        CREATE INDEX {table}_embedding_idx
        ON {table}
        USING ivfflat (embedding vector_cosine_ops)
        WITH (lists = {IVFFLAT_LISTS})
        """
    )


def upgrade() -> None:
    op.create_table(
        "knowledge_sources",
        sa.Column(
            "id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("origin", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'processing'"),
        ),
        sa.Column("embedding", Vector(KNOWLEDGE_EMBEDDING_DIM), nullable=True),
        sa.Column("embedding_dim", sa.Integer(), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True),
        sa.Column(
            "metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('processing', 'ready', 'error')",
            name="ck_knowledge_sources_status",
        ),
    )
    op.create_index("ix_knowledge_sources_agent_id", "knowledge_sources", ["agent_id"])
    op.create_index("ix_knowledge_sources_status", "knowledge_sources", ["status"])
    op.create_index(
        "ix_knowledge_sources_agent_status", "knowledge_sources", ["agent_id", "status"]
    )
    _ivfflat_index("knowledge_sources")

    op.create_table(
        "knowledge_chunks",
        sa.Column(
            "id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("source_id", sa.UUID(), nullable=False),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'processing'"),
        ),
        sa.Column("embedding", Vector(KNOWLEDGE_EMBEDDING_DIM), nullable=True),
        sa.Column("embedding_dim", sa.Integer(), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True),
        sa.Column(
            "token_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "metadata", sa.JSON(), nullable=False, server_default=sa.text("'{}'")
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["source_id"],
            ["knowledge_sources.id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "source_id",
            "chunk_index",
            name="uq_knowledge_chunks_source_id_chunk_index",
        ),
        sa.CheckConstraint(
            "status IN ('processing', 'ready', 'error')",
            name="ck_knowledge_chunks_status",
        ),
    )
    op.create_index("ix_knowledge_chunks_source_id", "knowledge_chunks", ["source_id"])
    op.create_index("ix_knowledge_chunks_agent_id", "knowledge_chunks", ["agent_id"])
    op.create_index("ix_knowledge_chunks_status", "knowledge_chunks", ["status"])
    _ivfflat_index("knowledge_chunks")

    op.create_table(
        "help_categories",
        sa.Column(
            "id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_help_categories_agent_id", "help_categories", ["agent_id"])

    op.create_table(
        "help_articles",
        sa.Column(
            "id", sa.UUID(), nullable=False, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("agent_id", sa.UUID(), nullable=False),
        sa.Column("category_id", sa.UUID(), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(HELP_ARTICLE_EMBEDDING_DIM), nullable=True),
        sa.Column("embedding_model", sa.String(100), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["category_id"],
            ["help_categories.id"],
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_help_articles_agent_id", "help_articles", ["agent_id"])
    op.create_index("ix_help_articles_category_id", "help_articles", ["category_id"])
    _ivfflat_index("help_articles")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS help_articles_embedding_idx")
    op.drop_index("ix_help_articles_category_id", table_name="help_articles")
    op.drop_index("ix_help_articles_agent_id", table_name="help_articles")
    op.drop_table("help_articles")

    op.drop_index("ix_help_categories_agent_id", table_name="help_categories")
    op.drop_table("help_categories")

    op.execute("DROP INDEX IF EXISTS knowledge_chunks_embedding_idx")
    op.drop_index("ix_knowledge_chunks_status", table_name="knowledge_chunks")
    op.drop_index("ix_knowledge_chunks_agent_id", table_name="knowledge_chunks")
    op.drop_index("ix_knowledge_chunks_source_id", table_name="knowledge_chunks")
    op.drop_table("knowledge_chunks")

    op.execute("DROP INDEX IF EXISTS knowledge_sources_embedding_idx")
    op.drop_index("ix_knowledge_sources_agent_status", table_name="knowledge_sources")
    op.drop_index("ix_knowledge_sources_status", table_name="knowledge_sources")
    op.drop_index("ix_knowledge_sources_agent_id", table_name="knowledge_sources")
    op.drop_table("knowledge_sources")
