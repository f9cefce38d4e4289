"""Per-agent memo tables for query embeddings and generated responses."""

from datetime import datetime
from uuid import UUID, uuid4

from pgvector.sqlalchemy import Vector  # type: ignore[import-untyped]
from sqlalchemy import DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from ..database import Base


class EmbeddingCacheEntry(Base):
    """Cached query embedding, unique per (agent_id, query_key)."""

    __tablename__ = "query_embedding_cache"
    __table_args__ = (
        UniqueConstraint(
            "agent_id", "query_key", name="uq_query_embedding_cache_agent_key"
        ),
    )

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    agent_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
    )

    # SHA-256 hex of the normalized query
    query_key: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )

    query_normalized: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Untyped vector: knowledge and help-article embeddings differ in size
    embedding: Mapped[list[float]] = mapped_column(
        Vector(),
        nullable=False,
    )

    embedding_dim: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    hit_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.current_timestamp(),
        nullable=False,
    )

    last_used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<EmbeddingCacheEntry(agent_id={self.agent_id}, query_key={self.query_key})>"


class ResponseCacheEntry(Base):
    """Cached generated answer, unique per (agent_id, fingerprint)."""

    __tablename__ = "response_cache"
    __table_args__ = (
        UniqueConstraint(
            "agent_id", "fingerprint", name="uq_response_cache_agent_fingerprint"
        ),
    )

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )

    agent_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        nullable=False,
    )

    fingerprint: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
    )

    response: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    # Best retrieval similarity backing the answer
    similarity_score: Mapped[float | None] = mapped_column(
        Float,
        nullable=True,
    )

    hit_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.current_timestamp(),
        nullable=False,
    )

    last_used_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ResponseCacheEntry(agent_id={self.agent_id}, fingerprint={self.fingerprint})>"
