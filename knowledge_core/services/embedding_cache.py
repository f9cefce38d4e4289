"""Per-agent memo of query embeddings.

Expiry is absolute from the last write: ``put`` sets a fresh ``expires_at``,
``get`` only touches ``last_used_at`` and ``hit_count``.
"""

import logging
import math
from collections.abc import Sequence
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import dialect_insert, utcnow
from ..errors import ValidationError
from ..models.cache import EmbeddingCacheEntry
from ..observability.metrics import CACHE_LOOKUPS

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.embedding_cache")

CACHE_NAME = "embedding"


async def get_cached_embedding(
    db: AsyncSession,
    agent_id: UUID,
    query_key: str,
    now: datetime | None = None,
) -> list[float] | None:
    """Look up a cached query embedding.

    Args:
        db: Database session.
        agent_id: Agent the query was made against.
        query_key: Normalized/hashed query (see ``hash_query``).
        now: Clock override.

    Returns:
        The embedding, or None on a miss (absent or expired).
    """
    now = now or utcnow()
    with tracer.start_as_current_span("embedding_cache.get") as span:
        span.set_attribute("agent_id", str(agent_id))

        result = await db.execute(
            select(EmbeddingCacheEntry.embedding).where(
                EmbeddingCacheEntry.agent_id == agent_id,
                EmbeddingCacheEntry.query_key == query_key,
                EmbeddingCacheEntry.expires_at > now,
            )
        )
        embedding = result.scalar_one_or_none()

        if embedding is None:
            span.set_attribute("hit", False)
            CACHE_LOOKUPS.labels(CACHE_NAME, "miss").inc()
            logger.debug(
                "embedding_cache.miss",
                extra={"agent_id": str(agent_id), "query_key": query_key},
            )
            return None

        # Diagnostics only; expires_at is left alone
        await db.execute(
            update(EmbeddingCacheEntry)
            .where(
                EmbeddingCacheEntry.agent_id == agent_id,
                EmbeddingCacheEntry.query_key == query_key,
            )
            .values(
                last_used_at=now,
                hit_count=EmbeddingCacheEntry.hit_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        span.set_attribute("hit", True)
        CACHE_LOOKUPS.labels(CACHE_NAME, "hit").inc()
        logger.debug(
            "embedding_cache.hit",
            extra={"agent_id": str(agent_id), "query_key": query_key},
        )

        return [float(value) for value in embedding]


async def put_cached_embedding(
    db: AsyncSession,
    agent_id: UUID,
    query_key: str,
    embedding: Sequence[float],
    query_normalized: str | None = None,
    now: datetime | None = None,
) -> None:
    """Store a query embedding as a single atomic upsert.

    On an existing ``(agent_id, query_key)`` the embedding, ``last_used_at``
    and ``expires_at`` are overwritten; ``hit_count`` is kept.

    Raises:
        ValidationError: Empty key or empty/non-finite embedding.
    """
    if not query_key:
        raise ValidationError("query_key must not be empty")
    values = [float(v) for v in embedding]
    if not values:
        raise ValidationError("embedding must not be empty")
    if not all(math.isfinite(v) for v in values):
        raise ValidationError("embedding contains non-finite values")

    settings = get_settings()
    now = now or utcnow()
    expires_at = now + timedelta(seconds=settings.embedding_cache_ttl_seconds)

    with tracer.start_as_current_span("embedding_cache.put") as span:
        span.set_attribute("agent_id", str(agent_id))
        span.set_attribute("embedding_dim", len(values))

        stmt = dialect_insert(db, EmbeddingCacheEntry).values(
            id=uuid4(),
            agent_id=agent_id,
            query_key=query_key,
            query_normalized=query_normalized,
            embedding=values,
            embedding_dim=len(values),
            hit_count=0,
            created_at=now,
            last_used_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["agent_id", "query_key"],
            set_={
                "embedding": stmt.excluded.embedding,
                "embedding_dim": stmt.excluded.embedding_dim,
                "query_normalized": stmt.excluded.query_normalized,
                "last_used_at": stmt.excluded.last_used_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        await db.execute(stmt)
        await db.commit()

        logger.debug(
            "embedding_cache.stored",
            extra={
                "agent_id": str(agent_id),
                "query_key": query_key,
                "expires_at": expires_at.isoformat(),
            },
        )
