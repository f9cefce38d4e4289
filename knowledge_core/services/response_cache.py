"""Per-agent memo of generated answers keyed by query fingerprint."""

import logging
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import as_utc, dialect_insert, utcnow
from ..errors import ValidationError
from ..models.cache import ResponseCacheEntry
from ..observability.metrics import CACHE_LOOKUPS
from ..schemas.cache import CachedResponse

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.response_cache")

CACHE_NAME = "response"


async def get_cached_response(
    db: AsyncSession,
    agent_id: UUID,
    fingerprint: str,
    min_similarity: float | None = None,
    now: datetime | None = None,
) -> CachedResponse | None:
    """Look up a cached answer. Expired rows are misses even before cleanup.

    Rows scored at or below ``min_similarity`` are left untouched and
    counted as ``below_threshold`` rather than served.
    """
    now = now or utcnow()
    with tracer.start_as_current_span("response_cache.get") as span:
        span.set_attribute("agent_id", str(agent_id))

        result = await db.execute(
            select(
                ResponseCacheEntry.response,
                ResponseCacheEntry.similarity_score,
                ResponseCacheEntry.hit_count,
                ResponseCacheEntry.expires_at,
            ).where(
                ResponseCacheEntry.agent_id == agent_id,
                ResponseCacheEntry.fingerprint == fingerprint,
                ResponseCacheEntry.expires_at > now,
            )
        )
        row = result.one_or_none()

        if row is None:
            span.set_attribute("hit", False)
            CACHE_LOOKUPS.labels(CACHE_NAME, "miss").inc()
            return None

        if (
            min_similarity is not None
            and row.similarity_score is not None
            and row.similarity_score <= min_similarity
        ):
            span.set_attribute("hit", False)
            CACHE_LOOKUPS.labels(CACHE_NAME, "below_threshold").inc()
            return None

        await db.execute(
            update(ResponseCacheEntry)
            .where(
                ResponseCacheEntry.agent_id == agent_id,
                ResponseCacheEntry.fingerprint == fingerprint,
            )
            .values(
                last_used_at=now,
                hit_count=ResponseCacheEntry.hit_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()

        span.set_attribute("hit", True)
        CACHE_LOOKUPS.labels(CACHE_NAME, "hit").inc()
        logger.info(
            "response_cache.hit",
            extra={
                "agent_id": str(agent_id),
                "similarity_score": row.similarity_score,
            },
        )

        return CachedResponse(
            response=row.response,
            similarity_score=row.similarity_score,
            hit_count=row.hit_count + 1,
            expires_at=as_utc(row.expires_at),
        )


async def put_cached_response(
    db: AsyncSession,
    agent_id: UUID,
    fingerprint: str,
    response: str,
    similarity_score: float | None = None,
    now: datetime | None = None,
) -> bool:
    """Upsert a generated answer with a fresh absolute TTL.

    Answers backed by weak retrieval (``similarity_score`` below
    RESPONSE_CACHE_MIN_SIMILARITY) are not stored.

    Returns:
        True if the row was written.
    """
    if not fingerprint:
        raise ValidationError("fingerprint must not be empty")

    settings = get_settings()
    if (
        similarity_score is not None
        and similarity_score < settings.response_cache_min_similarity
    ):
        logger.debug(
            "response_cache.skipped_low_similarity",
            extra={"agent_id": str(agent_id), "similarity_score": similarity_score},
        )
        return False

    now = now or utcnow()
    expires_at = now + timedelta(seconds=settings.response_cache_ttl_seconds)

    with tracer.start_as_current_span("response_cache.put") as span:
        span.set_attribute("agent_id", str(agent_id))

        stmt = dialect_insert(db, ResponseCacheEntry).values(
            id=uuid4(),
            agent_id=agent_id,
            fingerprint=fingerprint,
            response=response,
            similarity_score=similarity_score,
            hit_count=0,
            created_at=now,
            last_used_at=now,
            expires_at=expires_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["agent_id", "fingerprint"],
            set_={
                "response": stmt.excluded.response,
                "similarity_score": stmt.excluded.similarity_score,
                "last_used_at": stmt.excluded.last_used_at,
                "expires_at": stmt.excluded.expires_at,
            },
        )
        await db.execute(stmt)
        await db.commit()

        logger.info(
            "response_cache.stored",
            extra={
                "agent_id": str(agent_id),
                "similarity_score": similarity_score,
                "expires_at": expires_at.isoformat(),
            },
        )

        return True
