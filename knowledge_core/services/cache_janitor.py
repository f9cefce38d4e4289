"""Idempotent eviction of expired cache rows, invoked by an external scheduler."""

import logging
from datetime import datetime

from opentelemetry import trace
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import utcnow
from ..errors import TransientError
from ..models.cache import EmbeddingCacheEntry, ResponseCacheEntry
from ..observability.metrics import CACHE_EVICTIONS

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.cache_janitor")

_CACHES = (
    ("embedding", EmbeddingCacheEntry),
    ("response", ResponseCacheEntry),
)


async def cleanup_expired_caches(db: AsyncSession, now: datetime | None = None) -> None:
    """Delete every embedding and response cache row with ``expires_at < now``.

    Each cache is cleaned in its own transaction; a failure on one does not
    prevent the other. Once both have been attempted, any failure is raised
    as TransientError so the scheduler retries (the sweep is idempotent).
    """
    now = now or utcnow()
    failed: list[str] = []

    with tracer.start_as_current_span("cache_janitor.cleanup") as span:
        for name, model in _CACHES:
            try:
                result = await db.execute(
                    delete(model)
                    .where(model.expires_at < now)
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
            except SQLAlchemyError:
                await db.rollback()
                failed.append(name)
                logger.exception(
                    "cache_janitor.cleanup_failed",
                    extra={"cache": name},
                )
                continue

            deleted = getattr(result, "rowcount", 0) or 0
            span.set_attribute(f"{name}_deleted", deleted)
            CACHE_EVICTIONS.labels(name).inc(deleted)
            logger.info(
                "cache_janitor.evicted",
                extra={"cache": name, "deleted_count": deleted},
            )

        if failed:
            raise TransientError(f"cache cleanup failed for: {', '.join(failed)}")
