"""Guarded lifecycle transitions and reads for sources and chunks.

Every transition is a single UPDATE guarded by ``status = 'processing'``.
Zero rows affected means another writer (ingestion or the watchdog) already
moved the record to a terminal state, and that state is final.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from opentelemetry import trace
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import utcnow
from ..errors import DimensionMismatchError, ValidationError
from ..models.knowledge import KnowledgeChunk, KnowledgeSource, KnowledgeStatus

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.knowledge_store")


class RecordKind(str, Enum):
    """Knowledge records that go through the ingestion lifecycle."""

    SOURCE = "source"
    CHUNK = "chunk"


_MODELS: dict[RecordKind, type[KnowledgeSource] | type[KnowledgeChunk]] = {
    RecordKind.SOURCE: KnowledgeSource,
    RecordKind.CHUNK: KnowledgeChunk,
}


def coerce_kind(kind: RecordKind | str) -> RecordKind:
    try:
        return RecordKind(kind)
    except ValueError as exc:
        raise ValidationError(f"Unknown record kind: {kind!r}") from exc


def model_for(kind: RecordKind | str) -> type[KnowledgeSource] | type[KnowledgeChunk]:
    return _MODELS[coerce_kind(kind)]


async def _guarded_update(
    db: AsyncSession,
    kind: RecordKind | str,
    record_id: UUID,
    values: dict[str, Any],
) -> bool:
    model = model_for(kind)
    result = await db.execute(
        update(model)
        .where(
            model.id == record_id,
            model.status == KnowledgeStatus.PROCESSING.value,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return (getattr(result, "rowcount", 0) or 0) == 1


async def mark_processing(
    db: AsyncSession,
    kind: RecordKind | str,
    record_id: UUID,
    now: datetime | None = None,
) -> bool:
    """Heartbeat for a record still being ingested.

    Refreshes ``updated_at`` (the watchdog's clock) only while the record is
    processing; ready and error records are never moved back.

    Returns:
        True if the record is still processing and was touched.
    """
    kind = coerce_kind(kind)
    touched = await _guarded_update(
        db, kind, record_id, {"updated_at": now or utcnow()}
    )
    logger.debug(
        "knowledge.mark_processing",
        extra={"kind": kind.value, "record_id": str(record_id), "applied": touched},
    )
    return touched


async def mark_ready(
    db: AsyncSession,
    kind: RecordKind | str,
    record_id: UUID,
    embedding: Sequence[float],
    embedding_model: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Move a processing record to ready with its embedding.

    Raises:
        DimensionMismatchError: Embedding is not sized for the knowledge tiers.

    Returns:
        True if this call won the transition.
    """
    kind = coerce_kind(kind)
    settings = get_settings()
    expected = settings.knowledge_embedding_dim
    if len(embedding) != expected:
        raise DimensionMismatchError(kind.value, expected, len(embedding))

    with tracer.start_as_current_span("knowledge.mark_ready") as span:
        span.set_attribute("kind", kind.value)
        span.set_attribute("record_id", str(record_id))

        won = await _guarded_update(
            db,
            kind,
            record_id,
            {
                "status": KnowledgeStatus.READY.value,
                "embedding": [float(v) for v in embedding],
                "embedding_dim": len(embedding),
                "embedding_model": embedding_model
                or settings.knowledge_embedding_model,
                "updated_at": now or utcnow(),
            },
        )
        span.set_attribute("applied", won)

        logger.info(
            "knowledge.mark_ready",
            extra={"kind": kind.value, "record_id": str(record_id), "applied": won},
        )
        return won


async def mark_error(
    db: AsyncSession,
    kind: RecordKind | str,
    record_id: UUID,
    message: str,
    now: datetime | None = None,
) -> bool:
    """Move a processing record to error, keeping existing metadata.

    ``error`` and ``failed_at`` are merged into the record's metadata.

    Returns:
        True if this call won the transition.
    """
    kind = coerce_kind(kind)
    model = model_for(kind)
    now = now or utcnow()

    with tracer.start_as_current_span("knowledge.mark_error") as span:
        span.set_attribute("kind", kind.value)
        span.set_attribute("record_id", str(record_id))

        result = await db.execute(
            select(model.metadata_).where(
                model.id == record_id,
                model.status == KnowledgeStatus.PROCESSING.value,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            # Missing, or already terminal
            span.set_attribute("applied", False)
            return False

        metadata = {**existing, "error": message, "failed_at": now.isoformat()}
        won = await _guarded_update(
            db,
            kind,
            record_id,
            {
                "status": KnowledgeStatus.ERROR.value,
                "metadata_": metadata,
                "updated_at": now,
            },
        )
        span.set_attribute("applied", won)

        logger.info(
            "knowledge.mark_error",
            extra={
                "kind": kind.value,
                "record_id": str(record_id),
                "applied": won,
                "error": message,
            },
        )
        return won


async def get_source(
    db: AsyncSession, agent_id: UUID, source_id: UUID
) -> KnowledgeSource | None:
    """Fetch one of an agent's sources."""
    result = await db.execute(
        select(KnowledgeSource).where(
            KnowledgeSource.id == source_id,
            KnowledgeSource.agent_id == agent_id,
        )
    )
    return result.scalar_one_or_none()


async def list_child_sources(
    db: AsyncSession, agent_id: UUID, parent_source_id: UUID
) -> list[KnowledgeSource]:
    """Sources whose metadata names ``parent_source_id`` (e.g. sitemap pages)."""
    result = await db.execute(
        select(KnowledgeSource)
        .where(
            KnowledgeSource.agent_id == agent_id,
            KnowledgeSource.metadata_["parent_source_id"].as_string()
            == str(parent_source_id),
        )
        .order_by(KnowledgeSource.created_at, KnowledgeSource.id)
    )
    return list(result.scalars().all())


async def delete_source(db: AsyncSession, agent_id: UUID, source_id: UUID) -> bool:
    """Delete a source; its chunks go with it.

    Returns:
        True if the source existed.
    """
    source = await get_source(db, agent_id, source_id)
    if source is None:
        return False

    await db.delete(source)
    await db.commit()

    logger.info(
        "knowledge.source_deleted",
        extra={"agent_id": str(agent_id), "source_id": str(source_id)},
    )
    return True
