"""Tenant-scoped similarity search over the three knowledge tiers.

PostgreSQL runs the query through pgvector's IVFFlat cosine index with an
explicit probe count. Other dialects (SQLite in tests) have no vector
operators, so candidates are filtered in SQL and ranked with an exact numpy
scan that applies the same threshold, ordering and tie-break rules.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from numbers import Real
from typing import Any
from uuid import UUID

import numpy as np
from opentelemetry import trace
from sqlalchemy import Select, func, select, text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import dialect_name
from ..errors import DimensionMismatchError, TransientError, ValidationError
from ..models.knowledge import (
    HelpArticle,
    HelpCategory,
    KnowledgeChunk,
    KnowledgeSource,
    KnowledgeStatus,
)
from ..observability.metrics import SEARCH_DURATION, SEARCH_FAILURES, SEARCH_RESULTS
from ..schemas.retrieval import (
    ChunkResult,
    HelpArticleResult,
    KnowledgeTier,
    SourceResult,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.search")

DEFAULT_THRESHOLDS: dict[KnowledgeTier, float] = {
    KnowledgeTier.CHUNK: 0.7,
    KnowledgeTier.SOURCE: 0.7,
    # Article embeddings are coarser
    KnowledgeTier.HELP_ARTICLE: 0.6,
}

DEFAULT_LIMITS: dict[KnowledgeTier, int] = {
    KnowledgeTier.CHUNK: 5,
    KnowledgeTier.SOURCE: 5,
    KnowledgeTier.HELP_ARTICLE: 3,
}

SearchResult = ChunkResult | SourceResult | HelpArticleResult


def tier_dimension(tier: KnowledgeTier) -> int:
    """Configured embedding dimension for a tier."""
    settings = get_settings()
    if tier is KnowledgeTier.HELP_ARTICLE:
        return settings.help_article_embedding_dim
    return settings.knowledge_embedding_dim


def _coerce_tier(tier: KnowledgeTier | str) -> KnowledgeTier:
    try:
        return KnowledgeTier(tier)
    except ValueError as exc:
        raise ValidationError(f"Unknown knowledge tier: {tier!r}") from exc


def validate_search_args(
    tier: KnowledgeTier,
    query_embedding: Sequence[float],
    threshold: float,
    limit: int,
    probes: int,
) -> np.ndarray:
    """Check search arguments and return the query as a float64 vector.

    Raises:
        ValidationError: threshold outside (0, 1], negative limit, probes < 1,
            non-finite or zero-length query vector.
        DimensionMismatchError: query length differs from the tier dimension.
    """
    if isinstance(threshold, bool) or not isinstance(threshold, Real):
        raise ValidationError(f"threshold must be a number, got {threshold!r}")
    if not (0.0 < float(threshold) <= 1.0):
        raise ValidationError(f"threshold must be in (0, 1], got {threshold}")

    if isinstance(limit, bool) or not isinstance(limit, int):
        raise ValidationError(f"limit must be an integer, got {limit!r}")
    if limit < 0:
        raise ValidationError(f"limit must not be negative, got {limit}")

    if isinstance(probes, bool) or not isinstance(probes, int) or probes < 1:
        raise ValidationError(f"probes must be a positive integer, got {probes!r}")

    expected = tier_dimension(tier)
    if len(query_embedding) != expected:
        raise DimensionMismatchError(tier.value, expected, len(query_embedding))

    vector = np.asarray(query_embedding, dtype=np.float64)
    if not np.all(np.isfinite(vector)):
        raise ValidationError("query embedding contains non-finite values")
    if not np.any(vector):
        raise ValidationError("query embedding has zero magnitude")
    return vector


def _candidates(tier: KnowledgeTier, agent_id: UUID) -> tuple[Select[Any], Any, Any]:
    """Base candidate query for a tier with tenant and readiness filters.

    Returns:
        (statement, embedding column, id column)
    """
    if tier is KnowledgeTier.CHUNK:
        stmt = (
            select(
                KnowledgeChunk.id,
                KnowledgeChunk.source_id,
                KnowledgeChunk.content,
                KnowledgeChunk.chunk_index,
                KnowledgeSource.origin.label("source_name"),
                KnowledgeSource.type.label("source_type"),
            )
            .join(KnowledgeSource, KnowledgeChunk.source_id == KnowledgeSource.id)
            .where(
                KnowledgeChunk.agent_id == agent_id,
                KnowledgeSource.agent_id == agent_id,
                KnowledgeChunk.status == KnowledgeStatus.READY.value,
                # A de-published source hides its chunks
                KnowledgeSource.status == KnowledgeStatus.READY.value,
                KnowledgeChunk.embedding.is_not(None),
            )
        )
        return stmt, KnowledgeChunk.embedding, KnowledgeChunk.id

    if tier is KnowledgeTier.SOURCE:
        stmt = select(
            KnowledgeSource.id,
            KnowledgeSource.content,
            KnowledgeSource.origin.label("source"),
            KnowledgeSource.type,
            KnowledgeSource.metadata_.label("metadata"),
        ).where(
            KnowledgeSource.agent_id == agent_id,
            KnowledgeSource.status == KnowledgeStatus.READY.value,
            KnowledgeSource.embedding.is_not(None),
        )
        return stmt, KnowledgeSource.embedding, KnowledgeSource.id

    stmt = (
        select(
            HelpArticle.id,
            HelpArticle.title,
            HelpArticle.content,
            HelpArticle.category_id,
            HelpCategory.name.label("category_name"),
        )
        .outerjoin(HelpCategory, HelpArticle.category_id == HelpCategory.id)
        .where(
            HelpArticle.agent_id == agent_id,
            HelpArticle.embedding.is_not(None),
        )
    )
    return stmt, HelpArticle.embedding, HelpArticle.id


async def _ann_search(
    db: AsyncSession,
    stmt: Select[Any],
    embedding_col: Any,
    id_col: Any,
    query: np.ndarray,
    threshold: float,
    limit: int,
    probes: int,
) -> list[tuple[Any, float]]:
    """Run the tier query through the IVFFlat cosine index."""
    # Transaction-local so pooled connections don't inherit the setting
    await db.execute(
        text("SELECT set_config('ivfflat.probes', :probes, true)"),
        {"probes": str(probes)},
    )

    distance = embedding_col.cosine_distance(query.tolist())
    clamped = func.least(1 - distance, 1.0)
    result = await db.execute(
        stmt.add_columns(clamped.label("similarity"))
        .where(clamped > threshold)
        .order_by(distance, id_col)
        .limit(limit)
    )
    return [(row, float(row.similarity)) for row in result.fetchall()]


def _cosine(
    candidate: np.ndarray, norm: float, query: np.ndarray, query_norm: float
) -> float:
    return float(np.dot(candidate, query) / (norm * query_norm))


async def _exact_search(
    db: AsyncSession,
    stmt: Select[Any],
    embedding_col: Any,
    query: np.ndarray,
    threshold: float,
    limit: int,
) -> list[tuple[Any, float]]:
    """Rank every candidate by exact cosine similarity."""
    result = await db.execute(stmt.add_columns(embedding_col.label("embedding")))
    rows = result.fetchall()
    if not rows:
        return []

    query_norm = float(np.linalg.norm(query))
    scored: list[tuple[Any, float]] = []
    for row in rows:
        candidate = np.asarray(row.embedding, dtype=np.float64)
        if candidate.shape != query.shape:
            continue
        norm = float(np.linalg.norm(candidate))
        if norm == 0.0:
            continue
        # Rounding can push identical vectors a hair past 1.0
        similarity = max(-1.0, min(1.0, _cosine(candidate, norm, query, query_norm)))
        if similarity > threshold:
            scored.append((row, similarity))

    scored.sort(key=lambda item: (-item[1], item[0].id))
    return scored[:limit]


def _to_result(tier: KnowledgeTier, row: Any, similarity: float) -> SearchResult:
    similarity = max(-1.0, min(1.0, similarity))

    if tier is KnowledgeTier.CHUNK:
        return ChunkResult(
            id=row.id,
            source_id=row.source_id,
            content=row.content,
            chunk_index=row.chunk_index,
            similarity=similarity,
            source_name=row.source_name,
            source_type=row.source_type,
            source_url=row.source_name if row.source_type == "url" else None,
        )

    if tier is KnowledgeTier.SOURCE:
        metadata = row.metadata or {}
        parent = metadata.get("parent_source_id")
        return SourceResult(
            id=row.id,
            content=row.content or "",
            similarity=similarity,
            source=row.source,
            type=row.type,
            source_url=row.source if row.type == "url" else None,
            parent_source_id=str(parent) if parent else None,
        )

    return HelpArticleResult(
        id=row.id,
        title=row.title,
        content=row.content,
        similarity=similarity,
        category_id=row.category_id,
        category_name=row.category_name,
    )


async def search(
    db: AsyncSession,
    tier: KnowledgeTier | str,
    agent_id: UUID,
    query_embedding: Sequence[float],
    threshold: float | None = None,
    limit: int | None = None,
    probes: int | None = None,
    timeout: float | None = None,
) -> list[SearchResult]:
    """Return an agent's rows in a tier most similar to the query embedding.

    Only rows owned by ``agent_id`` that are ready and embedded are considered.
    Rows with similarity at or below ``threshold`` are discarded and the top
    ``limit`` survivors are returned by descending similarity, ties broken by
    row id.

    Args:
        db: Database session.
        tier: chunk, source or help_article.
        agent_id: Agent whose knowledge is searched.
        query_embedding: Query vector, sized for the tier.
        threshold: Similarity floor in (0, 1]. Defaults per tier.
        limit: Maximum rows; 0 returns an empty list. Defaults per tier.
        probes: IVFFlat partitions scanned. Defaults to IVFFLAT_PROBES.
        timeout: Seconds before the search is abandoned. Defaults to
            SEARCH_TIMEOUT_SECONDS.

    Returns:
        Tier-specific result models.

    Raises:
        ValidationError: Invalid threshold, limit, probes or tier.
        DimensionMismatchError: Query vector sized for another tier.
        TransientError: Store unavailable or the timeout elapsed.
    """
    settings = get_settings()
    tier = _coerce_tier(tier)
    threshold = DEFAULT_THRESHOLDS[tier] if threshold is None else threshold
    limit = DEFAULT_LIMITS[tier] if limit is None else limit
    probes = settings.ivfflat_probes if probes is None else probes
    timeout = settings.search_timeout_seconds if timeout is None else timeout

    query = validate_search_args(tier, query_embedding, threshold, limit, probes)
    if limit == 0:
        return []

    with tracer.start_as_current_span("search.tier") as span:
        span.set_attribute("tier", tier.value)
        span.set_attribute("agent_id", str(agent_id))
        span.set_attribute("threshold", float(threshold))
        span.set_attribute("limit", limit)
        span.set_attribute("probes", probes)

        stmt, embedding_col, id_col = _candidates(tier, agent_id)
        use_index = dialect_name(db) == "postgresql"
        span.set_attribute("ann_index", use_index)

        if use_index:
            work = _ann_search(
                db, stmt, embedding_col, id_col, query, threshold, limit, probes
            )
        else:
            work = _exact_search(db, stmt, embedding_col, query, threshold, limit)

        started = time.perf_counter()
        try:
            scored = await asyncio.wait_for(work, timeout=timeout)
        except asyncio.TimeoutError as exc:
            SEARCH_FAILURES.labels(tier.value, "timeout").inc()
            logger.warning(
                "search.timeout",
                extra={
                    "agent_id": str(agent_id),
                    "tier": tier.value,
                    "timeout": timeout,
                },
            )
            raise TransientError(
                f"{tier.value} search timed out after {timeout}s"
            ) from exc
        except (OperationalError, InterfaceError) as exc:
            SEARCH_FAILURES.labels(tier.value, "store_unavailable").inc()
            logger.warning(
                "search.store_unavailable",
                extra={
                    "agent_id": str(agent_id),
                    "tier": tier.value,
                    "error": str(exc),
                },
            )
            raise TransientError(f"{tier.value} search failed: store unavailable") from exc
        finally:
            SEARCH_DURATION.labels(tier.value).observe(time.perf_counter() - started)

        results = [_to_result(tier, row, similarity) for row, similarity in scored]

        span.set_attribute("results_count", len(results))
        SEARCH_RESULTS.labels(tier.value).inc(len(results))

        logger.info(
            "search.completed",
            extra={
                "agent_id": str(agent_id),
                "tier": tier.value,
                "threshold": threshold,
                "limit": limit,
                "results_count": len(results),
            },
        )

        return results


async def search_chunks(
    db: AsyncSession,
    agent_id: UUID,
    query_embedding: Sequence[float],
    threshold: float = 0.7,
    limit: int = 5,
    probes: int | None = None,
    timeout: float | None = None,
) -> list[ChunkResult]:
    """Chunk tier (finest granularity). Parent source must also be ready."""
    results = await search(
        db,
        KnowledgeTier.CHUNK,
        agent_id,
        query_embedding,
        threshold=threshold,
        limit=limit,
        probes=probes,
        timeout=timeout,
    )
    return [r for r in results if isinstance(r, ChunkResult)]


async def search_sources(
    db: AsyncSession,
    agent_id: UUID,
    query_embedding: Sequence[float],
    threshold: float = 0.7,
    limit: int = 5,
    probes: int | None = None,
    timeout: float | None = None,
) -> list[SourceResult]:
    """Whole-document tier."""
    results = await search(
        db,
        KnowledgeTier.SOURCE,
        agent_id,
        query_embedding,
        threshold=threshold,
        limit=limit,
        probes=probes,
        timeout=timeout,
    )
    return [r for r in results if isinstance(r, SourceResult)]


async def search_help_articles(
    db: AsyncSession,
    agent_id: UUID,
    query_embedding: Sequence[float],
    threshold: float = 0.6,
    limit: int = 3,
    probes: int | None = None,
    timeout: float | None = None,
) -> list[HelpArticleResult]:
    """Help-center tier. Expects a help-article-provider embedding."""
    results = await search(
        db,
        KnowledgeTier.HELP_ARTICLE,
        agent_id,
        query_embedding,
        threshold=threshold,
        limit=limit,
        probes=probes,
        timeout=timeout,
    )
    return [r for r in results if isinstance(r, HelpArticleResult)]
