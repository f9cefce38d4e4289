"""Composed knowledge retrieval for the agent-response pipeline.

Response cache -> embedding cache -> chunk tier, falling back to the source
tier when no chunk clears the threshold -> help articles -> merged, ranked
context. The per-tier engine in ``search`` knows nothing about this policy.
"""

import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from ..adapters.embeddings import EmbeddingProvider
from ..config import get_settings
from ..errors import KnowledgeCoreError
from ..schemas.retrieval import (
    ChunkResult,
    HelpArticleResult,
    KnowledgeResult,
    RetrievalResult,
    SourceResult,
)
from .embedding_cache import get_cached_embedding, put_cached_embedding
from .query_keys import (
    dynamic_match_threshold,
    hash_query,
    normalize_query,
    response_fingerprint,
)
from .response_cache import get_cached_response, put_cached_response
from .search import search_chunks, search_help_articles, search_sources

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("knowledge-core.retrieval")

HELP_ARTICLE_NAMESPACE = "help_article"


def from_chunk(result: ChunkResult) -> KnowledgeResult:
    return KnowledgeResult(
        content=result.content,
        source=result.source_name,
        type=result.source_type,
        similarity=result.similarity,
        chunk_index=result.chunk_index,
        source_url=result.source_url,
    )


def from_source(result: SourceResult) -> KnowledgeResult:
    return KnowledgeResult(
        content=result.content,
        source=result.source,
        type=result.type,
        similarity=result.similarity,
        source_url=result.source_url,
    )


def from_help_article(result: HelpArticleResult) -> KnowledgeResult:
    label = f"Help: {result.title}"
    if result.category_name:
        label += f" ({result.category_name})"
    return KnowledgeResult(
        content=result.content,
        source=label,
        type="help_article",
        similarity=result.similarity,
    )


async def embed_query(
    db: AsyncSession,
    agent_id: UUID,
    query: str,
    provider: EmbeddingProvider,
    namespace: str | None = None,
    now: datetime | None = None,
) -> tuple[list[float], bool]:
    """Embedding for ``query`` from the cache, or from ``provider`` on a miss.

    Returns:
        (embedding, cache_hit)
    """
    query_key = hash_query(query, namespace=namespace)
    cached = await get_cached_embedding(db, agent_id, query_key, now=now)
    if cached is not None:
        return cached, True

    [embedding] = await provider.embed_texts([query])
    await put_cached_embedding(
        db,
        agent_id,
        query_key,
        embedding,
        query_normalized=normalize_query(query),
        now=now,
    )
    return list(embedding), False


async def retrieve_knowledge(
    db: AsyncSession,
    agent_id: UUID,
    query: str,
    embedder: EmbeddingProvider,
    help_embedder: EmbeddingProvider | None = None,
    context: Mapping[str, Any] | None = None,
    threshold: float | None = None,
    now: datetime | None = None,
) -> RetrievalResult:
    """Resolve a query into a cached answer or ranked knowledge context.

    The caller must already have authorized access to ``agent_id``.

    Args:
        db: Database session.
        agent_id: Agent whose knowledge base is searched.
        query: The user's question.
        embedder: Provider for source/chunk embeddings.
        help_embedder: Provider for help-article embeddings; help articles
            are skipped when omitted.
        context: Anything else that changes the answer (conversation state,
            persona, ...). Folded into the response fingerprint.
        threshold: Similarity floor. Defaults to a query-length based value.
        now: Clock override for cache reads and writes.

    Returns:
        RetrievalResult with either ``cached_response`` or ``results``.
    """
    settings = get_settings()
    fingerprint = response_fingerprint(query, context=context)

    with tracer.start_as_current_span("retrieval.retrieve_knowledge") as span:
        span.set_attribute("agent_id", str(agent_id))
        span.set_attribute("query_length", len(query))

        cached = await get_cached_response(
            db,
            agent_id,
            fingerprint,
            min_similarity=settings.response_cache_serve_similarity,
            now=now,
        )
        if cached is not None:
            span.set_attribute("response_cache_hit", True)
            return RetrievalResult(
                fingerprint=fingerprint,
                cached_response=cached.response,
                max_similarity=cached.similarity_score or 0.0,
            )

        embedding, embedding_hit = await embed_query(
            db, agent_id, query, embedder, now=now
        )
        span.set_attribute("embedding_cache_hit", embedding_hit)

        threshold = dynamic_match_threshold(query) if threshold is None else threshold
        limit = settings.max_context_results

        results: list[KnowledgeResult] = [
            from_chunk(r)
            for r in await search_chunks(
                db, agent_id, embedding, threshold=threshold, limit=limit
            )
        ]
        if not results:
            logger.info(
                "retrieval.source_fallback",
                extra={"agent_id": str(agent_id)},
            )
            results = [
                from_source(r)
                for r in await search_sources(
                    db, agent_id, embedding, threshold=threshold, limit=limit
                )
            ]

        if help_embedder is not None:
            try:
                help_embedding, _ = await embed_query(
                    db,
                    agent_id,
                    query,
                    help_embedder,
                    namespace=HELP_ARTICLE_NAMESPACE,
                    now=now,
                )
                articles = await search_help_articles(
                    db, agent_id, help_embedding, threshold=threshold, limit=limit
                )
                results.extend(from_help_article(a) for a in articles)
            except KnowledgeCoreError as exc:
                logger.warning(
                    "retrieval.help_articles_skipped",
                    extra={"agent_id": str(agent_id), "error": exc.message},
                )
            except Exception as exc:
                logger.warning(
                    "retrieval.help_articles_skipped",
                    extra={"agent_id": str(agent_id), "error": str(exc)},
                    exc_info=True,
                )

        results.sort(key=lambda r: r.similarity, reverse=True)
        results = results[:limit]
        max_similarity = max((r.similarity for r in results), default=0.0)

        span.set_attribute("results_count", len(results))
        logger.info(
            "retrieval.context_retrieved",
            extra={
                "agent_id": str(agent_id),
                "results_count": len(results),
                "max_similarity": max_similarity,
                "threshold": threshold,
            },
        )

        return RetrievalResult(
            fingerprint=fingerprint,
            results=results,
            max_similarity=max_similarity,
            embedding_cache_hit=embedding_hit,
        )


async def store_response(
    db: AsyncSession,
    agent_id: UUID,
    retrieval: RetrievalResult,
    response: str,
    now: datetime | None = None,
) -> bool:
    """Write a generated answer back under the retrieval's fingerprint."""
    return await put_cached_response(
        db,
        agent_id,
        retrieval.fingerprint,
        response,
        similarity_score=retrieval.max_similarity,
        now=now,
    )


def build_knowledge_context(
    results: list[KnowledgeResult],
    min_similarity: float | None = None,
) -> str:
    """Render results as numbered prompt blocks, dropping weak matches."""
    if min_similarity is None:
        min_similarity = get_settings().context_min_similarity

    blocks = []
    relevant = [r for r in results if r.similarity > min_similarity]
    for index, result in enumerate(relevant, start=1):
        section = (
            f" - Section {result.chunk_index + 1}"
            if result.chunk_index is not None
            else ""
        )
        url = f" | URL: {result.source_url}" if result.source_url else ""
        relevance = round(result.similarity * 100)
        blocks.append(
            f"[Source {index}: {result.source}{section}{url} "
            f"({result.type}, relevance: {relevance}%)]\n{result.content}"
        )
    return "\n\n".join(blocks)
