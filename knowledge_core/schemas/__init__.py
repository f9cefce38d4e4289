"""Pydantic schemas for the knowledge core API."""

from .cache import (
    CachedEmbedding,
    CachedResponse,
    EmbeddingCachePut,
    ResponseCachePut,
    ResponseCacheWrite,
)
from .maintenance import WatchdogReport
from .retrieval import (
    ChunkResult,
    HelpArticleResult,
    KnowledgeResult,
    KnowledgeTier,
    RetrievalResult,
    SearchRequest,
    SourceResult,
)

__all__ = [
    # Cache
    "CachedEmbedding",
    "CachedResponse",
    "EmbeddingCachePut",
    "ResponseCachePut",
    "ResponseCacheWrite",
    # Maintenance
    "WatchdogReport",
    # Retrieval
    "ChunkResult",
    "HelpArticleResult",
    "KnowledgeResult",
    "KnowledgeTier",
    "RetrievalResult",
    "SearchRequest",
    "SourceResult",
]
