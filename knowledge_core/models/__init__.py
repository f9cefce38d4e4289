"""SQLAlchemy models for the knowledge core."""

from .cache import EmbeddingCacheEntry, ResponseCacheEntry
from .knowledge import (
    HelpArticle,
    HelpCategory,
    KnowledgeChunk,
    KnowledgeSource,
    KnowledgeStatus,
)

__all__ = [
    "EmbeddingCacheEntry",
    "ResponseCacheEntry",
    "HelpArticle",
    "HelpCategory",
    "KnowledgeChunk",
    "KnowledgeSource",
    "KnowledgeStatus",
]
