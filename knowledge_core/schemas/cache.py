"""Schemas for the embedding and response caches."""

from datetime import datetime

from pydantic import BaseModel


class EmbeddingCachePut(BaseModel):
    embedding: list[float]
    query_normalized: str | None = None


class CachedEmbedding(BaseModel):
    query_key: str
    embedding: list[float]


class ResponseCachePut(BaseModel):
    response: str
    similarity_score: float | None = None


class CachedResponse(BaseModel):
    """Cached answer returned on a hit."""

    response: str
    similarity_score: float | None = None
    hit_count: int = 0
    expires_at: datetime


class ResponseCacheWrite(BaseModel):
    stored: bool
