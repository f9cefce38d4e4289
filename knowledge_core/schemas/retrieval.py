"""Schemas for tiered knowledge retrieval."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class KnowledgeTier(str, Enum):
    """Independently searchable knowledge collections."""

    CHUNK = "chunk"
    SOURCE = "source"
    HELP_ARTICLE = "help_article"


class ChunkResult(BaseModel):
    """Chunk-tier match, joined back to its parent source."""

    id: UUID
    source_id: UUID
    content: str
    chunk_index: int
    similarity: float = Field(..., ge=-1.0, le=1.0)
    source_name: str
    source_type: str
    source_url: str | None = None


class SourceResult(BaseModel):
    """Source-tier match (whole document)."""

    id: UUID
    content: str
    similarity: float = Field(..., ge=-1.0, le=1.0)
    source: str
    type: str
    source_url: str | None = None
    parent_source_id: str | None = None


class HelpArticleResult(BaseModel):
    """Help-article match."""

    id: UUID
    title: str
    content: str
    similarity: float = Field(..., ge=-1.0, le=1.0)
    category_id: UUID | None = None
    category_name: str | None = None


class KnowledgeResult(BaseModel):
    """Tier-neutral result used when merging tiers into prompt context."""

    content: str
    source: str
    type: str
    similarity: float
    chunk_index: int | None = None
    source_url: str | None = None


class SearchRequest(BaseModel):
    """Body for the per-tier search routes. Omitted knobs use tier defaults."""

    embedding: list[float]
    threshold: float | None = None
    limit: int | None = None
    probes: int | None = Field(
        default=None,
        description="IVFFlat lists scanned; defaults to IVFFLAT_PROBES",
    )


class RetrievalResult(BaseModel):
    """Outcome of a composed retrieval for one query."""

    fingerprint: str
    cached_response: str | None = None
    results: list[KnowledgeResult] = Field(default_factory=list)
    max_similarity: float = 0.0
    embedding_cache_hit: bool = False
