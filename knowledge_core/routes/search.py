"""Per-tier similarity search API."""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.access import require_agent_access
from ..database import get_db
from ..schemas.retrieval import (
    ChunkResult,
    HelpArticleResult,
    KnowledgeTier,
    SearchRequest,
    SourceResult,
)
from ..services.search import search as search_tier

router = APIRouter(prefix="/api/agents/{agent_id}/search", tags=["search"])


async def _search(
    db: AsyncSession,
    tier: KnowledgeTier,
    agent_id: UUID,
    body: SearchRequest,
) -> list:
    return await search_tier(
        db,
        tier,
        agent_id,
        body.embedding,
        threshold=body.threshold,
        limit=body.limit,
        probes=body.probes,
    )


@router.post("/chunks", response_model=list[ChunkResult])
async def search_chunks(
    body: SearchRequest,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> list:
    """Chunk tier. Query this first; fall back to sources when empty."""
    return await _search(db, KnowledgeTier.CHUNK, agent_id, body)


@router.post("/sources", response_model=list[SourceResult])
async def search_sources(
    body: SearchRequest,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> list:
    return await _search(db, KnowledgeTier.SOURCE, agent_id, body)


@router.post("/help-articles", response_model=list[HelpArticleResult])
async def search_help_articles(
    body: SearchRequest,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> list:
    """Help-center tier; expects an embedding from the help-article provider."""
    return await _search(db, KnowledgeTier.HELP_ARTICLE, agent_id, body)
