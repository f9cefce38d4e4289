"""Embedding and response cache API."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.access import require_agent_access
from ..database import get_db
from ..schemas.cache import (
    CachedEmbedding,
    CachedResponse,
    EmbeddingCachePut,
    ResponseCachePut,
    ResponseCacheWrite,
)
from ..services.embedding_cache import get_cached_embedding, put_cached_embedding
from ..services.response_cache import get_cached_response, put_cached_response

router = APIRouter(prefix="/api/agents/{agent_id}", tags=["cache"])


@router.get("/embedding-cache/{query_key}", response_model=CachedEmbedding)
async def get_embedding(
    query_key: str,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> CachedEmbedding:
    embedding = await get_cached_embedding(db, agent_id, query_key)
    if embedding is None:
        raise HTTPException(status_code=404, detail="Embedding not cached")
    return CachedEmbedding(query_key=query_key, embedding=embedding)


@router.put("/embedding-cache/{query_key}", status_code=204)
async def put_embedding(
    query_key: str,
    body: EmbeddingCachePut,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> None:
    await put_cached_embedding(
        db,
        agent_id,
        query_key,
        body.embedding,
        query_normalized=body.query_normalized,
    )


@router.get("/response-cache/{fingerprint}", response_model=CachedResponse)
async def get_response(
    fingerprint: str,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> CachedResponse:
    cached = await get_cached_response(db, agent_id, fingerprint)
    if cached is None:
        raise HTTPException(status_code=404, detail="Response not cached")
    return cached


@router.put("/response-cache/{fingerprint}", response_model=ResponseCacheWrite)
async def put_response(
    fingerprint: str,
    body: ResponseCachePut,
    agent_id: UUID = Depends(require_agent_access),
    db: AsyncSession = Depends(get_db),
) -> ResponseCacheWrite:
    stored = await put_cached_response(
        db,
        agent_id,
        fingerprint,
        body.response,
        similarity_score=body.similarity_score,
    )
    return ResponseCacheWrite(stored=stored)
