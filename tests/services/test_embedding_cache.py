"""Tests for the per-agent query embedding cache."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import NOW
from knowledge_core.database import as_utc
from knowledge_core.errors import ValidationError
from knowledge_core.models.cache import EmbeddingCacheEntry
from knowledge_core.services.embedding_cache import (
    get_cached_embedding,
    put_cached_embedding,
)

TTL = timedelta(days=7)


async def _row(db, agent_id, query_key):
    result = await db.execute(
        select(
            EmbeddingCacheEntry.embedding,
            EmbeddingCacheEntry.hit_count,
            EmbeddingCacheEntry.last_used_at,
            EmbeddingCacheEntry.expires_at,
        ).where(
            EmbeddingCacheEntry.agent_id == agent_id,
            EmbeddingCacheEntry.query_key == query_key,
        )
    )
    return result.one()


class TestEmbeddingCache:
    """Upsert, TTL and tenant isolation."""

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, db_session, agent_id):
        assert await get_cached_embedding(db_session, agent_id, "abc", now=NOW) is None

    @pytest.mark.asyncio
    async def test_put_then_get(self, db_session, agent_id):
        await put_cached_embedding(db_session, agent_id, "abc", [0.5, 0.25, 1.0], now=NOW)

        cached = await get_cached_embedding(db_session, agent_id, "abc", now=NOW)

        assert cached == pytest.approx([0.5, 0.25, 1.0])

    @pytest.mark.asyncio
    async def test_put_is_idempotent_upsert(self, db_session, agent_id):
        """Two puts leave one row with the latest embedding and TTL."""
        await put_cached_embedding(db_session, agent_id, "abc", [1.0, 0.0], now=NOW)
        later = NOW + timedelta(hours=3)
        await put_cached_embedding(db_session, agent_id, "abc", [0.0, 1.0], now=later)

        count = await db_session.scalar(
            select(func.count()).select_from(EmbeddingCacheEntry)
        )
        row = await _row(db_session, agent_id, "abc")

        assert count == 1
        assert [float(v) for v in row.embedding] == [0.0, 1.0]
        assert as_utc(row.expires_at) == later + TTL

    @pytest.mark.asyncio
    async def test_get_touches_last_used_but_not_expiry(self, db_session, agent_id):
        await put_cached_embedding(db_session, agent_id, "abc", [1.0, 0.0], now=NOW)
        read_at = NOW + timedelta(days=2)

        await get_cached_embedding(db_session, agent_id, "abc", now=read_at)
        await get_cached_embedding(db_session, agent_id, "abc", now=read_at)
        row = await _row(db_session, agent_id, "abc")

        assert as_utc(row.last_used_at) == read_at
        assert as_utc(row.expires_at) == NOW + TTL
        assert row.hit_count == 2

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self, db_session, agent_id):
        await put_cached_embedding(db_session, agent_id, "abc", [1.0, 0.0], now=NOW)

        cached = await get_cached_embedding(
            db_session, agent_id, "abc", now=NOW + TTL + timedelta(seconds=1)
        )

        assert cached is None

    @pytest.mark.asyncio
    async def test_isolated_per_agent(self, db_session, agent_id, other_agent_id):
        await put_cached_embedding(db_session, agent_id, "abc", [1.0, 0.0], now=NOW)

        assert (
            await get_cached_embedding(db_session, other_agent_id, "abc", now=NOW)
            is None
        )

    @pytest.mark.asyncio
    async def test_same_key_for_two_agents_keeps_two_rows(
        self, db_session, agent_id, other_agent_id
    ):
        await put_cached_embedding(db_session, agent_id, "abc", [1.0, 0.0], now=NOW)
        await put_cached_embedding(db_session, other_agent_id, "abc", [0.0, 1.0], now=NOW)

        mine = await get_cached_embedding(db_session, agent_id, "abc", now=NOW)
        theirs = await get_cached_embedding(db_session, other_agent_id, "abc", now=NOW)

        assert mine == pytest.approx([1.0, 0.0])
        assert theirs == pytest.approx([0.0, 1.0])

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "query_key,embedding",
        [("", [1.0]), ("abc", []), ("abc", [float("inf")])],
    )
    async def test_rejects_invalid_put(self, db_session, agent_id, query_key, embedding):
        with pytest.raises(ValidationError):
            await put_cached_embedding(db_session, agent_id, query_key, embedding)
