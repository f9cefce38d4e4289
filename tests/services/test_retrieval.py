"""Tests for composed retrieval, response write-back and context assembly."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from conftest import HELP_DIM, NOW, query_vector
from knowledge_core.models.cache import ResponseCacheEntry
from knowledge_core.schemas.retrieval import KnowledgeResult
from knowledge_core.services.query_keys import response_fingerprint
from knowledge_core.services.response_cache import put_cached_response
from knowledge_core.services.retrieval import (
    build_knowledge_context,
    retrieve_knowledge,
    store_response,
)

QUERY = "what are your hours"


def _provider(dim: int | None = None) -> AsyncMock:
    provider = AsyncMock()
    vector = query_vector(dim) if dim else query_vector()
    provider.embed_texts.return_value = [vector]
    return provider


class TestRetrieveKnowledge:
    """Response cache -> embedding cache -> chunks -> sources -> help articles."""

    @pytest.mark.asyncio
    async def test_returns_ranked_chunks(self, db_session, agent_id, make_source, make_chunk):
        source = await make_source(agent_id, origin="Opening hours")
        await make_chunk(source, 0, similarity=0.6, content="Closed Sundays.")
        await make_chunk(source, 1, similarity=0.9, content="Open 9 to 5.")
        embedder = _provider()

        result = await retrieve_knowledge(db_session, agent_id, QUERY, embedder, now=NOW)

        assert result.cached_response is None
        assert [r.content for r in result.results] == ["Open 9 to 5.", "Closed Sundays."]
        assert result.results[0].source == "Opening hours"
        assert result.results[0].chunk_index == 1
        assert result.max_similarity == pytest.approx(0.9, abs=1e-5)
        assert result.embedding_cache_hit is False
        embedder.embed_texts.assert_awaited_once_with([QUERY])

    @pytest.mark.asyncio
    async def test_second_query_uses_embedding_cache(
        self, db_session, agent_id, make_source, make_chunk
    ):
        source = await make_source(agent_id)
        await make_chunk(source, 0, similarity=0.9)
        embedder = _provider()

        await retrieve_knowledge(db_session, agent_id, QUERY, embedder, now=NOW)
        second = await retrieve_knowledge(
            db_session, agent_id, "What are your HOURS?", embedder, now=NOW
        )

        assert second.embedding_cache_hit is True
        assert embedder.embed_texts.await_count == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_sources(self, db_session, agent_id, make_source):
        await make_source(agent_id, similarity=0.8, origin="FAQ", content="We open at 9.")

        result = await retrieve_knowledge(
            db_session, agent_id, QUERY, _provider(), now=NOW
        )

        assert [r.source for r in result.results] == ["FAQ"]
        assert result.results[0].chunk_index is None

    @pytest.mark.asyncio
    async def test_merges_help_articles(
        self, db_session, agent_id, make_source, make_chunk, make_help_article
    ):
        source = await make_source(agent_id)
        await make_chunk(source, 0, similarity=0.7)
        await make_help_article(
            agent_id, similarity=0.95, title="Store hours", category_name="General"
        )

        result = await retrieve_knowledge(
            db_session,
            agent_id,
            QUERY,
            _provider(),
            help_embedder=_provider(HELP_DIM),
            now=NOW,
        )

        assert result.results[0].source == "Help: Store hours (General)"
        assert result.results[0].type == "help_article"
        assert len(result.results) == 2

    @pytest.mark.asyncio
    async def test_help_article_failure_is_tolerated(
        self, db_session, agent_id, make_source, make_chunk
    ):
        source = await make_source(agent_id)
        await make_chunk(source, 0, similarity=0.9)
        # Knowledge-sized vector for the help tier: dimension mismatch
        wrong_help = _provider()

        result = await retrieve_knowledge(
            db_session, agent_id, QUERY, _provider(), help_embedder=wrong_help, now=NOW
        )

        assert len(result.results) == 1

    @pytest.mark.asyncio
    async def test_help_provider_error_is_tolerated(
        self, db_session, agent_id, make_source, make_chunk
    ):
        source = await make_source(agent_id)
        await make_chunk(source, 0, similarity=0.9)
        broken_help = AsyncMock()
        broken_help.embed_texts.side_effect = RuntimeError("help provider down")

        result = await retrieve_knowledge(
            db_session, agent_id, QUERY, _provider(), help_embedder=broken_help, now=NOW
        )

        assert len(result.results) == 1
        broken_help.embed_texts.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_keeps_max_context_results(
        self, db_session, agent_id, make_source, make_chunk
    ):
        source = await make_source(agent_id)
        for index in range(5):
            await make_chunk(source, index, similarity=0.9 - index * 0.05)

        result = await retrieve_knowledge(
            db_session, agent_id, QUERY, _provider(), now=NOW
        )

        assert len(result.results) == 3

    @pytest.mark.asyncio
    async def test_serves_strong_cached_response(self, db_session, agent_id):
        embedder = _provider()
        await put_cached_response(
            db_session,
            agent_id,
            response_fingerprint(QUERY),
            "Open 9 to 5.",
            similarity_score=0.85,
            now=NOW,
        )

        result = await retrieve_knowledge(db_session, agent_id, QUERY, embedder, now=NOW)

        assert result.cached_response == "Open 9 to 5."
        assert result.results == []
        embedder.embed_texts.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_weak_cached_response(self, db_session, agent_id):
        await put_cached_response(
            db_session,
            agent_id,
            response_fingerprint(QUERY),
            "Maybe 9?",
            similarity_score=0.67,
            now=NOW,
        )

        result = await retrieve_knowledge(
            db_session, agent_id, QUERY, _provider(), now=NOW
        )

        assert result.cached_response is None

    @pytest.mark.asyncio
    async def test_weak_cached_response_is_not_counted_as_hit(self, db_session, agent_id):
        fingerprint = response_fingerprint(QUERY)
        await put_cached_response(
            db_session, agent_id, fingerprint, "Maybe 9?", similarity_score=0.67, now=NOW
        )

        await retrieve_knowledge(db_session, agent_id, QUERY, _provider(), now=NOW)

        hit_count = await db_session.scalar(
            select(ResponseCacheEntry.hit_count).where(
                ResponseCacheEntry.fingerprint == fingerprint
            )
        )
        assert hit_count == 0

    @pytest.mark.asyncio
    async def test_context_separates_cached_responses(self, db_session, agent_id):
        await put_cached_response(
            db_session,
            agent_id,
            response_fingerprint(QUERY, context={"persona": "sales"}),
            "Sales answer",
            similarity_score=0.9,
            now=NOW,
        )

        result = await retrieve_knowledge(
            db_session,
            agent_id,
            QUERY,
            _provider(),
            context={"persona": "support"},
            now=NOW,
        )

        assert result.cached_response is None


class TestStoreResponse:
    @pytest.mark.asyncio
    async def test_round_trip_through_retrieval(
        self, db_session, agent_id, make_source, make_chunk
    ):
        source = await make_source(agent_id)
        await make_chunk(source, 0, similarity=0.9)
        embedder = _provider()

        first = await retrieve_knowledge(db_session, agent_id, QUERY, embedder, now=NOW)
        stored = await store_response(db_session, agent_id, first, "Open 9 to 5.", now=NOW)
        second = await retrieve_knowledge(db_session, agent_id, QUERY, embedder, now=NOW)

        assert stored is True
        assert second.cached_response == "Open 9 to 5."

    @pytest.mark.asyncio
    async def test_weak_context_not_stored(self, db_session, agent_id, make_source):
        await make_source(agent_id, similarity=0.6)

        first = await retrieve_knowledge(
            db_session, agent_id, QUERY, _provider(), now=NOW
        )
        stored = await store_response(db_session, agent_id, first, "Not sure.", now=NOW)

        assert stored is False


class TestBuildKnowledgeContext:
    def test_formats_numbered_blocks(self):
        results = [
            KnowledgeResult(
                content="Open 9 to 5.",
                source="https://example.com/hours",
                type="url",
                similarity=0.874,
                chunk_index=2,
                source_url="https://example.com/hours",
            ),
            KnowledgeResult(
                content="Refunds within 30 days.",
                source="Policy",
                type="text",
                similarity=0.61,
            ),
        ]

        context = build_knowledge_context(results)

        assert context == (
            "[Source 1: https://example.com/hours - Section 3 | URL: "
            "https://example.com/hours (url, relevance: 87%)]\nOpen 9 to 5.\n\n"
            "[Source 2: Policy (text, relevance: 61%)]\nRefunds within 30 days."
        )

    def test_drops_weak_results(self):
        results = [
            KnowledgeResult(content="noise", source="x", type="text", similarity=0.35),
        ]

        assert build_knowledge_context(results) == ""
