"""Tests for the per-tier search API."""

from unittest.mock import patch

import pytest
from httpx import AsyncClient

from conftest import HELP_DIM, query_vector
from knowledge_core.errors import TransientError


class TestSearchRoutes:
    """HTTP surface over the similarity search engine."""

    @pytest.mark.asyncio
    async def test_denied_without_authorization(self, client: AsyncClient, agent_id):
        response = await client.post(
            f"/api/agents/{agent_id}/search/chunks",
            json={"embedding": query_vector()},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_search_chunks(
        self, client: AsyncClient, allow_all_agents, agent_id, make_source, make_chunk
    ):
        source = await make_source(agent_id, origin="Guide")
        await make_chunk(source, 0, similarity=0.9, content="Step one.")
        await make_chunk(source, 1, similarity=0.5)

        response = await client.post(
            f"/api/agents/{agent_id}/search/chunks",
            json={"embedding": query_vector()},
        )

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["content"] == "Step one."
        assert data[0]["source_name"] == "Guide"

    @pytest.mark.asyncio
    async def test_search_sources_with_explicit_knobs(
        self, client: AsyncClient, allow_all_agents, agent_id, make_source
    ):
        await make_source(agent_id, similarity=0.55)

        response = await client.post(
            f"/api/agents/{agent_id}/search/sources",
            json={"embedding": query_vector(), "threshold": 0.5, "limit": 1, "probes": 20},
        )

        assert response.status_code == 200
        assert len(response.json()) == 1

    @pytest.mark.asyncio
    async def test_search_help_articles(
        self, client: AsyncClient, allow_all_agents, agent_id, make_help_article
    ):
        await make_help_article(agent_id, similarity=0.8, title="Billing FAQ")

        response = await client.post(
            f"/api/agents/{agent_id}/search/help-articles",
            json={"embedding": query_vector(HELP_DIM)},
        )

        assert response.status_code == 200
        assert response.json()[0]["title"] == "Billing FAQ"

    @pytest.mark.asyncio
    async def test_invalid_threshold_is_422(
        self, client: AsyncClient, allow_all_agents, agent_id
    ):
        response = await client.post(
            f"/api/agents/{agent_id}/search/chunks",
            json={"embedding": query_vector(), "threshold": 1.5},
        )

        assert response.status_code == 422
        assert "threshold" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_422(
        self, client: AsyncClient, allow_all_agents, agent_id
    ):
        response = await client.post(
            f"/api/agents/{agent_id}/search/help-articles",
            json={"embedding": query_vector()},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_transient_failure_is_503_with_retry_after(
        self, client: AsyncClient, allow_all_agents, agent_id
    ):
        with patch(
            "knowledge_core.routes.search.search_tier",
            side_effect=TransientError("chunk search timed out after 5.0s"),
        ):
            response = await client.post(
                f"/api/agents/{agent_id}/search/chunks",
                json={"embedding": query_vector()},
            )

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
