"""Tests for scheduler-invoked maintenance routes."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from conftest import MAINTENANCE_TOKEN
from knowledge_core.database import utcnow
from knowledge_core.models.knowledge import KnowledgeStatus
from knowledge_core.services.embedding_cache import get_cached_embedding, put_cached_embedding

HEADERS = {"X-Maintenance-Token": MAINTENANCE_TOKEN}


class TestMaintenanceAuth:
    @pytest.mark.asyncio
    async def test_missing_token_is_403(self, client: AsyncClient):
        response = await client.post("/internal/caches/cleanup")

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_wrong_token_is_403(self, client: AsyncClient):
        response = await client.post(
            "/internal/caches/cleanup", headers={"X-Maintenance-Token": "nope"}
        )

        assert response.status_code == 403


class TestCacheCleanupRoute:
    @pytest.mark.asyncio
    async def test_evicts_expired_entries(self, client: AsyncClient, db_session, agent_id):
        await put_cached_embedding(
            db_session, agent_id, "old", [1.0], now=utcnow() - timedelta(days=8)
        )
        await put_cached_embedding(db_session, agent_id, "fresh", [1.0])

        response = await client.post("/internal/caches/cleanup", headers=HEADERS)

        assert response.status_code == 204
        assert await get_cached_embedding(db_session, agent_id, "fresh") is not None


class TestWatchdogRoute:
    @pytest.mark.asyncio
    async def test_fails_stuck_records(self, client: AsyncClient, agent_id, make_source):
        await make_source(
            agent_id,
            similarity=None,
            status=KnowledgeStatus.PROCESSING.value,
            updated_at=utcnow() - timedelta(hours=3),
        )

        dry = await client.post(
            "/internal/ingestion/watchdog", params={"dry_run": "true"}, headers=HEADERS
        )
        real = await client.post("/internal/ingestion/watchdog", headers=HEADERS)

        assert dry.status_code == 200
        assert len(dry.json()["candidate_ids"]) == 1
        assert real.json()["sources_failed"] == 1
        assert real.json()["dry_run"] is False
