"""Shared test fixtures and configuration."""

import math
import os
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Set up test environment BEFORE importing modules that read settings
MAINTENANCE_TOKEN = "test-maintenance-token"
os.environ["MAINTENANCE_TOKEN"] = MAINTENANCE_TOKEN
os.environ.pop("OTEL_EXPORTER_OTLP_ENDPOINT", None)

from knowledge_core.auth.access import get_agent_access_checker  # noqa: E402
from knowledge_core.config import get_settings  # noqa: E402
from knowledge_core.database import Base, get_db  # noqa: E402
from knowledge_core.main import app  # noqa: E402
from knowledge_core.models.knowledge import (  # noqa: E402
    HelpArticle,
    HelpCategory,
    KnowledgeChunk,
    KnowledgeSource,
    KnowledgeStatus,
)

# Clear the lru_cache on get_settings to pick up test env vars
get_settings.cache_clear()


# Test database URL (in-memory SQLite for speed)
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

KNOWLEDGE_DIM = get_settings().knowledge_embedding_dim
HELP_DIM = get_settings().help_article_embedding_dim

# Fixed clock for TTL and watchdog tests
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def unit_vector(similarity: float, dim: int = KNOWLEDGE_DIM) -> list[float]:
    """Unit vector whose cosine similarity to ``query_vector()`` is ``similarity``."""
    vector = [0.0] * dim
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


def query_vector(dim: int = KNOWLEDGE_DIM) -> list[float]:
    vector = [0.0] * dim
    vector[0] = 1.0
    return vector


@pytest.fixture
def agent_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_agent_id() -> UUID:
    return uuid4()


@pytest_asyncio.fixture
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_source(db_session: AsyncSession):
    """Factory for knowledge sources. Ready and embedded unless told otherwise."""

    async def _make(
        agent_id: UUID,
        similarity: float | None = 0.9,
        status: str = KnowledgeStatus.READY.value,
        type: str = "text",
        origin: str = "Handbook",
        content: str = "source content",
        metadata: dict[str, Any] | None = None,
        updated_at: datetime | None = None,
    ) -> KnowledgeSource:
        source = KnowledgeSource(
            agent_id=agent_id,
            type=type,
            origin=origin,
            content=content,
            status=status,
            embedding=unit_vector(similarity) if similarity is not None else None,
            metadata_=metadata or {},
        )
        if updated_at is not None:
            source.updated_at = updated_at
        db_session.add(source)
        await db_session.commit()
        return source

    return _make


@pytest.fixture
def make_chunk(db_session: AsyncSession):
    """Factory for chunks under an existing source."""

    async def _make(
        source: KnowledgeSource,
        chunk_index: int,
        similarity: float | None = 0.9,
        status: str = KnowledgeStatus.READY.value,
        content: str | None = None,
        agent_id: UUID | None = None,
        updated_at: datetime | None = None,
    ) -> KnowledgeChunk:
        chunk = KnowledgeChunk(
            source_id=source.id,
            agent_id=agent_id or source.agent_id,
            chunk_index=chunk_index,
            content=content or f"chunk {chunk_index}",
            status=status,
            embedding=unit_vector(similarity) if similarity is not None else None,
            token_count=12,
        )
        if updated_at is not None:
            chunk.updated_at = updated_at
        db_session.add(chunk)
        await db_session.commit()
        return chunk

    return _make


@pytest.fixture
def make_help_article(db_session: AsyncSession):
    """Factory for help articles, optionally in a named category."""

    async def _make(
        agent_id: UUID,
        similarity: float | None = 0.9,
        title: str = "Resetting your password",
        category_name: str | None = None,
    ) -> HelpArticle:
        category_id = None
        if category_name is not None:
            category = HelpCategory(agent_id=agent_id, name=category_name)
            db_session.add(category)
            await db_session.commit()
            category_id = category.id

        article = HelpArticle(
            agent_id=agent_id,
            category_id=category_id,
            title=title,
            content=f"{title} body",
            embedding=unit_vector(similarity, HELP_DIM)
            if similarity is not None
            else None,
        )
        db_session.add(article)
        await db_session.commit()
        return article

    return _make


@pytest.fixture
def allow_all_agents():
    """Install an authorization predicate that admits every caller."""

    async def _allow(request, agent_id) -> bool:
        return True

    app.dependency_overrides[get_agent_access_checker] = lambda: _allow
    yield
    app.dependency_overrides.pop(get_agent_access_checker, None)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.pop(get_db, None)
