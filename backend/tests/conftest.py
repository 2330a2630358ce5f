"""
Portable Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── mock_db_session: AsyncMock session for pure service tests
    ├── db_engine / db_session: aiosqlite in-memory database with the full schema
    ├── profile / other_profile: persisted users with API keys
    ├── make_item: factory persisting Items for a profile
    └── test_client: HTTPX AsyncClient bound to the app, DB overridden
"""

import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

# Override settings BEFORE any portable import creates the Settings singleton
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["CONTENT_PARSER"] = "readability"
os.environ["FIRECRAWL_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "WARNING"
# One attempt per Gemini call: failure tests must not sleep through backoff
os.environ["RETRY_MAX_ATTEMPTS"] = "1"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portable.database import Base, get_db_session
import portable.models  # noqa: F401
from portable.models.item import Item
from portable.models.profile import Profile

TEST_API_KEY = "pk_test_primary_key_0000000000000000000000"
OTHER_API_KEY = "pk_test_other_key_11111111111111111111111"


# ══════════════════════════════════════════════════════════════════════════
# Mocked Session
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    AsyncMock standing in for AsyncSession.

    Usage:
        mock_db_session.execute.return_value = MagicMock()
        mock_db_session.execute.return_value.scalar_one_or_none.return_value = item
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.delete = AsyncMock()
    session.add = MagicMock()
    return session


# ══════════════════════════════════════════════════════════════════════════
# Real Database (aiosqlite, in memory)
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def db_engine():
    """
    Fresh in-memory schema per test.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def profile(db_session):
    user = Profile(email="reader@example.com", full_name="Test Reader", api_key=TEST_API_KEY)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_profile(db_session):
    user = Profile(email="someone-else@example.com", api_key=OTHER_API_KEY)
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def make_item(db_session):
    """
    Factory: await make_item(profile, url=..., status=..., minutes_ago=...).

    created_at is spaced by `minutes_ago` so ordering is deterministic.
    """

    async def _make(owner: Profile, url: str = "https://example.com/post", minutes_ago: int = 0, **fields) -> Item:
        created = fields.pop("created_at", None) or datetime.now(timezone.utc) - timedelta(minutes=minutes_ago)
        item = Item(
            user_id=owner.id,
            url=url,
            title=fields.pop("title", url),
            created_at=created,
            updated_at=created,
            **fields,
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _make


@pytest.fixture
def sample_item_data():
    """Field values matching a freshly processed article."""
    return {
        "url": "https://blog.example.com/deep-work",
        "title": "On Deep Work",
        "description": "Why focus is a superpower",
        "type": "article",
        "status": "inbox",
        "content": "Focus " * 120,
        "word_count": 120,
        "reading_time": 1,
        "processing_status": "completed",
    }


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory):
    """
    HTTPX AsyncClient talking to the app through ASGITransport.

    get_db_session is overridden to use the in-memory database, with the same
    commit/rollback contract as production.
    """
    from portable.main import app

    async def override_get_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_API_KEY}"}
