"""
pytest configuration and shared fixtures for the SEO Lens API tests.

Key concern: tests must not require a live MongoDB or Gemini API key.
We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops.
  2. Setting db_client.client / db_client.db = None by default, so the
     limiter sees "no database" unless a test asks for `fake_db`.
  3. Ensuring AI_MOCK_MODE=true so GeminiClient returns canned responses.

The usage limiter, insight cache and slowapi limiter are module-level
singletons; they are reset around every test.
"""

import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("AI_MOCK_MODE", "true")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_CLEANUP_INTERVAL_MINUTES", "0")

from fake_mongo import FakeDB  # noqa: E402


class FixedClock:
    """Injectable clock; move it with .advance() or assign .now directly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now = self.now + delta


@pytest.fixture()
def clock():
    return FixedClock(datetime(2026, 10, 19, 14, 30, tzinfo=timezone.utc))


@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test and start disconnected.

    Tests that need a database use the `fake_db` fixture on top of this one.
    """
    with (
        patch("seolens.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("seolens.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import seolens.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db
        original_indexes_ready = db_module.db_client.indexes_ready

        db_module.db_client.client = None
        db_module.db_client.db = None
        db_module.db_client.indexes_ready = False

        yield db_module

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db
        db_module.db_client.indexes_ready = original_indexes_ready


@pytest.fixture()
def fake_db(mock_db):
    """Fresh in-memory DB, installed where get_db() will find it."""
    db = FakeDB()
    mock_db.db_client.db = db
    return db


@pytest.fixture(autouse=True)
def reset_singletons():
    from seolens.core.rate_limit import limiter
    from seolens.services.insights import insight_service
    from seolens.services.usage_limiter import usage_limiter

    usage_limiter.enabled = usage_limiter.configured
    insight_service.clear_cache()
    limiter.reset()
    yield
    usage_limiter.enabled = usage_limiter.configured
    insight_service.clear_cache()


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 (mock_db must run first)
    """HTTPX async test client wired to the FastAPI app."""
    from seolens.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def auth_headers():
    """Bearer header for user "user-1"."""
    from seolens.core.security import issue_token

    return {"Authorization": f"Bearer {issue_token('user-1')}"}
