"""
Tests for the /health and / endpoints.

All tests run without a live MongoDB (db is mocked as disconnected in conftest).
"""

from unittest.mock import AsyncMock, MagicMock


async def test_health_returns_200(client):
    """Health endpoint must always return 200 if the API process is alive."""
    response = await client.get("/health")
    assert response.status_code == 200


async def test_health_response_schema(client):
    data = (await client.get("/health")).json()

    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert data["environment"] == "test"
    assert data["ai_service"] == "enabled"


async def test_health_disconnected_when_no_db(client):
    data = (await client.get("/health")).json()
    assert data["database"] == "disconnected"


async def test_health_connected_when_ping_succeeds(client, mock_db):
    fake_client = MagicMock()
    fake_client.admin.command = AsyncMock(return_value={"ok": 1})
    mock_db.db_client.client = fake_client

    data = (await client.get("/health")).json()
    assert data["database"] == "connected"


async def test_health_reports_failed_ping_as_disconnected(client, mock_db):
    fake_client = MagicMock()
    fake_client.admin.command = AsyncMock(side_effect=RuntimeError("timeout"))
    mock_db.db_client.client = fake_client

    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "disconnected"


async def test_health_reports_disabled_ai(client):
    from seolens.services.usage_limiter import usage_limiter

    usage_limiter.emergency_disable()
    data = (await client.get("/health")).json()
    assert data["ai_service"] == "disabled"


async def test_root_endpoint(client):
    response = await client.get("/")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "running"
    assert data["name"] == "SEO Lens API"


async def test_unknown_route_returns_404(client):
    response = await client.get("/does-not-exist")
    assert response.status_code == 404
