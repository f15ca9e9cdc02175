# tests/test_routes/test_health.py
import pytest


@pytest.mark.asyncio
async def test_health_check(test_client):
    response = await test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "connected"
    assert sorted(data["adapters"]) == ["craigslist", "depop", "ebay", "facebook"]
