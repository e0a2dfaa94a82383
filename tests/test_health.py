"""Health and root endpoint tests."""

import pytest


@pytest.mark.asyncio
async def test_root(test_client):
    resp = await test_client.get("/")
    assert resp.status_code == 200
    assert "message" in resp.json()


@pytest.mark.asyncio
async def test_health(test_client):
    resp = await test_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_routes_return_503_before_startup(test_client, auth_headers):
    from notequeue.main import app

    del app.state.gateway
    resp = await test_client.get("/api/v1/jobs/", headers=auth_headers)
    assert resp.status_code == 503
