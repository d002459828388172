import pytest
from httpx import AsyncClient

from lakitu_ai.server.core import constant


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_version(client: AsyncClient):
    response = await client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": constant.VERSION, "schema_version": constant.SCHEMA_VERSION}


@pytest.mark.asyncio
async def test_metrics_on_fresh_server(client: AsyncClient):
    response = await client.get("/metrics")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["uptime_s"] >= 0
    assert data["subagent_queue_depth"] == 0
    assert data["subagent_workers_running"] is False
    assert data["outbox"]["total"] == 0


@pytest.mark.asyncio
async def test_metrics_count_queued_subagents_and_outbox(client: AsyncClient, gateway):
    await client.post("/api/v1/subagents/", json={"name": "scout", "task": "look around"})
    gateway.hang = True
    await client.post("/api/v1/runs/", json={"task": "slow", "timeout_ms": 50})
    gateway.hang = False

    data = (await client.get("/metrics")).json()

    assert data["subagent_queue_depth"] == 1
    assert data["outbox"]["pending"] == 1
    assert data["outbox"]["by_type"] == {"checkpoint": 1}
