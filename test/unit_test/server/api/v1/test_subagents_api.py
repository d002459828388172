import asyncio

import pytest
from httpx import AsyncClient

from lakitu_ai.agent_core.gateway.client import GatewayResponse

pytestmark = pytest.mark.asyncio


async def _spawn(client: AsyncClient, **body) -> str:
    payload = {"name": "scout", "task": "map the repo", **body}
    response = await client.post("/api/v1/subagents/", json=payload)
    assert response.status_code == 202
    return response.json()["subagentId"]


class TestSpawnSubagent:
    """Test POST /api/v1/subagents/."""

    async def test_spawn_returns_accepted(self, client: AsyncClient):
        response = await client.post("/api/v1/subagents/", json={"name": "scout", "task": "map the repo"})

        assert response.status_code == 202
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "spawned"
        assert data["error"] is None
        assert data["subagentId"].startswith("subagent_")

    async def test_spawn_records_pending_subagent(self, client: AsyncClient):
        sub_id = await _spawn(client, tools=["execute_code"], model="fast", parent_thread_id="thread_parent")

        listed = (await client.get("/api/v1/subagents/")).json()

        assert [s["id"] for s in listed] == [sub_id]
        assert listed[0]["status"] == "pending"
        assert listed[0]["tools"] == ["execute_code"]
        assert listed[0]["model"] == "fast"
        assert listed[0]["parent_thread_id"] == "thread_parent"

    async def test_unknown_tool_is_400(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/subagents/", json={"name": "scout", "task": "t", "tools": ["teleport"]}
        )

        assert response.status_code == 400
        assert response.json()["error_type"] == "UnknownCapability"
        assert (await client.get("/api/v1/subagents/")).json() == []

    async def test_spawn_validation(self, client: AsyncClient):
        response = await client.post("/api/v1/subagents/", json={"name": "", "task": "t"})
        assert response.status_code == 422


class TestSubagentQueries:
    """Test GET /api/v1/subagents endpoints."""

    async def test_status(self, client: AsyncClient):
        sub_id = await _spawn(client)

        response = await client.get(f"/api/v1/subagents/{sub_id}")

        assert response.status_code == 200
        assert response.json() == {
            "found": True,
            "status": "pending",
            "name": "scout",
            "task": "map the repo",
            "hasError": False,
        }

    async def test_status_not_found(self, client: AsyncClient):
        response = await client.get("/api/v1/subagents/subagent_missing")
        assert response.status_code == 404
        assert response.json() == {"detail": "Subagent not found"}

    async def test_result_not_ready_while_pending(self, client: AsyncClient):
        sub_id = await _spawn(client)

        response = await client.get(f"/api/v1/subagents/{sub_id}/result")

        assert response.status_code == 200
        data = response.json()
        assert data["found"] is True
        assert data["ready"] is False
        assert data["status"] == "pending"
        assert data["result"] is None

    async def test_result_not_found(self, client: AsyncClient):
        response = await client.get("/api/v1/subagents/subagent_missing/result")
        assert response.status_code == 404

    async def test_list_filters(self, client: AsyncClient):
        a = await _spawn(client, parent_thread_id="thread_a")
        b = await _spawn(client, parent_thread_id="thread_b")
        await client.post(f"/api/v1/subagents/{b}/cancel")

        by_parent = (await client.get("/api/v1/subagents/", params={"parent_thread_id": "thread_a"})).json()
        failed = (await client.get("/api/v1/subagents/", params={"status": "failed"})).json()
        limited = (await client.get("/api/v1/subagents/", params={"limit": 1})).json()

        assert [s["id"] for s in by_parent] == [a]
        assert [s["id"] for s in failed] == [b]
        assert len(limited) == 1

    async def test_list_rejects_unknown_status(self, client: AsyncClient):
        response = await client.get("/api/v1/subagents/", params={"status": "sleeping"})
        assert response.status_code == 422


class TestCancelSubagent:
    """Test POST /api/v1/subagents/{id}/cancel."""

    async def test_cancel_pending(self, client: AsyncClient):
        sub_id = await _spawn(client)

        response = await client.post(f"/api/v1/subagents/{sub_id}/cancel")

        assert response.status_code == 200
        assert response.json() == {"success": True, "subagentId": sub_id, "status": "failed", "error": None}
        result = (await client.get(f"/api/v1/subagents/{sub_id}/result")).json()
        assert result["ready"] is True
        assert result["status"] == "failed"
        assert result["error"]

    async def test_cancel_twice_is_conflict(self, client: AsyncClient):
        sub_id = await _spawn(client)
        await client.post(f"/api/v1/subagents/{sub_id}/cancel")

        response = await client.post(f"/api/v1/subagents/{sub_id}/cancel")

        assert response.status_code == 409
        assert response.json() == {"detail": "Subagent already finished"}

    async def test_cancel_missing(self, client: AsyncClient):
        response = await client.post("/api/v1/subagents/subagent_missing/cancel")
        assert response.status_code == 404


class TestSubagentExecution:
    """Queued subagents are executed by the orchestrator's background workers."""

    async def test_worker_completes_spawned_subagent(self, client: AsyncClient, orchestrator, gateway):
        gateway.reply(GatewayResponse(text="repo has 3 packages"))
        await orchestrator.start()
        sub_id = await _spawn(client)

        await asyncio.wait_for(orchestrator.subagent_queue.join(), timeout=5)

        result = (await client.get(f"/api/v1/subagents/{sub_id}/result")).json()
        assert result["ready"] is True
        assert result["status"] == "completed"
        assert result["result"]["text"] == "repo has 3 packages"
        assert result["result"]["stopReason"] == "final_answer"
        assert (await client.get("/metrics")).json()["subagent_workers_running"] is True

    async def test_start_requeues_pending_subagents(self, client: AsyncClient, orchestrator, gateway):
        gateway.reply(GatewayResponse(text="ok"))
        sub_id = await _spawn(client)
        # drop the queued id as if the process had restarted
        await orchestrator.subagent_queue.get()
        orchestrator.subagent_queue.task_done()

        await orchestrator.start()
        await asyncio.wait_for(orchestrator.subagent_queue.join(), timeout=5)

        status = (await client.get(f"/api/v1/subagents/{sub_id}")).json()
        assert status["status"] == "completed"
