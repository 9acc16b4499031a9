"""End-to-end workflows across the REST and MCP surfaces."""

from __future__ import annotations

import json

import pytest
from httpx import AsyncClient


@pytest.fixture
async def alpha(make_project, make_task) -> tuple[dict, dict, dict, dict]:
    project = await make_project("Alpha")
    t1 = await make_task(project["id"], "T1")
    t2 = await make_task(project["id"], "T2")
    t3 = await make_task(project["id"], "T3")
    return project, t1, t2, t3


class TestPlanningWorkflow:
    @pytest.mark.asyncio
    async def test_cycle_is_refused_and_one_edge_remains(
        self, async_client: AsyncClient, admin_headers: dict, alpha: tuple
    ) -> None:
        project, t1, t2, _ = alpha
        forward = await async_client.post(
            f"/api/tasks/{t2['id']}/dependencies", json={"depends_on_id": t1["id"]}, headers=admin_headers
        )
        assert forward.status_code == 201
        backward = await async_client.post(
            f"/api/tasks/{t1['id']}/dependencies", json={"depends_on_id": t2["id"]}, headers=admin_headers
        )
        assert backward.status_code == 422

        graph = (await async_client.get(f"/api/projects/{project['id']}/graph", headers=admin_headers)).json()
        assert [(e["task_id"], e["depends_on_id"]) for e in graph["edges"]] == [(t2["id"], t1["id"])]

    @pytest.mark.asyncio
    async def test_can_start_waits_for_predecessor(
        self, async_client: AsyncClient, admin_headers: dict, alpha: tuple
    ) -> None:
        _, t1, t2, _ = alpha
        await async_client.post(
            f"/api/tasks/{t2['id']}/dependencies", json={"depends_on_id": t1["id"]}, headers=admin_headers
        )
        url = f"/api/tasks/{t2['id']}/can-start"
        for status, expected in (("in_progress", False), ("review", False), ("done", True)):
            await async_client.put(f"/api/tasks/{t1['id']}", json={"status": status}, headers=admin_headers)
            assert (await async_client.get(url, headers=admin_headers)).json()["can_start"] is expected

    @pytest.mark.asyncio
    async def test_chains_in_both_directions(
        self, async_client: AsyncClient, admin_headers: dict, alpha: tuple
    ) -> None:
        _, t1, t2, t3 = alpha
        for task, on in ((t2, t1), (t3, t2)):
            await async_client.post(
                f"/api/tasks/{task['id']}/dependencies", json={"depends_on_id": on["id"]}, headers=admin_headers
            )

        up = await async_client.get(f"/api/tasks/{t3['id']}/dependency-chain", headers=admin_headers)
        assert [t["id"] for t in up.json()] == [t1["id"], t2["id"]]
        down = await async_client.get(f"/api/tasks/{t1['id']}/dependent-chain", headers=admin_headers)
        assert [t["id"] for t in down.json()] == [t2["id"], t3["id"]]

    @pytest.mark.asyncio
    async def test_project_delete_takes_tasks_along(
        self, async_client: AsyncClient, admin_headers: dict, alpha: tuple
    ) -> None:
        project, t1, t2, t3 = alpha
        response = await async_client.delete(f"/api/projects/{project['id']}", headers=admin_headers)
        assert response.status_code == 204
        for task in (t1, t2, t3):
            assert (await async_client.get(f"/api/tasks/{task['id']}", headers=admin_headers)).status_code == 404


class TestAccessWorkflow:
    @pytest.mark.asyncio
    async def test_token_lifecycle(
        self, async_client: AsyncClient, admin_headers: dict, issue_token
    ) -> None:
        issued = await issue_token(name="agent", scopes="read")
        headers = {"Authorization": f"Bearer {issued['token']}"}
        assert (await async_client.get("/api/projects", headers=headers)).status_code == 200

        await async_client.delete(f"/admin/tokens/{issued['id']}", headers=admin_headers)
        assert (await async_client.get("/api/projects", headers=headers)).status_code == 401

    @pytest.mark.asyncio
    async def test_agent_creates_task_over_mcp(
        self, async_client: AsyncClient, admin_headers: dict, issue_token, make_project
    ) -> None:
        project = await make_project("Alpha")
        issued = await issue_token(name="agent", scopes="read,write")
        headers = {"Authorization": f"Bearer {issued['token']}"}

        reply = await async_client.post(
            "/mcp",
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "tools/call",
                "params": {
                    "name": "create_task",
                    "arguments": {"project_id": project["id"], "title": "Agent task"},
                },
            },
            headers=headers,
        )
        created = json.loads(reply.json()["result"]["content"][0]["text"])

        fetched = await async_client.get(f"/api/tasks/{created['id']}", headers=admin_headers)
        assert fetched.status_code == 200
        assert fetched.json()["title"] == "Agent task"

        activity = await async_client.get(f"/api/tasks/{created['id']}/activity", headers=admin_headers)
        assert activity.json()[0]["user_name"] == "token:agent"
