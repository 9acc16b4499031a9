"""Integration tests for the dependency endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient


@pytest.fixture
async def tasks(make_project, make_task) -> list[dict]:
    project = await make_project("Alpha")
    return [await make_task(project["id"], f"T{n}") for n in range(1, 4)]


async def depend(client: AsyncClient, headers: dict, task: dict, on: dict, **extra):
    return await client.post(
        f"/api/tasks/{task['id']}/dependencies",
        json={"depends_on_id": on["id"], **extra},
        headers=headers,
    )


class TestAddDependency:
    @pytest.mark.asyncio
    async def test_created(self, async_client: AsyncClient, admin_headers: dict, tasks: list) -> None:
        t1, t2, _ = tasks
        response = await depend(async_client, admin_headers, t2, t1)
        assert response.status_code == 201
        body = response.json()
        assert (body["task_id"], body["depends_on_id"]) == (t2["id"], t1["id"])
        assert body["type"] == "finish_to_start"

    @pytest.mark.asyncio
    async def test_start_to_start(
        self, async_client: AsyncClient, admin_headers: dict, tasks: list
    ) -> None:
        t1, t2, _ = tasks
        response = await depend(async_client, admin_headers, t2, t1, type="start_to_start")
        assert response.json()["type"] == "start_to_start"

    @pytest.mark.asyncio
    async def test_rejections(self, async_client: AsyncClient, admin_headers: dict, tasks: list) -> None:
        t1, t2, t3 = tasks
        assert (await depend(async_client, admin_headers, t2, t1)).status_code == 201
        assert (await depend(async_client, admin_headers, t3, t2)).status_code == 201

        duplicate = await depend(async_client, admin_headers, t2, t1)
        assert duplicate.status_code == 409

        cycle = await depend(async_client, admin_headers, t1, t3)
        assert cycle.status_code == 422
        assert "error" in cycle.json()

        assert (await depend(async_client, admin_headers, t1, t1)).status_code == 400
        bad_kind = await depend(async_client, admin_headers, t3, t1, type="finish_to_finish")
        assert bad_kind.status_code == 400

        missing = await async_client.post(
            f"/api/tasks/{t1['id']}/dependencies", json={"depends_on_id": 999}, headers=admin_headers
        )
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_cross_project(
        self, async_client: AsyncClient, admin_headers: dict, tasks: list, make_project, make_task
    ) -> None:
        other = await make_project("Beta")
        foreign = await make_task(other["id"], "Elsewhere")
        response = await depend(async_client, admin_headers, tasks[0], foreign)
        assert response.status_code == 400


class TestRemoveDependency:
    @pytest.mark.asyncio
    async def test_remove_is_idempotent(
        self, async_client: AsyncClient, admin_headers: dict, tasks: list
    ) -> None:
        t1, t2, _ = tasks
        created = (await depend(async_client, admin_headers, t2, t1)).json()
        url = f"/api/tasks/{t2['id']}/dependencies/{created['id']}"

        assert (await async_client.delete(url, headers=admin_headers)).status_code == 204
        assert (await async_client.delete(url, headers=admin_headers)).status_code == 204

        listed = await async_client.get(f"/api/tasks/{t2['id']}/dependencies", headers=admin_headers)
        assert listed.json() == []

    @pytest.mark.asyncio
    async def test_remove_by_predecessor_id(
        self, async_client: AsyncClient, admin_headers: dict, tasks: list
    ) -> None:
        t1, t2, _ = tasks
        await depend(async_client, admin_headers, t2, t1)
        response = await async_client.delete(
            f"/api/tasks/{t2['id']}/dependencies/{t1['id']}", headers=admin_headers
        )
        assert response.status_code == 204
        can = await async_client.get(f"/api/tasks/{t2['id']}/can-start", headers=admin_headers)
        assert can.json()["can_start"] is True


class TestTraversal:
    @pytest.mark.asyncio
    async def test_neighbours_and_chains(
        self, async_client: AsyncClient, admin_headers: dict, tasks: list
    ) -> None:
        t1, t2, t3 = tasks
        await depend(async_client, admin_headers, t2, t1)
        await depend(async_client, admin_headers, t3, t2)

        predecessors = await async_client.get(f"/api/tasks/{t2['id']}/dependencies", headers=admin_headers)
        assert [d["task_id"] for d in predecessors.json()] == [t1["id"]]
        dependents = await async_client.get(f"/api/tasks/{t2['id']}/dependents", headers=admin_headers)
        assert [d["task_id"] for d in dependents.json()] == [t3["id"]]

        up = await async_client.get(f"/api/tasks/{t3['id']}/dependency-chain", headers=admin_headers)
        assert [t["id"] for t in up.json()] == [t1["id"], t2["id"]]
        down = await async_client.get(f"/api/tasks/{t1['id']}/dependent-chain", headers=admin_headers)
        assert [t["id"] for t in down.json()] == [t2["id"], t3["id"]]

    @pytest.mark.asyncio
    async def test_can_start_follows_status(
        self, async_client: AsyncClient, admin_headers: dict, tasks: list
    ) -> None:
        t1, t2, _ = tasks
        await depend(async_client, admin_headers, t2, t1)
        url = f"/api/tasks/{t2['id']}/can-start"

        assert (await async_client.get(url, headers=admin_headers)).json() == {
            "task_id": t2["id"],
            "can_start": False,
        }
        await async_client.put(f"/api/tasks/{t1['id']}", json={"status": "done"}, headers=admin_headers)
        assert (await async_client.get(url, headers=admin_headers)).json()["can_start"] is True

    @pytest.mark.asyncio
    async def test_unknown_task(self, async_client: AsyncClient, admin_headers: dict) -> None:
        response = await async_client.get("/api/tasks/999/can-start", headers=admin_headers)
        assert response.status_code == 404
