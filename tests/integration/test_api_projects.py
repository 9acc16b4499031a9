"""Integration tests for the project API endpoints.

Tests run against the full FastAPI application with a temporary SQLite
database, authenticating with the static admin token unless a test
issues a narrower API token.
"""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from headless_pm.database.models.embedding import EntityKind


class TestProjectCRUD:
    """Create, read, update and delete through /api/projects."""

    @pytest.mark.asyncio
    async def test_create_project(
        self, async_client: AsyncClient, admin_headers: dict, recording_worker
    ) -> None:
        response = await async_client.post(
            "/api/projects",
            json={"name": "Apollo", "description": "Moonshot"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "Apollo"
        assert body["status"] == "active"
        assert body["owner_id"] is None
        assert (EntityKind.project, body["id"]) in recording_worker.jobs

    @pytest.mark.asyncio
    async def test_create_validation_error(
        self, async_client: AsyncClient, admin_headers: dict
    ) -> None:
        response = await async_client.post("/api/projects", json={}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["field"] == "name"

    @pytest.mark.asyncio
    async def test_unknown_status(self, async_client: AsyncClient, admin_headers: dict) -> None:
        response = await async_client.post(
            "/api/projects", json={"name": "X", "status": "paused"}, headers=admin_headers
        )
        assert response.status_code == 400
        assert response.json()["field"] == "status"

    @pytest.mark.asyncio
    async def test_duplicate_name(
        self, async_client: AsyncClient, admin_headers: dict, make_project
    ) -> None:
        await make_project("Apollo")
        response = await async_client.post(
            "/api/projects", json={"name": "Apollo"}, headers=admin_headers
        )
        assert response.status_code == 409
        assert "error" in response.json()

    @pytest.mark.asyncio
    async def test_list_and_filter(
        self, async_client: AsyncClient, admin_headers: dict, make_project
    ) -> None:
        await make_project("Apollo")
        await make_project("Gemini", status="draft")

        response = await async_client.get("/api/projects", headers=admin_headers)
        assert [p["name"] for p in response.json()] == ["Apollo", "Gemini"]

        drafts = await async_client.get("/api/projects?status=draft", headers=admin_headers)
        assert [p["name"] for p in drafts.json()] == ["Gemini"]

    @pytest.mark.asyncio
    async def test_get_by_id_or_name(
        self, async_client: AsyncClient, admin_headers: dict, make_project
    ) -> None:
        project = await make_project("Apollo")
        by_id = await async_client.get(f"/api/projects/{project['id']}", headers=admin_headers)
        by_name = await async_client.get("/api/projects/Apollo", headers=admin_headers)
        assert by_id.json() == by_name.json()

    @pytest.mark.asyncio
    async def test_get_missing(self, async_client: AsyncClient, admin_headers: dict) -> None:
        response = await async_client.get("/api/projects/Nowhere", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Project not found"

    @pytest.mark.asyncio
    async def test_update(
        self, async_client: AsyncClient, admin_headers: dict, make_project
    ) -> None:
        project = await make_project("Apollo")
        response = await async_client.put(
            f"/api/projects/{project['id']}",
            json={"description": "Updated", "status": "archived"},
            headers=admin_headers,
        )
        assert response.status_code == 200
        assert response.json()["description"] == "Updated"
        assert response.json()["status"] == "archived"

    @pytest.mark.asyncio
    async def test_delete_cascades(
        self, async_client: AsyncClient, admin_headers: dict, make_project, make_task
    ) -> None:
        project = await make_project("Apollo")
        parent = await make_task(project["id"], "Parent")
        child = await make_task(project["id"], "Child", parent_id=parent["id"])

        response = await async_client.delete(f"/api/projects/{project['id']}", headers=admin_headers)
        assert response.status_code == 204

        assert (await async_client.get(f"/api/projects/{project['id']}", headers=admin_headers)).status_code == 404
        for task in (parent, child):
            missing = await async_client.get(f"/api/tasks/{task['id']}", headers=admin_headers)
            assert missing.status_code == 404


class TestProjectViews:
    @pytest.mark.asyncio
    async def test_users(
        self, async_client: AsyncClient, admin_headers: dict, make_project, make_task
    ) -> None:
        created = await async_client.post(
            "/api/users",
            json={"username": "ada", "email": "ada@example.com"},
            headers=admin_headers,
        )
        user = created.json()
        project = await make_project("Apollo")
        await make_task(project["id"], "Compute", assignee_id=user["id"])

        response = await async_client.get(f"/api/projects/{project['id']}/users", headers=admin_headers)
        assert response.status_code == 200
        assert [u["username"] for u in response.json()] == ["ada"]

    @pytest.mark.asyncio
    async def test_graph(
        self, async_client: AsyncClient, admin_headers: dict, make_project, make_task
    ) -> None:
        project = await make_project("Apollo")
        t1 = await make_task(project["id"], "T1")
        t2 = await make_task(project["id"], "T2")
        await async_client.post(
            f"/api/tasks/{t2['id']}/dependencies",
            json={"depends_on_id": t1["id"]},
            headers=admin_headers,
        )

        response = await async_client.get(f"/api/projects/{project['id']}/graph", headers=admin_headers)
        body = response.json()
        assert body["project_id"] == project["id"]
        assert [n["id"] for n in body["nodes"]] == [t1["id"], t2["id"]]
        assert [(e["task_id"], e["depends_on_id"]) for e in body["edges"]] == [(t2["id"], t1["id"])]
        assert body["stats"] == {"total_tasks": 2, "total_dependencies": 1}


class TestProjectPermissions:
    @pytest.mark.asyncio
    async def test_read_only_token_cannot_create(
        self, async_client: AsyncClient, issue_token
    ) -> None:
        token = await issue_token(scopes="read")
        headers = {"Authorization": f"Bearer {token['token']}"}

        assert (await async_client.get("/api/projects", headers=headers)).status_code == 200
        response = await async_client.post("/api/projects", json={"name": "X"}, headers=headers)
        assert response.status_code == 403
        assert response.json()["required_scope"] == "write"

    @pytest.mark.asyncio
    async def test_x_api_key_header(self, async_client: AsyncClient, issue_token) -> None:
        token = await issue_token()
        response = await async_client.get("/api/projects", headers={"X-API-Key": token["token"]})
        assert response.status_code == 200
