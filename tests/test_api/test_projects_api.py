"""Tests for project CRUD endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from tests.conftest import connect_storage, register_and_login, upload_file

if TYPE_CHECKING:
    from httpx import AsyncClient


class TestProjects:
    async def test_create_uses_default_color(self, client: AsyncClient) -> None:
        headers = await register_and_login(client)
        resp = await client.post(
            "/api/projects", json={"name": "  Launch  ", "description": "Q3"}, headers=headers
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Launch"
        assert data["color"] == "#3B82F6"
        assert data["description"] == "Q3"

    async def test_invalid_color_is_rejected(self, client: AsyncClient) -> None:
        headers = await register_and_login(client)
        resp = await client.post(
            "/api/projects", json={"name": "P", "color": "blue"}, headers=headers
        )
        assert resp.status_code == 422
        assert resp.json()["fields"][0]["field"] == "color"

    async def test_list_is_scoped_to_owner(self, client: AsyncClient) -> None:
        alice = await register_and_login(client, "alice")
        bob = await register_and_login(client, "bob")
        await client.post("/api/projects", json={"name": "A1"}, headers=alice)
        await client.post("/api/projects", json={"name": "A2"}, headers=alice)
        await client.post("/api/projects", json={"name": "B1"}, headers=bob)

        resp = await client.get("/api/projects", headers=alice)
        assert [p["name"] for p in resp.json()] == ["A1", "A2"]

    async def test_update_and_get(self, client: AsyncClient) -> None:
        headers = await register_and_login(client)
        project = (await client.post("/api/projects", json={"name": "P"}, headers=headers)).json()
        resp = await client.patch(
            f"/api/projects/{project['id']}",
            json={"name": "Renamed", "color": "#10b981"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["color"] == "#10b981"

        fetched = await client.get(f"/api/projects/{project['id']}", headers=headers)
        assert fetched.json()["name"] == "Renamed"

    async def test_null_name_is_rejected(self, client: AsyncClient) -> None:
        headers = await register_and_login(client)
        project = (await client.post("/api/projects", json={"name": "P"}, headers=headers)).json()
        resp = await client.patch(
            f"/api/projects/{project['id']}", json={"name": None}, headers=headers
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Project name cannot be empty"}

    async def test_foreign_project_is_not_found(self, client: AsyncClient) -> None:
        alice = await register_and_login(client, "alice")
        bob = await register_and_login(client, "bob")
        project = (await client.post("/api/projects", json={"name": "P"}, headers=alice)).json()

        assert (await client.get(f"/api/projects/{project['id']}", headers=bob)).status_code == 404
        resp = await client.delete(f"/api/projects/{project['id']}", headers=bob)
        assert resp.status_code == 404
        assert (
            await client.get(f"/api/projects/{project['id']}", headers=alice)
        ).status_code == 200

    async def test_delete_keeps_linked_documents(self, client: AsyncClient) -> None:
        headers = await register_and_login(client)
        await connect_storage(client, headers)
        project = (await client.post("/api/projects", json={"name": "P"}, headers=headers)).json()
        document = (
            await upload_file(client, headers, projectId=str(project["id"]))
        ).json()["document"]

        resp = await client.delete(f"/api/projects/{project['id']}", headers=headers)
        assert resp.status_code == 204

        fetched = await client.get(f"/api/documents/{document['id']}", headers=headers)
        assert fetched.status_code == 200
        assert fetched.json()["project_ids"] == []
