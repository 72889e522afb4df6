"""Integration tests for the document sync endpoints."""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING, Any

import pytest

from tests.conftest import (
    MEMORY_GRAPH_URL,
    FakeDropbox,
    connect_storage,
    create_test_app,
    create_test_client,
    make_settings,
    register_and_login,
    upload_file,
    upload_version,
)

if TYPE_CHECKING:
    from pathlib import Path

    from fastapi import FastAPI
    from httpx import AsyncClient

UPLOAD_PATH_RE = re.compile(r"^/CollabFlow/\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z_report\.pdf$")


async def _history(
    client: AsyncClient, headers: dict[str, str], document_id: int
) -> dict[str, Any]:
    resp = await client.get("/api/documents/versions", params={"id": document_id}, headers=headers)
    assert resp.status_code == 200, resp.text
    data: dict[str, Any] = resp.json()
    return data


@pytest.fixture
async def alice(client: AsyncClient) -> dict[str, str]:
    headers = await register_and_login(client, "alice", display_name="Alice Liddell")
    await connect_storage(client, headers)
    return headers


class TestUpload:
    async def test_upload_new_document_creates_version_one(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        content = b"x" * 10240
        resp = await upload_file(client, alice, "report.pdf", content, "application/pdf")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["success"] is True
        document = data["document"]
        assert document["name"] == "report.pdf"
        assert document["size"] == 10240
        assert document["mime_type"] == "application/pdf"
        assert document["is_synced"] is True
        assert document["last_synced"] is not None
        assert UPLOAD_PATH_RE.match(document["remote_path"])
        assert fake_dropbox.files[document["remote_path"]] == content

        upload_call = fake_dropbox.calls_to("upload")[0]
        arg = json.loads(upload_call.headers["Dropbox-API-Arg"])
        assert arg["mode"] == "add"
        assert arg["autorename"] is True
        assert upload_call.headers["Authorization"] == "Bearer sl.access-1"

        history = await client.get(
            "/api/documents/versions", params={"id": document["id"]}, headers=alice
        )
        assert history.status_code == 200
        versions = history.json()["versions"]
        assert [v["version_number"] for v in versions] == [1]
        assert versions[0]["remote_path"] == document["remote_path"]
        logs = history.json()["syncLogs"]
        assert [(e["operation"], e["status"]) for e in logs] == [("upload", "success")]

    async def test_upload_without_file_returns_400(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        resp = await client.post("/api/documents/upload", data={}, headers=alice)
        assert resp.status_code == 400
        assert resp.json() == {"error": "No file provided"}

    async def test_upload_without_storage_connection_returns_400(
        self, client: AsyncClient, fake_dropbox: FakeDropbox
    ) -> None:
        headers = await register_and_login(client, "carol")
        resp = await upload_file(client, headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Dropbox not connected"
        assert fake_dropbox.calls_to("upload") == []

    async def test_upload_requires_authentication(self, client: AsyncClient) -> None:
        resp = await upload_file(client, {})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    async def test_upstream_failure_returns_500_and_creates_nothing(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        fake_dropbox.fail("upload", 500)
        resp = await upload_file(client, alice)
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to upload to Dropbox"
        assert resp.json()["upstream_status"] == 500

        listing = await client.get("/api/documents", headers=alice)
        assert listing.json()["documents"] == []

    async def test_upload_to_foreign_project_is_rejected_before_upload(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        bob = await register_and_login(client, "bob")
        project = await client.post("/api/projects", json={"name": "Bob's"}, headers=bob)
        resp = await upload_file(client, alice, projectId=str(project.json()["id"]))
        assert resp.status_code == 404
        assert fake_dropbox.calls_to("upload") == []

    async def test_upload_links_project(self, client: AsyncClient, alice: dict[str, str]) -> None:
        project = await client.post("/api/projects", json={"name": "Launch"}, headers=alice)
        project_id = project.json()["id"]
        resp = await upload_file(client, alice, projectId=str(project_id), description="Q3")
        assert resp.status_code == 200, resp.text
        document = resp.json()["document"]
        assert document["project_ids"] == [project_id]
        assert document["description"] == "Q3"

        listing = await client.get(
            "/api/documents", params={"project_id": project_id}, headers=alice
        )
        assert [d["id"] for d in listing.json()["documents"]] == [document["id"]]

    async def test_expired_token_is_refreshed_before_upload(
        self, client: AsyncClient, fake_dropbox: FakeDropbox
    ) -> None:
        fake_dropbox.expires_in = 0
        headers = await register_and_login(client, "dave")
        await connect_storage(client, headers)
        fake_dropbox.expires_in = 14400

        resp = await upload_file(client, headers)
        assert resp.status_code == 200, resp.text
        token_calls = fake_dropbox.calls_to("token")
        assert len(token_calls) == 2
        assert b"grant_type=refresh_token" in token_calls[1].content
        assert fake_dropbox.calls_to("upload")[0].headers["Authorization"] == "Bearer sl.access-2"

        status = await client.get("/api/auth/storage/token", headers=headers)
        assert status.json()["needs_refresh"] is False

    async def test_upload_over_size_limit_returns_413(
        self, tmp_path: Path, fake_dropbox: FakeDropbox
    ) -> None:
        settings = make_settings(tmp_path, max_upload_size_mb=1)
        async with create_test_app(settings, fake_dropbox) as app, create_test_client(app) as ac:
            headers = await register_and_login(ac, "erin")
            await connect_storage(ac, headers)
            resp = await upload_file(ac, headers, content=b"x" * (1024 * 1024 + 1))
        assert resp.status_code == 413
        assert fake_dropbox.calls_to("upload") == []


class TestVersions:
    async def test_second_upload_becomes_version_two(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        first = (await upload_file(client, alice)).json()["document"]
        resp = await upload_version(client, alice, first["id"], content=b"second version!")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["success"] is True
        assert data["versionNumber"] == 2
        assert data["version"]["version_number"] == 2
        assert data["version"]["remote_path"].endswith("_report_v2.pdf")

        document = (await client.get(f"/api/documents/{first['id']}", headers=alice)).json()
        assert document["remote_path"] == data["version"]["remote_path"]
        assert document["size"] == len(b"second version!")
        assert document["is_synced"] is True

        history = await client.get(
            "/api/documents/versions", params={"id": first["id"]}, headers=alice
        )
        versions = history.json()["versions"]
        assert [v["version_number"] for v in versions] == [2, 1]
        assert versions[0]["user"] == {"full_name": "Alice Liddell", "avatar_url": None}

    async def test_version_for_foreign_document_returns_404(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        bob = await register_and_login(client, "bob")
        await connect_storage(client, bob)

        resp = await upload_version(client, bob, document["id"])
        assert resp.status_code == 404
        assert len(fake_dropbox.calls_to("upload")) == 1

    async def test_failed_version_upload_is_logged_and_leaves_pointer(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        fake_dropbox.fail("upload", 503)

        resp = await upload_version(client, alice, document["id"])
        assert resp.status_code == 500

        current = (await client.get(f"/api/documents/{document['id']}", headers=alice)).json()
        assert current["remote_path"] == document["remote_path"]
        history = await _history(client, alice, document["id"])
        assert [v["version_number"] for v in history["versions"]] == [1]
        latest_log = history["syncLogs"][0]
        assert latest_log["operation"] == "upload"
        assert latest_log["status"] == "failed"
        assert latest_log["error_message"]

    async def test_concurrent_version_uploads_get_distinct_numbers(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        responses = await asyncio.gather(
            *(
                upload_version(client, alice, document["id"], content=f"v{i}".encode())
                for i in range(12)
            )
        )
        assert [r.status_code for r in responses] == [200] * 12, [r.text for r in responses]
        numbers = sorted(r.json()["versionNumber"] for r in responses)
        assert numbers == list(range(2, 14))

        history = await _history(client, alice, document["id"])
        assert [v["version_number"] for v in history["versions"]] == list(range(13, 0, -1))
        current = (await client.get(f"/api/documents/{document['id']}", headers=alice)).json()
        assert current["remote_path"] == history["versions"][0]["remote_path"]

    async def test_versions_requires_id(self, client: AsyncClient, alice: dict[str, str]) -> None:
        resp = await client.get("/api/documents/versions", headers=alice)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Document ID is required"}


class TestDownload:
    async def test_download_latest_and_specific_version(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        document = (await upload_file(client, alice, content=b"first")).json()["document"]
        await upload_version(client, alice, document["id"], content=b"second!")

        latest = await client.get(
            "/api/documents/download", params={"id": document["id"]}, headers=alice
        )
        assert latest.status_code == 200
        assert latest.content == b"second!"
        assert latest.headers["content-type"] == "application/pdf"
        assert latest.headers["content-disposition"] == 'attachment; filename="report.pdf"'
        assert latest.headers["content-length"] == str(len(b"second!"))

        first = await client.get(
            "/api/documents/version",
            params={"id": document["id"], "version": 1},
            headers=alice,
        )
        assert first.status_code == 200
        assert first.content == b"first"

        history = await _history(client, alice, document["id"])
        downloads = [e for e in history["syncLogs"] if e["operation"] == "download"]
        assert len(downloads) == 2
        assert all(e["status"] == "success" for e in downloads)

    async def test_download_unknown_version_returns_404(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        resp = await client.get(
            "/api/documents/version",
            params={"id": document["id"], "version": 7},
            headers=alice,
        )
        assert resp.status_code == 404
        assert resp.json() == {"error": "Version not found"}

    async def test_download_upstream_failure_returns_500(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        fake_dropbox.fail("download", 500)
        resp = await client.get(
            "/api/documents/download", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 500
        assert resp.json()["error"] == "Failed to download from Dropbox"

    async def test_non_ascii_filename_uses_rfc5987_disposition(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        document = (await upload_file(client, alice, name="résumé.pdf")).json()["document"]
        resp = await client.get(
            "/api/documents/download", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 200
        assert "filename*=UTF-8''r%C3%A9sum%C3%A9.pdf" in resp.headers["content-disposition"]


class TestDelete:
    async def test_delete_removes_versions_links_and_remote_files(
        self,
        app: FastAPI,
        client: AsyncClient,
        alice: dict[str, str],
        fake_dropbox: FakeDropbox,
    ) -> None:
        project = (await client.post("/api/projects", json={"name": "P"}, headers=alice)).json()
        document = (
            await upload_file(client, alice, projectId=str(project["id"]))
        ).json()["document"]
        await upload_version(client, alice, document["id"])
        assert len(fake_dropbox.files) == 2

        resp = await client.delete(
            "/api/documents/delete", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "remote_deleted": True}
        assert fake_dropbox.files == {}

        repo = app.state.repository
        assert await repo.list_versions(document["id"]) == []
        assert await repo.get_project_ids(document["id"]) == []
        assert await repo.list_sync_log(document["id"]) == []
        missing = await client.get(f"/api/documents/{document['id']}", headers=alice)
        assert missing.status_code == 404

    async def test_delete_succeeds_when_remote_delete_fails(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        fake_dropbox.fail("delete", 500)

        resp = await client.delete(
            "/api/documents/delete", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 200
        assert resp.json()["remote_deleted"] is False
        listing = await client.get("/api/documents", headers=alice)
        assert listing.json()["documents"] == []

    async def test_failed_document_row_delete_returns_500_after_cascade(
        self,
        app: FastAPI,
        client: AsyncClient,
        alice: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        project = (await client.post("/api/projects", json={"name": "P"}, headers=alice)).json()
        document = (
            await upload_file(client, alice, projectId=str(project["id"]))
        ).json()["document"]
        repo = app.state.repository

        async def failing_delete(document_id: int) -> bool:
            raise RuntimeError("database went away")

        monkeypatch.setattr(repo, "delete_document", failing_delete)
        resp = await client.delete(
            "/api/documents/delete", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}
        assert await repo.list_versions(document["id"]) == []
        assert await repo.get_project_ids(document["id"]) == []
        assert await repo.list_sync_log(document["id"]) == []
        assert await repo.get_document(document["id"], document["user_id"]) is not None

    async def test_document_vanishing_before_row_delete_returns_500(
        self,
        app: FastAPI,
        client: AsyncClient,
        alice: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]

        async def nothing_deleted(document_id: int) -> bool:
            return False

        monkeypatch.setattr(app.state.repository, "delete_document", nothing_deleted)
        resp = await client.delete(
            "/api/documents/delete", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 500

    async def test_foreign_owner_delete_returns_404_and_keeps_document(
        self, client: AsyncClient, alice: dict[str, str], fake_dropbox: FakeDropbox
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]
        bob = await register_and_login(client, "bob")

        resp = await client.delete(
            "/api/documents/delete", params={"id": document["id"]}, headers=bob
        )
        assert resp.status_code == 404
        assert fake_dropbox.calls_to("delete") == []
        assert document["remote_path"] in fake_dropbox.files
        still_there = await client.get(f"/api/documents/{document['id']}", headers=alice)
        assert still_there.status_code == 200


class TestSyncLogFailures:
    async def test_sync_log_failure_does_not_fail_transfers(
        self,
        app: FastAPI,
        client: AsyncClient,
        alice: dict[str, str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        attempts: list[str] = []

        async def failing_append(**entry: object) -> None:
            attempts.append(f"{entry['operation']}/{entry['status']}")
            raise RuntimeError("sync log table is locked")

        monkeypatch.setattr(app.state.repository, "append_sync_log", failing_append)

        uploaded = await upload_file(client, alice)
        assert uploaded.status_code == 200, uploaded.text
        document_id = uploaded.json()["document"]["id"]

        version = await upload_version(client, alice, document_id)
        assert version.status_code == 200, version.text
        assert version.json()["versionNumber"] == 2

        download = await client.get(
            "/api/documents/download", params={"id": document_id}, headers=alice
        )
        assert download.status_code == 200
        assert download.content == b"%PDF-1.4 second"

        assert attempts == ["upload/success", "upload/success", "download/success"]
        assert (await _history(client, alice, document_id))["syncLogs"] == []

    async def test_sync_log_failure_keeps_upstream_error(
        self,
        app: FastAPI,
        client: AsyncClient,
        alice: dict[str, str],
        fake_dropbox: FakeDropbox,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        document = (await upload_file(client, alice)).json()["document"]

        async def failing_append(**entry: object) -> None:
            raise RuntimeError("sync log table is locked")

        monkeypatch.setattr(app.state.repository, "append_sync_log", failing_append)
        fake_dropbox.fail("download", 500)
        resp = await client.get(
            "/api/documents/download", params={"id": document["id"]}, headers=alice
        )
        assert resp.status_code == 500
        assert resp.json()["upstream_status"] == 500


class TestMetadata:
    async def test_patch_renames_and_replaces_projects(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        p1 = (await client.post("/api/projects", json={"name": "One"}, headers=alice)).json()
        p2 = (await client.post("/api/projects", json={"name": "Two"}, headers=alice)).json()
        document = (
            await upload_file(client, alice, projectId=str(p1["id"]))
        ).json()["document"]

        resp = await client.patch(
            f"/api/documents/{document['id']}",
            json={"name": "final.pdf", "project_ids": [p2["id"]]},
            headers=alice,
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["name"] == "final.pdf"
        assert resp.json()["project_ids"] == [p2["id"]]

    async def test_patch_with_foreign_project_returns_404(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        bob = await register_and_login(client, "bob")
        foreign = (await client.post("/api/projects", json={"name": "B"}, headers=bob)).json()
        document = (await upload_file(client, alice)).json()["document"]
        resp = await client.patch(
            f"/api/documents/{document['id']}",
            json={"project_ids": [foreign["id"]]},
            headers=alice,
        )
        assert resp.status_code == 404

    async def test_list_reports_project_ids_per_document(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        p1 = (await client.post("/api/projects", json={"name": "One"}, headers=alice)).json()
        p2 = (await client.post("/api/projects", json={"name": "Two"}, headers=alice)).json()
        both = (await upload_file(client, alice, "both.pdf")).json()["document"]
        await client.patch(
            f"/api/documents/{both['id']}",
            json={"project_ids": [p2["id"], p1["id"]]},
            headers=alice,
        )
        loose = (await upload_file(client, alice, "loose.pdf")).json()["document"]

        listing = await client.get("/api/documents", headers=alice)
        assert listing.status_code == 200
        project_ids = {d["id"]: d["project_ids"] for d in listing.json()["documents"]}
        assert project_ids == {both["id"]: sorted([p1["id"], p2["id"]]), loose["id"]: []}

    async def test_list_only_returns_own_documents(
        self, client: AsyncClient, alice: dict[str, str]
    ) -> None:
        await upload_file(client, alice)
        bob = await register_and_login(client, "bob")
        listing = await client.get("/api/documents", headers=bob)
        assert listing.status_code == 200
        assert listing.json()["documents"] == []


class TestBackends:
    async def test_memory_backend_runs_full_cycle(
        self, tmp_path: Path, fake_dropbox: FakeDropbox
    ) -> None:
        settings = make_settings(tmp_path, data_backend="memory")
        async with create_test_app(settings, fake_dropbox) as app, create_test_client(app) as ac:
            assert app.state.repository.backend == "memory"
            headers = await register_and_login(ac, "mia", display_name="Mia")
            await connect_storage(ac, headers)

            document = (await upload_file(ac, headers)).json()["document"]
            version = await upload_version(ac, headers, document["id"])
            assert version.json()["versionNumber"] == 2

            history = await _history(ac, headers, document["id"])
            assert [v["version_number"] for v in history["versions"]] == [2, 1]
            assert history["versions"][0]["user"]["full_name"] == "Mia"

            resp = await ac.delete(
                "/api/documents/delete", params={"id": document["id"]}, headers=headers
            )
            assert resp.status_code == 200
            assert await app.state.repository.list_versions(document["id"]) == []

    async def test_memory_graph_is_notified_of_changes(
        self, tmp_path: Path, fake_dropbox: FakeDropbox
    ) -> None:
        settings = make_settings(tmp_path, memory_graph_url=MEMORY_GRAPH_URL)
        async with create_test_app(settings, fake_dropbox) as app, create_test_client(app) as ac:
            headers = await register_and_login(ac, "nick")
            await connect_storage(ac, headers)
            document = (await upload_file(ac, headers)).json()["document"]
            await upload_version(ac, headers, document["id"])
            await ac.delete("/api/documents/delete", params={"id": document["id"]}, headers=headers)

        calls = fake_dropbox.calls_to("memory_graph")
        assert [c.url.path.rsplit("/", 1)[-1] for c in calls] == [
            "create_entities",
            "add_observations",
            "delete_entities",
        ]
        created = json.loads(calls[0].content)
        assert created["entities"][0]["name"] == "Document: report.pdf"

    async def test_memory_graph_failure_does_not_fail_upload(
        self, tmp_path: Path, fake_dropbox: FakeDropbox
    ) -> None:
        fake_dropbox.fail("memory_graph", 502)
        settings = make_settings(tmp_path, memory_graph_url=MEMORY_GRAPH_URL)
        async with create_test_app(settings, fake_dropbox) as app, create_test_client(app) as ac:
            headers = await register_and_login(ac, "olga")
            await connect_storage(ac, headers)
            resp = await upload_file(ac, headers)
        assert resp.status_code == 200
