"""Shared test fixtures for CollabFlow."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from collabflow.config import Settings
from collabflow.database import create_engine
from collabflow.main import close_app_state, create_app, init_app_state
from collabflow.models.base import Base

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from fastapi import FastAPI
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"
TEST_PASSWORD = "correct-horse-battery"
MEMORY_GRAPH_URL = "http://memory.test/api/memory"


class FakeDropbox:
    """In-process stand-in for the Dropbox HTTP API, served through httpx.MockTransport.

    Files live in ``files`` keyed by path. ``fail(operation, ...)`` makes every
    later call of that operation answer with the given status and body.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.calls: list[tuple[str, httpx.Request]] = []
        self.failures: dict[str, tuple[int, Any]] = {}
        self.token_responses: list[tuple[int, Any]] = []
        self.expires_in = 14400
        self._issued = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, operation: str, status_code: int = 500, body: Any = None) -> None:
        self.failures[operation] = (
            status_code,
            body if body is not None else {"error_summary": "internal_error/"},
        )

    def calls_to(self, operation: str) -> list[httpx.Request]:
        return [request for op, request in self.calls if op == operation]

    def handle(self, request: httpx.Request) -> httpx.Response:
        operation = self._operation(request)
        self.calls.append((operation, request))
        if operation in self.failures:
            status_code, body = self.failures[operation]
            return httpx.Response(status_code, json=body)
        handler = getattr(self, f"_{operation}")
        response: httpx.Response = handler(request)
        return response

    @staticmethod
    def _operation(request: httpx.Request) -> str:
        path = request.url.path
        if request.url.host == "memory.test":
            return "memory_graph"
        return {
            "/2/files/upload": "upload",
            "/2/files/download": "download",
            "/2/files/delete_v2": "delete",
            "/2/auth/token/revoke": "revoke",
            "/oauth2/token": "token",
        }[path]

    def _upload(self, request: httpx.Request) -> httpx.Response:
        arg = json.loads(request.headers["Dropbox-API-Arg"])
        path = arg["path"]
        if path in self.files and arg.get("autorename"):
            base, dot, ext = path.rpartition(".")
            counter = 1
            while path in self.files:
                path = f"{base} ({counter}){dot}{ext}" if dot else f"{arg['path']} ({counter})"
                counter += 1
        self.files[path] = request.content
        return httpx.Response(
            200,
            json={
                "name": path.rsplit("/", 1)[-1],
                "path_display": path,
                "path_lower": path.lower(),
                "size": len(request.content),
            },
        )

    def _download(self, request: httpx.Request) -> httpx.Response:
        path = json.loads(request.headers["Dropbox-API-Arg"])["path"]
        if path not in self.files:
            return httpx.Response(409, json={"error_summary": "path/not_found/"})
        content = self.files[path]
        return httpx.Response(
            200,
            content=content,
            headers={
                "Content-Type": "application/octet-stream",
                "Dropbox-API-Result": json.dumps({"path_display": path, "size": len(content)}),
            },
        )

    def _delete(self, request: httpx.Request) -> httpx.Response:
        path = json.loads(request.content)["path"]
        if self.files.pop(path, None) is None:
            return httpx.Response(409, json={"error_summary": "path_lookup/not_found/"})
        return httpx.Response(200, json={"metadata": {"path_display": path}})

    def _revoke(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=None)

    def _token(self, request: httpx.Request) -> httpx.Response:
        if self.token_responses:
            status_code, error_body = self.token_responses.pop(0)
            return httpx.Response(status_code, json=error_body)
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self._issued += 1
        body: dict[str, Any] = {
            "access_token": f"sl.access-{self._issued}",
            "token_type": "bearer",
            "expires_in": self.expires_in,
            "account_id": "dbid:test-account",
        }
        if form.get("grant_type") == "authorization_code":
            body["refresh_token"] = f"refresh-{self._issued}"
        return httpx.Response(200, json=body)

    def _memory_graph(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": True})


def make_settings(tmp_path: Path, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "secret_key": TEST_SECRET_KEY,
        "debug": True,
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        "dropbox_app_key": "test-app-key",
        "dropbox_app_secret": "test-app-secret",
        "dropbox_redirect_uri": "http://test/api/auth/storage/callback",
    }
    values.update(overrides)
    return Settings(**values)


@asynccontextmanager
async def create_test_app(
    settings: Settings, dropbox: FakeDropbox
) -> AsyncGenerator[FastAPI]:
    """Create an app with state initialised by the same code the lifespan runs.

    ASGITransport does not trigger the lifespan, so it is done here by hand.
    """
    app = create_app(settings)
    settings.validate_runtime_security()
    await init_app_state(app, transport=dropbox.transport)
    try:
        yield app
    finally:
        await close_app_state(app)


@asynccontextmanager
async def create_test_client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def fake_dropbox() -> FakeDropbox:
    return FakeDropbox()


@pytest.fixture
async def db(
    test_settings: Settings,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]]]:
    """Engine and session factory over a fresh schema, without the HTTP app."""
    engine, session_factory = create_engine(test_settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine, session_factory
    await engine.dispose()


@pytest.fixture
def session_factory(
    db: tuple[AsyncEngine, async_sessionmaker[AsyncSession]],
) -> async_sessionmaker[AsyncSession]:
    return db[1]


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def app(test_settings: Settings, fake_dropbox: FakeDropbox) -> AsyncGenerator[FastAPI]:
    async with create_test_app(test_settings, fake_dropbox) as application:
        yield application


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with create_test_client(app) as ac:
        yield ac


async def register_and_login(
    client: AsyncClient, username: str = "alice", display_name: str | None = None
) -> dict[str, str]:
    """Register a user and return Authorization headers for it."""
    resp = await client.post(
        "/api/auth/register",
        json={
            "username": username,
            "email": f"{username}@example.com",
            "password": TEST_PASSWORD,
            "display_name": display_name,
        },
    )
    assert resp.status_code == 201, resp.text
    resp = await client.post(
        "/api/auth/login", json={"username": username, "password": TEST_PASSWORD}
    )
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


async def connect_storage(client: AsyncClient, headers: dict[str, str]) -> dict[str, Any]:
    """Run the code exchange so the user has a stored Dropbox credential."""
    resp = await client.post(
        "/api/auth/storage/token",
        json={
            "code": "auth-code",
            "codeVerifier": "v" * 64,
            "redirectUri": "http://test/api/auth/storage/callback",
        },
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    data: dict[str, Any] = resp.json()
    return data


async def upload_file(
    client: AsyncClient,
    headers: dict[str, str],
    name: str = "report.pdf",
    content: bytes = b"%PDF-1.4 test",
    content_type: str = "application/pdf",
    **form: str,
) -> httpx.Response:
    return await client.post(
        "/api/documents/upload",
        files={"file": (name, content, content_type)},
        data=form,
        headers=headers,
    )


async def upload_version(
    client: AsyncClient,
    headers: dict[str, str],
    document_id: int,
    name: str = "report.pdf",
    content: bytes = b"%PDF-1.4 second",
) -> httpx.Response:
    return await client.post(
        "/api/documents/version",
        files={"file": (name, content, "application/pdf")},
        data={"documentId": str(document_id)},
        headers=headers,
    )
