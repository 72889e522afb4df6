"""Shared API dependencies: DB session, auth, sync context."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from collabflow.config import Settings
from collabflow.models.user import User
from collabflow.repository.base import DocumentRepository
from collabflow.services.auth_service import decode_access_token
from collabflow.services.context import SyncContext
from collabflow.storage.oauth_state import OAuthStateStore

security = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_repository(request: Request) -> DocumentRepository:
    repository: DocumentRepository = request.app.state.repository
    return repository


def get_oauth_state_store(request: Request) -> OAuthStateStore:
    store: OAuthStateStore = request.app.state.oauth_state_store
    return store


def get_sync_context(request: Request) -> SyncContext:
    """Bundle the startup-built service handles for one request."""
    state = request.app.state
    return SyncContext(
        settings=state.settings,
        repository=state.repository,
        storage=state.storage,
        oauth=state.storage_oauth,
        session_factory=state.session_factory,
        memory_graph=state.memory_graph,
    )


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)] = None,
    session: AsyncSession = Depends(get_session),
) -> User | None:
    """Get current authenticated user, or None if not authenticated."""
    if credentials is None:
        return None

    settings: Settings = request.app.state.settings
    payload = decode_access_token(credentials.credentials, settings.secret_key)
    if payload is None:
        return None
    user_id = payload.get("sub")
    if not isinstance(user_id, (str, int)) or (
        isinstance(user_id, str) and not user_id.isdigit()
    ):
        return None
    return await session.get(User, int(user_id))


async def require_auth(
    user: Annotated[User | None, Depends(get_current_user)],
) -> User:
    """Require authentication. Raises 401 if not authenticated."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
