"""Storage provider (Dropbox) connection endpoints: consent, token exchange, refresh, revoke."""

from __future__ import annotations

import logging
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from collabflow.api.deps import (
    get_oauth_state_store,
    get_settings,
    get_sync_context,
    require_auth,
)
from collabflow.config import Settings
from collabflow.models.user import User
from collabflow.schemas.storage import (
    AuthorizeResponse,
    ConnectionStatusResponse,
    RefreshTokenRequest,
    RevokeRequest,
    RevokeResponse,
    TokenBundleResponse,
    TokenExchangeRequest,
)
from collabflow.services.context import SyncContext
from collabflow.services.token_service import (
    TokenBundle,
    connection_status,
    exchange_code,
    refresh_access_token,
    revoke_storage_access,
)
from collabflow.storage.oauth_state import (
    OAuthStateStore,
    create_pkce_challenge,
    create_state_token,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth/storage", tags=["storage-auth"])


def _redirect_uri(request: Request, settings: Settings) -> str:
    return settings.dropbox_redirect_uri or str(request.url_for("storage_callback"))


def _with_query(path: str, params: dict[str, str]) -> str:
    separator = "&" if "?" in path else "?"
    return f"{path}{separator}{urlencode(params)}"


def _bundle_response(bundle: TokenBundle) -> TokenBundleResponse:
    return TokenBundleResponse(
        access_token=bundle.access_token,
        refresh_token=bundle.refresh_token,
        account_id=bundle.account_id,
        expires_in=bundle.expires_in,
        expires_at=bundle.expires_at,
        persisted=bundle.persisted,
    )


@router.get("/authorize", response_model=AuthorizeResponse)
async def authorize(
    request: Request,
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    state_store: Annotated[OAuthStateStore, Depends(get_oauth_state_store)],
) -> AuthorizeResponse:
    """Start the consent flow; the PKCE verifier stays server-side under ``state``."""
    redirect_uri = _redirect_uri(request, ctx.settings)
    verifier, challenge = create_pkce_challenge()
    state = create_state_token()
    url = ctx.oauth.authorization_url(state, challenge, redirect_uri)
    state_store.set(
        state,
        {"user_id": user.id, "code_verifier": verifier, "redirect_uri": redirect_uri},
    )
    return AuthorizeResponse(url=url, state=state)


@router.get("/callback", name="storage_callback")
async def callback(
    settings: Annotated[Settings, Depends(get_settings)],
    code: Annotated[str | None, Query(max_length=2048)] = None,
    state: Annotated[str | None, Query(max_length=512)] = None,
    error: Annotated[str | None, Query(max_length=200)] = None,
    error_description: Annotated[str | None, Query(max_length=1000)] = None,
) -> RedirectResponse:
    """Forward the provider's redirect to the page that performs the token exchange."""
    if error:
        logger.warning("Storage consent returned error %s: %s", error, error_description)
        params = {"error": error, "auth_source": "dropbox"}
        if error_description:
            params["error_description"] = error_description
        return RedirectResponse(_with_query(settings.documents_page, params))

    missing = [name for name, value in (("code", code), ("state", state)) if not value]
    if missing:
        logger.warning("Storage consent callback missing %s", ", ".join(missing))
        return RedirectResponse(
            _with_query(
                settings.documents_page,
                {"error": "missing_params", "missing": ",".join(missing)},
            )
        )

    return RedirectResponse(
        _with_query(
            settings.token_exchange_page,
            {"code": code or "", "state": state or "", "source": "api_callback"},
        )
    )


@router.post("/token", response_model=TokenBundleResponse)
async def exchange_token(
    body: TokenExchangeRequest,
    request: Request,
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    state_store: Annotated[OAuthStateStore, Depends(get_oauth_state_store)],
) -> TokenBundleResponse:
    """Exchange an authorization code for tokens and store them for the caller."""
    if not body.code:
        raise ValueError("Authorization code is required")

    pending: dict[str, object] = {}
    if body.state:
        entry = state_store.pop(body.state)
        if entry is None or entry.get("user_id") != user.id:
            raise ValueError("Invalid or expired OAuth state")
        pending = entry

    code_verifier = body.code_verifier or pending.get("code_verifier")
    if not isinstance(code_verifier, str) or not code_verifier:
        raise ValueError("PKCE code verifier is required")
    redirect_uri = body.redirect_uri or pending.get("redirect_uri")
    if not isinstance(redirect_uri, str) or not redirect_uri:
        redirect_uri = _redirect_uri(request, ctx.settings)

    bundle = await exchange_code(ctx, user.id, body.code, code_verifier, redirect_uri)
    return _bundle_response(bundle)


@router.get("/token", response_model=ConnectionStatusResponse)
async def token_status(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> ConnectionStatusResponse:
    """Whether the caller has a stored credential; the token itself is never returned."""
    return ConnectionStatusResponse.model_validate(await connection_status(ctx, user.id))


@router.post("/refresh", response_model=TokenBundleResponse)
async def refresh(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    body: RefreshTokenRequest | None = None,
) -> TokenBundleResponse:
    """Refresh the caller's access token; 401 with ``requires_reauth`` when the grant is dead."""
    bundle = await refresh_access_token(ctx, user.id, body.refresh_token if body else None)
    return _bundle_response(bundle)


@router.post("/revoke", response_model=RevokeResponse)
async def revoke(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    body: RevokeRequest | None = None,
) -> RevokeResponse:
    """Revoke at the provider when possible; the local credential is always removed."""
    await revoke_storage_access(ctx, user.id, body.token if body else None)
    return RevokeResponse()
