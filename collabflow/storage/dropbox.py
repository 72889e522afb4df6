"""Dropbox storage gateway and OAuth token client using the Dropbox HTTP API."""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from collabflow.exceptions import (
    ReauthorizationRequiredError,
    RemoteStorageError,
    StorageConfigurationError,
    UpstreamServiceError,
)
from collabflow.storage.base import DownloadResult, TokenGrant, UploadResult

logger = logging.getLogger(__name__)

DROPBOX_AUTH_URL = "https://www.dropbox.com/oauth2/authorize"
DROPBOX_TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
DROPBOX_API_URL = "https://api.dropboxapi.com/2"
DROPBOX_CONTENT_URL = "https://content.dropboxapi.com/2"

# Token endpoint errors meaning the grant can never succeed again.
REAUTH_ERRORS = frozenset({"invalid_grant", "expired_token"})

# Lifetime of Dropbox short-lived access tokens, used when a response omits expires_in.
DEFAULT_TOKEN_LIFETIME_SECONDS = 14400

_MAX_LOGGED_BODY = 500


def _api_arg(payload: dict[str, Any]) -> str:
    """Encode a Dropbox-API-Arg header value (non-ASCII escaped as \\uXXXX)."""
    return json.dumps(payload, ensure_ascii=True, separators=(",", ":"))


def _error_tag(data: Any) -> str:
    """Extract the error code from a token endpoint or API error body."""
    if not isinstance(data, dict):
        return ""
    error = data.get("error")
    if isinstance(error, dict):
        return str(error.get(".tag", ""))
    if isinstance(error, str):
        return error
    return ""


class DropboxStorage:
    """File gateway for Dropbox's content and files endpoints."""

    provider: str = "dropbox"

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    async def upload(self, access_token: str, path: str, content: bytes) -> UploadResult:
        """Upload with ``mode=add`` and autorename; returns the confirmed path."""
        arg = {
            "path": path,
            "mode": "add",
            "autorename": True,
            "mute": False,
            "strict_conflict": False,
        }
        try:
            resp = await self._http.post(
                f"{DROPBOX_CONTENT_URL}/files/upload",
                content=content,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Dropbox-API-Arg": _api_arg(arg),
                    "Content-Type": "application/octet-stream",
                },
            )
        except httpx.HTTPError as exc:
            logger.exception("Dropbox upload HTTP error for %s", path)
            raise RemoteStorageError(f"Upload failed: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Dropbox upload error for %s: %s %s",
                path,
                resp.status_code,
                resp.text[:_MAX_LOGGED_BODY],
            )
            raise RemoteStorageError(
                "Failed to upload to Dropbox", status_code=resp.status_code, body=resp.text
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise RemoteStorageError(
                "Dropbox upload returned malformed JSON",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc
        confirmed = data.get("path_display") if isinstance(data, dict) else None
        if not confirmed:
            raise RemoteStorageError(
                "Dropbox upload response missing path_display",
                status_code=resp.status_code,
                body=resp.text,
            )
        size = data.get("size")
        return UploadResult(path=confirmed, size=size if isinstance(size, int) else len(content))

    async def download(self, access_token: str, path: str) -> DownloadResult:
        """Download a file; the whole body is read before returning."""
        try:
            resp = await self._http.post(
                f"{DROPBOX_CONTENT_URL}/files/download",
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Dropbox-API-Arg": _api_arg({"path": path}),
                },
            )
        except httpx.HTTPError as exc:
            logger.exception("Dropbox download HTTP error for %s", path)
            raise RemoteStorageError(f"Download failed: {exc}") from exc

        if not resp.is_success:
            logger.error(
                "Dropbox download error for %s: %s %s",
                path,
                resp.status_code,
                resp.text[:_MAX_LOGGED_BODY],
            )
            raise RemoteStorageError(
                "Failed to download from Dropbox", status_code=resp.status_code, body=resp.text
            )

        content = resp.content
        size = len(content)
        api_result = resp.headers.get("Dropbox-API-Result")
        if api_result:
            try:
                reported = json.loads(api_result).get("size")
            except (ValueError, AttributeError):
                logger.warning("Unparseable Dropbox-API-Result header for %s", path)
            else:
                if isinstance(reported, int):
                    size = reported
        return DownloadResult(content=content, size=size)

    async def delete(self, access_token: str, path: str) -> None:
        try:
            resp = await self._http.post(
                f"{DROPBOX_API_URL}/files/delete_v2",
                json={"path": path},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise RemoteStorageError(f"Delete failed: {exc}") from exc
        if not resp.is_success:
            raise RemoteStorageError(
                f"Dropbox delete failed: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )

    async def revoke(self, access_token: str) -> None:
        try:
            resp = await self._http.post(
                f"{DROPBOX_API_URL}/auth/token/revoke",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Token revocation failed: {exc}") from exc
        if not resp.is_success:
            raise UpstreamServiceError(
                f"Dropbox token revocation failed: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )


class DropboxOAuthClient:
    """Client for Dropbox's OAuth 2 authorize and token endpoints."""

    provider: str = "dropbox"

    def __init__(self, http_client: httpx.AsyncClient, app_key: str, app_secret: str) -> None:
        self._http = http_client
        self._app_key = app_key
        self._app_secret = app_secret

    def _require_credentials(self) -> None:
        if not self._app_key or not self._app_secret:
            msg = "Dropbox API credentials not configured"
            raise StorageConfigurationError(msg)

    def authorization_url(self, state: str, code_challenge: str, redirect_uri: str) -> str:
        """Build the consent URL (offline access, PKCE S256, forced re-approval)."""
        self._require_credentials()
        query = urlencode(
            {
                "client_id": self._app_key,
                "response_type": "code",
                "redirect_uri": redirect_uri,
                "state": state,
                "token_access_type": "offline",
                "code_challenge": code_challenge,
                "code_challenge_method": "S256",
                "force_reapprove": "true",
            }
        )
        return f"{DROPBOX_AUTH_URL}?{query}"

    async def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> TokenGrant:
        """Exchange an authorization code (PKCE) for an access/refresh token pair."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            },
            fallback_refresh_token=None,
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token.

        Dropbox usually omits ``refresh_token`` on refresh; the input token is
        carried over in that case.
        """
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            fallback_refresh_token=refresh_token,
        )

    async def _token_request(
        self, form: dict[str, str], fallback_refresh_token: str | None
    ) -> TokenGrant:
        self._require_credentials()
        grant_type = form["grant_type"]
        try:
            resp = await self._http.post(
                DROPBOX_TOKEN_URL,
                data=form,
                auth=(self._app_key, self._app_secret),
            )
        except httpx.HTTPError as exc:
            logger.exception("Dropbox token request (%s) HTTP error", grant_type)
            raise UpstreamServiceError(f"Token request failed: {exc}") from exc

        try:
            data: Any = resp.json()
        except ValueError:
            data = None

        if not resp.is_success:
            logger.error(
                "Dropbox token request (%s) failed: %s %s",
                grant_type,
                resp.status_code,
                resp.text[:_MAX_LOGGED_BODY],
            )
            if _error_tag(data) in REAUTH_ERRORS:
                description = data.get("error_description") or "Authorization expired"
                raise ReauthorizationRequiredError(description)
            description = ""
            if isinstance(data, dict):
                description = str(data.get("error_description") or "")
            raise UpstreamServiceError(
                description or "Token request failed",
                status_code=resp.status_code,
                body=resp.text,
            )

        if not isinstance(data, dict):
            raise UpstreamServiceError(
                "Token endpoint returned malformed JSON",
                status_code=resp.status_code,
                body=resp.text,
            )
        access_token = data.get("access_token")
        if not access_token:
            raise UpstreamServiceError(
                "Token response missing access_token",
                status_code=resp.status_code,
                body=resp.text,
            )
        raw_expires_in = data.get("expires_in")
        if raw_expires_in is None:
            logger.warning(
                "Token response has no expires_in; assuming %ds", DEFAULT_TOKEN_LIFETIME_SECONDS
            )
            raw_expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS
        try:
            expires_in = int(raw_expires_in)
        except (TypeError, ValueError) as exc:
            raise UpstreamServiceError(
                "Token response has invalid expires_in",
                status_code=resp.status_code,
                body=resp.text,
            ) from exc

        account_id = data.get("account_id")
        return TokenGrant(
            access_token=str(access_token),
            refresh_token=data.get("refresh_token") or fallback_refresh_token,
            account_id=str(account_id) if account_id is not None else None,
            expires_in=expires_in,
        )
