"""Base protocols and data classes for the remote storage provider."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass
class UploadResult:
    """Provider-confirmed location of an uploaded file."""

    path: str
    size: int


@dataclass
class DownloadResult:
    """Downloaded file content with the provider-reported size."""

    content: bytes
    size: int


@dataclass
class TokenGrant:
    """Tokens returned by the provider's token endpoint."""

    access_token: str
    refresh_token: str | None
    account_id: str | None
    expires_in: int


@runtime_checkable
class RemoteStorage(Protocol):
    """Protocol for provider-specific file gateways."""

    provider: str

    async def upload(self, access_token: str, path: str, content: bytes) -> UploadResult:
        """Upload bytes to ``path``. Raises RemoteStorageError on failure."""
        ...

    async def download(self, access_token: str, path: str) -> DownloadResult:
        """Download the file at ``path``. Raises RemoteStorageError on failure."""
        ...

    async def delete(self, access_token: str, path: str) -> None:
        """Delete the file at ``path``. Raises RemoteStorageError on failure."""
        ...

    async def revoke(self, access_token: str) -> None:
        """Invalidate ``access_token`` at the provider."""
        ...


@runtime_checkable
class StorageOAuthClient(Protocol):
    """Protocol for the provider's OAuth token endpoint."""

    provider: str

    def authorization_url(self, state: str, code_challenge: str, redirect_uri: str) -> str:
        """Build the consent URL the user is sent to."""
        ...

    async def exchange_code(
        self, code: str, code_verifier: str, redirect_uri: str
    ) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        ...

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access token."""
        ...
