"""Storage provider connection schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class AuthorizeResponse(BaseModel):
    """Consent URL the browser should be sent to."""

    url: str
    state: str


class TokenExchangeRequest(BaseModel):
    """Authorization code returned by the provider's consent page."""

    model_config = ConfigDict(populate_by_name=True)

    code: str | None = Field(default=None, max_length=2048)
    state: str | None = Field(default=None, max_length=512)
    code_verifier: str | None = Field(default=None, alias="codeVerifier", max_length=256)
    redirect_uri: str | None = Field(default=None, alias="redirectUri", max_length=2048)


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str | None = Field(default=None, alias="refreshToken", max_length=2048)


class RevokeRequest(BaseModel):
    token: str | None = Field(default=None, max_length=2048)


class TokenBundleResponse(BaseModel):
    """Tokens after an exchange or refresh; ``persisted`` is False when storing them failed."""

    access_token: str
    refresh_token: str | None = None
    account_id: str | None = None
    expires_in: int
    expires_at: str
    persisted: bool = True


class ConnectionStatusResponse(BaseModel):
    authenticated: bool
    needs_refresh: bool = False
    account_id: str | None = None
    expires_at: str | None = None


class RevokeResponse(BaseModel):
    success: bool = True
