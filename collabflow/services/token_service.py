"""Storage provider credential lifecycle: store, load, refresh, exchange, revoke.

Tokens are Fernet-encrypted before they reach the repository. A refresh
grant rejected by the provider discards the stored credential so the user is
asked to reconnect instead of retrying a dead token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from collabflow.exceptions import ReauthorizationRequiredError, StorageNotConnectedError
from collabflow.services.crypto_service import (
    decrypt_optional,
    decrypt_value,
    encrypt_optional,
    encrypt_value,
)
from collabflow.services.datetime_service import expires_at_from_now, is_expired, now_iso
from collabflow.services.effects import run_best_effort

if TYPE_CHECKING:
    from collabflow.services.context import SyncContext
    from collabflow.storage.base import TokenGrant

logger = logging.getLogger(__name__)


@dataclass
class StoredCredential:
    """Decrypted view of a user's credential row."""

    access_token: str
    refresh_token: str | None
    account_id: str | None
    expires_at: str


@dataclass
class TokenBundle:
    access_token: str
    refresh_token: str | None
    account_id: str | None
    expires_in: int
    expires_at: str
    persisted: bool = True


async def load_credential(ctx: SyncContext, user_id: int) -> StoredCredential | None:
    """Return the user's decrypted credential, or None when not connected."""
    row = await ctx.repository.get_credential(user_id)
    if row is None:
        return None
    secret = ctx.settings.secret_key
    try:
        return StoredCredential(
            access_token=decrypt_value(row.access_token, secret),
            refresh_token=decrypt_optional(row.refresh_token, secret),
            account_id=row.account_id,
            expires_at=row.expires_at,
        )
    except ValueError:
        logger.warning("Stored storage credential for user %d cannot be decrypted", user_id)
        return None


async def store_credential(
    ctx: SyncContext, user_id: int, grant: TokenGrant, expires_at: str
) -> None:
    secret = ctx.settings.secret_key
    await ctx.repository.upsert_credential(
        user_id=user_id,
        access_token=encrypt_value(grant.access_token, secret),
        refresh_token=encrypt_optional(grant.refresh_token, secret),
        account_id=grant.account_id,
        expires_at=expires_at,
        now=now_iso(),
    )


async def discard_credential(ctx: SyncContext, user_id: int) -> bool:
    removed = await ctx.repository.delete_credential(user_id)
    if removed:
        logger.info("Removed storage credential for user %d", user_id)
    return removed


async def _persist_grant(ctx: SyncContext, user_id: int, grant: TokenGrant) -> TokenBundle:
    expires_at = expires_at_from_now(grant.expires_in)
    bundle = TokenBundle(
        access_token=grant.access_token,
        refresh_token=grant.refresh_token,
        account_id=grant.account_id,
        expires_in=grant.expires_in,
        expires_at=expires_at,
    )
    try:
        await store_credential(ctx, user_id, grant, expires_at)
    except Exception:
        # The provider already issued the token; hand it back rather than lose it.
        logger.exception("Failed to persist storage credential for user %d", user_id)
        bundle.persisted = False
    return bundle


async def refresh_access_token(
    ctx: SyncContext, user_id: int, refresh_token: str | None
) -> TokenBundle:
    """Exchange ``refresh_token`` for a new access token and store it.

    Raises ValueError for an empty token, StorageConfigurationError without app
    credentials, ReauthorizationRequiredError when the grant is dead and
    UpstreamServiceError for any other provider failure.
    """
    if not refresh_token:
        raise ValueError("Refresh token is required")
    try:
        grant = await ctx.oauth.refresh(refresh_token)
    except ReauthorizationRequiredError:
        logger.warning("Refresh grant rejected for user %d; reauthorization required", user_id)
        await run_best_effort("discard credential", lambda: discard_credential(ctx, user_id))
        raise
    bundle = await _persist_grant(ctx, user_id, grant)
    logger.info("Refreshed storage access token for user %d", user_id)
    return bundle


async def exchange_code(
    ctx: SyncContext, user_id: int, code: str, code_verifier: str, redirect_uri: str
) -> TokenBundle:
    """Complete the consent flow and store the resulting credential."""
    grant = await ctx.oauth.exchange_code(code, code_verifier, redirect_uri)
    bundle = await _persist_grant(ctx, user_id, grant)
    logger.info("Connected storage account %s for user %d", grant.account_id, user_id)
    return bundle


async def get_valid_access_token(ctx: SyncContext, user_id: int) -> str:
    """Return a usable access token, refreshing it when it is about to expire."""
    credential = await load_credential(ctx, user_id)
    if credential is None:
        raise StorageNotConnectedError("Dropbox not connected")
    if not is_expired(credential.expires_at, ctx.settings.token_refresh_leeway_seconds):
        return credential.access_token
    if not credential.refresh_token:
        await discard_credential(ctx, user_id)
        raise ReauthorizationRequiredError("Dropbox session expired; please reconnect")
    bundle = await refresh_access_token(ctx, user_id, credential.refresh_token)
    return bundle.access_token


async def connection_status(ctx: SyncContext, user_id: int) -> dict[str, object]:
    credential = await load_credential(ctx, user_id)
    if credential is None:
        return {"authenticated": False, "needs_refresh": False}
    return {
        "authenticated": True,
        "needs_refresh": is_expired(
            credential.expires_at, ctx.settings.token_refresh_leeway_seconds
        ),
        "account_id": credential.account_id,
        "expires_at": credential.expires_at,
    }


async def revoke_storage_access(ctx: SyncContext, user_id: int, token: str | None = None) -> None:
    """Revoke at the provider (best effort) and always remove the local credential."""
    if not token:
        credential = await load_credential(ctx, user_id)
        token = credential.access_token if credential else None
    if token:
        revoked_token = token
        await run_best_effort("revoke storage token", lambda: ctx.storage.revoke(revoked_token))
    await discard_credential(ctx, user_id)
