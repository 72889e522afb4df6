"""Version ledger: gap-free version numbering and version history."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from collabflow.exceptions import (
    DocumentNotFoundError,
    InternalServerError,
    VersionConflictError,
)
from collabflow.schemas.document import (
    SyncLogResponse,
    UploaderProfile,
    VersionHistoryResponse,
    VersionResponse,
)
from collabflow.services.datetime_service import now_iso
from collabflow.services.profile_service import get_profiles, profile_for
from collabflow.services.sync_log_service import recent_sync_log

if TYPE_CHECKING:
    from collabflow.models.document import DocumentVersion, SyncLogEntry
    from collabflow.repository.base import DocumentRepository
    from collabflow.services.context import SyncContext
    from collabflow.services.profile_service import Profile

logger = logging.getLogger(__name__)


async def record_version(
    repo: DocumentRepository,
    *,
    document_id: int,
    remote_path: str,
    size: int,
    user_id: int,
    max_attempts: int = 5,
) -> DocumentVersion:
    """Insert the next version number for the document.

    The repository allocates ``max(existing) + 1`` and inserts in one atomic
    step. A writer in another process can still take the same number first;
    the unique constraint then raises VersionConflictError and the insert is
    repeated, up to ``max_attempts`` times.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return await repo.insert_next_version(
                document_id=document_id,
                remote_path=remote_path,
                size=size,
                created_by=user_id,
                created_at=now_iso(),
            )
        except VersionConflictError:
            logger.info(
                "Next version of document %d was taken concurrently (attempt %d/%d)",
                document_id,
                attempt,
                max_attempts,
            )
    msg = (
        f"Could not allocate a version number for document {document_id} "
        f"after {max_attempts} attempts"
    )
    raise InternalServerError(msg)


def version_response(version: DocumentVersion, profile: Profile | None = None) -> VersionResponse:
    return VersionResponse(
        id=version.id,
        document_id=version.document_id,
        version_number=version.version_number,
        remote_path=version.remote_path,
        size=version.size,
        created_by=version.created_by,
        created_at=version.created_at,
        user=(
            UploaderProfile(full_name=profile.full_name, avatar_url=profile.avatar_url)
            if profile is not None
            else None
        ),
    )


def sync_log_response(entry: SyncLogEntry) -> SyncLogResponse:
    return SyncLogResponse(
        id=entry.id,
        document_id=entry.document_id,
        operation=entry.operation,
        status=entry.status,
        error_message=entry.error_message,
        user_id=entry.user_id,
        created_at=entry.created_at,
    )


async def list_versions(
    ctx: SyncContext, document_id: int, user_id: int
) -> VersionHistoryResponse:
    """Owner-only version history, newest first, with uploader names and recent sync log."""
    document = await ctx.repository.get_document(document_id, user_id)
    if document is None:
        raise DocumentNotFoundError("Document not found or access denied")

    versions = await ctx.repository.list_versions(document_id)
    profiles = await get_profiles(ctx.session_factory, (v.created_by for v in versions))
    logs = await recent_sync_log(ctx.repository, document_id)
    return VersionHistoryResponse(
        versions=[version_response(v, profile_for(profiles, v.created_by)) for v in versions],
        sync_logs=[sync_log_response(entry) for entry in logs],
    )
