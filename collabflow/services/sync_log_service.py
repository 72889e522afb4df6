"""Audit trail of sync attempts against the storage provider."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from collabflow.services.datetime_service import now_iso

if TYPE_CHECKING:
    from collabflow.models.document import SyncLogEntry
    from collabflow.repository.base import DocumentRepository

logger = logging.getLogger(__name__)

RECENT_SYNC_LOG_LIMIT = 10


async def append_sync_log(
    repo: DocumentRepository,
    document_id: int,
    operation: str,
    status: str,
    user_id: int,
    error_message: str | None = None,
) -> SyncLogEntry | None:
    """Record one sync attempt. Never raises; a failed write is only logged."""
    try:
        return await repo.append_sync_log(
            document_id=document_id,
            operation=operation,
            status=status,
            user_id=user_id,
            error_message=error_message,
            created_at=now_iso(),
        )
    except Exception:
        logger.exception(
            "Failed to append sync log (%s/%s) for document %d", operation, status, document_id
        )
        return None


async def recent_sync_log(
    repo: DocumentRepository, document_id: int, limit: int = RECENT_SYNC_LOG_LIMIT
) -> list[SyncLogEntry]:
    return await repo.list_sync_log(document_id, limit=limit)
