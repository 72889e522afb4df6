"""Document registry: upload, version, download, delete and metadata edits.

Every storage call goes through a fresh access token from ``token_service``.
The primary write of each operation runs inline; the sync log entry and the
memory-graph notification are queued as non-critical effects and run after
it succeeds.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from typing import TYPE_CHECKING

from collabflow.exceptions import (
    DocumentNotFoundError,
    InternalServerError,
    ProjectNotFoundError,
    RemoteStorageError,
    VersionNotFoundError,
)
from collabflow.schemas.document import (
    DeleteResponse,
    DocumentResponse,
    UploadResponse,
    VersionUploadResponse,
)
from collabflow.services.datetime_service import now_iso
from collabflow.services.effects import NonCriticalEffects, run_best_effort
from collabflow.services.sync_log_service import append_sync_log
from collabflow.services.token_service import get_valid_access_token
from collabflow.services.version_service import record_version, version_response
from collabflow.storage.paths import build_upload_path

if TYPE_CHECKING:
    from collabflow.models.document import Document
    from collabflow.schemas.document import DocumentUpdate
    from collabflow.services.context import SyncContext

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class DownloadedFile:
    content: bytes
    size: int
    filename: str
    mime_type: str


def guess_mime_type(filename: str, declared: str | None) -> str:
    if declared and declared != DEFAULT_MIME_TYPE:
        return declared
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or declared or DEFAULT_MIME_TYPE


def document_response(document: Document, project_ids: list[int]) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        user_id=document.user_id,
        name=document.name,
        description=document.description,
        mime_type=document.mime_type,
        size=document.size,
        remote_path=document.remote_path,
        is_synced=document.is_synced,
        last_synced=document.last_synced,
        created_at=document.created_at,
        updated_at=document.updated_at,
        project_ids=project_ids,
    )


async def _require_document(ctx: SyncContext, document_id: int, user_id: int) -> Document:
    document = await ctx.repository.get_document(document_id, user_id)
    if document is None:
        raise DocumentNotFoundError("Document not found or access denied")
    return document


async def _require_projects(ctx: SyncContext, project_ids: list[int], user_id: int) -> list[str]:
    names: list[str] = []
    for project_id in project_ids:
        project = await ctx.repository.get_project(project_id, user_id)
        if project is None:
            raise ProjectNotFoundError(f"Project {project_id} not found")
        names.append(project.name)
    return names


async def upload_new_document(
    ctx: SyncContext,
    user_id: int,
    filename: str,
    content: bytes,
    mime_type: str | None = None,
    description: str | None = None,
    project_id: int | None = None,
) -> UploadResponse:
    """Upload a new file and register it as a document with version 1."""
    project_names = await _require_projects(
        ctx, [project_id] if project_id is not None else [], user_id
    )
    access_token = await get_valid_access_token(ctx, user_id)

    path = build_upload_path(ctx.settings.storage_app_folder, filename)
    uploaded = await ctx.storage.upload(access_token, path, content)
    logger.info("Uploaded %s (%d bytes) for user %d", uploaded.path, uploaded.size, user_id)

    repo = ctx.repository
    synced_at = now_iso()
    try:
        document = await repo.create_document(
            user_id=user_id,
            name=filename,
            description=description,
            mime_type=guess_mime_type(filename, mime_type),
            size=uploaded.size,
            remote_path=uploaded.path,
            synced_at=synced_at,
        )
        await record_version(
            repo,
            document_id=document.id,
            remote_path=uploaded.path,
            size=uploaded.size,
            user_id=user_id,
            max_attempts=ctx.settings.version_conflict_retries,
        )
        if project_id is not None:
            await repo.link_project(document.id, project_id, user_id)
    except Exception:
        logger.error(
            "Registering upload failed; remote file %s is orphaned (user %d)",
            uploaded.path,
            user_id,
        )
        raise

    effects = NonCriticalEffects()
    effects.add(
        "sync log",
        lambda: append_sync_log(repo, document.id, "upload", "success", user_id),
    )
    effects.add(
        "memory graph",
        lambda: ctx.memory_graph.document_created(
            document, project_names[0] if project_names else None
        ),
    )
    await effects.run()

    project_ids = [project_id] if project_id is not None else []
    return UploadResponse(document=document_response(document, project_ids))


async def upload_new_version(
    ctx: SyncContext,
    user_id: int,
    document_id: int,
    filename: str | None,
    content: bytes,
) -> VersionUploadResponse:
    """Append a new version to an existing document and point the document at it."""
    repo = ctx.repository
    document = await _require_document(ctx, document_id, user_id)
    access_token = await get_valid_access_token(ctx, user_id)

    expected_number = await repo.get_max_version_number(document_id) + 1
    path = build_upload_path(
        ctx.settings.storage_app_folder, filename or document.name, version_number=expected_number
    )
    try:
        uploaded = await ctx.storage.upload(access_token, path, content)
    except RemoteStorageError as exc:
        await append_sync_log(repo, document_id, "upload", "failed", user_id, str(exc))
        raise

    try:
        version = await record_version(
            repo,
            document_id=document_id,
            remote_path=uploaded.path,
            size=uploaded.size,
            user_id=user_id,
            max_attempts=ctx.settings.version_conflict_retries,
        )
        updated = await repo.point_document_at_latest_version(document_id, now_iso())
    except Exception:
        logger.error(
            "Recording version failed; remote file %s is orphaned (document %d, user %d)",
            uploaded.path,
            document_id,
            user_id,
        )
        raise
    if updated is None:
        raise DocumentNotFoundError("Document not found or access denied")
    logger.info(
        "Stored version %d of document %d at %s", version.version_number, document_id, uploaded.path
    )

    effects = NonCriticalEffects()
    effects.add(
        "sync log",
        lambda: append_sync_log(repo, document_id, "upload", "success", user_id),
    )
    effects.add(
        "memory graph",
        lambda: ctx.memory_graph.version_added(updated, version.version_number),
    )
    await effects.run()

    return VersionUploadResponse(
        version=version_response(version), version_number=version.version_number
    )


async def download_document(
    ctx: SyncContext, user_id: int, document_id: int, version_number: int | None = None
) -> DownloadedFile:
    """Fetch the latest content, or a specific version's, from the storage provider."""
    repo = ctx.repository
    document = await _require_document(ctx, document_id, user_id)
    path = document.remote_path
    if version_number is not None:
        version = await repo.get_version(document_id, version_number)
        if version is None:
            raise VersionNotFoundError("Version not found")
        path = version.remote_path
    if not path:
        raise VersionNotFoundError("Document has no stored content")

    access_token = await get_valid_access_token(ctx, user_id)
    try:
        downloaded = await ctx.storage.download(access_token, path)
    except RemoteStorageError as exc:
        await append_sync_log(repo, document_id, "download", "failed", user_id, str(exc))
        raise

    await append_sync_log(repo, document_id, "download", "success", user_id)
    return DownloadedFile(
        content=downloaded.content,
        size=downloaded.size,
        filename=document.name,
        mime_type=document.mime_type or DEFAULT_MIME_TYPE,
    )


async def delete_document(ctx: SyncContext, user_id: int, document_id: int) -> DeleteResponse:
    """Delete remote files (best effort), then versions, links, sync log and the document.

    Intermediate failures are logged and the cascade continues. Only failure of
    the final document delete is reported to the caller.
    """
    repo = ctx.repository
    document = await _require_document(ctx, document_id, user_id)

    versions = await run_best_effort("list versions", lambda: repo.list_versions(document_id))
    remote_paths = list(
        dict.fromkeys(
            p for p in [document.remote_path, *(v.remote_path for v in versions or [])] if p
        )
    )

    async def delete_remote() -> bool:
        access_token = await get_valid_access_token(ctx, user_id)
        for path in remote_paths:
            await ctx.storage.delete(access_token, path)
        return True

    remote_deleted = not remote_paths or bool(
        await run_best_effort("remote delete", delete_remote)
    )
    if not remote_deleted:
        logger.warning(
            "Remote files of document %d were not deleted: %s", document_id, remote_paths
        )

    await run_best_effort("delete versions", lambda: repo.delete_versions(document_id))
    await run_best_effort("delete project links", lambda: repo.delete_project_links(document_id))
    await run_best_effort("delete sync log", lambda: repo.delete_sync_log(document_id))
    try:
        deleted = await repo.delete_document(document_id)
    except Exception as exc:
        msg = f"Deleting document {document_id} failed after its dependents were removed"
        raise InternalServerError(msg) from exc
    if not deleted:
        msg = f"Document {document_id} disappeared before its row could be deleted"
        raise InternalServerError(msg)
    logger.info("Deleted document %d for user %d", document_id, user_id)

    effects = NonCriticalEffects()
    effects.add("memory graph", lambda: ctx.memory_graph.document_deleted(document.name))
    await effects.run()
    return DeleteResponse(remote_deleted=remote_deleted)


async def get_document(ctx: SyncContext, user_id: int, document_id: int) -> DocumentResponse:
    document = await _require_document(ctx, document_id, user_id)
    project_ids = await ctx.repository.get_project_ids(document_id)
    return document_response(document, project_ids)


async def list_documents(
    ctx: SyncContext, user_id: int, project_id: int | None = None
) -> list[DocumentResponse]:
    """List the caller's documents, most recently updated first."""
    if project_id is not None:
        await _require_projects(ctx, [project_id], user_id)
    documents = await ctx.repository.list_documents(user_id, project_id)
    project_ids = await ctx.repository.get_project_ids_for([d.id for d in documents])
    return [document_response(d, project_ids[d.id]) for d in documents]


async def update_document(
    ctx: SyncContext, user_id: int, document_id: int, data: DocumentUpdate
) -> DocumentResponse:
    """Edit name/description and optionally replace the document's project links."""
    repo = ctx.repository
    await _require_document(ctx, document_id, user_id)
    if data.project_ids is not None:
        await _require_projects(ctx, data.project_ids, user_id)

    fields = data.model_dump(exclude_unset=True, exclude={"project_ids"})
    if "name" in fields and fields["name"] is None:
        raise ValueError("Document name cannot be empty")
    document = await repo.update_document(document_id, fields, now_iso())
    if document is None:
        raise DocumentNotFoundError("Document not found or access denied")
    if data.project_ids is not None:
        await repo.set_document_projects(document_id, data.project_ids, user_id)
    return document_response(document, await repo.get_project_ids(document_id))
