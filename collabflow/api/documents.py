"""Document API endpoints: upload, versions, download, delete and metadata."""

from __future__ import annotations

import logging
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import Response

from collabflow.api.deps import get_sync_context, require_auth
from collabflow.models.user import User
from collabflow.schemas.document import (
    DeleteResponse,
    DocumentListResponse,
    DocumentResponse,
    DocumentUpdate,
    UploadResponse,
    VersionHistoryResponse,
    VersionUploadResponse,
)
from collabflow.services import document_service, version_service
from collabflow.services.context import SyncContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/documents", tags=["documents"])


async def _read_upload(file: UploadFile | None, max_bytes: int) -> tuple[str, bytes, str | None]:
    """Return (filename, content, content type), enforcing the upload size limit."""
    if file is None:
        raise ValueError("No file provided")
    too_large = HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit",
    )
    if file.size is not None and file.size > max_bytes:
        raise too_large
    content = await file.read(max_bytes + 1)
    if len(content) > max_bytes:
        raise too_large
    filename = (file.filename or "").strip() or "untitled"
    return filename, content, file.content_type


def _require_id(document_id: int | None) -> int:
    if document_id is None:
        raise ValueError("Document ID is required")
    return document_id


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "replace").decode("ascii").replace('"', "'")
    if ascii_name == filename:
        return f'attachment; filename="{filename}"'
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename)}"


async def _file_response(
    ctx: SyncContext, user_id: int, document_id: int, version_number: int | None
) -> Response:
    downloaded = await document_service.download_document(
        ctx, user_id, document_id, version_number
    )
    return Response(
        content=downloaded.content,
        media_type=downloaded.mime_type,
        headers={"Content-Disposition": _content_disposition(downloaded.filename)},
    )


@router.post("/upload", response_model=UploadResponse)
async def upload_document(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    file: Annotated[UploadFile | None, File()] = None,
    project_id: Annotated[int | None, Form(alias="projectId")] = None,
    description: Annotated[str | None, Form(max_length=2000)] = None,
) -> UploadResponse:
    """Upload a new document to the caller's storage account."""
    filename, content, content_type = await _read_upload(file, ctx.settings.max_upload_bytes)
    return await document_service.upload_new_document(
        ctx,
        user.id,
        filename,
        content,
        mime_type=content_type,
        description=description or None,
        project_id=project_id,
    )


@router.post("/version", response_model=VersionUploadResponse)
async def upload_version(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    file: Annotated[UploadFile | None, File()] = None,
    document_id: Annotated[int | None, Form(alias="documentId")] = None,
) -> VersionUploadResponse:
    """Upload a new version of an existing document."""
    filename, content, _ = await _read_upload(file, ctx.settings.max_upload_bytes)
    return await document_service.upload_new_version(
        ctx, user.id, _require_id(document_id), filename, content
    )


@router.get("/versions", response_model=VersionHistoryResponse)
async def list_versions(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    document_id: Annotated[int | None, Query(alias="id")] = None,
) -> VersionHistoryResponse:
    return await version_service.list_versions(ctx, _require_id(document_id), user.id)


@router.get("/version")
async def download_version(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    document_id: Annotated[int | None, Query(alias="id")] = None,
    version: Annotated[int | None, Query(ge=1)] = None,
) -> Response:
    """Download one specific version of a document."""
    if version is None:
        raise ValueError("Version number is required")
    return await _file_response(ctx, user.id, _require_id(document_id), version)


@router.get("/download")
async def download_document(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    document_id: Annotated[int | None, Query(alias="id")] = None,
    version: Annotated[int | None, Query(ge=1)] = None,
) -> Response:
    """Download the latest content, or ``version`` when given."""
    return await _file_response(ctx, user.id, _require_id(document_id), version)


@router.delete("/delete", response_model=DeleteResponse)
async def delete_document(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    document_id: Annotated[int | None, Query(alias="id")] = None,
) -> DeleteResponse:
    """Delete a document with all its versions, links and sync history."""
    return await document_service.delete_document(ctx, user.id, _require_id(document_id))


@router.get("", response_model=DocumentListResponse)
async def list_documents(
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
    project_id: Annotated[int | None, Query()] = None,
) -> DocumentListResponse:
    documents = await document_service.list_documents(ctx, user.id, project_id)
    return DocumentListResponse(documents=documents)


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int,
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> DocumentResponse:
    return await document_service.get_document(ctx, user.id, document_id)


@router.patch("/{document_id}", response_model=DocumentResponse)
async def update_document(
    document_id: int,
    body: DocumentUpdate,
    user: Annotated[User, Depends(require_auth)],
    ctx: Annotated[SyncContext, Depends(get_sync_context)],
) -> DocumentResponse:
    """Edit document metadata and project membership."""
    return await document_service.update_document(ctx, user.id, document_id, body)
