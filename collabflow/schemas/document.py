"""Document, version and sync log schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DocumentResponse(BaseModel):
    """Document metadata with its project links."""

    id: int
    user_id: int
    name: str
    description: str | None = None
    mime_type: str | None = None
    size: int
    remote_path: str | None = None
    is_synced: bool
    last_synced: str | None = None
    created_at: str
    updated_at: str
    project_ids: list[int] = Field(default_factory=list)


class DocumentListResponse(BaseModel):
    documents: list[DocumentResponse]


class DocumentUpdate(BaseModel):
    """Metadata edit; ``project_ids`` replaces all project links when given."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    project_ids: list[int] | None = None

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        return v.strip() if isinstance(v, str) else v


class UploadResponse(BaseModel):
    success: bool = True
    document: DocumentResponse


class UploaderProfile(BaseModel):
    full_name: str
    avatar_url: str | None = None


class VersionResponse(BaseModel):
    id: int
    document_id: int
    version_number: int
    remote_path: str
    size: int
    created_by: int | None = None
    created_at: str
    user: UploaderProfile | None = None


class VersionUploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    version: VersionResponse
    version_number: int = Field(alias="versionNumber")


class SyncLogResponse(BaseModel):
    id: int
    document_id: int
    operation: str
    status: str
    error_message: str | None = None
    user_id: int
    created_at: str


class VersionHistoryResponse(BaseModel):
    """Versions newest first, plus the most recent sync attempts."""

    model_config = ConfigDict(populate_by_name=True)

    versions: list[VersionResponse]
    sync_logs: list[SyncLogResponse] = Field(alias="syncLogs")


class DeleteResponse(BaseModel):
    success: bool = True
    remote_deleted: bool
