"""Data-access protocol shared by the SQL and in-memory repositories.

Both implementations return ORM model instances; the in-memory one keeps them
transient. Every method is its own unit of work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collabflow.models.credential import OAuthCredential
    from collabflow.models.document import Document, DocumentVersion, SyncLogEntry
    from collabflow.models.project import Project


@runtime_checkable
class DocumentRepository(Protocol):
    """Persistence for documents, versions, project links, sync log, credentials, projects."""

    backend: str

    # Documents

    async def create_document(
        self,
        *,
        user_id: int,
        name: str,
        description: str | None,
        mime_type: str | None,
        size: int,
        remote_path: str,
        synced_at: str,
    ) -> Document: ...

    async def get_document(self, document_id: int, user_id: int) -> Document | None:
        """Return the document only when ``user_id`` owns it."""
        ...

    async def list_documents(self, user_id: int, project_id: int | None = None) -> list[Document]:
        """Most recently updated first."""
        ...

    async def update_document(
        self, document_id: int, fields: dict[str, object], updated_at: str
    ) -> Document | None: ...

    async def point_document_at_latest_version(
        self, document_id: int, synced_at: str
    ) -> Document | None:
        """Copy path and size of the highest-numbered version onto the document."""
        ...

    async def delete_document(self, document_id: int) -> bool: ...

    # Versions

    async def get_max_version_number(self, document_id: int) -> int:
        """Highest version number for the document, 0 when none exist."""
        ...

    async def insert_next_version(
        self,
        *,
        document_id: int,
        remote_path: str,
        size: int,
        created_by: int,
        created_at: str,
    ) -> DocumentVersion:
        """Insert the version numbered one past the current highest.

        Allocation and insert are one atomic step. Raises VersionConflictError
        when another writer took the number anyway.
        """
        ...

    async def list_versions(self, document_id: int) -> list[DocumentVersion]:
        """Highest version number first."""
        ...

    async def get_version(
        self, document_id: int, version_number: int
    ) -> DocumentVersion | None: ...

    async def delete_versions(self, document_id: int) -> int: ...

    # Project links

    async def get_project_ids(self, document_id: int) -> list[int]: ...

    async def get_project_ids_for(self, document_ids: list[int]) -> dict[int, list[int]]:
        """Project ids per document in one lookup; documents without links map to []."""
        ...

    async def link_project(self, document_id: int, project_id: int, user_id: int) -> None: ...

    async def set_document_projects(
        self, document_id: int, project_ids: list[int], user_id: int
    ) -> None: ...

    async def delete_project_links(self, document_id: int) -> int: ...

    # Sync log

    async def append_sync_log(
        self,
        *,
        document_id: int,
        operation: str,
        status: str,
        user_id: int,
        error_message: str | None,
        created_at: str,
    ) -> SyncLogEntry: ...

    async def list_sync_log(self, document_id: int, limit: int = 10) -> list[SyncLogEntry]:
        """Newest first."""
        ...

    async def delete_sync_log(self, document_id: int) -> int: ...

    # Credentials

    async def get_credential(self, user_id: int) -> OAuthCredential | None: ...

    async def upsert_credential(
        self,
        *,
        user_id: int,
        access_token: str,
        refresh_token: str | None,
        account_id: str | None,
        expires_at: str,
        now: str,
    ) -> OAuthCredential:
        """Atomically insert or replace the user's single credential row."""
        ...

    async def delete_credential(self, user_id: int) -> bool: ...

    # Projects

    async def create_project(
        self,
        *,
        user_id: int,
        name: str,
        description: str | None,
        color: str,
        now: str,
    ) -> Project: ...

    async def get_project(self, project_id: int, user_id: int) -> Project | None: ...

    async def list_projects(self, user_id: int) -> list[Project]: ...

    async def update_project(
        self, project_id: int, fields: dict[str, object], updated_at: str
    ) -> Project | None: ...

    async def delete_project(self, project_id: int) -> bool:
        """Delete the project and its document links."""
        ...
