"""In-process repository used for local development and tests.

Rows are transient ORM instances kept in dicts. Column defaults only apply on
INSERT, so every field is set explicitly here.
"""

from __future__ import annotations

import asyncio
import itertools

from collabflow.models.credential import OAuthCredential
from collabflow.models.document import (
    Document,
    DocumentProjectLink,
    DocumentVersion,
    SyncLogEntry,
)
from collabflow.models.project import Project
from collabflow.services.datetime_service import now_iso


class MemoryRepository:
    """Dict-backed repository with the same semantics as ``SqlRepository``."""

    backend: str = "memory"

    def __init__(self) -> None:
        self._documents: dict[int, Document] = {}
        self._versions: dict[int, list[DocumentVersion]] = {}
        self._links: dict[tuple[int, int], DocumentProjectLink] = {}
        self._sync_log: list[SyncLogEntry] = []
        self._credentials: dict[int, OAuthCredential] = {}
        self._projects: dict[int, Project] = {}
        self._document_ids = itertools.count(1)
        self._version_ids = itertools.count(1)
        self._log_ids = itertools.count(1)
        self._credential_ids = itertools.count(1)
        self._project_ids = itertools.count(1)
        self._version_lock = asyncio.Lock()
        self._credential_lock = asyncio.Lock()

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
    ) -> Document:
        document = Document(
            id=next(self._document_ids),
            user_id=user_id,
            name=name,
            description=description,
            mime_type=mime_type,
            size=size,
            remote_path=remote_path,
            is_synced=True,
            last_synced=synced_at,
            created_at=synced_at,
            updated_at=synced_at,
        )
        self._documents[document.id] = document
        return document

    async def get_document(self, document_id: int, user_id: int) -> Document | None:
        document = self._documents.get(document_id)
        if document is None or document.user_id != user_id:
            return None
        return document

    async def list_documents(self, user_id: int, project_id: int | None = None) -> list[Document]:
        documents = [d for d in self._documents.values() if d.user_id == user_id]
        if project_id is not None:
            linked = {doc_id for doc_id, proj_id in self._links if proj_id == project_id}
            documents = [d for d in documents if d.id in linked]
        return sorted(documents, key=lambda d: (d.updated_at, d.id), reverse=True)

    async def update_document(
        self, document_id: int, fields: dict[str, object], updated_at: str
    ) -> Document | None:
        document = self._documents.get(document_id)
        if document is None:
            return None
        for key, value in fields.items():
            setattr(document, key, value)
        document.updated_at = updated_at
        return document

    async def point_document_at_latest_version(
        self, document_id: int, synced_at: str
    ) -> Document | None:
        document = self._documents.get(document_id)
        if document is None:
            return None
        versions = self._versions.get(document_id)
        if versions:
            latest = max(versions, key=lambda v: v.version_number)
            document.remote_path = latest.remote_path
            document.size = latest.size
        document.is_synced = True
        document.last_synced = synced_at
        document.updated_at = synced_at
        return document

    async def delete_document(self, document_id: int) -> bool:
        document = self._documents.pop(document_id, None)
        if document is None:
            return False
        # Mirror ON DELETE CASCADE.
        self._versions.pop(document_id, None)
        await self.delete_project_links(document_id)
        await self.delete_sync_log(document_id)
        return True

    # Versions

    async def get_max_version_number(self, document_id: int) -> int:
        versions = self._versions.get(document_id, [])
        return max((v.version_number for v in versions), default=0)

    async def insert_next_version(
        self,
        *,
        document_id: int,
        remote_path: str,
        size: int,
        created_by: int,
        created_at: str,
    ) -> DocumentVersion:
        async with self._version_lock:
            versions = self._versions.setdefault(document_id, [])
            version = DocumentVersion(
                id=next(self._version_ids),
                document_id=document_id,
                version_number=max((v.version_number for v in versions), default=0) + 1,
                remote_path=remote_path,
                size=size,
                created_by=created_by,
                created_at=created_at,
            )
            versions.append(version)
        return version

    async def list_versions(self, document_id: int) -> list[DocumentVersion]:
        versions = self._versions.get(document_id, [])
        return sorted(versions, key=lambda v: v.version_number, reverse=True)

    async def get_version(self, document_id: int, version_number: int) -> DocumentVersion | None:
        for version in self._versions.get(document_id, []):
            if version.version_number == version_number:
                return version
        return None

    async def delete_versions(self, document_id: int) -> int:
        return len(self._versions.pop(document_id, []))

    # Project links

    async def get_project_ids(self, document_id: int) -> list[int]:
        return sorted(proj_id for doc_id, proj_id in self._links if doc_id == document_id)

    async def get_project_ids_for(self, document_ids: list[int]) -> dict[int, list[int]]:
        project_ids: dict[int, list[int]] = {document_id: [] for document_id in document_ids}
        for doc_id, proj_id in sorted(self._links):
            if doc_id in project_ids:
                project_ids[doc_id].append(proj_id)
        return project_ids

    async def link_project(self, document_id: int, project_id: int, user_id: int) -> None:
        key = (document_id, project_id)
        if key in self._links:
            return
        self._links[key] = DocumentProjectLink(
            document_id=document_id,
            project_id=project_id,
            user_id=user_id,
            created_at=now_iso(),
        )

    async def set_document_projects(
        self, document_id: int, project_ids: list[int], user_id: int
    ) -> None:
        await self.delete_project_links(document_id)
        for project_id in dict.fromkeys(project_ids):
            await self.link_project(document_id, project_id, user_id)

    async def delete_project_links(self, document_id: int) -> int:
        keys = [key for key in self._links if key[0] == document_id]
        for key in keys:
            del self._links[key]
        return len(keys)

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
    ) -> SyncLogEntry:
        entry = SyncLogEntry(
            id=next(self._log_ids),
            document_id=document_id,
            operation=operation,
            status=status,
            user_id=user_id,
            error_message=error_message,
            created_at=created_at,
        )
        self._sync_log.append(entry)
        return entry

    async def list_sync_log(self, document_id: int, limit: int = 10) -> list[SyncLogEntry]:
        entries = [e for e in self._sync_log if e.document_id == document_id]
        entries.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        return entries[:limit]

    async def delete_sync_log(self, document_id: int) -> int:
        before = len(self._sync_log)
        self._sync_log = [e for e in self._sync_log if e.document_id != document_id]
        return before - len(self._sync_log)

    # Credentials

    async def get_credential(self, user_id: int) -> OAuthCredential | None:
        return self._credentials.get(user_id)

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
        async with self._credential_lock:
            credential = self._credentials.get(user_id)
            if credential is None:
                credential = OAuthCredential(
                    id=next(self._credential_ids),
                    user_id=user_id,
                    created_at=now,
                )
                self._credentials[user_id] = credential
            credential.access_token = access_token
            credential.refresh_token = refresh_token
            credential.account_id = account_id
            credential.expires_at = expires_at
            credential.updated_at = now
        return credential

    async def delete_credential(self, user_id: int) -> bool:
        async with self._credential_lock:
            return self._credentials.pop(user_id, None) is not None

    # Projects

    async def create_project(
        self,
        *,
        user_id: int,
        name: str,
        description: str | None,
        color: str,
        now: str,
    ) -> Project:
        project = Project(
            id=next(self._project_ids),
            user_id=user_id,
            name=name,
            description=description,
            color=color,
            created_at=now,
            updated_at=now,
        )
        self._projects[project.id] = project
        return project

    async def get_project(self, project_id: int, user_id: int) -> Project | None:
        project = self._projects.get(project_id)
        if project is None or project.user_id != user_id:
            return None
        return project

    async def list_projects(self, user_id: int) -> list[Project]:
        projects = [p for p in self._projects.values() if p.user_id == user_id]
        return sorted(projects, key=lambda p: (p.created_at, p.id))

    async def update_project(
        self, project_id: int, fields: dict[str, object], updated_at: str
    ) -> Project | None:
        project = self._projects.get(project_id)
        if project is None:
            return None
        for key, value in fields.items():
            setattr(project, key, value)
        project.updated_at = updated_at
        return project

    async def delete_project(self, project_id: int) -> bool:
        if self._projects.pop(project_id, None) is None:
            return False
        for key in [key for key in self._links if key[1] == project_id]:
            del self._links[key]
        return True
