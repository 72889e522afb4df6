"""SQLAlchemy-backed repository."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy import case, delete, func, insert, literal, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from collabflow.exceptions import VersionConflictError
from collabflow.models.credential import OAuthCredential
from collabflow.models.document import (
    Document,
    DocumentProjectLink,
    DocumentVersion,
    SyncLogEntry,
)
from collabflow.models.project import Project
from collabflow.services.datetime_service import now_iso

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class SqlRepository:
    """Repository over an async SQLAlchemy session factory (SQLite or PostgreSQL)."""

    backend: str = "sql"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dialect_name: str = "sqlite",
    ) -> None:
        self._session_factory = session_factory
        self._dialect_name = dialect_name
        self._version_lock = asyncio.Lock()

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
        async with self._session_factory() as session:
            session.add(document)
            await session.commit()
            await session.refresh(document)
        return document

    async def get_document(self, document_id: int, user_id: int) -> Document | None:
        stmt = select(Document).where(Document.id == document_id, Document.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_documents(self, user_id: int, project_id: int | None = None) -> list[Document]:
        stmt = select(Document).where(Document.user_id == user_id)
        if project_id is not None:
            stmt = stmt.join(
                DocumentProjectLink, DocumentProjectLink.document_id == Document.id
            ).where(DocumentProjectLink.project_id == project_id)
        stmt = stmt.order_by(Document.updated_at.desc(), Document.id.desc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_document(
        self, document_id: int, fields: dict[str, object], updated_at: str
    ) -> Document | None:
        async with self._session_factory() as session:
            document = await session.get(Document, document_id)
            if document is None:
                return None
            for key, value in fields.items():
                setattr(document, key, value)
            document.updated_at = updated_at
            await session.commit()
            await session.refresh(document)
            return document

    async def point_document_at_latest_version(
        self, document_id: int, synced_at: str
    ) -> Document | None:
        # One UPDATE with correlated subqueries, so concurrent writers cannot
        # leave the pointer on an older version.
        latest = (
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version_number.desc())
            .limit(1)
            .subquery()
        )
        has_versions = (
            select(func.count())
            .select_from(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .scalar_subquery()
        )
        stmt = (
            update(Document)
            .where(Document.id == document_id)
            .values(
                remote_path=case(
                    (has_versions > 0, select(latest.c.remote_path).scalar_subquery()),
                    else_=Document.remote_path,
                ),
                size=case(
                    (has_versions > 0, select(latest.c.size).scalar_subquery()),
                    else_=Document.size,
                ),
                is_synced=True,
                last_synced=synced_at,
                updated_at=synced_at,
            )
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            if not result.rowcount:
                return None
            return await session.get(Document, document_id)

    async def delete_document(self, document_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(delete(Document).where(Document.id == document_id))
            await session.commit()
            return bool(result.rowcount)

    # Versions

    async def get_max_version_number(self, document_id: int) -> int:
        stmt = select(func.coalesce(func.max(DocumentVersion.version_number), 0)).where(
            DocumentVersion.document_id == document_id
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def insert_next_version(
        self,
        *,
        document_id: int,
        remote_path: str,
        size: int,
        created_by: int,
        created_at: str,
    ) -> DocumentVersion:
        # INSERT ... SELECT max + 1 reads and writes under the same write lock.
        # The lock keeps writers in this process from racing on PostgreSQL,
        # where the unique constraint is the cross-process backstop.
        next_version = select(
            literal(document_id, DocumentVersion.document_id.type),
            func.coalesce(func.max(DocumentVersion.version_number), 0) + 1,
            literal(remote_path, DocumentVersion.remote_path.type),
            literal(size, DocumentVersion.size.type),
            literal(created_by, DocumentVersion.created_by.type),
            literal(created_at, DocumentVersion.created_at.type),
        ).where(DocumentVersion.document_id == document_id)
        stmt = (
            insert(DocumentVersion)
            .from_select(
                [
                    "document_id",
                    "version_number",
                    "remote_path",
                    "size",
                    "created_by",
                    "created_at",
                ],
                next_version,
            )
            .returning(DocumentVersion.id)
        )
        async with self._version_lock, self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                version_id = result.scalar_one()
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                msg = f"Next version of document {document_id} was taken concurrently"
                logger.debug(msg)
                raise VersionConflictError(msg) from exc
            result = await session.execute(
                select(DocumentVersion).where(DocumentVersion.id == version_id)
            )
            return result.scalar_one()

    async def list_versions(self, document_id: int) -> list[DocumentVersion]:
        stmt = (
            select(DocumentVersion)
            .where(DocumentVersion.document_id == document_id)
            .order_by(DocumentVersion.version_number.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_version(self, document_id: int, version_number: int) -> DocumentVersion | None:
        stmt = select(DocumentVersion).where(
            DocumentVersion.document_id == document_id,
            DocumentVersion.version_number == version_number,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def delete_versions(self, document_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DocumentVersion).where(DocumentVersion.document_id == document_id)
            )
            await session.commit()
            return int(result.rowcount or 0)

    # Project links

    async def get_project_ids(self, document_id: int) -> list[int]:
        stmt = (
            select(DocumentProjectLink.project_id)
            .where(DocumentProjectLink.document_id == document_id)
            .order_by(DocumentProjectLink.project_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_project_ids_for(self, document_ids: list[int]) -> dict[int, list[int]]:
        project_ids: dict[int, list[int]] = {document_id: [] for document_id in document_ids}
        if not document_ids:
            return project_ids
        stmt = (
            select(DocumentProjectLink.document_id, DocumentProjectLink.project_id)
            .where(DocumentProjectLink.document_id.in_(document_ids))
            .order_by(DocumentProjectLink.document_id, DocumentProjectLink.project_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            for document_id, project_id in result.all():
                project_ids[document_id].append(project_id)
        return project_ids

    async def link_project(self, document_id: int, project_id: int, user_id: int) -> None:
        async with self._session_factory() as session:
            existing = await session.get(DocumentProjectLink, (document_id, project_id))
            if existing is not None:
                return
            session.add(
                DocumentProjectLink(
                    document_id=document_id,
                    project_id=project_id,
                    user_id=user_id,
                    created_at=now_iso(),
                )
            )
            await session.commit()

    async def set_document_projects(
        self, document_id: int, project_ids: list[int], user_id: int
    ) -> None:
        now = now_iso()
        async with self._session_factory() as session:
            await session.execute(
                delete(DocumentProjectLink).where(DocumentProjectLink.document_id == document_id)
            )
            for project_id in dict.fromkeys(project_ids):
                session.add(
                    DocumentProjectLink(
                        document_id=document_id,
                        project_id=project_id,
                        user_id=user_id,
                        created_at=now,
                    )
                )
            await session.commit()

    async def delete_project_links(self, document_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(DocumentProjectLink).where(DocumentProjectLink.document_id == document_id)
            )
            await session.commit()
            return int(result.rowcount or 0)

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
            document_id=document_id,
            operation=operation,
            status=status,
            user_id=user_id,
            error_message=error_message,
            created_at=created_at,
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
        return entry

    async def list_sync_log(self, document_id: int, limit: int = 10) -> list[SyncLogEntry]:
        stmt = (
            select(SyncLogEntry)
            .where(SyncLogEntry.document_id == document_id)
            .order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def delete_sync_log(self, document_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(SyncLogEntry).where(SyncLogEntry.document_id == document_id)
            )
            await session.commit()
            return int(result.rowcount or 0)

    # Credentials

    async def get_credential(self, user_id: int) -> OAuthCredential | None:
        stmt = select(OAuthCredential).where(OAuthCredential.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

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
        dialect = postgresql if self._dialect_name == "postgresql" else sqlite
        insert_stmt = dialect.insert(OAuthCredential).values(
            user_id=user_id,
            access_token=access_token,
            refresh_token=refresh_token,
            account_id=account_id,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        upsert_stmt = insert_stmt.on_conflict_do_update(
            index_elements=[OAuthCredential.user_id],
            set_={
                "access_token": insert_stmt.excluded.access_token,
                "refresh_token": insert_stmt.excluded.refresh_token,
                "account_id": insert_stmt.excluded.account_id,
                "expires_at": insert_stmt.excluded.expires_at,
                "updated_at": insert_stmt.excluded.updated_at,
            },
        )
        async with self._session_factory() as session:
            await session.execute(upsert_stmt)
            await session.commit()
            result = await session.execute(
                select(OAuthCredential).where(OAuthCredential.user_id == user_id)
            )
            return result.scalar_one()

    async def delete_credential(self, user_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(OAuthCredential).where(OAuthCredential.user_id == user_id)
            )
            await session.commit()
            return bool(result.rowcount)

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
            user_id=user_id,
            name=name,
            description=description,
            color=color,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(project)
            await session.commit()
            await session.refresh(project)
        return project

    async def get_project(self, project_id: int, user_id: int) -> Project | None:
        stmt = select(Project).where(Project.id == project_id, Project.user_id == user_id)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_projects(self, user_id: int) -> list[Project]:
        stmt = (
            select(Project)
            .where(Project.user_id == user_id)
            .order_by(Project.created_at, Project.id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_project(
        self, project_id: int, fields: dict[str, object], updated_at: str
    ) -> Project | None:
        async with self._session_factory() as session:
            project = await session.get(Project, project_id)
            if project is None:
                return None
            for key, value in fields.items():
                setattr(project, key, value)
            project.updated_at = updated_at
            await session.commit()
            await session.refresh(project)
            return project

    async def delete_project(self, project_id: int) -> bool:
        async with self._session_factory() as session:
            await session.execute(
                delete(DocumentProjectLink).where(DocumentProjectLink.project_id == project_id)
            )
            result = await session.execute(delete(Project).where(Project.id == project_id))
            await session.commit()
            return bool(result.rowcount)
