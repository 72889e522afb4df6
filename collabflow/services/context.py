"""Request-scoped bundle of the service handles built at startup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from collabflow.config import Settings
    from collabflow.repository.base import DocumentRepository
    from collabflow.services.memory_graph import MemoryGraphNotifier
    from collabflow.storage.base import RemoteStorage, StorageOAuthClient


@dataclass(frozen=True)
class SyncContext:
    """Everything the document sync services need for one request."""

    settings: Settings
    repository: DocumentRepository
    storage: RemoteStorage
    oauth: StorageOAuthClient
    session_factory: async_sessionmaker[AsyncSession]
    memory_graph: MemoryGraphNotifier
