"""Repository selection, done once at startup from ``DATA_BACKEND``."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from collabflow.repository.memory import MemoryRepository
from collabflow.repository.sql import SqlRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from collabflow.config import Settings
    from collabflow.repository.base import DocumentRepository

logger = logging.getLogger(__name__)


def create_repository(
    settings: Settings,
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
) -> DocumentRepository:
    """Build the repository for the configured backend."""
    if settings.data_backend == "memory":
        logger.warning("Using in-memory document repository; data is lost on restart")
        return MemoryRepository()
    return SqlRepository(session_factory, dialect_name=engine.dialect.name)
