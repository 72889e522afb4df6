"""SQLAlchemy ORM models for CollabFlow."""

from collabflow.models.base import Base
from collabflow.models.credential import OAuthCredential
from collabflow.models.document import (
    Document,
    DocumentProjectLink,
    DocumentVersion,
    SyncLogEntry,
)
from collabflow.models.project import Project
from collabflow.models.user import User

__all__ = [
    "Base",
    "Document",
    "DocumentProjectLink",
    "DocumentVersion",
    "OAuthCredential",
    "Project",
    "SyncLogEntry",
    "User",
]
