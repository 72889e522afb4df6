"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients.  The global ``ValueError`` handler returns ``str(exc)``
  as a 400 error.
- The storage and document exceptions below each map to one status code in
  ``collabflow/main.py``; their messages are safe to show to clients.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``collabflow/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` error.
    """


class StorageConfigurationError(Exception):
    """Storage provider app credentials are missing."""


class StorageNotConnectedError(Exception):
    """The user has no stored storage provider credential."""


class ReauthorizationRequiredError(Exception):
    """The refresh grant was rejected; the user must repeat the OAuth consent."""


class UpstreamServiceError(Exception):
    """The storage provider answered with an unexpected status or body."""

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RemoteStorageError(UpstreamServiceError):
    """An upload, download or delete against the storage provider failed."""


class DocumentNotFoundError(Exception):
    """Document does not exist or is not owned by the caller."""


class VersionNotFoundError(Exception):
    """Requested document version does not exist."""


class ProjectNotFoundError(Exception):
    """Project does not exist or is not owned by the caller."""


class VersionConflictError(Exception):
    """Another writer already inserted this version number for the document."""
