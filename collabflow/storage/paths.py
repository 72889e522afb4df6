"""Destination path generation for uploads."""

from __future__ import annotations

from typing import TYPE_CHECKING

from collabflow.services.datetime_service import now_utc

if TYPE_CHECKING:
    from datetime import datetime


def path_timestamp(moment: datetime | None = None) -> str:
    """Return an ISO-8601 UTC timestamp that is safe inside a file name.

    ``2025-03-14T22:43:49.123Z`` becomes ``2025-03-14T22-43-49-123Z``.
    """
    moment = moment or now_utc()
    iso = moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def versioned_filename(filename: str, version_number: int) -> str:
    """Insert a version suffix before the extension: ``report.pdf`` -> ``report_v2.pdf``."""
    base, dot, extension = filename.rpartition(".")
    if not dot or not base:
        return f"{filename}_v{version_number}"
    return f"{base}_v{version_number}.{extension}"


def _safe_filename(filename: str) -> str:
    name = filename.replace("\\", "/").rsplit("/", maxsplit=1)[-1].strip()
    return name or "file"


def build_upload_path(
    app_folder: str,
    filename: str,
    version_number: int | None = None,
    moment: datetime | None = None,
) -> str:
    """Build ``/<app-folder>/<timestamp>_<filename>`` for a new upload.

    When ``version_number`` is given the file name carries the ``_v<n>`` suffix.
    """
    name = _safe_filename(filename)
    if version_number is not None:
        name = versioned_filename(name, version_number)
    folder = "/" + app_folder.strip("/") if app_folder.strip("/") else ""
    return f"{folder}/{path_timestamp(moment)}_{name}"
