"""Notifications to an external knowledge-graph ("memory") service.

Each document change is described as a ``Document: <name>`` entity. Calls are
fire-and-forget from the caller's point of view: they are queued as
non-critical effects and their failures are only logged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import httpx

    from collabflow.models.document import Document

logger = logging.getLogger(__name__)


def entity_name(document_name: str) -> str:
    return f"Document: {document_name}"


def describe_document(document: Document, project_name: str | None = None) -> list[str]:
    """Observations attached to a document entity."""
    observations = [
        f"File size: {document.size / 1024:.1f} KB",
        f"MIME type: {document.mime_type or 'unknown'}",
    ]
    if document.description:
        observations.append(f"Description: {document.description}")
    if project_name:
        observations.append(f"Belongs to project: {project_name}")
    return observations


class MemoryGraphNotifier:
    """POSTs entity changes to ``<base_url>/<operation>``. Disabled without a URL."""

    def __init__(self, http_client: httpx.AsyncClient, base_url: str) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._base_url)

    async def _post(self, operation: str, payload: dict[str, Any]) -> None:
        if not self.enabled:
            return
        resp = await self._http.post(f"{self._base_url}/{operation}", json=payload)
        resp.raise_for_status()
        logger.debug("Memory graph %s accepted (%s)", operation, resp.status_code)

    async def document_created(self, document: Document, project_name: str | None = None) -> None:
        await self._post(
            "create_entities",
            {
                "entities": [
                    {
                        "name": entity_name(document.name),
                        "entityType": "Document",
                        "observations": describe_document(document, project_name),
                    }
                ]
            },
        )

    async def version_added(self, document: Document, version_number: int) -> None:
        await self._post(
            "add_observations",
            {
                "observations": [
                    {
                        "entityName": entity_name(document.name),
                        "contents": [
                            f"Version {version_number} uploaded",
                            f"File size: {document.size / 1024:.1f} KB",
                        ],
                    }
                ]
            },
        )

    async def document_deleted(self, document_name: str) -> None:
        await self._post("delete_entities", {"entityNames": [entity_name(document_name)]})
