"""Project CRUD; every lookup is scoped to the owning user."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from collabflow.exceptions import ProjectNotFoundError
from collabflow.schemas.project import ProjectResponse
from collabflow.services.datetime_service import now_iso

if TYPE_CHECKING:
    from collabflow.models.project import Project
    from collabflow.repository.base import DocumentRepository
    from collabflow.schemas.project import ProjectCreate, ProjectUpdate

logger = logging.getLogger(__name__)


def project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        user_id=project.user_id,
        name=project.name,
        description=project.description,
        color=project.color,
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


async def _require_project(repo: DocumentRepository, project_id: int, user_id: int) -> Project:
    project = await repo.get_project(project_id, user_id)
    if project is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


async def create_project(
    repo: DocumentRepository, user_id: int, data: ProjectCreate
) -> ProjectResponse:
    project = await repo.create_project(
        user_id=user_id,
        name=data.name,
        description=data.description,
        color=data.color,
        now=now_iso(),
    )
    logger.info("Created project %d for user %d", project.id, user_id)
    return project_response(project)


async def list_projects(repo: DocumentRepository, user_id: int) -> list[ProjectResponse]:
    return [project_response(p) for p in await repo.list_projects(user_id)]


async def get_project(repo: DocumentRepository, user_id: int, project_id: int) -> ProjectResponse:
    return project_response(await _require_project(repo, project_id, user_id))


async def update_project(
    repo: DocumentRepository, user_id: int, project_id: int, data: ProjectUpdate
) -> ProjectResponse:
    await _require_project(repo, project_id, user_id)
    fields = data.model_dump(exclude_unset=True)
    for required in ("name", "color"):
        if required in fields and fields[required] is None:
            raise ValueError(f"Project {required} cannot be empty")
    project = await repo.update_project(project_id, fields, now_iso())
    if project is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project_response(project)


async def delete_project(repo: DocumentRepository, user_id: int, project_id: int) -> None:
    """Delete the project; its documents stay, only their links to it are removed."""
    await _require_project(repo, project_id, user_id)
    if not await repo.delete_project(project_id):
        raise ProjectNotFoundError(f"Project {project_id} not found")
    logger.info("Deleted project %d for user %d", project_id, user_id)
