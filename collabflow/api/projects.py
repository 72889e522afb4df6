"""Project API endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, status

from collabflow.api.deps import get_repository, require_auth
from collabflow.models.user import User
from collabflow.repository.base import DocumentRepository
from collabflow.schemas.project import ProjectCreate, ProjectResponse, ProjectUpdate
from collabflow.services import project_service

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[DocumentRepository, Depends(get_repository)],
) -> list[ProjectResponse]:
    return await project_service.list_projects(repo, user.id)


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[DocumentRepository, Depends(get_repository)],
) -> ProjectResponse:
    return await project_service.create_project(repo, user.id, body)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: int,
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[DocumentRepository, Depends(get_repository)],
) -> ProjectResponse:
    return await project_service.get_project(repo, user.id, project_id)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: int,
    body: ProjectUpdate,
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[DocumentRepository, Depends(get_repository)],
) -> ProjectResponse:
    return await project_service.update_project(repo, user.id, project_id, body)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: int,
    user: Annotated[User, Depends(require_auth)],
    repo: Annotated[DocumentRepository, Depends(get_repository)],
) -> None:
    """Delete a project; linked documents are kept."""
    await project_service.delete_project(repo, user.id, project_id)
