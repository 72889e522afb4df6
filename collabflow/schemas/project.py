"""Project schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from collabflow.models.project import DEFAULT_PROJECT_COLOR

_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class ProjectResponse(BaseModel):
    id: int
    user_id: int
    name: str
    description: str | None = None
    color: str
    created_at: str
    updated_at: str


class ProjectCreate(BaseModel):
    """Request to create a project."""

    name: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    color: str = Field(default=DEFAULT_PROJECT_COLOR, pattern=_COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class ProjectUpdate(BaseModel):
    """Partial project edit."""

    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    color: str | None = Field(default=None, pattern=_COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: str | None) -> str | None:
        return v.strip() if isinstance(v, str) else v
