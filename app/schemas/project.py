"""
Pydantic schemas for the project submission API.
"""
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from app.core.backends import BackendKind


class ProjectCreateRequest(BaseModel):
    """Request body for POST /project."""

    model_config = ConfigDict(populate_by_name=True)

    # Presence is checked by the dispatcher so the error shape stays uniform
    source_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sourceUrl", "gitURL", "source_url"),
        description="Git repository URL to clone and build",
        max_length=2048,
    )
    slug: Optional[str] = Field(
        default=None,
        description="Project slug (subdomain); generated when omitted",
        max_length=100,
    )
    backend_hint: Optional[BackendKind] = Field(
        default=None,
        validation_alias=AliasChoices("backendHint", "backend", "backend_hint"),
        description="Isolation backend: 'ecs' or 'docker'",
    )


class ProjectData(BaseModel):
    """Identity and predicted URL of a queued project."""

    model_config = ConfigDict(populate_by_name=True)

    project_slug: str = Field(alias="projectSlug")
    url: str


class ProjectCreateResponse(BaseModel):
    """Response for POST /project."""
    status: Literal["queued"] = "queued"
    data: ProjectData


class ErrorResponse(BaseModel):
    error: str
