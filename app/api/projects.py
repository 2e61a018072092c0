"""
Project submission API.

Endpoints:
- POST /project - Launch a build worker for a git repository
"""
import logging

from fastapi import APIRouter, Depends, Request

from app.core.config import get_deploy_config
from app.core.dispatcher import JobDispatcher
from app.schemas.project import (
    ErrorResponse,
    ProjectCreateRequest,
    ProjectCreateResponse,
    ProjectData,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["projects"])


def get_dispatcher(request: Request) -> JobDispatcher:
    """Dispatcher stored on the app; created on first use."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = JobDispatcher(get_deploy_config())
        request.app.state.dispatcher = dispatcher
    return dispatcher


@router.post(
    "/project",
    response_model=ProjectCreateResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def create_project(
    body: ProjectCreateRequest,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
) -> ProjectCreateResponse:
    """
    Queue a deploy of a git repository.

    Returns once the isolation backend accepted the worker; follow the build
    on the logs:<projectSlug> topic over the /ws WebSocket.
    """
    result = await dispatcher.submit(
        body.source_url,
        slug=body.slug,
        backend_hint=body.backend_hint.value if body.backend_hint else None,
    )

    return ProjectCreateResponse(
        data=ProjectData(project_slug=result.job.slug, url=result.url),
    )
