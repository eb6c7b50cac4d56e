"""Projects router: HTTP layer only.

Rule: No business logic here. Validate input, call ProjectRepository, return
response. A project owned by another user is reported as 404.
"""

import structlog
from fastapi import APIRouter, Depends, Response, status

from boltstore.api.dependencies import get_project_repository
from boltstore.api.ownership import require_owned_project
from boltstore.core.auth import get_current_user
from boltstore.core.errors import InfrastructureError, NotFoundError
from boltstore.models.schemas import ProjectCreate, ProjectResponse, ProjectUpdate
from boltstore.repositories.project import DELETE_FAILED, ProjectChangeset, ProjectRepository

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
) -> list[ProjectResponse]:
    rows = await projects.get_projects_by_user_id(current_user["id"])
    return [ProjectResponse(**p) for p in rows]


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    body: ProjectCreate,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
) -> ProjectResponse:
    project = await projects.create_project(
        current_user["id"],
        body.name,
        description=body.description,
        code_content=body.code_content,
        preview_url=body.preview_url,
    )
    return ProjectResponse(**project)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
) -> ProjectResponse:
    project = await require_owned_project(projects, project_id, current_user["id"])
    return ProjectResponse(**project)


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
) -> ProjectResponse:
    # exclude_unset keeps "absent" distinct from an explicit null.
    changeset = ProjectChangeset.from_mapping(body.model_dump(exclude_unset=True))
    project = await projects.update_project(project_id, current_user["id"], changeset)
    if project is None:
        raise NotFoundError("Project not found")
    return ProjectResponse(**project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    current_user: dict = Depends(get_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
) -> Response:
    result = await projects.delete_project(project_id, current_user["id"])
    if not result.success:
        if result.message == DELETE_FAILED:
            raise InfrastructureError(result.message)
        raise NotFoundError("Project not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
