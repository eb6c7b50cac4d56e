"""Shared project ownership checks for API routes."""

from boltstore.core.errors import NotFoundError
from boltstore.repositories.project import ProjectRepository


async def require_owned_project(projects: ProjectRepository, project_id: str, user_id: str) -> dict:
    """
    Return the owned project row or raise 404.

    A project owned by someone else looks exactly like a missing one.
    """
    project = await projects.get_project_by_id(project_id, user_id)
    if not project:
        raise NotFoundError("Project not found")
    return project
