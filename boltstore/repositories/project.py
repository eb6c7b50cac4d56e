"""ProjectRepository: all asyncpg queries for the projects table.

Every query is scoped by the owning user. Partial updates go through
ProjectChangeset so the UPDATE statement only ever names whitelisted columns.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any, NamedTuple

import asyncpg
import structlog

from boltstore.core.constants import ProjectColumns
from boltstore.core.db import Database, affected_rows
from boltstore.core.errors import ValidationError
from boltstore.repositories.common import dump_json, is_uuid, record_to_dict

logger = structlog.get_logger(__name__)

PROJECT_COLUMNS = """
    id::text, user_id::text, name, description, code_content,
    preview_url, created_at, updated_at
"""


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ProjectChangeset:
    """Optional project fields. UNSET means "leave alone"; None clears the column."""

    name: Any = UNSET
    description: Any = UNSET
    code_content: Any = UNSET
    preview_url: Any = UNSET

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ProjectChangeset":
        unknown = set(data) - set(ProjectColumns.UPDATABLE)
        if unknown:
            raise ValidationError(f"Unknown project fields: {', '.join(sorted(unknown))}")
        return cls(**dict(data))

    def changes(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not UNSET}

    def is_empty(self) -> bool:
        return not self.changes()


def build_project_update(
    changeset: ProjectChangeset, project_id: str, user_id: str
) -> tuple[str, list[Any]] | None:
    """Map a changeset to a parameterized UPDATE, or None when nothing changes."""
    changes = changeset.changes()
    if not changes:
        return None
    if "name" in changes and (not isinstance(changes["name"], str) or not changes["name"].strip()):
        raise ValidationError("Project name cannot be empty")

    set_clauses: list[str] = []
    values: list[Any] = []
    for column in ProjectColumns.UPDATABLE:
        if column not in changes:
            continue
        values.append(dump_json(changes[column]) if column in ProjectColumns.JSON else changes[column])
        cast = "::jsonb" if column in ProjectColumns.JSON else ""
        set_clauses.append(f"{column} = ${len(values)}{cast}")
    set_clauses.append("updated_at = NOW()")

    values.extend([project_id, user_id])
    query = f"""
        UPDATE projects
        SET {", ".join(set_clauses)}
        WHERE id = ${len(values) - 1}::uuid AND user_id = ${len(values)}::uuid
        RETURNING {PROJECT_COLUMNS}
    """
    return query, values


PROJECT_NOT_FOUND = "Project not found or user does not have permission to delete."
DELETE_FAILED = "Error deleting project."


class DeleteResult(NamedTuple):
    success: bool
    message: str | None = None


def _project_from_row(row: asyncpg.Record) -> dict:
    return record_to_dict(row, json_fields=("code_content",))


class ProjectRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create_project(
        self,
        user_id: str,
        name: str,
        description: str | None = None,
        code_content: Any = None,
        preview_url: str | None = None,
    ) -> dict:
        if not name or not name.strip():
            raise ValidationError("Project name is required")
        if not is_uuid(user_id):
            raise ValidationError("user_id must be a valid UUID")
        row = await self._db.fetchrow(
            f"""
            INSERT INTO projects (user_id, name, description, code_content, preview_url)
            VALUES ($1::uuid, $2, $3, $4::jsonb, $5)
            RETURNING {PROJECT_COLUMNS}
            """,
            user_id,
            name,
            description or None,
            dump_json(code_content),
            preview_url or None,
        )
        logger.info("projects.created", project_id=row["id"], user_id=user_id)
        return _project_from_row(row)

    async def get_project_by_id(self, project_id: str, user_id: str) -> dict | None:
        """Return None if the project does not exist or belongs to a different user."""
        if not (is_uuid(project_id) and is_uuid(user_id)):
            return None
        row = await self._db.fetchrow(
            f"""
            SELECT {PROJECT_COLUMNS}
            FROM projects
            WHERE id = $1::uuid AND user_id = $2::uuid
            """,
            project_id,
            user_id,
        )
        return _project_from_row(row) if row else None

    async def get_projects_by_user_id(self, user_id: str) -> list[dict]:
        """Newest first; id breaks ties so repeated calls return the same order."""
        if not is_uuid(user_id):
            return []
        rows = await self._db.fetch(
            f"""
            SELECT {PROJECT_COLUMNS}
            FROM projects
            WHERE user_id = $1::uuid
            ORDER BY updated_at DESC, id ASC
            """,
            user_id,
        )
        return [_project_from_row(r) for r in rows]

    async def update_project(
        self,
        project_id: str,
        user_id: str,
        changes: ProjectChangeset | Mapping[str, Any],
    ) -> dict | None:
        changeset = changes if isinstance(changes, ProjectChangeset) else ProjectChangeset.from_mapping(changes)
        if not (is_uuid(project_id) and is_uuid(user_id)):
            return None
        statement = build_project_update(changeset, project_id, user_id)
        if statement is None:
            return await self.get_project_by_id(project_id, user_id)
        query, values = statement
        row = await self._db.fetchrow(query, *values)
        if row is None:
            return None
        logger.info("projects.updated", project_id=project_id, fields=sorted(changeset.changes()))
        return _project_from_row(row)

    async def delete_project(self, project_id: str, user_id: str) -> DeleteResult:
        """Chats attached to the project are removed by the FK cascade."""
        if not (is_uuid(project_id) and is_uuid(user_id)):
            return DeleteResult(False, PROJECT_NOT_FOUND)
        try:
            status = await self._db.execute(
                "DELETE FROM projects WHERE id = $1::uuid AND user_id = $2::uuid",
                project_id,
                user_id,
            )
        except asyncpg.PostgresError:
            logger.exception("projects.delete.failed", project_id=project_id)
            return DeleteResult(False, DELETE_FAILED)
        if affected_rows(status) == 0:
            return DeleteResult(False, PROJECT_NOT_FOUND)
        logger.info("projects.deleted", project_id=project_id, user_id=user_id)
        return DeleteResult(True)
