"""Project API endpoints, nested under an organization."""
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.api.deps import (
    body_for_path,
    get_current_user,
    get_query_options,
    get_requested_ids,
    require_ids,
)
from mbee.core.database import get_db
from mbee.core.permissions import REMOVE_ALL
from mbee.models.user import User
from mbee.schemas.organization import PermissionRequest
from mbee.services.project_service import ProjectService

router = APIRouter()


@router.get("/{org_id}/projects", summary="Find projects")
async def find_projects(
    org_id: str,
    ids: list[str] | None = Depends(get_requested_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await ProjectService(db).find(current_user, org_id, ids, options)


@router.post(
    "/{org_id}/projects",
    status_code=status.HTTP_201_CREATED,
    summary="Create projects",
)
async def create_projects(
    org_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await ProjectService(db).create(current_user, org_id, payload, options)


@router.patch("/{org_id}/projects", summary="Update projects")
async def update_projects(
    org_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await ProjectService(db).update(current_user, org_id, payload, options)


@router.delete("/{org_id}/projects", summary="Archive or delete projects")
async def delete_projects(
    org_id: str,
    ids: list[str] = Depends(require_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await ProjectService(db).remove(current_user, org_id, ids, options)


@router.get("/{org_id}/projects/{project_id}", summary="Get a project")
async def get_project(
    org_id: str,
    project_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    projects = await ProjectService(db).find(current_user, org_id, project_id, options)
    return projects[0]


@router.patch("/{org_id}/projects/{project_id}", summary="Update a project")
async def update_project(
    org_id: str,
    project_id: str,
    payload: dict[str, Any] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    projects = await ProjectService(db).update(
        current_user, org_id, body_for_path(payload, "id", project_id), options
    )
    return projects[0]


@router.delete("/{org_id}/projects/{project_id}", summary="Archive or delete a project")
async def delete_project(
    org_id: str,
    project_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await ProjectService(db).remove(current_user, org_id, project_id, options)


@router.put("/{org_id}/projects/{project_id}/members/{username}", summary="Set a member's role")
async def set_member_role(
    org_id: str,
    project_id: str,
    username: str,
    request: PermissionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    return await ProjectService(db).set_permissions(
        current_user, org_id, project_id, username, request.role
    )


@router.delete("/{org_id}/projects/{project_id}/members/{username}", summary="Remove a member")
async def remove_member(
    org_id: str,
    project_id: str,
    username: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    return await ProjectService(db).set_permissions(
        current_user, org_id, project_id, username, REMOVE_ALL
    )
