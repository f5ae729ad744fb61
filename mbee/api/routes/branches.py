"""Branch API endpoints, nested under a project."""
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
from mbee.models.user import User
from mbee.services.branch_service import BranchService

router = APIRouter()

BRANCHES = "/{org_id}/projects/{project_id}/branches"


@router.get(BRANCHES, summary="Find branches")
async def find_branches(
    org_id: str,
    project_id: str,
    ids: list[str] | None = Depends(get_requested_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await BranchService(db).find(current_user, org_id, project_id, ids, options)


@router.post(BRANCHES, status_code=status.HTTP_201_CREATED, summary="Create branches")
async def create_branches(
    org_id: str,
    project_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    """Create branches; each copies the elements of its ``source`` branch."""
    return await BranchService(db).create(current_user, org_id, project_id, payload, options)


@router.patch(BRANCHES, summary="Update branches")
async def update_branches(
    org_id: str,
    project_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await BranchService(db).update(current_user, org_id, project_id, payload, options)


@router.delete(BRANCHES, summary="Archive or delete branches")
async def delete_branches(
    org_id: str,
    project_id: str,
    ids: list[str] = Depends(require_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await BranchService(db).remove(current_user, org_id, project_id, ids, options)


@router.get(BRANCHES + "/{branch_id}", summary="Get a branch")
async def get_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    branches = await BranchService(db).find(current_user, org_id, project_id, branch_id, options)
    return branches[0]


@router.patch(BRANCHES + "/{branch_id}", summary="Update a branch")
async def update_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: dict[str, Any] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    branches = await BranchService(db).update(
        current_user, org_id, project_id, body_for_path(payload, "id", branch_id), options
    )
    return branches[0]


@router.delete(BRANCHES + "/{branch_id}", summary="Archive or delete a branch")
async def delete_branch(
    org_id: str,
    project_id: str,
    branch_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await BranchService(db).remove(current_user, org_id, project_id, branch_id, options)
