"""Organization API endpoints."""
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
from mbee.services.org_service import OrganizationService

router = APIRouter()


@router.get("", summary="Find organizations")
async def find_organizations(
    ids: list[str] | None = Depends(get_requested_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    """Organizations the current user can read (optionally restricted to ``ids``)."""
    return await OrganizationService(db).find(current_user, ids, options)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create organizations (site admin)",
)
async def create_organizations(
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await OrganizationService(db).create(current_user, payload, options)


@router.patch("", summary="Update organizations")
async def update_organizations(
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await OrganizationService(db).update(current_user, payload, options)


@router.delete("", summary="Archive or delete organizations")
async def delete_organizations(
    ids: list[str] = Depends(require_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await OrganizationService(db).remove(current_user, ids, options)


@router.get("/{org_id}", summary="Get organization details")
async def get_organization(
    org_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    orgs = await OrganizationService(db).find(current_user, org_id, options)
    return orgs[0]


@router.patch("/{org_id}", summary="Update an organization")
async def update_organization(
    org_id: str,
    payload: dict[str, Any] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    orgs = await OrganizationService(db).update(
        current_user, body_for_path(payload, "id", org_id), options
    )
    return orgs[0]


@router.delete("/{org_id}", summary="Archive or delete an organization")
async def delete_organization(
    org_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await OrganizationService(db).remove(current_user, org_id, options)


@router.put("/{org_id}/members/{username}", summary="Set a member's role")
async def set_member_role(
    org_id: str,
    username: str,
    request: PermissionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    return await OrganizationService(db).set_permissions(
        current_user, org_id, username, request.role
    )


@router.delete("/{org_id}/members/{username}", summary="Remove a member")
async def remove_member(
    org_id: str,
    username: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    return await OrganizationService(db).set_permissions(
        current_user, org_id, username, REMOVE_ALL
    )
