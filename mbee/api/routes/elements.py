"""Element API endpoints, nested under a branch."""
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
from mbee.services.element_service import ElementService

router = APIRouter()

ELEMENTS = "/{org_id}/projects/{project_id}/branches/{branch_id}/elements"


@router.get(ELEMENTS, summary="Find elements")
async def find_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    ids: list[str] | None = Depends(get_requested_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    """Find elements of a branch.

    Accepts the find options as query parameters
    (``?populate=parent&archived=true&subtree=true``) and element search
    keys (``?type=Block``, ``?custom.owner=vader``).
    """
    return await ElementService(db).find(
        current_user, org_id, project_id, branch_id, ids, options
    )


@router.post(ELEMENTS, status_code=status.HTTP_201_CREATED, summary="Create elements")
async def create_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await ElementService(db).create(
        current_user, org_id, project_id, branch_id, payload, options
    )


@router.patch(ELEMENTS, summary="Update elements")
async def update_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await ElementService(db).update(
        current_user, org_id, project_id, branch_id, payload, options
    )


@router.delete(ELEMENTS, summary="Archive or delete elements")
async def delete_elements(
    org_id: str,
    project_id: str,
    branch_id: str,
    ids: list[str] = Depends(require_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    """Archive (default) or, with ``?soft=false``, delete elements and their subtrees."""
    return await ElementService(db).remove(
        current_user, org_id, project_id, branch_id, ids, options
    )


@router.get(ELEMENTS + "/{element_id}", summary="Get an element")
async def get_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict | list[dict]:
    """One element, or the element and its subtree with ``?subtree=true``."""
    elements = await ElementService(db).find(
        current_user, org_id, project_id, branch_id, element_id, options
    )
    if options.get("subtree"):
        return elements
    return elements[0]


@router.patch(ELEMENTS + "/{element_id}", summary="Update an element")
async def update_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    payload: dict[str, Any] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    elements = await ElementService(db).update(
        current_user,
        org_id,
        project_id,
        branch_id,
        body_for_path(payload, "id", element_id),
        options,
    )
    return elements[0]


@router.delete(ELEMENTS + "/{element_id}", summary="Archive or delete an element")
async def delete_element(
    org_id: str,
    project_id: str,
    branch_id: str,
    element_id: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await ElementService(db).remove(
        current_user, org_id, project_id, branch_id, element_id, options
    )
