"""User management endpoints."""
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
from mbee.schemas.user import PasswordChangeRequest
from mbee.services.user_service import UserService

router = APIRouter()


@router.get("", summary="Find users")
async def find_users(
    ids: list[str] | None = Depends(get_requested_ids),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await UserService(db).find(current_user, ids, options)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create users (site admin)")
async def create_users(
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await UserService(db).create(current_user, payload, options)


@router.patch("", summary="Update users")
async def update_users(
    payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    return await UserService(db).update(current_user, payload, options)


@router.delete("", summary="Delete users (site admin)")
async def delete_users(
    ids: list[str] = Depends(require_ids),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await UserService(db).remove(current_user, ids)


@router.get("/{username}", summary="Get a user")
async def get_user(
    username: str,
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    users = await UserService(db).find(current_user, username, options)
    return users[0]


@router.patch("/{username}", summary="Update a user")
async def update_user(
    username: str,
    payload: dict[str, Any] = Body(...),
    options: dict[str, Any] = Depends(get_query_options),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    users = await UserService(db).update(
        current_user, body_for_path(payload, "username", username), options
    )
    return users[0]


@router.delete("/{username}", summary="Delete a user (site admin)")
async def delete_user(
    username: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[str]:
    return await UserService(db).remove(current_user, username)


@router.post("/{username}/password", summary="Change own password")
async def change_password(
    username: str,
    request: PasswordChangeRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    return await UserService(db).update_password(
        current_user,
        username,
        request.old_password,
        request.new_password,
        request.confirm_password,
    )
