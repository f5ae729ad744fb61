"""FastAPI dependencies for authentication and option parsing."""
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.database import get_db
from mbee.core.exceptions import (
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)
from mbee.core.security import decode_token
from mbee.models.user import User

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)

# Query parameters that are not plain string search filters
_LIST_PARAMS = ("populate", "fields")
_BOOL_PARAMS = ("archived", "subtree", "soft", "force", "tag", "admin")
_INT_PARAMS = ("limit", "skip")
_IDS_PARAM = "ids"


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current authenticated user from JWT token.

    Args:
        credentials: HTTP Bearer credentials from request
        db: Database session

    Returns:
        Authenticated User instance

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user
            does not exist or is archived
    """
    if credentials is None:
        raise AuthenticationError("Missing bearer token.")

    payload = decode_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token.")

    username = payload.get("sub")
    if not username:
        raise AuthenticationError("Invalid token payload.")

    user = await db.get(User, username)
    if user is None:
        raise AuthenticationError("User not found.")
    if user.archived:
        raise AuthenticationError("This user has been archived.")

    return user


async def require_site_admin(current_user: User = Depends(get_current_user)) -> User:
    """Dependency for endpoints reserved to site admins.

    Raises:
        PermissionDeniedError: If the user is not a site admin
    """
    if not current_user.admin:
        raise PermissionDeniedError("Only site admins can perform this action.")
    return current_user


def get_query_options(request: Request) -> dict[str, Any]:
    """Translate query parameters into a service option mapping.

    ``populate`` and ``fields`` are comma separated lists, boolean options
    take ``true``/``false`` and ``limit``/``skip`` integers. Any other
    parameter except ``ids`` is passed through as a string search filter.

    Raises:
        ValidationError: If a boolean or integer option cannot be parsed
    """
    options: dict[str, Any] = {}
    for key, value in request.query_params.items():
        if key == _IDS_PARAM:
            continue
        if key in _LIST_PARAMS:
            options[key] = [item for item in value.split(",") if item]
        elif key in _BOOL_PARAMS:
            lowered = value.lower()
            if lowered not in ("true", "false"):
                raise ValidationError(f"The option [{key}] must be true or false.")
            options[key] = lowered == "true"
        elif key in _INT_PARAMS:
            try:
                options[key] = int(value)
            except ValueError:
                raise ValidationError(f"The option [{key}] must be an integer.") from None
        else:
            options[key] = value
    return options


def get_requested_ids(request: Request) -> list[str] | None:
    """The ``ids`` query parameter as a list (None when absent)."""
    raw = request.query_params.get(_IDS_PARAM)
    if raw is None:
        return None
    return [item for item in raw.split(",") if item]


def require_ids(ids: list[str] | None = Depends(get_requested_ids)) -> list[str]:
    """Like ``get_requested_ids`` but for bulk deletes, where ids are mandatory."""
    if not ids:
        raise ValidationError("The [ids] query parameter is required.")
    return ids


def body_for_path(payload: dict[str, Any], key: str, value: str) -> dict[str, Any]:
    """Bind a single-document body to the id given in the path.

    Raises:
        ValidationError: If the body is not an object
        ConflictError: If the body names a different id
    """
    if not isinstance(payload, dict):
        raise ValidationError("Expected a single object in the request body.")
    if key in payload and payload[key] != value:
        raise ConflictError(
            f"The {key} in the body [{payload[key]}] does not match the path [{value}]."
        )
    return {**payload, key: value}
