"""Pydantic schemas for user management payloads."""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from mbee.core.ids import USERNAME_PATTERN


class UserCreate(BaseModel):
    """One user in a create request (site admin only)."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(..., pattern=USERNAME_PATTERN.pattern)
    password: str = Field(..., min_length=8)
    fname: str = Field("", max_length=255)
    lname: str = Field("", max_length=255)
    email: Optional[EmailStr] = None
    admin: bool = False
    custom: dict[str, Any] = Field(default_factory=dict)


class UserUpdate(BaseModel):
    """One user in an update request.

    Profile fields may be changed by the user themself; ``admin`` and
    ``archived`` require a site admin.
    """

    model_config = ConfigDict(extra="forbid")

    username: str
    fname: str = Field(None, max_length=255)
    lname: str = Field(None, max_length=255)
    email: Optional[EmailStr] = None
    custom: dict[str, Any] = None
    admin: bool = None
    archived: bool = None


class PasswordChangeRequest(BaseModel):
    """Request schema for POST /users/{username}/password."""

    old_password: str = Field(..., description="Current password")
    new_password: str = Field(..., min_length=8, description="New password")
    confirm_password: str = Field(..., min_length=8, description="New password again")
