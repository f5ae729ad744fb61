"""Pydantic schemas for organization payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mbee.core.ids import ORG_ID_PATTERN


class OrganizationCreate(BaseModel):
    """One organization in a create request."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., pattern=ORG_ID_PATTERN.pattern, description="Organization id")
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    custom: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Organization name cannot be empty")
        return v.strip()


class OrganizationUpdate(BaseModel):
    """One organization in an update request.

    Only the fields present in the payload are changed. ``permissions`` maps
    usernames to ``read``/``write``/``admin``/``REMOVE_ALL``.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., description="Organization id")
    name: str = Field(None, min_length=1, max_length=255)
    custom: dict[str, Any] = None
    archived: bool = None
    permissions: dict[str, str] = None


class PermissionRequest(BaseModel):
    """Body of the member endpoints."""

    role: str = Field(..., description="read, write or admin")
