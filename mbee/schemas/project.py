"""Pydantic schemas for project payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mbee.core.ids import PROJECT_ID_PATTERN
from mbee.models.enums import Visibility


class ProjectCreate(BaseModel):
    """One project in a create request.

    ``project_references`` entries are either a project id of the same
    organization or a full ``org:project`` id.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., pattern=PROJECT_ID_PATTERN.pattern)
    name: str = Field(..., min_length=1, max_length=255)
    visibility: Visibility = Visibility.PRIVATE
    project_references: list[str] = Field(default_factory=list)
    custom: dict[str, Any] = Field(default_factory=dict)


class ProjectUpdate(BaseModel):
    """One project in an update request; absent fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str = Field(None, min_length=1, max_length=255)
    visibility: Visibility = None
    project_references: list[str] = None
    custom: dict[str, Any] = None
    archived: bool = None
    permissions: dict[str, str] = None
