"""Pydantic schemas for branch payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from mbee.core.ids import BRANCH_ID_PATTERN


class BranchCreate(BaseModel):
    """One branch in a create request; ``source`` names an existing branch."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., pattern=BRANCH_ID_PATTERN.pattern)
    name: str = Field("", max_length=255)
    source: str = Field(..., min_length=1)
    tag: bool = False
    custom: dict[str, Any] = Field(default_factory=dict)


class BranchUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str = Field(None, max_length=255)
    custom: dict[str, Any] = None
    archived: bool = None
