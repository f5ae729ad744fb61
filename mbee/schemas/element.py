"""Pydantic schemas for element payloads.

References (``parent``, ``source``, ``target``) are local element ids of the
same branch; ``source``/``target`` may also be full
``org:project:branch:element`` ids of a referenced project.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from mbee.core.ids import ELEMENT_ID_PATTERN


class ElementCreate(BaseModel):
    """One element in a create request; ``parent`` null means under ``model``."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., pattern=ELEMENT_ID_PATTERN.pattern)
    name: str = Field("", max_length=255)
    type: str = Field("", max_length=255)
    parent: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    documentation: str = ""
    custom: dict[str, Any] = Field(default_factory=dict)
    uuid: Optional[str] = Field(None, min_length=1, max_length=64)


class ElementUpdate(BaseModel):
    """One element in an update request.

    Only the mutable fields are accepted; fields absent from the payload are
    left unchanged. ``custom`` is merged into the stored object.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    name: str = Field(None, max_length=255)
    documentation: str = None
    custom: dict[str, Any] = None
    parent: Optional[str] = None
    source: Optional[str] = None
    target: Optional[str] = None
    archived: bool = None
