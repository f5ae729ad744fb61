"""Pydantic schemas for audit log endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class AuditEventItem(BaseModel):
    """One audit event."""

    id: UUID
    created_at: datetime
    org_id: str | None = None
    username: str | None = None
    action: str
    entity_type: str
    entity_id: str
    diff_json: dict[str, Any] | None = None

    model_config = ConfigDict(from_attributes=True)


class AuditEventListResponse(BaseModel):
    """Paginated list response for audit events."""

    items: list[AuditEventItem]
    total: int
    limit: int
    offset: int
