"""Admin routes for audit log access."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.api.deps import require_site_admin
from mbee.core.database import get_db
from mbee.models.user import User
from mbee.schemas.audit import AuditEventItem, AuditEventListResponse
from mbee.services.audit_service import AuditService

router = APIRouter()


@router.get(
    "/audit",
    response_model=AuditEventListResponse,
    summary="List audit events (site admin)",
)
async def list_audit_events(
    entity_type: str | None = Query(None, max_length=50),
    org_id: str | None = Query(None, max_length=64),
    username: str | None = Query(None, max_length=64),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_site_admin),
) -> AuditEventListResponse:
    service = AuditService(db)
    events, total = await service.list_events(
        org_id=org_id,
        entity_type=entity_type,
        username=username,
        limit=limit,
        offset=offset,
    )
    return AuditEventListResponse(
        items=[AuditEventItem.model_validate(event) for event in events],
        total=total,
        limit=limit,
        offset=offset,
    )
