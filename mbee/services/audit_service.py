"""Audit service for recording mutating operations."""
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.models.audit_event import AuditEvent
from mbee.models.enums import AuditAction


class AuditService:
    """Service for creating and listing audit trail entries."""

    def __init__(self, db: AsyncSession):
        """Initialize audit service.

        Args:
            db: Database session
        """
        self.db = db

    async def log(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        username: Optional[str] = None,
        org_id: Optional[str] = None,
        diff_json: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """Create an audit log entry.

        Args:
            action: Action being performed
            entity_type: Type of entity being acted upon
            entity_id: Composite id of the entity (or of the owning branch
                for element batches)
            username: User performing the action (None for system actions)
            org_id: Organization the entity belongs to, if any
            diff_json: Ids touched and before/after changes

        Returns:
            Created AuditEvent instance
        """
        audit_event = AuditEvent(
            org_id=org_id,
            username=username,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            diff_json=diff_json,
        )
        self.db.add(audit_event)
        await self.db.flush()
        return audit_event

    async def list_events(
        self,
        *,
        org_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        username: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[AuditEvent], int]:
        """List audit events newest first.

        Returns:
            Tuple of (events page, total matching events)
        """
        query = select(AuditEvent)
        count_query = select(func.count()).select_from(AuditEvent)

        if org_id:
            query = query.where(AuditEvent.org_id == org_id)
            count_query = count_query.where(AuditEvent.org_id == org_id)
        if entity_type:
            query = query.where(AuditEvent.entity_type == entity_type)
            count_query = count_query.where(AuditEvent.entity_type == entity_type)
        if username:
            query = query.where(AuditEvent.username == username)
            count_query = count_query.where(AuditEvent.username == username)

        total = int((await self.db.scalar(count_query)) or 0)

        query = query.order_by(AuditEvent.created_at.desc()).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total
