"""AuditEvent model."""
import uuid

from sqlalchemy import Column, DateTime, String, Uuid

from mbee.models.base import Base, JSONDocument, utcnow


class AuditEvent(Base):
    """Append-only audit trail of mutating operations.

    Rows outlive the documents they describe, so ``org_id`` and
    ``entity_id`` are plain strings rather than foreign keys.
    """

    __tablename__ = "audit_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    org_id = Column(String(64), nullable=True, index=True)
    username = Column(String(64), nullable=True, index=True)
    action = Column(String(64), nullable=False)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(255), nullable=False)
    diff_json = Column(JSONDocument, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditEvent(id={self.id}, action={self.action}, entity_type={self.entity_type})>"
