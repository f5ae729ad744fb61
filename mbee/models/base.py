"""Base SQLAlchemy model with the shared audit and archive columns."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# Schemaless document fields: JSONB on PostgreSQL, plain JSON elsewhere
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(UTC)


class BaseModel(Base):
    """Base model for hierarchy documents.

    Subclasses define their own string primary key. Timestamps are set on
    the client so they are readable right after a flush.
    """

    __abstract__ = True

    created_on = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_on = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    created_by = Column(String(64), nullable=True)
    last_modified_by = Column(String(64), nullable=True)
    archived = Column(Boolean, default=False, nullable=False, index=True)
    archived_on = Column(DateTime(timezone=True), nullable=True)
    archived_by = Column(String(64), nullable=True)

    def set_archived(self, archived: bool, username: str | None) -> None:
        """Move the document between the active and archived states."""
        if archived:
            if not self.archived:
                self.archived_on = utcnow()
                self.archived_by = username
            self.archived = True
        else:
            self.archived = False
            self.archived_on = None
            self.archived_by = None

    def touch(self, username: str | None) -> None:
        self.last_modified_by = username
        self.updated_on = utcnow()
