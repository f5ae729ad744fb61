"""Organization model."""
from sqlalchemy import CheckConstraint, Column, String

from mbee.models.base import BaseModel, JSONDocument


class Organization(BaseModel):
    """Organization entity, the top of the containment hierarchy.

    Projects point at their organization; the organization keeps no
    back-reference collection. ``permissions`` maps usernames to role lists.
    """

    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    permissions = Column(JSONDocument, nullable=False, default=dict)
    custom = Column(JSONDocument, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("LENGTH(name) > 0", name="organization_name_not_empty"),
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name})>"
