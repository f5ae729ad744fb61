"""Webhook model."""
from sqlalchemy import Column, ForeignKey, String

from mbee.models.base import BaseModel, JSONDocument


class Webhook(BaseModel):
    """Webhook registration scoped to an organization, project or branch.

    Delivery is handled elsewhere; this service only stores registrations
    and removes them with their owning scope.
    """

    __tablename__ = "webhooks"

    id = Column(String(64), primary_key=True)
    org_id = Column(String(64), ForeignKey("organizations.id"), nullable=False, index=True)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=True, index=True)
    branch_id = Column(String(192), ForeignKey("branches.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False, default="")
    type = Column(String(16), nullable=False, default="Outgoing")
    url = Column(String(2048), nullable=True)
    triggers = Column(JSONDocument, nullable=False, default=list)
    custom = Column(JSONDocument, nullable=False, default=dict)
