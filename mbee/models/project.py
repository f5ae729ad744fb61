"""Project model."""
from sqlalchemy import Column, ForeignKey, String
from sqlalchemy.orm import relationship

from mbee.models.base import BaseModel, JSONDocument
from mbee.models.enums import Visibility


class Project(BaseModel):
    """Project entity keyed ``org:project``.

    The owning organization is eagerly joined so effective permissions
    (which inherit from the organization) can be computed without another
    round trip. ``project_references`` lists composite ids of projects whose
    elements may be targeted by this project's relationships.
    """

    __tablename__ = "projects"

    id = Column(String(128), primary_key=True)
    org_id = Column(String(64), ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    visibility = Column(String(16), nullable=False, default=Visibility.PRIVATE.value)
    permissions = Column(JSONDocument, nullable=False, default=dict)
    project_references = Column(JSONDocument, nullable=False, default=list)
    custom = Column(JSONDocument, nullable=False, default=dict)

    organization = relationship("Organization", lazy="joined")

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, name={self.name})>"
