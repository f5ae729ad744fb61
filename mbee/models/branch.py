"""Branch model."""
from sqlalchemy import Boolean, Column, ForeignKey, String

from mbee.models.base import BaseModel, JSONDocument


class Branch(BaseModel):
    """Branch entity keyed ``org:project:branch``.

    ``source`` is the composite id of the branch this one was copied from
    (null for the root branch). A ``tag`` branch is an immutable snapshot:
    its elements can be read but never created, updated or removed.
    """

    __tablename__ = "branches"

    id = Column(String(192), primary_key=True)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    source = Column(String(192), nullable=True)
    tag = Column(Boolean, nullable=False, default=False)
    custom = Column(JSONDocument, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Branch(id={self.id}, tag={self.tag})>"
