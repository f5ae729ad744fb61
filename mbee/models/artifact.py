"""Artifact model."""
from sqlalchemy import BigInteger, Column, ForeignKey, String

from mbee.models.base import BaseModel, JSONDocument


class Artifact(BaseModel):
    """Artifact metadata keyed ``org:project:branch:artifact``.

    Blob storage lives outside this service; the row is removed with its
    branch.
    """

    __tablename__ = "artifacts"

    id = Column(String(255), primary_key=True)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    branch_id = Column(String(192), ForeignKey("branches.id"), nullable=False, index=True)
    filename = Column(String(255), nullable=True)
    location = Column(String(1024), nullable=True)
    size = Column(BigInteger, nullable=True)
    custom = Column(JSONDocument, nullable=False, default=dict)
