"""Element model."""
from sqlalchemy import Column, ForeignKey, Index, String, Text

from mbee.models.base import BaseModel, JSONDocument


class Element(BaseModel):
    """Element entity keyed ``org:project:branch:element``.

    ``parent``, ``source`` and ``target`` hold composite element ids and are
    deliberately not foreign keys: the graph tolerates references into other
    projects and is walked with explicit visited sets. ``contains`` is not
    stored; it is derived from the children whose ``parent`` points here.
    """

    __tablename__ = "elements"

    id = Column(String(255), primary_key=True)
    project_id = Column(String(128), ForeignKey("projects.id"), nullable=False, index=True)
    branch_id = Column(String(192), ForeignKey("branches.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    type = Column(String(255), nullable=False, default="")
    parent = Column(String(255), nullable=True, index=True)
    source = Column(String(255), nullable=True, index=True)
    target = Column(String(255), nullable=True, index=True)
    documentation = Column(Text, nullable=False, default="")
    custom = Column(JSONDocument, nullable=False, default=dict)
    uuid = Column(String(64), nullable=True, unique=True)

    __table_args__ = (
        Index("idx_elements_branch_parent", "branch_id", "parent"),
    )

    @property
    def is_relationship(self) -> bool:
        return self.source is not None or self.target is not None

    def __repr__(self) -> str:
        return f"<Element(id={self.id}, parent={self.parent})>"
