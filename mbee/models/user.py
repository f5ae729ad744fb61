"""User model."""
from sqlalchemy import Boolean, Column, String

from mbee.models.base import BaseModel, JSONDocument


class User(BaseModel):
    """User entity.

    Users are referenced by username from every permission map and from
    the ``created_by``/``last_modified_by``/``archived_by`` audit columns.
    ``admin`` marks a site-wide superuser that holds every role everywhere.
    """

    __tablename__ = "users"

    username = Column(String(64), primary_key=True)
    password_hash = Column(String(255), nullable=False)
    fname = Column(String(255), nullable=False, default="")
    lname = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=True)
    admin = Column(Boolean, nullable=False, default=False)
    custom = Column(JSONDocument, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<User(username={self.username}, admin={self.admin})>"
