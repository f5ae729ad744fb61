"""SQLAlchemy models."""

from mbee.models.artifact import Artifact
from mbee.models.audit_event import AuditEvent
from mbee.models.base import Base, BaseModel
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.enums import AuditAction, Role, Visibility
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.models.webhook import Webhook

__all__ = [
    "Base",
    "BaseModel",
    "Role",
    "Visibility",
    "AuditAction",
    "User",
    "Organization",
    "Project",
    "Branch",
    "Element",
    "Webhook",
    "Artifact",
    "AuditEvent",
]
