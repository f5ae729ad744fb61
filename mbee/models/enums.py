"""Enumerations for permission roles, visibility and audit actions."""

from enum import Enum


class Role(str, Enum):
    """Permission role enumeration with hierarchy.

    Hierarchy (higher can do everything lower can do):
    1. ADMIN (permission changes, hard deletes)
    2. WRITE (create and modify contained documents)
    3. READ (find)
    """

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @classmethod
    def get_hierarchy_level(cls, role: "Role") -> int:
        """Get numeric hierarchy level for role comparison.

        Args:
            role: Role to get level for

        Returns:
            Integer level (higher = more permissions)
        """
        levels = {
            cls.READ: 1,
            cls.WRITE: 2,
            cls.ADMIN: 3,
        }
        return levels.get(role, 0)

    def has_permission(self, required_role: "Role") -> bool:
        """Check if this role satisfies an action requiring another role."""
        return self.get_hierarchy_level(self) >= self.get_hierarchy_level(required_role)

    def implied(self) -> set["Role"]:
        """This role and every role below it."""
        return {role for role in Role if self.has_permission(role)}


class Visibility(str, Enum):
    """Project visibility.

    PRIVATE projects are visible to project members only, INTERNAL projects
    are readable by every member of the owning organization.
    """

    PRIVATE = "private"
    INTERNAL = "internal"


class AuditAction(str, Enum):
    """Audit action enumeration for tracking mutating operations."""

    USER_CREATE = "user.create"
    USER_UPDATE = "user.update"
    USER_DELETE = "user.delete"
    USER_LOGIN = "user.login"
    USER_PASSWORD_CHANGE = "user.password_change"

    ORG_CREATE = "organization.create"
    ORG_UPDATE = "organization.update"
    ORG_ARCHIVE = "organization.archive"
    ORG_DELETE = "organization.delete"

    PROJECT_CREATE = "project.create"
    PROJECT_UPDATE = "project.update"
    PROJECT_ARCHIVE = "project.archive"
    PROJECT_DELETE = "project.delete"

    BRANCH_CREATE = "branch.create"
    BRANCH_UPDATE = "branch.update"
    BRANCH_ARCHIVE = "branch.archive"
    BRANCH_DELETE = "branch.delete"

    ELEMENT_CREATE = "element.create"
    ELEMENT_UPDATE = "element.update"
    ELEMENT_ARCHIVE = "element.archive"
    ELEMENT_DELETE = "element.delete"

    PERMISSION_CHANGE = "permission.change"
