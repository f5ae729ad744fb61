"""Permission maps and effective-access computation.

A scope (organization or project) stores its grants as a JSON object
``{username: ["read", "write"]}``. ``PermissionMap`` is the in-memory value
type for that document; granting a role always stores the role together
with every role below it.

Effective roles on a project are its explicit grants, plus every role when
the user administers the owning organization, plus ``read`` when the project
is internal and the user belongs to the organization. Site admins hold every
role everywhere.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from mbee.models.enums import Role, Visibility
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User

REMOVE_ALL = "REMOVE_ALL"


class PermissionMap:
    """Mapping of username to the set of roles held on one scope."""

    def __init__(self, grants: Mapping[str, Iterable[str | Role]] | None = None):
        self._grants: dict[str, set[Role]] = {}
        for username, roles in (grants or {}).items():
            parsed = {Role(role) for role in roles}
            if parsed:
                self._grants[username] = parsed

    @classmethod
    def from_document(cls, document: Mapping[str, Any] | None) -> PermissionMap:
        return cls(document or {})

    def to_document(self) -> dict[str, list[str]]:
        return {
            username: [
                role.value
                for role in sorted(roles, key=Role.get_hierarchy_level)
            ]
            for username, roles in sorted(self._grants.items())
        }

    def roles(self, username: str) -> set[Role]:
        return set(self._grants.get(username, ()))

    def grant(self, username: str, role: Role) -> None:
        """Replace the user's roles with ``role`` and everything it implies."""
        self._grants[username] = role.implied()

    def add(self, username: str, role: Role) -> None:
        """Add ``role`` (and what it implies) on top of the current grants."""
        self._grants[username] = self.roles(username) | role.implied()

    def revoke(self, username: str) -> bool:
        return self._grants.pop(username, None) is not None

    def members(self) -> list[str]:
        return sorted(self._grants)

    def __contains__(self, username: object) -> bool:
        return username in self._grants

    def __iter__(self) -> Iterator[str]:
        return iter(self.members())

    def __len__(self) -> int:
        return len(self._grants)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionMap):
            return NotImplemented
        return self._grants == other._grants

    def __repr__(self) -> str:
        return f"PermissionMap({self.to_document()!r})"


def get_permission_status(user: User, scope: Organization | Project) -> set[Role]:
    """Roles ``user`` holds on an organization or project."""
    if user.admin:
        return set(Role)

    roles = PermissionMap.from_document(scope.permissions).roles(user.username)
    if isinstance(scope, Project) and scope.organization is not None:
        org_roles = PermissionMap.from_document(scope.organization.permissions).roles(
            user.username
        )
        if Role.ADMIN in org_roles:
            roles |= set(Role)
        elif scope.visibility == Visibility.INTERNAL.value and Role.READ in org_roles:
            roles.add(Role.READ)
    return roles


def check_access(user: User, scope: Organization | Project, role: Role | str) -> bool:
    return Role(role) in get_permission_status(user, scope)
