"""Permission service: access checks and permission map changes."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from mbee.core.permissions import (
    REMOVE_ALL,
    PermissionMap,
    check_access,
    get_permission_status,
)
from mbee.core.structured_logging import log_json
from mbee.models.enums import AuditAction, Role
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class PermissionService:
    """Resolve effective roles and mutate organization/project permission maps."""

    def __init__(self, db: AsyncSession):
        """Initialize permission service.

        Args:
            db: Database session
        """
        self.db = db
        self.audit_service = AuditService(db)

    def get_permission_status(self, user: User, scope: Organization | Project) -> set[Role]:
        return get_permission_status(user, scope)

    def check_access(self, user: User, scope: Organization | Project, role: Role) -> bool:
        return check_access(user, scope, role)

    def require(
        self, user: User, scope: Organization | Project, role: Role, action: str
    ) -> None:
        """Raise unless ``user`` holds ``role`` on ``scope``.

        Raises:
            PermissionDeniedError: If the role is missing
        """
        if check_access(user, scope, role):
            return
        kind = "project" if isinstance(scope, Project) else "organization"
        log_json(
            logger,
            logging.WARNING,
            "permission_denied",
            username=user.username,
            scope=kind,
            required=role.value,
        )
        raise PermissionDeniedError(
            f"User does not have permission to {action} on the {kind}."
        )

    async def set_permissions(
        self,
        acting_user: User,
        scope: Organization | Project,
        target_username: str,
        role: str,
    ) -> Organization | Project:
        """Grant ``role`` to a user on a scope, or remove all their roles.

        Granting a project role to someone outside the owning organization
        also makes them an organization reader. Removing every role on an
        organization also removes the user from all of its projects.

        Args:
            acting_user: User performing the change (needs admin on scope)
            scope: Organization or Project to change
            target_username: User whose roles change
            role: ``read``, ``write``, ``admin`` or ``REMOVE_ALL``

        Returns:
            The updated scope

        Raises:
            PermissionDeniedError: If acting user is not admin on the scope or
                targets themself
            ValidationError: If role is not a supported level
            NotFoundError: If the target user does not exist
        """
        self.require(acting_user, scope, Role.ADMIN, "change permissions")

        if acting_user.username == target_username:
            raise PermissionDeniedError("Users cannot change their own permissions.")

        if role != REMOVE_ALL:
            try:
                role = Role(role)
            except ValueError:
                raise ValidationError(
                    f"Invalid permission [{role}].",
                    details={"allowed": [r.value for r in Role] + [REMOVE_ALL]},
                ) from None

        target = await self.db.get(User, target_username)
        if target is None:
            raise NotFoundError(f"User [{target_username}] not found.")

        before = dict(scope.permissions or {})
        permissions = PermissionMap.from_document(scope.permissions)

        if role == REMOVE_ALL:
            permissions.revoke(target_username)
            if isinstance(scope, Organization):
                await self._remove_from_projects(scope, target_username, acting_user)
        else:
            permissions.grant(target_username, role)
            if isinstance(scope, Project) and scope.organization is not None:
                org_permissions = PermissionMap.from_document(scope.organization.permissions)
                if target_username not in org_permissions:
                    org_permissions.add(target_username, Role.READ)
                    scope.organization.permissions = org_permissions.to_document()

        scope.permissions = permissions.to_document()
        scope.touch(acting_user.username)
        await self.db.flush()

        org_id = scope.id if isinstance(scope, Organization) else scope.org_id
        await self.audit_service.log(
            action=AuditAction.PERMISSION_CHANGE,
            entity_type="project" if isinstance(scope, Project) else "organization",
            entity_id=scope.id,
            username=acting_user.username,
            org_id=org_id,
            diff_json={
                "user": target_username,
                "role": role if role == REMOVE_ALL else role.value,
                "before": before.get(target_username, []),
                "after": scope.permissions.get(target_username, []),
            },
        )
        return scope

    async def _remove_from_projects(
        self, org: Organization, username: str, acting_user: User
    ) -> None:
        result = await self.db.execute(select(Project).where(Project.org_id == org.id))
        for project in result.scalars().all():
            permissions = PermissionMap.from_document(project.permissions)
            if permissions.revoke(username):
                project.permissions = permissions.to_document()
                project.touch(acting_user.username)
