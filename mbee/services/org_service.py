"""Organization service for managing organizations and their members."""
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.config import get_settings
from mbee.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError
from mbee.core.structured_logging import log_json
from mbee.models.enums import AuditAction, Role
from mbee.models.organization import Organization
from mbee.models.user import User
from mbee.schemas.organization import OrganizationCreate, OrganizationUpdate
from mbee.services.audit_service import AuditService
from mbee.services.cascade import cascade_guard, purge_organization
from mbee.services.diff_service import DiffService
from mbee.services.helpers import (
    deep_merge,
    ensure_unique,
    normalize_batch,
    normalize_ids,
    validate_payload,
)
from mbee.services.permission_service import PermissionService
from mbee.services.public_data import org_public, shape_documents
from mbee.services.query_options import (
    FIND_OPTIONS,
    REMOVE_OPTIONS,
    WRITE_OPTIONS,
    sort_and_page,
    validate_options,
)

logger = logging.getLogger(__name__)


class OrganizationService:
    """Service for creating and managing organizations."""

    def __init__(self, db: AsyncSession, permissions: Optional[PermissionService] = None):
        """Initialize organization service.

        Args:
            db: Database session
            permissions: Permission service (a new one bound to ``db`` if omitted)
        """
        self.db = db
        self.permissions = permissions or PermissionService(db)
        self.audit_service = AuditService(db)
        self.diff_service = DiffService()
        self.batch_size = get_settings().query_batch_size

    async def find(
        self,
        user: User,
        orgs: Optional[str | list[str]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Find organizations the user can read.

        Args:
            user: Requesting user
            orgs: One org id, a list of ids, or None for all readable orgs
            options: Find options and organization search keys

        Returns:
            Public data of the matching organizations

        Raises:
            NotFoundError: A single requested organization does not exist
            PermissionDeniedError: A single requested organization is not readable
        """
        opts = validate_options(options, "organization", FIND_OPTIONS, search=True)

        query = select(Organization)
        if not opts.archived:
            query = query.where(Organization.archived.is_(False))
        for key, value in opts.search.items():
            query = query.where(getattr(Organization, key) == value)
        if orgs is not None:
            query = query.where(Organization.id.in_(normalize_ids(orgs, "organization")))

        found = list((await self.db.execute(query)).scalars().all())
        if isinstance(orgs, str):
            if not found:
                raise NotFoundError(f"Organization [{orgs}] not found.")
            self.permissions.require(user, found[0], Role.READ, "find organizations")

        readable = [org for org in found if self.permissions.check_access(user, org, Role.READ)]
        page = sort_and_page(readable, opts, "id")
        return await shape_documents(
            self.db, "organization", page, opts, batch_size=self.batch_size
        )

    async def create(
        self,
        user: User,
        orgs: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Create organizations; the creator becomes their admin.

        Raises:
            PermissionDeniedError: If the user is not a site admin
            ValidationError: Invalid payload
            ConflictError: Organization id already in use
        """
        opts = validate_options(options, "organization", WRITE_OPTIONS)
        payloads = normalize_batch(orgs, "organization")
        if not user.admin:
            raise PermissionDeniedError("Only site admins can create organizations.")

        items = [
            validate_payload(OrganizationCreate, payload, "organization") for payload in payloads
        ]
        ensure_unique([item.id for item in items], "organization")

        result = await self.db.execute(
            select(Organization.id).where(Organization.id.in_([item.id for item in items]))
        )
        existing = sorted(result.scalars().all())
        if existing:
            raise ConflictError(
                "Organizations with the following ids already exist.", details={"ids": existing}
            )

        created = []
        for item in items:
            organization = Organization(
                id=item.id,
                name=item.name,
                permissions={user.username: [role.value for role in Role]},
                custom=item.custom,
                created_by=user.username,
                last_modified_by=user.username,
            )
            self.db.add(organization)
            created.append(organization)
        await self.db.flush()

        for organization in created:
            await self.audit_service.log(
                action=AuditAction.ORG_CREATE,
                entity_type="organization",
                entity_id=organization.id,
                username=user.username,
                org_id=organization.id,
            )
        log_json(
            logger,
            logging.INFO,
            "organizations_created",
            ids=[org.id for org in created],
            username=user.username,
        )

        return await shape_documents(
            self.db, "organization", created, opts, batch_size=self.batch_size
        )

    async def update(
        self,
        user: User,
        orgs: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Update organization ``name``, ``custom``, ``archived`` or ``permissions``.

        Raises:
            PermissionDeniedError: Missing admin permission or archived org
            NotFoundError: One or more organizations do not exist
        """
        opts = validate_options(options, "organization", WRITE_OPTIONS)
        payloads = normalize_batch(orgs, "organization")
        items = [
            validate_payload(OrganizationUpdate, payload, "organization") for payload in payloads
        ]
        ensure_unique([item.id for item in items], "organization")
        stored = await self._load([item.id for item in items])

        changes = []
        for item in items:
            organization = stored[item.id]
            self.permissions.require(user, organization, Role.ADMIN, "update organizations")
            fields = item.model_dump(exclude_unset=True, exclude={"id"})
            if organization.archived and fields.get("archived") is not False:
                raise PermissionDeniedError(
                    f"Organization [{item.id}] is archived. It must first be unarchived."
                )
            changes.append((organization, fields))

        for organization, fields in changes:
            before = org_public(organization)
            if fields.get("name") is not None:
                organization.name = fields["name"]
            if fields.get("custom") is not None:
                organization.custom = deep_merge(organization.custom, fields["custom"])
            if fields.get("archived") is not None:
                organization.set_archived(fields["archived"], user.username)
            organization.touch(user.username)
            await self.db.flush()

            for username, role in (fields.get("permissions") or {}).items():
                await self.permissions.set_permissions(user, organization, username, role)

            await self.audit_service.log(
                action=AuditAction.ORG_UPDATE,
                entity_type="organization",
                entity_id=organization.id,
                username=user.username,
                org_id=organization.id,
                diff_json=self.diff_service.summarize(before, org_public(organization)),
            )

        return await shape_documents(
            self.db,
            "organization",
            [organization for organization, _ in changes],
            opts,
            batch_size=self.batch_size,
        )

    async def set_permissions(self, user: User, org_id: str, username: str, role: str) -> dict:
        """Grant ``role`` on an organization to ``username`` (or ``REMOVE_ALL``)."""
        organization = (await self._load([org_id]))[org_id]
        if organization.archived:
            raise PermissionDeniedError(
                f"Organization [{org_id}] is archived. It must first be unarchived."
            )
        await self.permissions.set_permissions(user, organization, username, role)
        return org_public(organization)

    async def remove(
        self,
        user: User,
        orgs: str | list[str],
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        """Archive or delete organizations.

        Soft removal needs admin on each organization. Hard removal needs a
        site admin and deletes everything the organization contains.

        Returns:
            Ids of the removed organizations
        """
        opts = validate_options(options, "organization", REMOVE_OPTIONS)
        org_ids = normalize_ids(orgs, "organization")
        if not opts.soft and not user.admin:
            raise PermissionDeniedError("Only site admins can delete organizations.")

        stored = await self._load(org_ids)
        if opts.soft:
            for organization in stored.values():
                self.permissions.require(user, organization, Role.ADMIN, "archive organizations")

        for org_id in org_ids:
            if opts.soft:
                organization = stored[org_id]
                organization.set_archived(True, user.username)
                organization.touch(user.username)
                await self.db.flush()
                action = AuditAction.ORG_ARCHIVE
                details = None
            else:
                with cascade_guard("organization", org=org_id):
                    deleted = await purge_organization(self.db, org_id, username=user.username)
                    await self.db.flush()
                action = AuditAction.ORG_DELETE
                details = {"elements": deleted}

            await self.audit_service.log(
                action=action,
                entity_type="organization",
                entity_id=org_id,
                username=user.username,
                org_id=org_id,
                diff_json=details,
            )

        return org_ids

    async def _load(self, org_ids: list[str]) -> dict[str, Organization]:
        result = await self.db.execute(select(Organization).where(Organization.id.in_(org_ids)))
        stored = {organization.id: organization for organization in result.scalars().all()}
        missing = [org_id for org_id in org_ids if org_id not in stored]
        if missing:
            raise NotFoundError(
                "The following organizations were not found.", details={"ids": missing}
            )
        return stored
