"""Project service: project lifecycle, bootstrap and permission changes."""
import logging
from collections.abc import Sequence
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.config import get_settings
from mbee.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from mbee.core.ids import (
    HOLDING_BIN_ELEMENT_ID,
    ID_DELIMITER,
    MBEE_ELEMENT_ID,
    ORG_ID_PATTERN,
    PROJECT_ID_PATTERN,
    ROOT_BRANCH_ID,
    ROOT_ELEMENT_ID,
    UNDEFINED_ELEMENT_ID,
    create_id,
    is_valid_id,
    local_id,
)
from mbee.core.structured_logging import log_json
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.enums import AuditAction, Role
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.schemas.project import ProjectCreate, ProjectUpdate
from mbee.services.audit_service import AuditService
from mbee.services.cascade import cascade_guard, purge_project
from mbee.services.diff_service import DiffService
from mbee.services.helpers import (
    deep_merge,
    ensure_unique,
    get_organization,
    normalize_batch,
    normalize_ids,
    validate_payload,
)
from mbee.services.permission_service import PermissionService
from mbee.services.public_data import project_public, shape_documents
from mbee.services.query_options import (
    FIND_OPTIONS,
    REMOVE_OPTIONS,
    WRITE_OPTIONS,
    sort_and_page,
    validate_options,
)

logger = logging.getLogger(__name__)

# (id, name, parent) of the elements every new project starts with
BOOTSTRAP_ELEMENTS = (
    (ROOT_ELEMENT_ID, "Model", None),
    (MBEE_ELEMENT_ID, "__mbee__", ROOT_ELEMENT_ID),
    (HOLDING_BIN_ELEMENT_ID, "Holding Bin", MBEE_ELEMENT_ID),
    (UNDEFINED_ELEMENT_ID, "undefined element", MBEE_ELEMENT_ID),
)


class ProjectService:
    """Service for the projects of an organization."""

    def __init__(self, db: AsyncSession, permissions: Optional[PermissionService] = None):
        """Initialize project service.

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
        org_id: str,
        projects: Optional[str | list[str]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Find the projects of an organization the user can read.

        Projects the user has no effective read on are silently left out
        of a find-many; a find-one on such a project is denied.

        Raises:
            NotFoundError: A single requested project does not exist
            PermissionDeniedError: A single requested project is not readable
        """
        opts = validate_options(options, "project", FIND_OPTIONS, search=True)
        org = await get_organization(self.db, org_id, archived=opts.archived)

        query = select(Project).where(Project.org_id == org.id)
        if not opts.archived:
            query = query.where(Project.archived.is_(False))
        for key, value in opts.search.items():
            query = query.where(getattr(Project, key) == value)
        if projects is not None:
            ids = [create_id(org.id, p) for p in normalize_ids(projects, "project")]
            query = query.where(Project.id.in_(ids))

        found = list((await self.db.execute(query)).scalars().unique().all())
        readable = [p for p in found if self.permissions.check_access(user, p, Role.READ)]

        if isinstance(projects, str):
            if not found:
                raise NotFoundError(f"Project [{projects}] not found.")
            self.permissions.require(user, found[0], Role.READ, "find projects")

        page = sort_and_page(readable, opts, "id")
        return await shape_documents(self.db, "project", page, opts, batch_size=self.batch_size)

    async def create(
        self,
        user: User,
        org_id: str,
        projects: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Create projects with their master branch and root elements.

        The creator becomes project admin. ``project_references`` entries
        must name existing projects.

        Raises:
            PermissionDeniedError: Missing write permission on the organization
            ValidationError: Invalid payload or project reference
            ConflictError: Project id already in use
        """
        opts = validate_options(options, "project", WRITE_OPTIONS)
        payloads = normalize_batch(projects, "project")
        org = await get_organization(self.db, org_id)
        self.permissions.require(user, org, Role.WRITE, "create projects")

        items = [validate_payload(ProjectCreate, payload, "project") for payload in payloads]
        ensure_unique([item.id for item in items], "project")

        full_ids = [create_id(org.id, item.id) for item in items]
        result = await self.db.execute(select(Project.id).where(Project.id.in_(full_ids)))
        existing = sorted(local_id(i) for i in result.scalars().all())
        if existing:
            raise ConflictError(
                "Projects with the following ids already exist.", details={"ids": existing}
            )

        references = {
            project_id: await self._resolve_references(
                user, org, project_id, item.project_references
            )
            for item, project_id in zip(items, full_ids)
        }

        created = []
        for item, project_id in zip(items, full_ids):
            project = Project(
                id=project_id,
                org_id=org.id,
                organization=org,
                name=item.name,
                visibility=item.visibility.value,
                permissions={user.username: [role.value for role in Role]},
                project_references=references[project_id],
                custom=item.custom,
                created_by=user.username,
                last_modified_by=user.username,
            )
            self.db.add(project)
            created.append(project)
        await self.db.flush()

        for project in created:
            self._bootstrap(project, user)
        await self.db.flush()

        for project in created:
            await self.audit_service.log(
                action=AuditAction.PROJECT_CREATE,
                entity_type="project",
                entity_id=project.id,
                username=user.username,
                org_id=org.id,
            )
            log_json(
                logger,
                logging.INFO,
                "project_created",
                project=project.id,
                username=user.username,
            )

        return await shape_documents(self.db, "project", created, opts, batch_size=self.batch_size)

    def _bootstrap(self, project: Project, user: User) -> None:
        branch_id = create_id(project.id, ROOT_BRANCH_ID)
        self.db.add(
            Branch(
                id=branch_id,
                project_id=project.id,
                name="Master",
                source=None,
                tag=False,
                created_by=user.username,
                last_modified_by=user.username,
            )
        )
        for element_id, name, parent in BOOTSTRAP_ELEMENTS:
            self.db.add(
                Element(
                    id=create_id(branch_id, element_id),
                    project_id=project.id,
                    branch_id=branch_id,
                    name=name,
                    type="Package" if element_id == ROOT_ELEMENT_ID else "",
                    parent=create_id(branch_id, parent) if parent else None,
                    created_by=user.username,
                    last_modified_by=user.username,
                )
            )

    async def _resolve_references(
        self,
        user: User,
        org: Organization,
        project_id: str,
        references: list[str],
        current: Sequence[str] = (),
    ) -> list[str]:
        """Composite ids for ``project_references`` entries.

        Every entry must exist, and the user must be able to read each project
        that is not already referenced.
        """
        resolved = []
        for reference in references:
            parts = reference.split(ID_DELIMITER)
            if len(parts) == 1:
                parts = [org.id, reference]
            if (
                len(parts) != 2
                or not is_valid_id(parts[0], ORG_ID_PATTERN)
                or not is_valid_id(parts[1], PROJECT_ID_PATTERN)
            ):
                raise ValidationError(f"Invalid project reference [{reference}].")
            full_id = create_id(parts)
            if full_id == project_id:
                raise ValidationError("A project cannot reference itself.")
            resolved.append(full_id)

        resolved = list(dict.fromkeys(resolved))
        if resolved:
            result = await self.db.execute(select(Project).where(Project.id.in_(resolved)))
            found = {project.id: project for project in result.scalars().unique().all()}
            missing = sorted(set(resolved) - set(found))
            if missing:
                raise ValidationError(
                    "Referenced projects not found.", details={"projects": missing}
                )
            unreadable = sorted(
                reference_id
                for reference_id, project in found.items()
                if reference_id not in current
                and not self.permissions.check_access(user, project, Role.READ)
            )
            if unreadable:
                raise PermissionDeniedError(
                    "User does not have permission to reference the following projects.",
                    details={"projects": unreadable},
                )
        return resolved

    async def update(
        self,
        user: User,
        org_id: str,
        projects: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Update projects.

        Mutable fields are ``name``, ``visibility``, ``project_references``,
        ``custom``, ``archived`` and ``permissions`` (username to role or
        ``REMOVE_ALL``). Requires effective admin on every project.

        Raises:
            PermissionDeniedError: Missing admin permission or archived project
            NotFoundError: One or more projects do not exist
            ValidationError: Invalid payload or project reference
        """
        opts = validate_options(options, "project", WRITE_OPTIONS)
        payloads = normalize_batch(projects, "project")
        org = await get_organization(self.db, org_id)

        items = [validate_payload(ProjectUpdate, payload, "project") for payload in payloads]
        ensure_unique([item.id for item in items], "project")
        stored = await self._load(org, [item.id for item in items])

        changes = []
        for item in items:
            project = stored[create_id(org.id, item.id)]
            self.permissions.require(user, project, Role.ADMIN, "update projects")
            fields = item.model_dump(exclude_unset=True, exclude={"id"})
            if project.archived and fields.get("archived") is not False:
                raise PermissionDeniedError(
                    f"Project [{item.id}] is archived. It must first be unarchived."
                )
            if fields.get("project_references") is not None:
                fields["project_references"] = await self._resolve_references(
                    user,
                    org,
                    project.id,
                    fields["project_references"],
                    current=project.project_references or [],
                )
            changes.append((project, fields))

        for project, fields in changes:
            before = project_public(project)
            if fields.get("name") is not None:
                project.name = fields["name"]
            if fields.get("visibility") is not None:
                project.visibility = fields["visibility"].value
            if fields.get("project_references") is not None:
                project.project_references = fields["project_references"]
            if fields.get("custom") is not None:
                project.custom = deep_merge(project.custom, fields["custom"])
            if fields.get("archived") is not None:
                project.set_archived(fields["archived"], user.username)
            project.touch(user.username)
            await self.db.flush()

            for username, role in (fields.get("permissions") or {}).items():
                await self.permissions.set_permissions(user, project, username, role)

            await self.audit_service.log(
                action=AuditAction.PROJECT_UPDATE,
                entity_type="project",
                entity_id=project.id,
                username=user.username,
                org_id=org.id,
                diff_json=self.diff_service.summarize(before, project_public(project)),
            )

        return await shape_documents(
            self.db,
            "project",
            [project for project, _ in changes],
            opts,
            batch_size=self.batch_size,
        )

    async def set_permissions(
        self, user: User, org_id: str, project_id: str, username: str, role: str
    ) -> dict:
        """Grant ``role`` on a project to ``username`` (or ``REMOVE_ALL``)."""
        org = await get_organization(self.db, org_id)
        project = (await self._load(org, [project_id]))[create_id(org.id, project_id)]
        if project.archived:
            raise PermissionDeniedError(
                f"Project [{project_id}] is archived. It must first be unarchived."
            )
        await self.permissions.set_permissions(user, project, username, role)
        return project_public(project)

    async def remove(
        self,
        user: User,
        org_id: str,
        projects: str | list[str],
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        """Archive or delete projects.

        Soft removal needs admin on each project. Hard removal needs admin
        on the organization and deletes each project with its branches,
        elements, artifacts and webhooks.

        Returns:
            Ids of the removed projects
        """
        opts = validate_options(options, "project", REMOVE_OPTIONS)
        project_ids = normalize_ids(projects, "project")
        org = await get_organization(self.db, org_id)
        if not opts.soft:
            self.permissions.require(user, org, Role.ADMIN, "delete projects")

        stored = await self._load(org, project_ids)
        if opts.soft:
            for project in stored.values():
                self.permissions.require(user, project, Role.ADMIN, "archive projects")

        for project_id in project_ids:
            full_id = create_id(org.id, project_id)
            if opts.soft:
                project = stored[full_id]
                project.set_archived(True, user.username)
                project.touch(user.username)
                await self.db.flush()
                action = AuditAction.PROJECT_ARCHIVE
                details = None
            else:
                with cascade_guard("project", project=full_id):
                    deleted = await purge_project(self.db, full_id, username=user.username)
                    await self.db.flush()
                action = AuditAction.PROJECT_DELETE
                details = {"elements": deleted}

            await self.audit_service.log(
                action=action,
                entity_type="project",
                entity_id=full_id,
                username=user.username,
                org_id=org.id,
                diff_json=details,
            )

        return project_ids

    async def _load(self, org: Organization, project_ids: list[str]) -> dict[str, Project]:
        full_ids = [create_id(org.id, p) for p in project_ids]
        result = await self.db.execute(select(Project).where(Project.id.in_(full_ids)))
        stored = {project.id: project for project in result.scalars().unique().all()}
        missing = [local_id(i) for i in full_ids if i not in stored]
        if missing:
            raise NotFoundError(
                "The following projects were not found.", details={"ids": missing}
            )
        return stored
