"""Branch service: branch lifecycle and copy-on-branch of the element graph."""
import logging
from typing import Any, Optional

from sqlalchemy import insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.config import get_settings
from mbee.core.exceptions import ConflictError, NotFoundError, PermissionDeniedError
from mbee.core.ids import ID_DELIMITER, ROOT_BRANCH_ID, create_id, local_id
from mbee.core.structured_logging import log_json
from mbee.models.base import utcnow
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.enums import AuditAction, Role
from mbee.models.project import Project
from mbee.models.user import User
from mbee.schemas.branch import BranchCreate, BranchUpdate
from mbee.services.audit_service import AuditService
from mbee.services.cascade import cascade_guard, purge_branch
from mbee.services.diff_service import DiffService
from mbee.services.helpers import (
    chunked,
    deep_merge,
    ensure_unique,
    get_branch,
    get_organization,
    get_project,
    normalize_batch,
    normalize_ids,
    validate_payload,
)
from mbee.services.permission_service import PermissionService
from mbee.services.public_data import branch_public, shape_documents
from mbee.services.query_options import (
    BRANCH_REMOVE_OPTIONS,
    FIND_OPTIONS,
    WRITE_OPTIONS,
    apply_sort_and_page,
    validate_options,
)

logger = logging.getLogger(__name__)


class BranchService:
    """Service for the branches of a project."""

    def __init__(self, db: AsyncSession, permissions: Optional[PermissionService] = None):
        """Initialize branch service.

        Args:
            db: Database session
            permissions: Permission service (a new one bound to ``db`` if omitted)
        """
        self.db = db
        self.permissions = permissions or PermissionService(db)
        self.audit_service = AuditService(db)
        self.diff_service = DiffService()
        self.batch_size = get_settings().query_batch_size

    async def _resolve_project(
        self, org_id: str, project_id: str, *, archived: bool = False
    ) -> Project:
        org = await get_organization(self.db, org_id, archived=archived)
        return await get_project(self.db, org, project_id, archived=archived)

    async def find(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branches: Optional[str | list[str]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Find branches of a project.

        Args:
            user: Requesting user (needs read on the project)
            org_id: Organization id
            project_id: Project id
            branches: One branch id, a list of ids, or None for all
            options: Find options and branch search keys

        Returns:
            Public data of the matching branches

        Raises:
            NotFoundError: A single requested branch does not exist
        """
        opts = validate_options(options, "branch", FIND_OPTIONS, search=True)
        project = await self._resolve_project(org_id, project_id, archived=opts.archived)
        self.permissions.require(user, project, Role.READ, "find branches")

        query = select(Branch).where(Branch.project_id == project.id)
        if not opts.archived:
            query = query.where(Branch.archived.is_(False))
        for key, value in opts.search.items():
            if key == "source":
                value = create_id(project.id, value)
            query = query.where(getattr(Branch, key) == value)
        if branches is not None:
            ids = [create_id(project.id, b) for b in normalize_ids(branches, "branch")]
            query = query.where(Branch.id.in_(ids))

        query = apply_sort_and_page(query, Branch, opts, Branch.id)
        found = list((await self.db.execute(query)).scalars().all())
        if isinstance(branches, str) and not found:
            raise NotFoundError(f"Branch [{branches}] not found.")

        return await shape_documents(self.db, "branch", found, opts, batch_size=self.batch_size)

    async def create(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branches: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Create branches, each a copy of its source branch's elements.

        Every element of the source branch (archived ones included) is
        copied with its id, parent and in-branch references rewritten into
        the new branch. References to other projects are kept as they are.
        Copies never carry a ``uuid``.

        Raises:
            PermissionDeniedError: Missing write permission or archived source
            ValidationError: Invalid payload
            NotFoundError: Source branch does not exist
            ConflictError: Branch id already in use
        """
        opts = validate_options(options, "branch", WRITE_OPTIONS)
        payloads = normalize_batch(branches, "branch")
        project = await self._resolve_project(org_id, project_id)
        self.permissions.require(user, project, Role.WRITE, "create branches")

        items = [validate_payload(BranchCreate, payload, "branch") for payload in payloads]
        ensure_unique([item.id for item in items], "branch")

        full_ids = [create_id(project.id, item.id) for item in items]
        result = await self.db.execute(select(Branch.id).where(Branch.id.in_(full_ids)))
        existing = sorted(local_id(i) for i in result.scalars().all())
        if existing:
            raise ConflictError(
                "Branches with the following ids already exist.", details={"ids": existing}
            )

        sources = {}
        for item in items:
            if item.source not in sources:
                sources[item.source] = await get_branch(self.db, project, item.source)

        created = []
        for item, branch_id in zip(items, full_ids):
            branch = Branch(
                id=branch_id,
                project_id=project.id,
                name=item.name,
                source=sources[item.source].id,
                tag=item.tag,
                custom=item.custom,
                created_by=user.username,
                last_modified_by=user.username,
            )
            self.db.add(branch)
            created.append(branch)
        await self.db.flush()

        for item, branch in zip(items, created):
            with cascade_guard("branch_clone", branch=branch.id, source=sources[item.source].id):
                copied = await self._clone_elements(sources[item.source], branch, user)
            await self.audit_service.log(
                action=AuditAction.BRANCH_CREATE,
                entity_type="branch",
                entity_id=branch.id,
                username=user.username,
                org_id=project.org_id,
                diff_json={"source": item.source, "tag": item.tag, "elements": copied},
            )

        return await shape_documents(self.db, "branch", created, opts, batch_size=self.batch_size)

    async def _clone_elements(self, source: Branch, target: Branch, user: User) -> int:
        source_prefix = source.id + ID_DELIMITER

        def rewrite(value: Optional[str]) -> Optional[str]:
            if value is not None and value.startswith(source_prefix):
                return create_id(target.id, value[len(source_prefix):])
            return value

        result = await self.db.execute(
            select(Element).where(Element.branch_id == source.id).order_by(Element.id)
        )
        now = utcnow()
        rows = [
            {
                "id": create_id(target.id, local_id(element.id)),
                "project_id": element.project_id,
                "branch_id": target.id,
                "name": element.name,
                "type": element.type,
                "parent": rewrite(element.parent),
                "source": rewrite(element.source),
                "target": rewrite(element.target),
                "documentation": element.documentation,
                "custom": dict(element.custom or {}),
                "uuid": None,
                "created_on": now,
                "updated_on": now,
                "created_by": user.username,
                "last_modified_by": user.username,
                "archived": element.archived,
                "archived_on": element.archived_on,
                "archived_by": element.archived_by,
            }
            for element in result.scalars().all()
        ]
        for batch in chunked(rows, self.batch_size):
            await self.db.execute(insert(Element), batch)

        log_json(
            logger,
            logging.INFO,
            "branch_cloned",
            source=source.id,
            branch=target.id,
            elements=len(rows),
        )
        return len(rows)

    async def update(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branches: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Update branch ``name``, ``custom`` or ``archived``.

        Raises:
            PermissionDeniedError: Missing write permission, archived branch,
                or an attempt to archive the master branch
            NotFoundError: One or more branches do not exist
        """
        opts = validate_options(options, "branch", WRITE_OPTIONS)
        payloads = normalize_batch(branches, "branch")
        project = await self._resolve_project(org_id, project_id)
        self.permissions.require(user, project, Role.WRITE, "update branches")

        items = [validate_payload(BranchUpdate, payload, "branch") for payload in payloads]
        ensure_unique([item.id for item in items], "branch")
        stored = await self._load(project, [item.id for item in items])

        changes = []
        for item in items:
            branch = stored[create_id(project.id, item.id)]
            fields = item.model_dump(exclude_unset=True, exclude={"id"})
            if branch.archived and fields.get("archived") is not False:
                raise PermissionDeniedError(
                    f"Branch [{item.id}] is archived. It must first be unarchived."
                )
            if item.id == ROOT_BRANCH_ID and fields.get("archived"):
                raise PermissionDeniedError("The master branch cannot be archived.")
            changes.append((branch, fields))

        for branch, fields in changes:
            before = branch_public(branch)
            if fields.get("name") is not None:
                branch.name = fields["name"]
            if fields.get("custom") is not None:
                branch.custom = deep_merge(branch.custom, fields["custom"])
            if fields.get("archived") is not None:
                branch.set_archived(fields["archived"], user.username)
            branch.touch(user.username)
            await self.db.flush()

            await self.audit_service.log(
                action=AuditAction.BRANCH_UPDATE,
                entity_type="branch",
                entity_id=branch.id,
                username=user.username,
                org_id=project.org_id,
                diff_json=self.diff_service.summarize(before, branch_public(branch)),
            )

        return await shape_documents(
            self.db, "branch", [branch for branch, _ in changes], opts, batch_size=self.batch_size
        )

    async def remove(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branches: str | list[str],
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        """Archive or delete branches.

        Soft removal needs write on the project; hard removal needs admin
        and deletes the branch with its elements, artifacts and webhooks.
        The master branch can never be removed; tags only with ``force``.

        Returns:
            Ids of the removed branches
        """
        opts = validate_options(options, "branch", BRANCH_REMOVE_OPTIONS)
        branch_ids = normalize_ids(branches, "branch")
        project = await self._resolve_project(org_id, project_id)
        if opts.soft:
            self.permissions.require(user, project, Role.WRITE, "archive branches")
        else:
            self.permissions.require(user, project, Role.ADMIN, "delete branches")

        stored = await self._load(project, branch_ids)
        for branch_id in branch_ids:
            branch = stored[create_id(project.id, branch_id)]
            if branch_id == ROOT_BRANCH_ID:
                raise PermissionDeniedError("The master branch cannot be removed.")
            if branch.tag and not opts.force:
                raise PermissionDeniedError(
                    f"Branch [{branch_id}] is a tag. Use the force option to remove it."
                )

        for branch_id in branch_ids:
            branch = stored[create_id(project.id, branch_id)]
            if opts.soft:
                branch.set_archived(True, user.username)
                branch.touch(user.username)
                await self.db.flush()
                action = AuditAction.BRANCH_ARCHIVE
                details = None
            else:
                with cascade_guard("branch", branch=branch.id):
                    deleted = await purge_branch(self.db, branch.id, username=user.username)
                    await self.db.flush()
                action = AuditAction.BRANCH_DELETE
                details = {"elements": deleted}

            await self.audit_service.log(
                action=action,
                entity_type="branch",
                entity_id=create_id(project.id, branch_id),
                username=user.username,
                org_id=project.org_id,
                diff_json=details,
            )

        return branch_ids

    async def _load(self, project: Project, branch_ids: list[str]) -> dict[str, Branch]:
        full_ids = [create_id(project.id, b) for b in branch_ids]
        result = await self.db.execute(select(Branch).where(Branch.id.in_(full_ids)))
        stored = {branch.id: branch for branch in result.scalars().all()}
        missing = [local_id(i) for i in full_ids if i not in stored]
        if missing:
            raise NotFoundError(
                "The following branches were not found.", details={"ids": missing}
            )
        return stored
