"""Element service: create, find, update and remove elements of a branch.

All batch operations are all-or-nothing: every element of a request is
validated before the first write, and the write itself is one flush in the
request's transaction.
"""
import logging
from collections.abc import Iterable, Sequence
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.config import get_settings
from mbee.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from mbee.core.ids import (
    BRANCH_ID_PATTERN,
    ELEMENT_ID_PATTERN,
    ID_DELIMITER,
    ORG_ID_PATTERN,
    PROJECT_ID_PATTERN,
    RESERVED_ELEMENT_IDS,
    ROOT_ELEMENT_ID,
    UNDEFINED_ELEMENT_ID,
    create_id,
    is_valid_id,
    local_id,
    validate_id,
)
from mbee.core.metrics import observe_element_operation
from mbee.core.structured_logging import log_json
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.enums import AuditAction, Role
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.schemas.element import ElementCreate, ElementUpdate
from mbee.services.audit_service import AuditService
from mbee.services.cascade import cascade_guard
from mbee.services.diff_service import DiffService
from mbee.services.element_graph import (
    children_map,
    collect_subtree,
    creates_cycle,
    repoint_references_to_ids,
)
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
from mbee.services.public_data import element_public, shape_documents
from mbee.services.query_options import (
    CUSTOM_SEARCH_PREFIX,
    ELEMENT_FIND_OPTIONS,
    REMOVE_OPTIONS,
    WRITE_OPTIONS,
    QueryOptions,
    apply_sort_and_page,
    sort_and_page,
    validate_options,
)

logger = logging.getLogger(__name__)

_REFERENCE_FIELDS = ("source", "target")


class ElementService:
    """Service for the element graph of one branch at a time."""

    def __init__(self, db: AsyncSession, permissions: Optional[PermissionService] = None):
        """Initialize element service.

        Args:
            db: Database session
            permissions: Permission service (a new one bound to ``db`` if omitted)
        """
        self.db = db
        self.permissions = permissions or PermissionService(db)
        self.audit_service = AuditService(db)
        self.diff_service = DiffService()
        self.batch_size = get_settings().query_batch_size

    async def create(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branch_id: str,
        elements: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Create one or many elements.

        Args:
            user: Requesting user (needs write on the project)
            org_id: Organization id
            project_id: Project id
            branch_id: Branch id
            elements: One element payload or a list of them
            options: ``populate`` and/or ``fields``

        Returns:
            Public data of the created elements, in request order

        Raises:
            PermissionDeniedError: Tag branch or missing write permission
            ValidationError: Invalid payload, parent or reference
            ConflictError: Id or uuid already in use
        """
        opts = validate_options(options, "element", WRITE_OPTIONS)
        payloads = normalize_batch(elements, "element")
        _, project, branch = await self._resolve_scope(org_id, project_id, branch_id)
        self._require_mutable(branch)
        self.permissions.require(user, project, Role.WRITE, "create elements")

        items = [validate_payload(ElementCreate, payload, "element") for payload in payloads]
        ensure_unique([item.id for item in items], "element")
        reserved = sorted({item.id for item in items} & RESERVED_ELEMENT_IDS)
        if reserved:
            raise ValidationError("Element ids are reserved.", details={"ids": reserved})

        full_ids = {item.id: create_id(branch.id, item.id) for item in items}
        existing = await self._existing_ids(full_ids.values())
        if existing:
            raise ConflictError(
                "Elements with the following ids already exist.",
                details={"ids": sorted(local_id(i) for i in existing)},
            )
        await self._check_uuids([item.uuid for item in items if item.uuid])

        parents = {
            full_ids[item.id]: self._local_reference(branch, item.parent or ROOT_ELEMENT_ID)
            for item in items
        }
        batch_relationships = {
            full_ids[item.id]: item.source is not None or item.target is not None
            for item in items
        }
        await self._validate_parents(branch, parents, batch_relationships)
        self._reject_batch_cycles(parents)

        references = {}
        for item in items:
            if (item.source is None) != (item.target is None):
                raise ValidationError(
                    f"Element [{item.id}] must have both a source and a target, or neither."
                )
            if item.source is not None:
                references[full_ids[item.id]] = {"source": item.source, "target": item.target}
        resolved = await self._resolve_references(
            project, branch, references, batch_ids=set(full_ids.values())
        )

        created = []
        for item in items:
            element_id = full_ids[item.id]
            refs = resolved.get(element_id, {})
            created.append(
                Element(
                    id=element_id,
                    project_id=project.id,
                    branch_id=branch.id,
                    name=item.name,
                    type=item.type,
                    parent=parents[element_id],
                    source=refs.get("source"),
                    target=refs.get("target"),
                    documentation=item.documentation,
                    custom=item.custom,
                    uuid=item.uuid,
                    created_by=user.username,
                    last_modified_by=user.username,
                )
            )

        self.db.add_all(created)
        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictError("An element id or uuid is already in use.") from None

        await self.audit_service.log(
            action=AuditAction.ELEMENT_CREATE,
            entity_type="element",
            entity_id=branch.id,
            username=user.username,
            org_id=project.org_id,
            diff_json={"ids": [item.id for item in items]},
        )
        observe_element_operation("create", len(created))
        log_json(
            logger,
            logging.INFO,
            "elements_created",
            branch=branch.id,
            count=len(created),
            username=user.username,
        )
        return await self._shape(branch, created, opts)

    async def find(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branch_id: str,
        elements: Optional[str | list[str]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Find elements of a branch.

        ``elements`` may be one id (a find-one), a list of ids, or None for
        every element of the branch. Archived elements are excluded unless
        ``archived`` is set; ``subtree`` adds every descendant of the
        requested elements (of ``model`` when no id is given).

        Args:
            user: Requesting user (needs read on the project)
            org_id: Organization id
            project_id: Project id
            branch_id: Branch id
            elements: Id, list of ids, or None
            options: Find options and element search keys

        Returns:
            Public data of the matching elements (possibly empty)

        Raises:
            NotFoundError: A single requested id did not resolve
        """
        opts = validate_options(options, "element", ELEMENT_FIND_OPTIONS, search=True)
        _, project, branch = await self._resolve_scope(
            org_id, project_id, branch_id, archived=opts.archived
        )
        self.permissions.require(user, project, Role.READ, "find elements")

        single = isinstance(elements, str)
        ids = None
        if elements is not None:
            ids = [create_id(branch.id, i) for i in normalize_ids(elements, "element")]

        if opts.subtree:
            roots = ids if ids is not None else [create_id(branch.id, ROOT_ELEMENT_ID)]
            ids = await collect_subtree(
                self.db,
                branch.id,
                roots,
                include_archived=opts.archived,
                batch_size=self.batch_size,
            )

        conditions = [Element.branch_id == branch.id, *self._search_conditions(branch, opts)]
        if not opts.archived:
            conditions.append(Element.archived.is_(False))

        if ids is None:
            query = apply_sort_and_page(select(Element).where(*conditions), Element, opts, Element.id)
            found = list((await self.db.execute(query)).scalars().all())
        else:
            found = []
            for batch in chunked(ids, self.batch_size):
                result = await self.db.execute(
                    select(Element).where(Element.id.in_(batch), *conditions)
                )
                found.extend(result.scalars().all())
            found = sort_and_page(found, opts, "id")

        if single and not found:
            raise NotFoundError(f"Element [{elements}] not found.")

        observe_element_operation("find", len(found))
        return await self._shape(branch, found, opts)

    async def update(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branch_id: str,
        elements: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Update one or many elements.

        Only ``name``, ``documentation``, ``custom``, ``parent``, ``source``,
        ``target`` and ``archived`` may change. Archived elements only accept
        an update that un-archives them. A new parent must exist, must not be
        archived, and must not sit inside the moved element's own subtree.

        Returns:
            Public data of the updated elements, in request order

        Raises:
            PermissionDeniedError: Tag branch, missing write permission, or
                update of an archived element
            NotFoundError: One or more ids do not exist
            ValidationError: Invalid field, parent, reference or cycle
        """
        opts = validate_options(options, "element", WRITE_OPTIONS)
        payloads = normalize_batch(elements, "element")
        _, project, branch = await self._resolve_scope(org_id, project_id, branch_id)
        self._require_mutable(branch)
        self.permissions.require(user, project, Role.WRITE, "update elements")

        items = [validate_payload(ElementUpdate, payload, "element") for payload in payloads]
        for item in items:
            validate_id(item.id, ELEMENT_ID_PATTERN, "element")
        ensure_unique([item.id for item in items], "element")

        full_ids = {item.id: create_id(branch.id, item.id) for item in items}
        stored = await self._load(full_ids.values())
        missing = [item.id for item in items if full_ids[item.id] not in stored]
        if missing:
            raise NotFoundError(
                "The following elements were not found.", details={"ids": missing}
            )

        changes: dict[str, dict[str, Any]] = {}
        for item in items:
            element = stored[full_ids[item.id]]
            fields = item.model_dump(exclude_unset=True, exclude={"id"})
            if element.archived and fields.get("archived") is not False:
                raise PermissionDeniedError(
                    f"Element [{item.id}] is archived. It must first be unarchived."
                )
            if item.id in RESERVED_ELEMENT_IDS and fields.keys() & {
                "parent",
                "archived",
                "source",
                "target",
            }:
                raise ValidationError(
                    f"Element [{item.id}] is reserved and cannot be moved, archived or related."
                )
            changes[element.id] = fields

        moves = {
            element_id: self._local_reference(branch, fields["parent"] or ROOT_ELEMENT_ID)
            for element_id, fields in changes.items()
            if "parent" in fields
        }
        if moves:
            await self._validate_parents(branch, moves, {})
            for element_id, parent_id in moves.items():
                if await creates_cycle(self.db, element_id, parent_id, moves):
                    raise ValidationError(
                        f"Moving element [{local_id(element_id)}] under "
                        f"[{local_id(parent_id)}] would create a circular reference."
                    )

        references = {
            element_id: {key: fields[key] for key in _REFERENCE_FIELDS if key in fields}
            for element_id, fields in changes.items()
            if fields.keys() & set(_REFERENCE_FIELDS)
        }
        resolved = await self._resolve_references(project, branch, references)
        relationships = []
        for element_id, refs in resolved.items():
            element = stored[element_id]
            source = refs["source"] if "source" in refs else element.source
            target = refs["target"] if "target" in refs else element.target
            if (source is None) != (target is None):
                raise ValidationError(
                    f"Element [{local_id(element_id)}] must have both a source and a "
                    "target, or neither."
                )
            if source is not None:
                relationships.append(element_id)
        await self._reject_relationship_parents(branch, relationships, moves)

        before = {element_id: element_public(stored[element_id]) for element_id in changes}
        for element_id, fields in changes.items():
            element = stored[element_id]
            if fields.get("name") is not None:
                element.name = fields["name"]
            if fields.get("documentation") is not None:
                element.documentation = fields["documentation"]
            if fields.get("custom") is not None:
                element.custom = deep_merge(element.custom, fields["custom"])
            if element_id in moves:
                element.parent = moves[element_id]
            for key, value in resolved.get(element_id, {}).items():
                setattr(element, key, value)
            if fields.get("archived") is not None:
                element.set_archived(fields["archived"], user.username)
            element.touch(user.username)

        await self.db.flush()

        await self.audit_service.log(
            action=AuditAction.ELEMENT_UPDATE,
            entity_type="element",
            entity_id=branch.id,
            username=user.username,
            org_id=project.org_id,
            diff_json={
                "elements": {
                    local_id(element_id): self.diff_service.summarize(
                        before[element_id], element_public(stored[element_id])
                    )
                    for element_id in changes
                }
            },
        )
        observe_element_operation("update", len(changes))
        updated = [stored[full_ids[item.id]] for item in items]
        return await self._shape(branch, updated, opts)

    async def remove(
        self,
        user: User,
        org_id: str,
        project_id: str,
        branch_id: str,
        elements: str | list[str],
        options: Optional[dict[str, Any]] = None,
    ) -> list[str]:
        """Archive or delete elements.

        Soft removal (the default) archives exactly the named elements. Hard
        removal (``{"soft": False}``) deletes the named elements and their
        whole subtree; relationships elsewhere that pointed at a deleted
        element are repointed to their branch's ``undefined`` element.

        Returns:
            Local ids of the archived or deleted elements

        Raises:
            PermissionDeniedError: Tag branch or missing write permission
            ValidationError: A reserved element was named
            NotFoundError: One or more ids do not exist
            DatabaseError: The delete cascade failed (nothing is kept)
        """
        opts = validate_options(options, "element", REMOVE_OPTIONS)
        local_ids = normalize_ids(elements, "element")
        _, project, branch = await self._resolve_scope(org_id, project_id, branch_id)
        self._require_mutable(branch)
        self.permissions.require(user, project, Role.WRITE, "remove elements")

        reserved = sorted(set(local_ids) & RESERVED_ELEMENT_IDS)
        if reserved:
            raise ValidationError("Reserved elements cannot be removed.", details={"ids": reserved})

        full_ids = [create_id(branch.id, i) for i in local_ids]
        stored = await self._load(full_ids)
        missing = [local_id(i) for i in full_ids if i not in stored]
        if missing:
            raise NotFoundError(
                "The following elements were not found.", details={"ids": missing}
            )

        if opts.soft:
            for element_id in full_ids:
                stored[element_id].set_archived(True, user.username)
                stored[element_id].touch(user.username)
            await self.db.flush()
            await self.audit_service.log(
                action=AuditAction.ELEMENT_ARCHIVE,
                entity_type="element",
                entity_id=branch.id,
                username=user.username,
                org_id=project.org_id,
                diff_json={"ids": local_ids},
            )
            observe_element_operation("archive", len(full_ids))
            return local_ids

        subtree = await collect_subtree(
            self.db, branch.id, full_ids, include_archived=True, batch_size=self.batch_size
        )
        if set(subtree) & {create_id(branch.id, i) for i in RESERVED_ELEMENT_IDS}:
            raise ValidationError("Reserved elements cannot be removed.")

        with cascade_guard("element", branch=branch.id, count=len(subtree)):
            repointed = await repoint_references_to_ids(
                self.db, subtree, username=user.username, batch_size=self.batch_size
            )
            for batch in chunked(subtree, self.batch_size):
                await self.db.execute(delete(Element).where(Element.id.in_(batch)))
            await self.db.flush()

        deleted = [local_id(i) for i in subtree]
        await self.audit_service.log(
            action=AuditAction.ELEMENT_DELETE,
            entity_type="element",
            entity_id=branch.id,
            username=user.username,
            org_id=project.org_id,
            diff_json={"ids": deleted, "repointed": repointed},
        )
        observe_element_operation("delete", len(deleted))
        return deleted

    async def _resolve_scope(
        self, org_id: str, project_id: str, branch_id: str, *, archived: bool = False
    ) -> tuple[Organization, Project, Branch]:
        org = await get_organization(self.db, org_id, archived=archived)
        project = await get_project(self.db, org, project_id, archived=archived)
        branch = await get_branch(self.db, project, branch_id, archived=archived)
        return org, project, branch

    @staticmethod
    def _require_mutable(branch: Branch) -> None:
        if branch.tag:
            raise PermissionDeniedError(
                f"Branch [{local_id(branch.id)}] is a tag and its elements cannot be changed."
            )

    async def _load(self, ids: Iterable[str]) -> dict[str, Element]:
        loaded: dict[str, Element] = {}
        for batch in chunked(list(dict.fromkeys(ids)), self.batch_size):
            result = await self.db.execute(select(Element).where(Element.id.in_(batch)))
            for element in result.scalars().all():
                loaded[element.id] = element
        return loaded

    async def _existing_ids(self, ids: Iterable[str]) -> set[str]:
        existing: set[str] = set()
        for batch in chunked(list(dict.fromkeys(ids)), self.batch_size):
            result = await self.db.execute(select(Element.id).where(Element.id.in_(batch)))
            existing.update(result.scalars().all())
        return existing

    async def _check_uuids(self, uuids: Sequence[str]) -> None:
        duplicates = sorted({u for u in uuids if uuids.count(u) > 1})
        if duplicates:
            raise ConflictError(
                "Multiple elements with the same uuid in one request.",
                details={"uuids": duplicates},
            )
        taken: set[str] = set()
        for batch in chunked(list(uuids), self.batch_size):
            result = await self.db.execute(select(Element.uuid).where(Element.uuid.in_(batch)))
            taken.update(result.scalars().all())
        if taken:
            raise ConflictError(
                "Elements with the following uuids already exist.",
                details={"uuids": sorted(taken)},
            )

    @staticmethod
    def _local_reference(branch: Branch, value: Any) -> str:
        validate_id(value, ELEMENT_ID_PATTERN, "parent element")
        return create_id(branch.id, value)

    async def _validate_parents(
        self,
        branch: Branch,
        parents: dict[str, str],
        batch_relationships: dict[str, bool],
    ) -> None:
        """Check every proposed parent exists, is active and may hold children.

        ``batch_relationships`` lists elements created in the same request
        (mapped to whether they are relationships); they count as existing.
        """
        stored = await self._load(p for p in parents.values() if p not in batch_relationships)
        for child_id, parent_id in parents.items():
            if parent_id == child_id:
                raise ValidationError(
                    f"Element [{local_id(child_id)}] cannot be its own parent."
                )

            if parent_id in batch_relationships:
                is_relationship = batch_relationships[parent_id]
            else:
                parent = stored.get(parent_id)
                if parent is None or parent.archived:
                    raise ValidationError(
                        f"Parent element [{local_id(parent_id)}] not found.",
                        details={"element": local_id(child_id)},
                    )
                is_relationship = parent.is_relationship

            if is_relationship or local_id(parent_id) == UNDEFINED_ELEMENT_ID:
                raise ValidationError(
                    f"Element [{local_id(parent_id)}] cannot contain other elements.",
                    details={"element": local_id(child_id)},
                )

    async def _reject_relationship_parents(
        self, branch: Branch, relationships: Sequence[str], moves: dict[str, str]
    ) -> None:
        """Reject relationships that would still contain children after ``moves``.

        Archived children count; children moved away in the same batch do not.
        """
        if not relationships:
            return
        contains = await children_map(
            self.db,
            branch.id,
            relationships,
            include_archived=True,
            batch_size=self.batch_size,
        )
        for element_id in relationships:
            children = {
                child for child in contains[element_id]
                if moves.get(child, element_id) == element_id
            }
            children.update(child for child, parent in moves.items() if parent == element_id)
            if children:
                raise ValidationError(
                    f"Element [{local_id(element_id)}] contains other elements and "
                    "cannot be a relationship.",
                    details={"contains": sorted(local_id(c) for c in children)},
                )

    @staticmethod
    def _reject_batch_cycles(parents: dict[str, str]) -> None:
        for start in parents:
            visited = {start}
            current = parents[start]
            while current in parents:
                if current in visited:
                    raise ValidationError(
                        f"Element [{local_id(start)}] is part of a circular parent chain."
                    )
                visited.add(current)
                current = parents[current]

    def _reference_id(self, project: Project, branch: Branch, value: Any) -> str:
        """Composite id for a source/target value, enforcing reference rules."""
        if not isinstance(value, str):
            raise ValidationError("Element references must be strings.")
        if ID_DELIMITER not in value:
            return create_id(branch.id, validate_id(value, ELEMENT_ID_PATTERN, "element"))

        parts = value.split(ID_DELIMITER)
        patterns = (ORG_ID_PATTERN, PROJECT_ID_PATTERN, BRANCH_ID_PATTERN, ELEMENT_ID_PATTERN)
        if len(parts) != 4 or not all(is_valid_id(p, rx) for p, rx in zip(parts, patterns)):
            raise ValidationError(f"Invalid element reference [{value}].")

        referenced_project = create_id(parts[0], parts[1])
        if referenced_project == project.id:
            if create_id(parts[:3]) != branch.id:
                raise ValidationError(
                    f"Reference [{value}] points into another branch of the same project."
                )
            return value

        if referenced_project not in (project.project_references or []):
            raise ValidationError(
                f"Project [{referenced_project}] is not in the project references of "
                f"[{local_id(project.id)}].",
                details={"reference": value},
            )
        return value

    async def _resolve_references(
        self,
        project: Project,
        branch: Branch,
        references: dict[str, dict[str, Optional[str]]],
        batch_ids: frozenset[str] | set[str] = frozenset(),
    ) -> dict[str, dict[str, Optional[str]]]:
        """Resolve source/target values to composite ids and check they exist.

        Returns:
            Same shape as ``references`` with composite ids (None kept)
        """
        resolved: dict[str, dict[str, Optional[str]]] = {}
        to_check: set[str] = set()
        for element_id, refs in references.items():
            resolved[element_id] = {}
            for key, value in refs.items():
                if value is None:
                    resolved[element_id][key] = None
                    continue
                reference = self._reference_id(project, branch, value)
                if reference == element_id:
                    raise ValidationError(
                        f"Element [{local_id(element_id)}] cannot reference itself."
                    )
                resolved[element_id][key] = reference
                if reference not in batch_ids:
                    to_check.add(reference)

        missing = to_check - await self._existing_ids(to_check)
        if missing:
            raise ValidationError(
                "Referenced elements not found.", details={"references": sorted(missing)}
            )
        return resolved

    def _search_conditions(self, branch: Branch, opts: QueryOptions) -> list:
        conditions = []
        for key, value in opts.search.items():
            if key in ("parent", *_REFERENCE_FIELDS):
                if ID_DELIMITER not in value:
                    value = create_id(branch.id, value)
                conditions.append(getattr(Element, key) == value)
            elif key.startswith(CUSTOM_SEARCH_PREFIX):
                path = tuple(key[len(CUSTOM_SEARCH_PREFIX):].split("."))
                index = path[0] if len(path) == 1 else path
                conditions.append(Element.custom[index].as_string() == value)
            else:
                conditions.append(getattr(Element, key) == value)
        return conditions

    async def _shape(
        self, branch: Branch, elements: Sequence[Element], opts: QueryOptions
    ) -> list[dict]:
        contains = await children_map(
            self.db,
            branch.id,
            [element.id for element in elements],
            include_archived=opts.archived,
            batch_size=self.batch_size,
        )
        return await shape_documents(
            self.db,
            "element",
            elements,
            opts,
            contains=contains,
            batch_size=self.batch_size,
        )
