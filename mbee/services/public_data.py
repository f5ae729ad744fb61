"""Public document shapes and reference population.

Documents leave the service layer as plain dicts. Ids are reported in
their local form (``elem1`` rather than ``org:project:branch:elem1``);
element ``source``/``target`` keep the full id when they point outside the
element's own branch. ``contains`` is computed by the caller and passed in.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.ids import ID_DELIMITER, local_id, parse_id
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.services.helpers import chunked
from mbee.services.query_options import QueryOptions, project_fields


def _audit_fields(document) -> dict[str, Any]:
    return {
        "created_on": document.created_on,
        "updated_on": document.updated_on,
        "created_by": document.created_by,
        "last_modified_by": document.last_modified_by,
        "archived": document.archived,
        "archived_on": document.archived_on,
        "archived_by": document.archived_by,
    }


def user_public(user: User) -> dict[str, Any]:
    return {
        "username": user.username,
        "fname": user.fname,
        "lname": user.lname,
        "email": user.email,
        "admin": user.admin,
        "custom": user.custom or {},
        **_audit_fields(user),
    }


def org_public(org: Organization) -> dict[str, Any]:
    return {
        "id": org.id,
        "name": org.name,
        "permissions": org.permissions or {},
        "custom": org.custom or {},
        **_audit_fields(org),
    }


def project_public(project: Project) -> dict[str, Any]:
    return {
        "id": local_id(project.id),
        "org": project.org_id,
        "name": project.name,
        "visibility": project.visibility,
        "permissions": project.permissions or {},
        "project_references": list(project.project_references or []),
        "custom": project.custom or {},
        **_audit_fields(project),
    }


def branch_public(branch: Branch) -> dict[str, Any]:
    org, project, local = parse_id(branch.id)
    return {
        "id": local,
        "org": org,
        "project": project,
        "name": branch.name,
        "source": local_id(branch.source),
        "tag": branch.tag,
        "custom": branch.custom or {},
        **_audit_fields(branch),
    }


def element_reference(value: str | None, branch_id: str) -> str | None:
    """Local id for references inside ``branch_id``, full id otherwise."""
    if value is None:
        return None
    prefix = branch_id + ID_DELIMITER
    if value.startswith(prefix):
        return value[len(prefix):]
    return value


def element_public(element: Element, contains: Sequence[str] | None = None) -> dict[str, Any]:
    org, project, branch, local = parse_id(element.id)
    document = {
        "id": local,
        "org": org,
        "project": project,
        "branch": branch,
        "name": element.name,
        "type": element.type,
        "parent": local_id(element.parent),
        "source": element_reference(element.source, element.branch_id),
        "target": element_reference(element.target, element.branch_id),
        "documentation": element.documentation,
        "custom": element.custom or {},
        "uuid": element.uuid,
    }
    if contains is not None:
        document["contains"] = [local_id(child) for child in contains]
    document.update(_audit_fields(element))
    return document


PUBLIC_DATA = {
    "user": user_public,
    "organization": org_public,
    "project": project_public,
    "branch": branch_public,
}

# (model, attribute on the source document, public shape) per populate field
_POPULATE_TARGETS: dict[str, dict[str, tuple[type, str, Any]]] = {
    "user": {},
    "organization": {},
    "project": {"org": (Organization, "org_id", org_public)},
    "branch": {
        "project": (Project, "project_id", project_public),
        "source": (Branch, "source", branch_public),
    },
    "element": {
        "parent": (Element, "parent", element_public),
        "source": (Element, "source", element_public),
        "target": (Element, "target", element_public),
        "project": (Project, "project_id", project_public),
        "branch": (Branch, "branch_id", branch_public),
    },
}
_USER_FIELDS = ("created_by", "last_modified_by", "archived_by")


async def _load_by_ids(
    db: AsyncSession, model_cls, ids: Iterable[str], batch_size: int
) -> dict[str, Any]:
    key = User.username if model_cls is User else model_cls.id
    unique = sorted({i for i in ids if i})
    loaded: dict[str, Any] = {}
    for batch in chunked(unique, batch_size):
        result = await db.execute(select(model_cls).where(key.in_(batch)))
        for document in result.scalars().all():
            loaded[document.username if model_cls is User else document.id] = document
    return loaded


async def shape_documents(
    db: AsyncSession,
    model: str,
    documents: Sequence[Any],
    opts: QueryOptions,
    *,
    contains: dict[str, list[str]] | None = None,
    batch_size: int = 1000,
) -> list[dict[str, Any]]:
    """Turn ORM documents into public dicts honouring populate and fields.

    Args:
        db: Database session
        model: Model name (``element``, ``branch``...)
        documents: ORM instances in output order
        opts: Validated options
        contains: Element id to child ids map (elements only)
        batch_size: Maximum ids per lookup query

    Returns:
        One public dict per document
    """
    if model == "element":
        shaped = [element_public(e, (contains or {}).get(e.id, [])) for e in documents]
    else:
        shaped = [PUBLIC_DATA[model](document) for document in documents]

    for field_name in opts.populate:
        if field_name in _USER_FIELDS:
            users = await _load_by_ids(
                db, User, (getattr(d, field_name) for d in documents), batch_size
            )
            for document, output in zip(documents, shaped):
                user = users.get(getattr(document, field_name))
                if user is not None:
                    output[field_name] = user_public(user)

        elif field_name == "contains":
            child_ids = [c for d in documents for c in (contains or {}).get(d.id, [])]
            children = await _load_by_ids(db, Element, child_ids, batch_size)
            for document, output in zip(documents, shaped):
                output["contains"] = [
                    element_public(children[c])
                    for c in (contains or {}).get(document.id, [])
                    if c in children
                ]

        else:
            model_cls, attribute, shape = _POPULATE_TARGETS[model][field_name]
            referenced = await _load_by_ids(
                db, model_cls, (getattr(d, attribute) for d in documents), batch_size
            )
            for document, output in zip(documents, shaped):
                target = referenced.get(getattr(document, attribute))
                if target is not None:
                    output[field_name] = shape(target)

    return [project_fields(output, opts, model) for output in shaped]
