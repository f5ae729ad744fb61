"""Traversals over the element containment graph.

``parent`` pointers are expected to form a forest, but nothing in the store
enforces it, so every walk carries a visited set and terminates after
touching each element at most once.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.ids import ID_DELIMITER, UNDEFINED_ELEMENT_ID, create_id
from mbee.core.structured_logging import log_json
from mbee.models.base import utcnow
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.services.helpers import chunked

logger = logging.getLogger(__name__)

BROKEN_RELATIONSHIPS_KEY = "broken_relationships"


async def children_map(
    db: AsyncSession,
    branch_id: str,
    parent_ids: Sequence[str],
    *,
    include_archived: bool = False,
    batch_size: int = 1000,
) -> dict[str, list[str]]:
    """Compute ``contains`` for each of ``parent_ids``.

    Returns:
        Mapping of parent id to the sorted ids of its children; parents
        without children map to an empty list
    """
    contains: dict[str, list[str]] = {parent_id: [] for parent_id in parent_ids}
    for batch in chunked(list(contains), batch_size):
        query = select(Element.id, Element.parent).where(
            Element.branch_id == branch_id, Element.parent.in_(batch)
        )
        if not include_archived:
            query = query.where(Element.archived.is_(False))
        for child_id, parent_id in (await db.execute(query)).all():
            contains[parent_id].append(child_id)
    for children in contains.values():
        children.sort()
    return contains


async def collect_subtree(
    db: AsyncSession,
    branch_id: str,
    root_ids: Sequence[str],
    *,
    include_archived: bool = False,
    batch_size: int = 1000,
) -> list[str]:
    """Breadth-first closure of ``root_ids`` over the ``parent`` relation.

    Roots that do not exist in the branch are dropped. When
    ``include_archived`` is False, archived elements are neither returned
    nor descended through.

    Returns:
        Element ids, roots first, each id once
    """
    visited: set[str] = set()
    ordered: list[str] = []

    frontier: list[str] = []
    for batch in chunked(list(dict.fromkeys(root_ids)), batch_size):
        query = select(Element.id, Element.archived).where(
            Element.branch_id == branch_id, Element.id.in_(batch)
        )
        for element_id, archived in (await db.execute(query)).all():
            if archived and not include_archived:
                continue
            visited.add(element_id)
            frontier.append(element_id)
    ordered.extend(sorted(frontier))

    while frontier:
        next_frontier: list[str] = []
        for batch in chunked(frontier, batch_size):
            query = select(Element.id, Element.archived).where(
                Element.branch_id == branch_id, Element.parent.in_(batch)
            )
            for element_id, archived in (await db.execute(query)).all():
                if element_id in visited or (archived and not include_archived):
                    continue
                visited.add(element_id)
                next_frontier.append(element_id)
        next_frontier.sort()
        ordered.extend(next_frontier)
        frontier = next_frontier

    return ordered


async def creates_cycle(
    db: AsyncSession,
    element_id: str,
    new_parent_id: str,
    pending_parents: Mapping[str, str | None] | None = None,
) -> bool:
    """Whether re-parenting ``element_id`` under ``new_parent_id`` closes a loop.

    Walks up from the proposed parent, preferring parents that are being
    changed in the same batch over stored ones. Stops at the root, at an
    unknown element, or at an already visited element.
    """
    pending_parents = pending_parents or {}
    visited: set[str] = set()
    current: str | None = new_parent_id

    while current is not None and current not in visited:
        if current == element_id:
            return True
        visited.add(current)
        if current in pending_parents:
            current = pending_parents[current]
        else:
            current = await db.scalar(select(Element.parent).where(Element.id == current))

    return False


def _mutable_elements():
    """Elements outside tag branches; tag snapshots keep their references as taken."""
    return select(Element).join(Branch, Element.branch_id == Branch.id).where(
        Branch.tag.is_(False)
    )


def _broken_relationship(kind: str, element_id: str) -> dict[str, str]:
    return {
        "date": utcnow().isoformat(),
        "type": kind,
        "element": element_id,
        "reason": "deleted",
    }


def _repoint(element: Element, deleted, username: str | None) -> bool:
    undefined_id = create_id(element.branch_id, UNDEFINED_ELEMENT_ID)
    broken = []
    for kind in ("source", "target"):
        value = getattr(element, kind)
        if value is not None and deleted(value):
            broken.append(_broken_relationship(kind, value))
            setattr(element, kind, undefined_id)
    if not broken:
        return False

    custom = dict(element.custom or {})
    mbee = dict(custom.get("mbee") or {})
    mbee[BROKEN_RELATIONSHIPS_KEY] = list(mbee.get(BROKEN_RELATIONSHIPS_KEY) or []) + broken
    custom["mbee"] = mbee
    element.custom = custom
    element.touch(username)
    return True


async def repoint_references_to_ids(
    db: AsyncSession,
    deleted_ids: Sequence[str],
    *,
    username: str | None,
    batch_size: int = 1000,
) -> list[str]:
    """Repoint surviving relationships whose source/target is being deleted.

    Every element outside ``deleted_ids`` and outside tag branches that
    references one of them (from any project) gets that end replaced by its
    own branch's ``undefined`` element, and the old id is recorded under
    ``custom["mbee"]["broken_relationships"]``.

    Returns:
        Ids of the repointed elements
    """
    deleted = set(deleted_ids)
    repointed: list[str] = []
    seen: set[str] = set()
    for batch in chunked(sorted(deleted), batch_size):
        query = _mutable_elements().where(
            or_(Element.source.in_(batch), Element.target.in_(batch))
        )
        for element in (await db.execute(query)).scalars().all():
            if element.id in deleted or element.id in seen:
                continue
            seen.add(element.id)
            if _repoint(element, deleted.__contains__, username):
                repointed.append(element.id)

    if repointed:
        log_json(
            logger,
            logging.INFO,
            "relationships_repointed",
            count=len(repointed),
            elements=repointed[:50],
        )
    return repointed


async def repoint_references_to_scope(
    db: AsyncSession,
    scope_id: str,
    *,
    username: str | None,
) -> list[str]:
    """Repoint relationships into a scope (org, project or branch) being deleted.

    ``scope_id`` is a composite id prefix; elements inside the scope are
    deleted with it and are not touched, and neither are elements of tags.
    """
    prefix = scope_id + ID_DELIMITER

    def inside(value: str) -> bool:
        return value.startswith(prefix)

    query = _mutable_elements().where(
        or_(
            Element.source.startswith(prefix, autoescape=True),
            Element.target.startswith(prefix, autoescape=True),
        ),
        Element.id.not_like(f"{_escape_like(prefix)}%", escape="\\"),
    )
    repointed = [
        element.id
        for element in (await db.execute(query)).scalars().all()
        if _repoint(element, inside, username)
    ]

    if repointed:
        log_json(
            logger,
            logging.INFO,
            "relationships_repointed",
            scope=scope_id,
            count=len(repointed),
            elements=repointed[:50],
        )
    return repointed


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
