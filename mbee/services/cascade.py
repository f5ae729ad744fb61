"""Hard-delete cascades for branches, projects and organizations.

Each purge first repoints relationships that reach into the scope from
outside it and drops deleted projects from other projects' references, then
deletes the contained documents child-first. The purges only issue
statements; the request transaction decides whether they stick.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import String, cast, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.exceptions import DatabaseError
from mbee.core.metrics import CASCADE_FAILURES_TOTAL
from mbee.core.structured_logging import log_json
from mbee.models.artifact import Artifact
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.webhook import Webhook
from mbee.services.element_graph import repoint_references_to_scope

logger = logging.getLogger(__name__)


@contextmanager
def cascade_guard(scope: str, **fields) -> Iterator[None]:
    """Turn a store failure inside a cascade into ``DatabaseError``.

    The failure is counted and logged at CRITICAL before re-raising; the
    caller's transaction is rolled back by the session dependency.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        CASCADE_FAILURES_TOTAL.labels(scope=scope).inc()
        log_json(
            logger,
            logging.CRITICAL,
            "cascade_failed",
            scope=scope,
            error=exc.__class__.__name__,
            **fields,
        )
        raise DatabaseError(f"Failed to remove {scope} contents.") from exc


async def drop_project_references(
    db: AsyncSession, project_ids: list[str], *, username: str | None
) -> list[str]:
    """Remove deleted projects from every other project's ``project_references``.

    Returns:
        Ids of the projects whose references changed
    """
    removed = set(project_ids)
    changed: dict[str, Project] = {}
    for project_id in project_ids:
        query = select(Project).where(
            Project.id.not_in(project_ids),
            cast(Project.project_references, String).contains(project_id, autoescape=True),
        )
        for project in (await db.execute(query)).scalars().unique().all():
            kept = [r for r in project.project_references or [] if r not in removed]
            if kept != list(project.project_references or []):
                project.project_references = kept
                project.touch(username)
                changed[project.id] = project
    return sorted(changed)


async def purge_branch(db: AsyncSession, branch_id: str, *, username: str | None) -> int:
    """Delete a branch with its elements, artifacts and webhooks.

    Returns:
        Number of deleted elements
    """
    await repoint_references_to_scope(db, branch_id, username=username)
    result = await db.execute(delete(Element).where(Element.branch_id == branch_id))
    await db.execute(delete(Artifact).where(Artifact.branch_id == branch_id))
    await db.execute(delete(Webhook).where(Webhook.branch_id == branch_id))
    await db.execute(delete(Branch).where(Branch.id == branch_id))
    log_json(
        logger,
        logging.INFO,
        "branch_purged",
        branch=branch_id,
        elements=result.rowcount,
    )
    return result.rowcount


async def purge_project(db: AsyncSession, project_id: str, *, username: str | None) -> int:
    """Delete a project with every branch and element under it."""
    await repoint_references_to_scope(db, project_id, username=username)
    await drop_project_references(db, [project_id], username=username)
    result = await db.execute(delete(Element).where(Element.project_id == project_id))
    await db.execute(delete(Artifact).where(Artifact.project_id == project_id))
    await db.execute(delete(Webhook).where(Webhook.project_id == project_id))
    await db.execute(delete(Branch).where(Branch.project_id == project_id))
    await db.execute(delete(Project).where(Project.id == project_id))
    log_json(
        logger,
        logging.INFO,
        "project_purged",
        project=project_id,
        elements=result.rowcount,
    )
    return result.rowcount


async def purge_organization(db: AsyncSession, org_id: str, *, username: str | None) -> int:
    """Delete an organization with all of its projects."""
    await repoint_references_to_scope(db, org_id, username=username)
    project_ids = list(
        (await db.execute(select(Project.id).where(Project.org_id == org_id))).scalars().all()
    )
    await drop_project_references(db, project_ids, username=username)
    deleted = 0
    if project_ids:
        result = await db.execute(delete(Element).where(Element.project_id.in_(project_ids)))
        deleted = result.rowcount
        await db.execute(delete(Artifact).where(Artifact.project_id.in_(project_ids)))
    await db.execute(delete(Webhook).where(Webhook.org_id == org_id))
    if project_ids:
        await db.execute(delete(Branch).where(Branch.project_id.in_(project_ids)))
    await db.execute(delete(Project).where(Project.org_id == org_id))
    await db.execute(delete(Organization).where(Organization.id == org_id))
    log_json(
        logger,
        logging.INFO,
        "organization_purged",
        org=org_id,
        projects=len(project_ids),
        elements=deleted,
    )
    return deleted
