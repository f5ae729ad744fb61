"""Shared lookups and payload handling for the hierarchy services.

Every scoped operation resolves its containing organization, project and
branch through these helpers so "not found" and "archived" are reported the
same way everywhere.
"""

from __future__ import annotations

import copy
from collections.abc import Iterator, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel as Schema
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from mbee.core.ids import create_id
from mbee.models.branch import Branch
from mbee.models.organization import Organization
from mbee.models.project import Project

SchemaT = TypeVar("SchemaT", bound=Schema)


def _require_str(value: Any, kind: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{kind} id must be a non-empty string")
    return value


def _ensure_active(document, kind: str, local: str, archived: bool) -> None:
    if document.archived and not archived:
        raise PermissionDeniedError(
            f"The {kind} [{local}] is archived. It must first be unarchived."
        )


async def get_organization(
    db: AsyncSession, org_id: str, *, archived: bool = False
) -> Organization:
    """Load an organization.

    Args:
        db: Database session
        org_id: Organization id
        archived: Accept an archived organization

    Raises:
        NotFoundError: If the organization does not exist
        PermissionDeniedError: If it is archived and ``archived`` is False
    """
    _require_str(org_id, "Organization")
    org = await db.get(Organization, org_id)
    if org is None:
        raise NotFoundError(f"Organization [{org_id}] not found.")
    _ensure_active(org, "organization", org_id, archived)
    return org


async def get_project(
    db: AsyncSession, org: Organization, project_id: str, *, archived: bool = False
) -> Project:
    """Load a project of ``org``; same error contract as ``get_organization``."""
    _require_str(project_id, "Project")
    project = await db.get(Project, create_id(org.id, project_id))
    if project is None:
        raise NotFoundError(f"Project [{project_id}] not found.")
    _ensure_active(project, "project", project_id, archived)
    return project


async def get_branch(
    db: AsyncSession, project: Project, branch_id: str, *, archived: bool = False
) -> Branch:
    """Load a branch of ``project``; same error contract as ``get_organization``."""
    _require_str(branch_id, "Branch")
    branch = await db.get(Branch, create_id(project.id, branch_id))
    if branch is None:
        raise NotFoundError(f"Branch [{branch_id}] not found.")
    _ensure_active(branch, "branch", branch_id, archived)
    return branch


def normalize_batch(data: Any, kind: str) -> list[dict]:
    """Accept one payload object or a list of them.

    Raises:
        ValidationError: If the payload is neither an object nor a list of
            objects, or the list is empty
    """
    if isinstance(data, dict):
        return [data]
    if isinstance(data, list) and data and all(isinstance(item, dict) for item in data):
        return data
    raise ValidationError(f"Invalid {kind} payload: expected an object or a non-empty list of objects")


def normalize_ids(ids: Any, kind: str) -> list[str]:
    """Accept one id or a list of ids, keeping order and dropping duplicates."""
    if isinstance(ids, str):
        ids = [ids]
    if not isinstance(ids, list) or not ids:
        raise ValidationError(f"Invalid {kind} ids: expected an id or a non-empty list of ids")
    if not all(isinstance(item, str) and item for item in ids):
        raise ValidationError(f"Every {kind} id must be a non-empty string")
    return list(dict.fromkeys(ids))


def ensure_unique(ids: Sequence[str], kind: str) -> None:
    seen: set[str] = set()
    duplicates: set[str] = set()
    for item in ids:
        if item in seen:
            duplicates.add(item)
        seen.add(item)
    if duplicates:
        raise ValidationError(
            f"Multiple {kind}s with the same id in one request",
            details={"ids": sorted(duplicates)},
        )


def validate_payload(schema: type[SchemaT], data: dict, kind: str) -> SchemaT:
    """Validate one payload object against its pydantic schema.

    Raises:
        ValidationError: With one entry per offending field
    """
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        details = {
            ".".join(str(part) for part in error["loc"]) or "__root__": error["msg"]
            for error in exc.errors()
        }
        identifier = data.get("id") if isinstance(data.get("id"), str) else None
        if identifier:
            details["id"] = identifier
        raise ValidationError(f"Invalid {kind} payload", details=details) from None


def deep_merge(base: dict, update: dict) -> dict:
    """Recursively merge ``update`` into a copy of ``base``.

    Nested objects are merged key by key; any other value replaces the old
    one.
    """
    merged = copy.deepcopy(base or {})
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def chunked(items: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])
