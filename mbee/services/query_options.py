"""Validation and translation of declarative find/write options.

Callers pass a plain mapping such as
``{"populate": ["parent"], "archived": True, "limit": 10}``. Unknown keys,
wrong value types and fields outside a model's allow-lists are rejected
with ``ValidationError`` before any query is issued.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Select

from mbee.core.exceptions import ValidationError

AUDIT_FIELDS = (
    "created_on",
    "updated_on",
    "created_by",
    "last_modified_by",
    "archived",
    "archived_on",
    "archived_by",
)

PUBLIC_FIELDS: dict[str, tuple[str, ...]] = {
    "user": ("username", "fname", "lname", "email", "admin", "custom") + AUDIT_FIELDS,
    "organization": ("id", "name", "permissions", "custom") + AUDIT_FIELDS,
    "project": (
        "id",
        "org",
        "name",
        "visibility",
        "permissions",
        "project_references",
        "custom",
    )
    + AUDIT_FIELDS,
    "branch": ("id", "org", "project", "name", "source", "tag", "custom") + AUDIT_FIELDS,
    "element": (
        "id",
        "org",
        "project",
        "branch",
        "name",
        "type",
        "parent",
        "source",
        "target",
        "documentation",
        "custom",
        "uuid",
        "contains",
    )
    + AUDIT_FIELDS,
}

ALWAYS_FIELDS: dict[str, tuple[str, ...]] = {
    "user": ("username",),
    "organization": ("id",),
    "project": ("id",),
    "branch": ("id",),
    "element": ("id", "contains"),
}

_USER_REFERENCES = ("created_by", "last_modified_by", "archived_by")

POPULATE_FIELDS: dict[str, tuple[str, ...]] = {
    "user": _USER_REFERENCES,
    "organization": _USER_REFERENCES,
    "project": _USER_REFERENCES + ("org",),
    "branch": _USER_REFERENCES + ("project", "source"),
    "element": _USER_REFERENCES
    + ("parent", "source", "target", "project", "branch", "contains"),
}

SORT_FIELDS: dict[str, tuple[str, ...]] = {
    "user": ("username", "fname", "lname", "email", "admin") + AUDIT_FIELDS,
    "organization": ("id", "name") + AUDIT_FIELDS,
    "project": ("id", "name", "visibility") + AUDIT_FIELDS,
    "branch": ("id", "name", "source", "tag") + AUDIT_FIELDS,
    "element": (
        "id",
        "name",
        "type",
        "parent",
        "source",
        "target",
        "documentation",
        "uuid",
    )
    + AUDIT_FIELDS,
}

SEARCH_FIELDS: dict[str, dict[str, type]] = {
    "user": {"fname": str, "lname": str, "email": str, "admin": bool},
    "organization": {"name": str},
    "project": {"name": str, "visibility": str},
    "branch": {"name": str, "source": str, "tag": bool},
    "element": {
        "name": str,
        "type": str,
        "parent": str,
        "source": str,
        "target": str,
        "documentation": str,
    },
}
CUSTOM_SEARCH_PREFIX = "custom."

FIND_OPTIONS = frozenset({"populate", "archived", "fields", "limit", "skip", "sort"})
ELEMENT_FIND_OPTIONS = FIND_OPTIONS | {"subtree"}
WRITE_OPTIONS = frozenset({"populate", "fields"})
REMOVE_OPTIONS = frozenset({"soft"})
BRANCH_REMOVE_OPTIONS = frozenset({"soft", "force"})

_BOOL_OPTIONS = ("archived", "subtree", "soft", "force")
_INT_OPTIONS = ("limit", "skip")


@dataclass
class QueryOptions:
    """Validated option set."""

    populate: list[str] = field(default_factory=list)
    archived: bool = False
    subtree: bool = False
    include_fields: list[str] = field(default_factory=list)
    exclude_fields: list[str] = field(default_factory=list)
    limit: int = 0
    skip: int = 0
    sort: str | None = None
    sort_descending: bool = False
    soft: bool = True
    force: bool = False
    search: dict[str, Any] = field(default_factory=dict)


def _string_list(key: str, value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"The option [{key}] must be a list of strings.")
    return value


def _search_type(model: str, key: str) -> type | None:
    if model == "element" and key.startswith(CUSTOM_SEARCH_PREFIX):
        return str if len(key) > len(CUSTOM_SEARCH_PREFIX) else None
    return SEARCH_FIELDS[model].get(key)


def validate_options(
    options: Mapping[str, Any] | None,
    model: str,
    allowed: frozenset[str],
    *,
    search: bool = False,
) -> QueryOptions:
    """Validate ``options`` for an operation on ``model``.

    Args:
        options: Raw option mapping (None means defaults)
        model: One of the keys of ``PUBLIC_FIELDS``
        allowed: Option names the operation accepts
        search: Whether model search keys are accepted as filters

    Returns:
        QueryOptions with defaults filled in

    Raises:
        ValidationError: On any unknown option or invalid value
    """
    result = QueryOptions()
    if options is None:
        return result
    if not isinstance(options, Mapping):
        raise ValidationError("Options must be an object.")

    for key, value in options.items():
        if key in allowed:
            _apply_option(result, model, key, value)
            continue

        expected = _search_type(model, key) if search else None
        if expected is None:
            raise ValidationError(f"Invalid option [{key}].")
        if not isinstance(value, expected):
            raise ValidationError(f"The search option [{key}] must be a {expected.__name__}.")
        result.search[key] = value

    return result


def _apply_option(result: QueryOptions, model: str, key: str, value: Any) -> None:
    if key in _BOOL_OPTIONS:
        if not isinstance(value, bool):
            raise ValidationError(f"The option [{key}] must be a boolean.")
        setattr(result, key, value)

    elif key in _INT_OPTIONS:
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValidationError(f"The option [{key}] must be an integer.")
        if value < 0:
            raise ValidationError(f"The option [{key}] cannot be negative.")
        setattr(result, key, value)

    elif key == "populate":
        populate = _string_list(key, value)
        invalid = [item for item in populate if item not in POPULATE_FIELDS[model]]
        if invalid:
            raise ValidationError(
                f"Invalid populate field(s) for {model}.",
                details={"fields": invalid, "allowed": list(POPULATE_FIELDS[model])},
            )
        result.populate = list(dict.fromkeys(populate))

    elif key == "fields":
        fields = _string_list(key, value)
        excluded = [item[1:] for item in fields if item.startswith("-")]
        included = [item for item in fields if not item.startswith("-")]
        if excluded and included:
            raise ValidationError(
                "The option [fields] cannot mix included and excluded fields."
            )
        invalid = [item for item in excluded + included if item not in PUBLIC_FIELDS[model]]
        if invalid:
            raise ValidationError(
                f"Invalid field(s) for {model}.", details={"fields": invalid}
            )
        result.include_fields = included
        result.exclude_fields = excluded

    elif key == "sort":
        if not isinstance(value, str) or not value:
            raise ValidationError("The option [sort] must be a field name.")
        descending = value.startswith("-")
        name = value[1:] if descending else value
        if name not in SORT_FIELDS[model]:
            raise ValidationError(f"Cannot sort {model}s by [{name}].")
        result.sort = name
        result.sort_descending = descending


def apply_sort_and_page(query: Select, model_cls, opts: QueryOptions, default_column) -> Select:
    """Add ORDER BY, OFFSET and LIMIT to a select."""
    if opts.sort:
        column = getattr(model_cls, opts.sort)
        query = query.order_by(column.desc() if opts.sort_descending else column.asc())
    query = query.order_by(default_column.asc())
    if opts.skip:
        query = query.offset(opts.skip)
    if opts.limit:
        query = query.limit(opts.limit)
    return query


def _sort_key(value: Any) -> tuple:
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return (value is None, value)


def sort_and_page(documents: Sequence, opts: QueryOptions, default_attr: str) -> list:
    """In-memory counterpart of ``apply_sort_and_page`` for merged batches."""
    ordered = sorted(documents, key=lambda doc: _sort_key(getattr(doc, default_attr)))
    if opts.sort:
        ordered.sort(
            key=lambda doc: _sort_key(getattr(doc, opts.sort)),
            reverse=opts.sort_descending,
        )
    if opts.skip:
        ordered = ordered[opts.skip :]
    if opts.limit:
        ordered = ordered[: opts.limit]
    return ordered


def project_fields(document: dict, opts: QueryOptions, model: str) -> dict:
    """Apply the ``fields`` projection to one public document."""
    always = ALWAYS_FIELDS[model]
    if opts.include_fields:
        keep = set(opts.include_fields) | set(always)
        return {key: value for key, value in document.items() if key in keep}
    if opts.exclude_fields:
        drop = set(opts.exclude_fields) - set(always)
        return {key: value for key, value in document.items() if key not in drop}
    return document
