"""Hierarchical identifiers.

Every document below an organization is keyed by its ancestors' ids joined
with ``ID_DELIMITER``: ``org:project:branch:element``. Owning scopes are
derived by splitting the key, never by a lookup, so the validators below
must never admit the delimiter inside a single segment.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from mbee.core.exceptions import ValidationError

ID_DELIMITER = ":"

ORG_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,35}$")
PROJECT_ID_PATTERN = ORG_ID_PATTERN
BRANCH_ID_PATTERN = ORG_ID_PATTERN
ELEMENT_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
USERNAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{2,35}$")

ROOT_BRANCH_ID = "master"

ROOT_ELEMENT_ID = "model"
MBEE_ELEMENT_ID = "__mbee__"
HOLDING_BIN_ELEMENT_ID = "holding_bin"
UNDEFINED_ELEMENT_ID = "undefined"
RESERVED_ELEMENT_IDS = frozenset(
    {ROOT_ELEMENT_ID, MBEE_ELEMENT_ID, HOLDING_BIN_ELEMENT_ID, UNDEFINED_ELEMENT_ID}
)


def create_id(*segments: str | Sequence[str]) -> str:
    """Join id segments with the delimiter.

    Accepts either positional segments or a single list/tuple of segments.
    Segments may themselves be composite ids.

    Raises:
        ValidationError: If no segment is given, or a segment is not a
            non-empty string
    """
    if len(segments) == 1 and isinstance(segments[0], (list, tuple)):
        segments = tuple(segments[0])

    if not segments:
        raise ValidationError("Cannot create an id from no segments")

    for segment in segments:
        if not isinstance(segment, str):
            raise ValidationError(
                "Id segments must be strings", details={"segment": repr(segment)}
            )
        if not segment:
            raise ValidationError("Id segments must not be empty")

    return ID_DELIMITER.join(segments)


def parse_id(uid: str) -> list[str]:
    """Split a composite id into its segments.

    Raises:
        ValidationError: If ``uid`` is not a string or holds no delimiter
    """
    if not isinstance(uid, str):
        raise ValidationError("Id must be a string", details={"id": repr(uid)})
    if ID_DELIMITER not in uid:
        raise ValidationError("Id is not a composite id", details={"id": uid})
    return uid.split(ID_DELIMITER)


def local_id(uid: str | None) -> str | None:
    """Last segment of a composite id, ``None`` passes through."""
    if uid is None:
        return None
    return parse_id(uid)[-1]


def is_valid_id(value, pattern: re.Pattern) -> bool:
    return isinstance(value, str) and pattern.fullmatch(value) is not None


def validate_id(value, pattern: re.Pattern, kind: str) -> str:
    """Return ``value`` when it is a valid local id of ``kind``.

    Raises:
        ValidationError: Otherwise
    """
    if not is_valid_id(value, pattern):
        raise ValidationError(
            f"Invalid {kind} id",
            details={"id": value if isinstance(value, str) else repr(value)},
        )
    return value
