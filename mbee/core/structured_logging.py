"""Structured logging helper.

Log lines are single JSON objects so any collector can ingest them; the
request id of the current request is attached automatically.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from mbee.core.request_context import get_request_id


def log_json(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit a single JSON log line with the request correlation ID."""

    payload: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "event": event,
    }
    request_id = get_request_id()
    if request_id:
        payload["request_id"] = request_id

    payload.update(fields)
    logger.log(level, json.dumps(payload, default=str))
