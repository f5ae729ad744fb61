"""Error response schema shared by every endpoint."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Standard error response schema.

    Used for all error responses (4xx, 5xx) across the API.
    """

    error: str = Field(
        ...,
        description="Error type identifier",
        examples=["validation_error", "permission_denied", "not_found", "conflict"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Element [elem1] not found."],
    )
    details: Optional[dict] = Field(
        None,
        description="Additional error context (offending ids, field errors)",
        examples=[{"ids": ["elem1", "elem2"]}],
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": "permission_denied",
                    "message": "User does not have permission to create elements on the project.",
                },
                {
                    "error": "validation_error",
                    "message": "Invalid element payload",
                    "details": {"id": "Value error, String should match pattern"},
                },
            ]
        }
    )
