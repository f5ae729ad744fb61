"""FastAPI application entry point."""

import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from mbee.api.deps import get_current_user
from mbee.api.middleware import (
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from mbee.api.routes import (
    audit_admin,
    auth,
    branches,
    elements,
    metrics,
    organizations,
    projects,
    users,
)
from mbee.core.config import get_settings
from mbee.core.exceptions import MbeeError, PermissionDeniedError
from mbee.core.structured_logging import log_json
from mbee.models.user import User
from mbee.schemas.errors import ErrorResponse
from mbee.services.public_data import user_public

logger = logging.getLogger(__name__)

settings = get_settings()
docs_enabled = settings.api_docs_enabled
if docs_enabled is None:
    docs_enabled = settings.environment != "production"

app = FastAPI(
    title="MBEE API",
    description="Model-based engineering data: organizations, projects, branches and elements",
    version="1.0.0",
    docs_url="/api/docs" if docs_enabled else None,
    redoc_url="/api/redoc" if docs_enabled else None,
    openapi_url="/api/openapi.json" if docs_enabled else None,
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)

# Middleware configuration (order matters - applied in reverse order)
# 1. Request logging (outermost - logs all requests)
app.add_middleware(RequestLoggingMiddleware)

# 2. Security headers
app.add_middleware(SecurityHeadersMiddleware)

# 3. Rate limiting (applied before routing)
app.add_middleware(RateLimitMiddleware)

# 4. CORS (applied after rate limiting)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)


@app.exception_handler(MbeeError)
async def mbee_error_handler(request: Request, exc: MbeeError) -> JSONResponse:
    """Render service errors as ``{"error", "message", "details"}``."""
    fields = {"path": request.url.path, "error": exc.error}
    # Permission failures are logged by kind only
    if not isinstance(exc, PermissionDeniedError):
        fields["message"] = exc.message
    log_json(logger, exc.log_level, "request_failed", **fields)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    log_json(
        logger,
        logging.ERROR,
        "database_error",
        path=request.url.path,
        exception=exc.__class__.__name__,
    )
    body = ErrorResponse(error="database_error", message="A database error occurred.")
    return JSONResponse(status_code=500, content=body.model_dump())


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(organizations.router, prefix="/api/orgs", tags=["organizations"])
app.include_router(projects.router, prefix="/api/orgs", tags=["projects"])
app.include_router(branches.router, prefix="/api/orgs", tags=["branches"])
app.include_router(elements.router, prefix="/api/orgs", tags=["elements"])
app.include_router(metrics.router, prefix="/api", tags=["metrics"])
app.include_router(audit_admin.router, prefix="/api/admin", tags=["audit"])


@app.get("/api/me", tags=["auth"])
async def get_current_user_info(current_user: User = Depends(get_current_user)) -> dict:
    """Get current user information."""
    return user_public(current_user)
