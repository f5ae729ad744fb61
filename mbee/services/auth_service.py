"""Authentication service for login."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.config import get_settings
from mbee.core.exceptions import AuthenticationError
from mbee.core.security import create_access_token, verify_password
from mbee.core.structured_logging import log_json
from mbee.models.enums import AuditAction
from mbee.models.user import User
from mbee.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class AuthService:
    """Service for exchanging credentials for access tokens."""

    def __init__(self, db: AsyncSession):
        """Initialize auth service.

        Args:
            db: Database session
        """
        self.db = db
        self.audit_service = AuditService(db)

    async def login(self, username: str, password: str) -> tuple[str, int, User]:
        """Authenticate a user and create an access token.

        Args:
            username: Username
            password: Plain text password

        Returns:
            Tuple of (access_token, expires_in seconds, user)

        Raises:
            AuthenticationError: If the credentials are invalid or the user
                is archived
        """
        user = await self.db.get(User, username)

        # Same message for unknown users and wrong passwords
        if user is None or not verify_password(password, user.password_hash):
            log_json(logger, logging.WARNING, "login_failed", username=username)
            raise AuthenticationError("Invalid username or password.")

        if user.archived:
            raise AuthenticationError("This user has been archived.")

        access_token = create_access_token({"sub": user.username, "admin": user.admin})
        expires_in = get_settings().jwt_access_token_expire_minutes * 60

        await self.audit_service.log(
            action=AuditAction.USER_LOGIN,
            entity_type="user",
            entity_id=user.username,
            username=user.username,
        )
        return access_token, expires_in, user
