"""User service for site-level user management."""
import logging
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mbee.core.config import get_settings
from mbee.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from mbee.core.permissions import PermissionMap
from mbee.core.security import (
    PasswordValidationError,
    hash_password,
    validate_password,
    verify_password,
)
from mbee.core.structured_logging import log_json
from mbee.models.enums import AuditAction
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.schemas.user import UserCreate, UserUpdate
from mbee.services.audit_service import AuditService
from mbee.services.diff_service import DiffService
from mbee.services.helpers import (
    deep_merge,
    ensure_unique,
    normalize_batch,
    normalize_ids,
    validate_payload,
)
from mbee.services.public_data import shape_documents, user_public
from mbee.services.query_options import (
    FIND_OPTIONS,
    WRITE_OPTIONS,
    apply_sort_and_page,
    validate_options,
)

logger = logging.getLogger(__name__)

_ADMIN_ONLY_FIELDS = {"admin", "archived"}


class UserService:
    """Service for user management operations."""

    def __init__(self, db: AsyncSession):
        """Initialize user service.

        Args:
            db: Database session
        """
        self.db = db
        self.audit_service = AuditService(db)
        self.diff_service = DiffService()
        self.batch_size = get_settings().query_batch_size

    async def find(
        self,
        requesting_user: User,
        usernames: Optional[str | list[str]] = None,
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Find users.

        Any authenticated user may look up other users.

        Raises:
            NotFoundError: A single requested user does not exist
        """
        opts = validate_options(options, "user", FIND_OPTIONS, search=True)

        query = select(User)
        if not opts.archived:
            query = query.where(User.archived.is_(False))
        for key, value in opts.search.items():
            query = query.where(getattr(User, key) == value)
        if usernames is not None:
            query = query.where(User.username.in_(normalize_ids(usernames, "user")))

        query = apply_sort_and_page(query, User, opts, User.username)
        found = list((await self.db.execute(query)).scalars().all())
        if isinstance(usernames, str) and not found:
            raise NotFoundError(f"User [{usernames}] not found.")

        return await shape_documents(self.db, "user", found, opts, batch_size=self.batch_size)

    async def create(
        self,
        requesting_user: User,
        users: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Create users (site admin only).

        Raises:
            PermissionDeniedError: If the requesting user is not a site admin
            ValidationError: Invalid payload or weak password
            ConflictError: Username already taken
        """
        opts = validate_options(options, "user", WRITE_OPTIONS)
        payloads = normalize_batch(users, "user")
        self._require_site_admin(requesting_user, "create users")

        items = [validate_payload(UserCreate, payload, "user") for payload in payloads]
        ensure_unique([item.username for item in items], "user")
        for item in items:
            try:
                validate_password(item.password)
            except PasswordValidationError as e:
                raise ValidationError(str(e), details={"username": item.username}) from None

        result = await self.db.execute(
            select(User.username).where(User.username.in_([item.username for item in items]))
        )
        existing = sorted(result.scalars().all())
        if existing:
            raise ConflictError(
                "Users with the following usernames already exist.",
                details={"ids": existing},
            )

        created = []
        for item in items:
            user = User(
                username=item.username,
                password_hash=hash_password(item.password),
                fname=item.fname,
                lname=item.lname,
                email=item.email,
                admin=item.admin,
                custom=item.custom,
                created_by=requesting_user.username,
                last_modified_by=requesting_user.username,
            )
            self.db.add(user)
            created.append(user)
        await self.db.flush()

        for user in created:
            await self.audit_service.log(
                action=AuditAction.USER_CREATE,
                entity_type="user",
                entity_id=user.username,
                username=requesting_user.username,
                diff_json={"admin": user.admin},
            )

        return await shape_documents(self.db, "user", created, opts, batch_size=self.batch_size)

    async def update(
        self,
        requesting_user: User,
        users: dict | list[dict],
        options: Optional[dict[str, Any]] = None,
    ) -> list[dict]:
        """Update users.

        Users may change their own profile fields; changing other users,
        ``admin`` or ``archived`` requires a site admin.

        Raises:
            PermissionDeniedError: Insufficient rights or archived user
            NotFoundError: One or more users do not exist
        """
        opts = validate_options(options, "user", WRITE_OPTIONS)
        payloads = normalize_batch(users, "user")
        items = [validate_payload(UserUpdate, payload, "user") for payload in payloads]
        ensure_unique([item.username for item in items], "user")
        stored = await self._load([item.username for item in items])

        changes = []
        for item in items:
            user = stored[item.username]
            fields = item.model_dump(exclude_unset=True, exclude={"username"})
            if item.username != requesting_user.username or fields.keys() & _ADMIN_ONLY_FIELDS:
                self._require_site_admin(requesting_user, "update this user")
            if item.username == requesting_user.username and (
                fields.get("admin") is False or fields.get("archived")
            ):
                raise PermissionDeniedError("Users cannot demote or archive themselves.")
            if user.archived and fields.get("archived") is not False:
                raise PermissionDeniedError(
                    f"User [{item.username}] is archived. It must first be unarchived."
                )
            changes.append((user, fields))

        for user, fields in changes:
            before = user_public(user)
            for key in ("fname", "lname", "admin"):
                if fields.get(key) is not None:
                    setattr(user, key, fields[key])
            if "email" in fields:
                user.email = fields["email"]
            if fields.get("custom") is not None:
                user.custom = deep_merge(user.custom, fields["custom"])
            if fields.get("archived") is not None:
                user.set_archived(fields["archived"], requesting_user.username)
            user.touch(requesting_user.username)
            await self.db.flush()

            await self.audit_service.log(
                action=AuditAction.USER_UPDATE,
                entity_type="user",
                entity_id=user.username,
                username=requesting_user.username,
                diff_json=self.diff_service.summarize(before, user_public(user)),
            )

        return await shape_documents(
            self.db, "user", [user for user, _ in changes], opts, batch_size=self.batch_size
        )

    async def update_password(
        self,
        requesting_user: User,
        username: str,
        old_password: str,
        new_password: str,
        confirm_password: str,
    ) -> dict:
        """Change a user's own password.

        Raises:
            PermissionDeniedError: If changing someone else's password
            ValidationError: Wrong old password, mismatch or weak new password
        """
        if requesting_user.username != username:
            raise PermissionDeniedError("Users can only change their own password.")
        if not verify_password(old_password, requesting_user.password_hash):
            raise ValidationError("Old password is incorrect.")
        if new_password != confirm_password:
            raise ValidationError("New password and confirmation do not match.")
        try:
            validate_password(new_password)
        except PasswordValidationError as e:
            raise ValidationError(str(e)) from None

        requesting_user.password_hash = hash_password(new_password)
        requesting_user.touch(requesting_user.username)
        await self.db.flush()

        await self.audit_service.log(
            action=AuditAction.USER_PASSWORD_CHANGE,
            entity_type="user",
            entity_id=username,
            username=username,
        )
        return user_public(requesting_user)

    async def remove(self, requesting_user: User, usernames: str | list[str]) -> list[str]:
        """Delete users and strip them from every permission map.

        Raises:
            PermissionDeniedError: Not a site admin, or deleting oneself
            NotFoundError: One or more users do not exist
        """
        self._require_site_admin(requesting_user, "delete users")
        names = normalize_ids(usernames, "user")
        if requesting_user.username in names:
            raise PermissionDeniedError("Users cannot delete themselves.")
        stored = await self._load(names)

        for scope_model in (Organization, Project):
            result = await self.db.execute(select(scope_model))
            for scope in result.scalars().unique().all():
                permissions = PermissionMap.from_document(scope.permissions)
                if any([permissions.revoke(name) for name in names]):
                    scope.permissions = permissions.to_document()

        for name in names:
            await self.db.delete(stored[name])
        await self.db.flush()

        for name in names:
            await self.audit_service.log(
                action=AuditAction.USER_DELETE,
                entity_type="user",
                entity_id=name,
                username=requesting_user.username,
            )
        log_json(
            logger,
            logging.INFO,
            "users_deleted",
            usernames=names,
            username=requesting_user.username,
        )
        return names

    @staticmethod
    def _require_site_admin(user: User, action: str) -> None:
        if not user.admin:
            raise PermissionDeniedError(f"Only site admins can {action}.")

    async def _load(self, usernames: list[str]) -> dict[str, User]:
        result = await self.db.execute(select(User).where(User.username.in_(usernames)))
        stored = {user.username: user for user in result.scalars().all()}
        missing = [name for name in usernames if name not in stored]
        if missing:
            raise NotFoundError("The following users were not found.", details={"ids": missing})
        return stored
