"""Pytest fixtures for testing."""

import os
from collections.abc import AsyncGenerator

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-the-mbee-test-suite")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mbee.core.database import get_db
from mbee.core.security import create_access_token, hash_password
from mbee.main import app
from mbee.models.base import Base
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.services.org_service import OrganizationService
from mbee.services.permission_service import PermissionService
from mbee.services.project_service import ProjectService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "TestPass123!"


@pytest_asyncio.fixture(scope="function")
async def db() -> AsyncGenerator[AsyncSession, None]:
    """Create test database session.

    Every test gets its own in-memory database with all tables created
    from the model metadata.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database dependency override.

    Args:
        db: Test database session

    Yields:
        AsyncClient configured for testing
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, username: str, *, admin: bool = False) -> User:
    user = User(
        username=username,
        password_hash=hash_password(TEST_PASSWORD),
        fname=username.capitalize(),
        lname="",
        admin=admin,
    )
    db.add(user)
    await db.flush()
    return user


def auth_headers(user: User) -> dict[str, str]:
    """Bearer header for ``user``."""
    return {"Authorization": f"Bearer {create_access_token({'sub': user.username})}"}


@pytest_asyncio.fixture
async def admin_user(db: AsyncSession) -> User:
    """Site admin."""
    return await _make_user(db, "admin", admin=True)


@pytest_asyncio.fixture
async def vader(db: AsyncSession) -> User:
    return await _make_user(db, "vader")


@pytest_asyncio.fixture
async def tarkin(db: AsyncSession) -> User:
    return await _make_user(db, "tarkin")


@pytest_asyncio.fixture
async def leia(db: AsyncSession) -> User:
    """User with no permissions anywhere."""
    return await _make_user(db, "leia")


@pytest_asyncio.fixture
async def empire(db: AsyncSession, admin_user: User, vader: User) -> Organization:
    """Organization ``empire`` administered by ``vader``."""
    await OrganizationService(db).create(admin_user, {"id": "empire", "name": "Galactic Empire"})
    org = await db.get(Organization, "empire")
    await PermissionService(db).set_permissions(admin_user, org, "vader", "admin")
    return org


@pytest_asyncio.fixture
async def deathstar(db: AsyncSession, empire: Organization, vader: User) -> Project:
    """Project ``deathstar`` under ``empire`` with its master branch."""
    await ProjectService(db).create(vader, "empire", {"id": "deathstar", "name": "Death Star"})
    return await db.get(Project, "empire:deathstar")
