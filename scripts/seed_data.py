"""Seed script for development data.

Creates:
- Site admin "admin" (password provided via env)
- Example organization "empire" with project "deathstar", its master
  branch and a few elements

Can be run multiple times safely (skips what exists).
"""
import os
import sys
from pathlib import Path
import asyncio

# Add the project root to path
root_dir = Path(__file__).parent.parent
sys.path.insert(0, str(root_dir))

from mbee.core.database import get_db
from mbee.core.security import hash_password, validate_password, PasswordValidationError
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.services.element_service import ElementService
from mbee.services.org_service import OrganizationService
from mbee.services.project_service import ProjectService

EXAMPLE_ELEMENTS = [
    {"id": "reactor", "name": "Main reactor", "type": "Block"},
    {"id": "exhaust-port", "name": "Thermal exhaust port", "type": "Port", "parent": "reactor"},
    {"id": "superlaser", "name": "Superlaser", "type": "Block"},
    {
        "id": "power-feed",
        "name": "Power feed",
        "type": "Connector",
        "source": "reactor",
        "target": "superlaser",
    },
]


async def seed_data():
    """Seed development data."""
    print("Starting database seeding...")

    admin_username = os.environ.get("SEED_ADMIN_USERNAME", "admin")
    admin_password = os.environ.get("SEED_ADMIN_PASSWORD")
    if not admin_password:
        print("✗ Missing SEED_ADMIN_PASSWORD environment variable")
        print("  Example: SEED_ADMIN_PASSWORD='YourStrongPassword123!' python scripts/seed_data.py")
        return

    # get_db commits when the generator finishes
    async for db in get_db():
        admin = await db.get(User, admin_username)
        if admin:
            print(f"✓ Admin user '{admin_username}' already exists")
        else:
            try:
                validate_password(admin_password)
            except PasswordValidationError as e:
                print(f"✗ Password validation failed: {e}")
                return

            admin = User(
                username=admin_username,
                password_hash=hash_password(admin_password),
                fname="Site",
                lname="Admin",
                admin=True,
            )
            db.add(admin)
            await db.flush()
            print(f"✓ Created admin user '{admin_username}'")

        if await db.get(Organization, "empire"):
            print("✓ Organization 'empire' already exists")
        else:
            await OrganizationService(db).create(
                admin, {"id": "empire", "name": "Galactic Empire"}
            )
            print("✓ Created organization 'empire'")

        if await db.get(Project, "empire:deathstar"):
            print("✓ Project 'empire:deathstar' already exists")
        else:
            await ProjectService(db).create(
                admin, "empire", {"id": "deathstar", "name": "Death Star"}
            )
            await ElementService(db).create(
                admin, "empire", "deathstar", "master", EXAMPLE_ELEMENTS
            )
            print(f"✓ Created project 'empire:deathstar' with {len(EXAMPLE_ELEMENTS)} elements")

    print("\n✓ Database seeding completed successfully!")
    print("\nYou can now login with:")
    print(f"  Username: {admin_username}")


if __name__ == "__main__":
    asyncio.run(seed_data())
