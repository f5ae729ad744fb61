"""Integration tests for the project service and project bootstrap."""

import pytest
from sqlalchemy import func, select

from mbee.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from mbee.models.branch import Branch
from mbee.models.element import Element
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.services.branch_service import BranchService
from mbee.services.element_service import ElementService
from mbee.services.org_service import OrganizationService
from mbee.services.project_service import ProjectService

ORG = "empire"


@pytest.mark.asyncio
class TestProjectBootstrap:
    async def test_create_returns_public_project(self, db, vader, empire):
        created = await ProjectService(db).create(
            vader, ORG, {"id": "deathstar", "name": "Death Star", "custom": {"phase": 1}}
        )

        project = created[0]
        assert project["id"] == "deathstar"
        assert project["org"] == ORG
        assert project["visibility"] == "private"
        assert project["permissions"] == {"vader": ["read", "write", "admin"]}
        assert project["custom"] == {"phase": 1}

    async def test_master_branch_is_created(self, db, vader, deathstar):
        branches = await BranchService(db).find(vader, ORG, "deathstar")

        assert len(branches) == 1
        assert branches[0]["id"] == "master"
        assert branches[0]["source"] is None
        assert branches[0]["tag"] is False

    async def test_reserved_elements_are_created(self, db, vader, deathstar):
        """Test the root skeleton exists on the master branch."""
        found = await ElementService(db).find(vader, ORG, "deathstar", "master")
        by_id = {element["id"]: element for element in found}

        assert set(by_id) == {"model", "__mbee__", "holding_bin", "undefined"}
        assert by_id["model"]["parent"] is None
        assert by_id["model"]["type"] == "Package"
        assert by_id["model"]["contains"] == ["__mbee__"]
        assert by_id["__mbee__"]["parent"] == "model"
        assert by_id["holding_bin"]["parent"] == "__mbee__"
        assert by_id["undefined"]["parent"] == "__mbee__"


@pytest.mark.asyncio
class TestCreateProject:
    async def test_conflict(self, db, vader, deathstar):
        with pytest.raises(ConflictError):
            await ProjectService(db).create(vader, ORG, {"id": "deathstar", "name": "Again"})

    async def test_org_reader_cannot_create(self, db, admin_user, tarkin, empire):
        """Test project creation requires write on the organization."""
        await OrganizationService(db).set_permissions(admin_user, ORG, "tarkin", "read")

        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).create(tarkin, ORG, {"id": "tie", "name": "TIE"})

    async def test_org_writer_can_create_and_administers_it(self, db, admin_user, tarkin, empire):
        await OrganizationService(db).set_permissions(admin_user, ORG, "tarkin", "write")

        created = await ProjectService(db).create(tarkin, ORG, {"id": "tie", "name": "TIE"})

        assert created[0]["permissions"] == {"tarkin": ["read", "write", "admin"]}

    async def test_missing_org(self, db, vader, empire):
        with pytest.raises(NotFoundError):
            await ProjectService(db).create(vader, "rebels", {"id": "xwing", "name": "X-Wing"})

    async def test_project_references_must_exist(self, db, vader, deathstar):
        with pytest.raises(ValidationError) as exc_info:
            await ProjectService(db).create(
                vader, ORG, {"id": "tie", "name": "TIE", "project_references": ["ghost"]}
            )

        assert exc_info.value.details == {"projects": ["empire:ghost"]}

    async def test_project_cannot_reference_itself(self, db, vader, deathstar):
        with pytest.raises(ValidationError, match="itself"):
            await ProjectService(db).create(
                vader, ORG, {"id": "tie", "name": "TIE", "project_references": ["empire:tie"]}
            )

    async def test_project_references_need_read(self, db, admin_user, vader, tarkin, deathstar):
        """Test a project may only reference projects its creator can read."""
        await OrganizationService(db).create(admin_user, {"id": "rebels", "name": "Rebel Alliance"})
        await ProjectService(db).create(admin_user, "rebels", {"id": "xwing", "name": "X-Wing"})
        await OrganizationService(db).set_permissions(admin_user, ORG, "tarkin", "write")

        with pytest.raises(PermissionDeniedError) as exc_info:
            await ProjectService(db).create(
                tarkin,
                ORG,
                {"id": "tie", "name": "TIE", "project_references": ["rebels:xwing", "deathstar"]},
            )

        assert exc_info.value.details == {"projects": ["empire:deathstar", "rebels:xwing"]}

    async def test_invalid_visibility(self, db, vader, empire):
        with pytest.raises(ValidationError):
            await ProjectService(db).create(
                vader, ORG, {"id": "tie", "name": "TIE", "visibility": "public"}
            )


@pytest.mark.asyncio
class TestFindProjects:
    async def test_find_many_skips_unreadable(self, db, vader, leia, deathstar):
        """Test projects the user cannot read are silently left out."""
        assert await ProjectService(db).find(leia, ORG) == []

    async def test_find_one_unreadable_is_denied(self, db, vader, leia, deathstar):
        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).find(leia, ORG, "deathstar")

    async def test_find_one_missing(self, db, vader, deathstar):
        with pytest.raises(NotFoundError):
            await ProjectService(db).find(vader, ORG, "ghost")

    async def test_internal_projects_visible_to_org_members(
        self, db, admin_user, vader, tarkin, deathstar
    ):
        """Test org readers see internal projects but not private ones."""
        await OrganizationService(db).set_permissions(admin_user, ORG, "tarkin", "read")
        await ProjectService(db).create(
            vader, ORG, {"id": "tie", "name": "TIE", "visibility": "internal"}
        )

        found = await ProjectService(db).find(tarkin, ORG)

        assert [p["id"] for p in found] == ["tie"]

    async def test_org_admin_sees_every_project(self, db, vader, tarkin, admin_user, empire):
        await OrganizationService(db).set_permissions(admin_user, ORG, "tarkin", "write")
        await ProjectService(db).create(tarkin, ORG, {"id": "tie", "name": "TIE"})

        found = await ProjectService(db).find(vader, ORG)

        assert [p["id"] for p in found] == ["tie"]

    async def test_populate_org(self, db, vader, deathstar):
        found = await ProjectService(db).find(vader, ORG, "deathstar", {"populate": ["org"]})

        assert found[0]["org"]["id"] == ORG
        assert found[0]["org"]["name"] == "Galactic Empire"


@pytest.mark.asyncio
class TestUpdateProject:
    async def test_update_fields(self, db, vader, deathstar):
        updated = await ProjectService(db).update(
            vader, ORG, {"id": "deathstar", "name": "Death Star II", "custom": {"phase": 2}}
        )

        assert updated[0]["name"] == "Death Star II"
        assert updated[0]["custom"] == {"phase": 2}

    async def test_update_permissions(self, db, vader, tarkin, deathstar):
        """Test permission changes through update go through the permission rules."""
        updated = await ProjectService(db).update(
            vader, ORG, {"id": "deathstar", "permissions": {"tarkin": "write"}}
        )

        assert updated[0]["permissions"]["tarkin"] == ["read", "write"]
        org = await db.get(Organization, ORG)
        assert org.permissions["tarkin"] == ["read"]

    async def test_new_references_need_read(self, db, admin_user, vader, deathstar):
        """Test only newly added references are checked for read access."""
        await OrganizationService(db).create(admin_user, {"id": "rebels", "name": "Rebel Alliance"})
        await ProjectService(db).create(admin_user, "rebels", {"id": "xwing", "name": "X-Wing"})
        change = {"id": "deathstar", "project_references": ["rebels:xwing"]}

        with pytest.raises(PermissionDeniedError, match="reference"):
            await ProjectService(db).update(vader, ORG, change)

        await ProjectService(db).update(admin_user, ORG, change)
        updated = await ProjectService(db).update(vader, ORG, {**change, "name": "Death Star II"})

        assert updated[0]["project_references"] == ["rebels:xwing"]

    async def test_writer_cannot_update(self, db, vader, tarkin, deathstar):
        await ProjectService(db).set_permissions(vader, ORG, "deathstar", "tarkin", "write")

        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).update(tarkin, ORG, {"id": "deathstar", "name": "Mine"})

    async def test_archived_project_rejects_updates(self, db, vader, deathstar):
        service = ProjectService(db)
        await service.remove(vader, ORG, "deathstar")

        with pytest.raises(PermissionDeniedError, match="unarchived"):
            await service.update(vader, ORG, {"id": "deathstar", "name": "x"})

        restored = await service.update(vader, ORG, {"id": "deathstar", "archived": False})
        assert restored[0]["archived"] is False


@pytest.mark.asyncio
class TestProjectPermissions:
    async def test_grant_adds_org_read(self, db, vader, leia, deathstar):
        """Test a project grant makes a non-member an organization reader."""
        project = await ProjectService(db).set_permissions(vader, ORG, "deathstar", "leia", "admin")

        assert project["permissions"]["leia"] == ["read", "write", "admin"]
        org = await db.get(Organization, ORG)
        assert org.permissions["leia"] == ["read"]

    async def test_remove_all(self, db, vader, leia, deathstar):
        service = ProjectService(db)
        await service.set_permissions(vader, ORG, "deathstar", "leia", "read")

        project = await service.set_permissions(vader, ORG, "deathstar", "leia", "REMOVE_ALL")

        assert "leia" not in project["permissions"]

    async def test_cannot_change_own_permissions(self, db, vader, deathstar):
        with pytest.raises(PermissionDeniedError, match="own"):
            await ProjectService(db).set_permissions(vader, ORG, "deathstar", "vader", "read")

    async def test_invalid_role(self, db, vader, leia, deathstar):
        with pytest.raises(ValidationError):
            await ProjectService(db).set_permissions(vader, ORG, "deathstar", "leia", "owner")

    async def test_unknown_user(self, db, vader, deathstar):
        with pytest.raises(NotFoundError):
            await ProjectService(db).set_permissions(vader, ORG, "deathstar", "ghost", "read")

    async def test_non_admin_cannot_grant(self, db, vader, tarkin, leia, deathstar):
        await ProjectService(db).set_permissions(vader, ORG, "deathstar", "tarkin", "write")

        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).set_permissions(tarkin, ORG, "deathstar", "leia", "read")


@pytest.mark.asyncio
class TestRemoveProject:
    async def test_soft_remove_hides_project(self, db, vader, deathstar):
        service = ProjectService(db)

        assert await service.remove(vader, ORG, "deathstar") == ["deathstar"]

        assert await service.find(vader, ORG) == []
        archived = await service.find(vader, ORG, None, {"archived": True})
        assert archived[0]["archived_by"] == "vader"
        with pytest.raises(PermissionDeniedError, match="unarchived"):
            await ElementService(db).find(vader, ORG, "deathstar", "master")

    async def test_hard_remove_needs_org_admin(self, db, vader, tarkin, admin_user, empire):
        """Test a project admin who is not org admin cannot hard delete."""
        await OrganizationService(db).set_permissions(admin_user, ORG, "tarkin", "write")
        await ProjectService(db).create(tarkin, ORG, {"id": "tie", "name": "TIE"})

        with pytest.raises(PermissionDeniedError):
            await ProjectService(db).remove(tarkin, ORG, "tie", {"soft": False})

        assert await ProjectService(db).remove(tarkin, ORG, "tie") == ["tie"]

    async def test_hard_remove_cascades(self, db, vader, deathstar):
        """Test hard removal deletes branches and elements with the project."""
        await BranchService(db).create(vader, ORG, "deathstar", {"id": "dev", "source": "master"})
        await ElementService(db).create(vader, ORG, "deathstar", "dev", {"id": "e1"})

        assert await ProjectService(db).remove(vader, ORG, "deathstar", {"soft": False}) == [
            "deathstar"
        ]

        for model in (Element, Branch, Project):
            count = await db.scalar(select(func.count()).select_from(model))
            assert count == 0
        with pytest.raises(NotFoundError):
            await ProjectService(db).find(vader, ORG, "deathstar", {"archived": True})

    async def test_hard_remove_repoints_references(self, db, vader, deathstar):
        """Test relationships from other projects into a deleted project are repointed."""
        await ElementService(db).create(vader, ORG, "deathstar", "master", {"id": "e1"})
        await ProjectService(db).create(
            vader, ORG, {"id": "tie", "name": "TIE", "project_references": ["deathstar"]}
        )
        await ElementService(db).create(
            vader,
            ORG,
            "tie",
            "master",
            [{"id": "wing"}, {"id": "r1", "source": "empire:deathstar:master:e1", "target": "wing"}],
        )

        await ProjectService(db).remove(vader, ORG, "deathstar", {"soft": False})

        relationship = (await ElementService(db).find(vader, ORG, "tie", "master", "r1"))[0]
        assert relationship["source"] == "undefined"
        assert relationship["target"] == "wing"
        broken = relationship["custom"]["mbee"]["broken_relationships"]
        assert broken == [
            {
                "date": broken[0]["date"],
                "type": "source",
                "element": "empire:deathstar:master:e1",
                "reason": "deleted",
            }
        ]

    async def test_hard_remove_drops_project_references(self, db, vader, deathstar):
        """Test a deleted project disappears from other projects' references."""
        await ProjectService(db).create(
            vader, ORG, {"id": "tie", "name": "TIE", "project_references": ["deathstar"]}
        )

        await ProjectService(db).remove(vader, ORG, "deathstar", {"soft": False})

        tie = (await ProjectService(db).find(vader, ORG, "tie"))[0]
        assert tie["project_references"] == []
        assert tie["last_modified_by"] == "vader"
