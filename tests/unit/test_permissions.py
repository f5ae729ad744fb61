"""Unit tests for permission maps and effective access."""

from mbee.core.permissions import PermissionMap, check_access, get_permission_status
from mbee.models.enums import Role, Visibility
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User


def _user(username: str, admin: bool = False) -> User:
    return User(username=username, password_hash="x", admin=admin)


def _org(permissions: dict) -> Organization:
    return Organization(id="empire", name="Galactic Empire", permissions=permissions)


def _project(org: Organization, permissions: dict, visibility: Visibility) -> Project:
    return Project(
        id="empire:deathstar",
        org_id=org.id,
        organization=org,
        name="Death Star",
        visibility=visibility.value,
        permissions=permissions,
    )


class TestRoleHierarchy:
    def test_admin_implies_write_and_read(self):
        assert Role.ADMIN.implied() == {Role.READ, Role.WRITE, Role.ADMIN}

    def test_read_implies_only_read(self):
        assert Role.READ.implied() == {Role.READ}

    def test_has_permission_is_monotone(self):
        """Test every role satisfies the roles below it and none above."""
        assert Role.WRITE.has_permission(Role.READ)
        assert not Role.WRITE.has_permission(Role.ADMIN)


class TestPermissionMap:
    def test_grant_stores_implied_roles(self):
        """Test granting write also stores read."""
        permissions = PermissionMap()
        permissions.grant("tarkin", Role.WRITE)

        assert permissions.to_document() == {"tarkin": ["read", "write"]}

    def test_grant_replaces_previous_roles(self):
        """Test a lower grant replaces a higher one."""
        permissions = PermissionMap({"tarkin": ["read", "write", "admin"]})
        permissions.grant("tarkin", Role.READ)

        assert permissions.roles("tarkin") == {Role.READ}

    def test_add_keeps_existing_roles(self):
        permissions = PermissionMap({"tarkin": ["read", "write"]})
        permissions.add("tarkin", Role.READ)

        assert permissions.roles("tarkin") == {Role.READ, Role.WRITE}

    def test_revoke(self):
        """Test revoke reports whether the user had any role."""
        permissions = PermissionMap({"tarkin": ["read"]})

        assert permissions.revoke("tarkin") is True
        assert permissions.revoke("tarkin") is False
        assert "tarkin" not in permissions

    def test_empty_role_lists_are_dropped(self):
        permissions = PermissionMap.from_document({"tarkin": [], "vader": ["read"]})

        assert permissions.members() == ["vader"]

    def test_from_document_accepts_none(self):
        assert len(PermissionMap.from_document(None)) == 0

    def test_to_document_orders_roles_by_level(self):
        permissions = PermissionMap({"vader": ["admin", "read", "write"]})

        assert permissions.to_document() == {"vader": ["read", "write", "admin"]}


class TestEffectiveAccess:
    def test_site_admin_holds_every_role(self):
        """Test site admins need no explicit grants."""
        org = _org({})
        project = _project(org, {}, Visibility.PRIVATE)

        assert get_permission_status(_user("admin", admin=True), project) == set(Role)

    def test_explicit_project_grant(self):
        org = _org({"tarkin": ["read"]})
        project = _project(org, {"tarkin": ["read", "write"]}, Visibility.PRIVATE)

        assert get_permission_status(_user("tarkin"), project) == {Role.READ, Role.WRITE}

    def test_org_admin_inherits_every_project_role(self):
        """Test organization admins administer every project of the org."""
        org = _org({"vader": ["read", "write", "admin"]})
        project = _project(org, {}, Visibility.PRIVATE)

        assert check_access(_user("vader"), project, Role.ADMIN)

    def test_internal_project_readable_by_org_members(self):
        org = _org({"tarkin": ["read"]})
        project = _project(org, {}, Visibility.INTERNAL)

        assert get_permission_status(_user("tarkin"), project) == {Role.READ}

    def test_private_project_hidden_from_org_members(self):
        """Test org membership alone grants nothing on a private project."""
        org = _org({"tarkin": ["read", "write"]})
        project = _project(org, {}, Visibility.PRIVATE)

        assert not check_access(_user("tarkin"), project, Role.READ)

    def test_org_write_is_read_only_on_internal_projects(self):
        """Test non-admin org roles reach a project only as internal read access."""
        org = _org({"tarkin": ["read", "write"]})
        project = _project(org, {}, Visibility.INTERNAL)

        assert not check_access(_user("tarkin"), project, "write")
        assert get_permission_status(_user("tarkin"), project) == {Role.READ}

    def test_organization_roles(self):
        org = _org({"tarkin": ["read"]})

        assert check_access(_user("tarkin"), org, Role.READ)
        assert not check_access(_user("leia"), org, Role.READ)
