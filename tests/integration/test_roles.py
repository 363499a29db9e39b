"""Integration tests for role and permission endpoints."""

from usermgmt.models import Permission, Role
from tests.conftest import auth_headers


def _ids(db, role_name, permission_name):
    role = db.query(Role).filter(Role.name == role_name).one()
    permission = db.query(Permission).filter(Permission.name == permission_name).one()
    return role.id, permission.id


class TestCatalog:
    def test_list_roles(self, client, admin_token):
        response = client.get("/api/roles", headers=auth_headers(admin_token))
        assert response.status_code == 200
        roles = {r["name"]: r for r in response.json()}
        assert set(roles) == {"admin", "moderator", "user"}
        assert roles["admin"]["user_count"] == 1
        assert roles["moderator"]["permissions"] == ["logs:read", "profiles:read", "users:read"]

    def test_permission_catalog(self, client, admin_token):
        response = client.get("/api/roles/permissions", headers=auth_headers(admin_token))
        assert response.status_code == 200
        assert "roles:manage" in {p["name"] for p in response.json()}

    def test_role_detail(self, client, db, admin_token):
        role_id, _ = _ids(db, "user", "users:read")
        response = client.get(f"/api/roles/{role_id}", headers=auth_headers(admin_token))
        assert response.json()["permissions"] == []

    def test_moderator_cannot_manage(self, client, moderator_token):
        assert client.get("/api/roles", headers=auth_headers(moderator_token)).status_code == 403


class TestCallerPermissions:
    def test_my_permissions(self, client, moderator_token):
        body = client.get("/api/roles/me/permissions", headers=auth_headers(moderator_token)).json()
        assert body == {"role": "moderator", "permissions": ["logs:read", "profiles:read", "users:read"]}

    def test_check(self, client, moderator_token):
        headers = auth_headers(moderator_token)
        assert client.get("/api/roles/check?permission=logs:read", headers=headers).json()["allowed"] is True
        assert client.get("/api/roles/check?permission=logs:delete", headers=headers).json()["allowed"] is False

    def test_check_rejects_malformed(self, client, moderator_token):
        response = client.get("/api/roles/check?permission=nonsense", headers=auth_headers(moderator_token))
        assert response.status_code == 422

    def test_user_permissions_self(self, client, user_token, regular_user):
        response = client.get(f"/api/roles/users/{regular_user.id}/permissions", headers=auth_headers(user_token))
        assert response.status_code == 200
        assert response.json()["permissions"] == []

    def test_user_permissions_other(self, client, user_token, other_user):
        response = client.get(f"/api/roles/users/{other_user.id}/permissions", headers=auth_headers(user_token))
        assert response.status_code == 403


class TestGrantRevoke:
    def test_grant_takes_effect_immediately(self, client, db, admin_token, user_token):
        role_id, permission_id = _ids(db, "user", "logs:read")
        assert client.get("/api/logs", headers=auth_headers(user_token)).status_code == 403

        response = client.post(
            f"/api/roles/{role_id}/permissions/{permission_id}", headers=auth_headers(admin_token),
        )
        assert response.status_code == 200
        assert response.json()["granted"] is True
        assert response.json()["role"]["permissions"] == ["logs:read"]

        assert client.get("/api/logs", headers=auth_headers(user_token)).status_code == 200

    def test_grant_twice_is_noop(self, client, db, admin_token):
        role_id, permission_id = _ids(db, "moderator", "logs:read")
        response = client.post(
            f"/api/roles/{role_id}/permissions/{permission_id}", headers=auth_headers(admin_token),
        )
        assert response.json()["granted"] is False

    def test_revoke(self, client, db, admin_token, moderator_token):
        role_id, permission_id = _ids(db, "moderator", "logs:read")
        assert client.get("/api/logs", headers=auth_headers(moderator_token)).status_code == 200

        response = client.delete(
            f"/api/roles/{role_id}/permissions/{permission_id}", headers=auth_headers(admin_token),
        )
        assert response.json()["revoked"] is True
        assert client.get("/api/logs", headers=auth_headers(moderator_token)).status_code == 403

    def test_unknown_permission(self, client, db, admin_token):
        role_id, _ = _ids(db, "user", "logs:read")
        response = client.post(f"/api/roles/{role_id}/permissions/9999", headers=auth_headers(admin_token))
        assert response.status_code == 404
