"""Unit tests for the role -> permission graph."""

import pytest
from sqlalchemy.exc import OperationalError

from usermgmt.core.exceptions import ResourceNotFoundError
from usermgmt.models import Permission, Role
from usermgmt.services.permission_service import CACHE_PREFIX, PermissionGraph
from tests.conftest import make_user


def _ids(db, role_name, permission_name):
    role = db.query(Role).filter(Role.name == role_name).one()
    permission = db.query(Permission).filter(Permission.name == permission_name).one()
    return role.id, permission.id


class TestQueries:
    def test_seeded_roles(self, graph):
        assert ("users", "read") in graph.get_permissions("admin")
        assert graph.has_permission("moderator", "logs", "read")
        assert not graph.has_permission("moderator", "logs", "delete")
        assert graph.get_permissions("user") == frozenset()

    def test_unknown_role_holds_nothing(self, graph):
        assert graph.get_permissions("ghost") == frozenset()
        assert graph.get_permissions(None) == frozenset()

    def test_any_and_all(self, graph):
        assert graph.has_any_permission("moderator", ["logs:delete", "logs:read"])
        assert not graph.has_all_permissions("moderator", ["logs:delete", ("logs", "read")])
        assert graph.has_all_permissions("admin", ["logs:delete", ("logs", "read")])

    def test_inactive_role_holds_nothing(self, db, graph):
        role = db.query(Role).filter(Role.name == "moderator").one()
        role.is_active = False
        db.commit()
        assert graph.get_permissions("moderator") == frozenset()

    def test_permissions_for_user(self, db, graph):
        user = make_user(db, "mod@test.com", role="moderator")
        assert graph.permissions_for_user(user.id) == graph.get_permissions("moderator")
        assert graph.permissions_for_user(99999) == frozenset()

    def test_role_ids_with(self, db, graph):
        admin_id, _ = _ids(db, "admin", "admin:full")
        assert graph.role_ids_with("admin", "full") == [admin_id]


class TestGrantRevoke:
    def test_round_trip(self, db, graph):
        role_id, permission_id = _ids(db, "user", "logs:read")

        assert graph.grant_permission(role_id, permission_id) is True
        assert graph.has_permission("user", "logs", "read")

        assert graph.revoke_permission(role_id, permission_id) is True
        assert not graph.has_permission("user", "logs", "read")

    def test_grant_is_idempotent(self, db, graph):
        role_id, permission_id = _ids(db, "moderator", "users:read")
        before = graph.get_permissions("moderator")
        assert graph.grant_permission(role_id, permission_id) is False
        assert graph.get_permissions("moderator") == before

    def test_revoke_missing_is_noop(self, db, graph):
        role_id, permission_id = _ids(db, "user", "logs:delete")
        assert graph.revoke_permission(role_id, permission_id) is False

    def test_unknown_ids(self, db, graph):
        role_id, permission_id = _ids(db, "user", "logs:read")
        with pytest.raises(ResourceNotFoundError):
            graph.grant_permission(99999, permission_id)
        with pytest.raises(ResourceNotFoundError):
            graph.revoke_permission(role_id, 99999)


class TestCache:
    def test_results_are_cached(self, graph, cache):
        graph.get_permissions("moderator")
        assert f"{CACHE_PREFIX}moderator" in cache.store

    def test_cached_value_is_used(self, db, cache):
        cache.set_json(f"{CACHE_PREFIX}user", ["reports:export"])
        graph = PermissionGraph(db, cache)
        assert graph.has_permission("user", "reports", "export")

    def test_grant_invalidates_every_role(self, db, graph, cache):
        graph.get_permissions("admin")
        graph.get_permissions("user")
        role_id, permission_id = _ids(db, "user", "logs:read")

        graph.grant_permission(role_id, permission_id)

        assert not any(key.startswith(CACHE_PREFIX) for key in cache.store)
        assert graph.has_permission("user", "logs", "read")

    def test_works_without_cache(self, db):
        assert PermissionGraph(db).has_permission("admin", "users", "read")


def test_lookup_failure_denies(db, monkeypatch):
    graph = PermissionGraph(db)

    def broken(role):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    monkeypatch.setattr(graph, "_load", broken)
    assert graph.get_permissions("admin") == frozenset()
    assert not graph.has_permission("admin", "users", "read")
