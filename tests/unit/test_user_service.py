"""Unit tests for user management rules."""

import pytest

from usermgmt.core.exceptions import (
    BusinessRuleError,
    ResourceConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from usermgmt.models import RefreshToken
from usermgmt.core.timeutil import utcnow
from usermgmt.services.user_service import UserService, normalize_email
from tests.conftest import make_user


@pytest.fixture
def users(db, graph):
    return UserService(db, graph)


class TestCreate:
    def test_create_normalizes_email(self, users):
        user = users.create("  New.Person@Example.COM ", "password123", "New Person")
        assert user.email == "new.person@example.com"
        assert user.role.name == "user"

    def test_duplicate_email(self, users):
        users.create("dup@test.com", "password123", "First")
        with pytest.raises(ResourceConflictError):
            users.create("DUP@test.com", "password123", "Second")

    def test_invalid_email(self, users):
        with pytest.raises(ValidationError):
            users.create("not-an-email", "password123", "Nobody")

    def test_unknown_role(self, users):
        with pytest.raises(ResourceNotFoundError):
            users.create("r@test.com", "password123", "R", role_name="wizard")


class TestLastAdmin:
    def test_cannot_demote_only_admin(self, db, users):
        admin = make_user(db, "root@test.com", role="admin")
        with pytest.raises(BusinessRuleError):
            users.change_role(admin.id, "user")

    def test_cannot_deactivate_only_admin(self, db, users):
        admin = make_user(db, "root@test.com", role="admin")
        with pytest.raises(BusinessRuleError):
            users.set_status(admin.id, False)

    def test_cannot_delete_only_admin(self, db, users):
        admin = make_user(db, "root@test.com", role="admin")
        with pytest.raises(BusinessRuleError):
            users.delete(admin.id)

    def test_second_admin_can_be_demoted(self, db, users):
        first = make_user(db, "root@test.com", role="admin")
        make_user(db, "root2@test.com", role="admin")
        assert users.change_role(first.id, "moderator").role.name == "moderator"

    def test_inactive_admins_do_not_count(self, db, users):
        admin = make_user(db, "root@test.com", role="admin")
        make_user(db, "dormant@test.com", role="admin", is_active=False)
        with pytest.raises(BusinessRuleError):
            users.delete(admin.id)


class TestStatus:
    def test_deactivate_revokes_refresh_tokens(self, db, users):
        user = make_user(db, "u@test.com")
        db.add(RefreshToken(user_id=user.id, token_hash="a" * 64, expires_at=utcnow()))
        db.commit()

        users.set_status(user.id, False)

        token = db.query(RefreshToken).filter(RefreshToken.user_id == user.id).one()
        assert token.revoked_at is not None

    def test_activate_clears_lockout(self, db, users):
        user = make_user(db, "u@test.com", is_active=False, failed_login_attempts=5, locked_until=utcnow())
        user = users.set_status(user.id, True)
        assert user.is_active
        assert user.failed_login_attempts == 0
        assert user.locked_until is None


class TestBulk:
    def test_partial_failure_is_reported(self, db, users):
        admin = make_user(db, "root@test.com", role="admin")
        member = make_user(db, "member@test.com")

        result = users.bulk([admin.id, member.id, 424242], "deactivate")

        assert result["succeeded"] == [member.id]
        assert {item["id"] for item in result["failed"]} == {admin.id, 424242}

    def test_unknown_action(self, users):
        with pytest.raises(ValidationError):
            users.bulk([1], "promote")


def test_stats(db, users):
    make_user(db, "a@test.com", role="admin")
    make_user(db, "b@test.com", is_active=False)
    stats = users.stats()
    assert stats["total"] == 2
    assert stats["inactive"] == 1
    assert stats["never_logged_in"] == 2
    assert stats["by_role"] == {"admin": 1, "user": 1}


def test_normalize_email():
    assert normalize_email(" A@B.CO ") == "a@b.co"
