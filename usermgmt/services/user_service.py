"""User service — CRUD, role and status changes, bulk actions, statistics."""

import logging
import re
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from usermgmt.core.exceptions import (
    BusinessRuleError,
    ResourceConflictError,
    ResourceNotFoundError,
    UserManagementError,
    ValidationError,
)
from usermgmt.core.filters import Op, Predicate, compile_filters
from usermgmt.core.pagination import assemble
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import USERS
from usermgmt.core.security import hash_password
from usermgmt.core.timeutil import utcnow
from usermgmt.db.store import SqlStore, user_store
from usermgmt.models.role import Role
from usermgmt.models.user import RefreshToken, User
from usermgmt.services.permission_service import PermissionGraph

logger = logging.getLogger("user_management.users")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

ADMIN_PERMISSION = ("admin", "full")


def normalize_email(email: str) -> str:
    normalized = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role.name if user.role else None,
        "is_active": user.is_active,
        "email_verified": user.email_verified,
        "last_login_at": user.last_login_at,
        "locked_until": user.locked_until,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


class UserService:
    """User management on top of the user store and the permission graph.

    The graph decides which roles count as administrative (those holding
    ``admin:full``); at least one active user must keep such a role.
    """

    def __init__(self, db: Session, graph: PermissionGraph):
        self.db = db
        self.graph = graph
        self.store: SqlStore = user_store(db)

    # ── Queries ──────────────────────────────────────────────────

    def list_page(self, query: NormalizedQuery) -> dict:
        predicates = compile_filters(USERS, query.filters)
        rows = self.store.find_many(
            predicates,
            sort=USERS.resolve_sort(query.sort),
            limit=query.pagination.limit,
            offset=query.pagination.offset,
        )
        total = self.store.count(predicates)
        return assemble([serialize_user(u) for u in rows], total, query.pagination)

    def get(self, user_id: int) -> User:
        user = self.store.get(user_id)
        if user is None:
            raise ResourceNotFoundError(f"User {user_id} not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        return self.store.find_one([Predicate("email", Op.EQ, email.strip().lower())])

    def stats(self) -> dict:
        now = utcnow()
        locked = [Predicate("locked_until", Op.GT, now)]
        recent = [Predicate("last_login_at", Op.GTE, now - timedelta(days=30))]
        return {
            "total": self.store.count(),
            "active": self.store.count([Predicate("is_active", Op.EQ, True)]),
            "inactive": self.store.count([Predicate("is_active", Op.EQ, False)]),
            "locked": self.store.count(locked),
            "verified": self.store.count([Predicate("email_verified", Op.EQ, True)]),
            "never_logged_in": self.store.count([Predicate("last_login_at", Op.IS_NULL)]),
            "active_last_30_days": self.store.count(recent),
            "by_role": self.store.group_counts("role_name"),
        }

    # ── Last-admin rule ──────────────────────────────────────────

    def _admin_role_ids(self) -> list[int]:
        return self.graph.role_ids_with(*ADMIN_PERMISSION)

    def _ensure_not_last_admin(self, user: User, admin_role_ids: Optional[list[int]] = None) -> None:
        """Refuse to remove admin rights from the last active admin."""
        admin_role_ids = admin_role_ids if admin_role_ids is not None else self._admin_role_ids()
        if not user.is_active or user.role_id not in admin_role_ids:
            return
        remaining = self.store.count([
            Predicate("role_id", Op.IN, tuple(admin_role_ids)),
            Predicate("is_active", Op.EQ, True),
        ])
        if remaining <= 1:
            raise BusinessRuleError("Cannot remove the last active administrator")

    # ── Mutations ────────────────────────────────────────────────

    def _resolve_role(self, role_name: str) -> Role:
        role = self.graph.get_role_by_name(role_name)
        if role is None:
            raise ResourceNotFoundError(f"Role '{role_name}' not found")
        if not role.is_active:
            raise ValidationError(f"Role '{role_name}' is inactive")
        return role

    def create(
        self,
        email: str,
        password: str,
        full_name: str,
        role_name: str = "user",
        is_active: bool = True,
        email_verified: bool = False,
    ) -> User:
        email = normalize_email(email)
        if self.get_by_email(email) is not None:
            raise ResourceConflictError(f"User with email {email} already exists")
        role = self._resolve_role(role_name)
        user = self.store.create({
            "email": email,
            "hashed_password": hash_password(password),
            "full_name": full_name.strip(),
            "role_id": role.id,
            "is_active": is_active,
            "email_verified": email_verified,
        })
        logger.info("Created user %s with role '%s'", user.id, role.name)
        return user

    def update(self, user_id: int, full_name: Optional[str] = None, email: Optional[str] = None) -> User:
        user = self.get(user_id)
        changes = {}
        if full_name is not None:
            changes["full_name"] = full_name.strip()
        if email is not None:
            email = normalize_email(email)
            if email != user.email:
                if self.get_by_email(email) is not None:
                    raise ResourceConflictError(f"User with email {email} already exists")
                changes["email"] = email
                changes["email_verified"] = False
        if not changes:
            return user
        return self.store.update(user, changes)

    def change_role(self, user_id: int, role_name: str) -> User:
        user = self.get(user_id)
        role = self._resolve_role(role_name)
        if role.id == user.role_id:
            return user
        admin_role_ids = self._admin_role_ids()
        if role.id not in admin_role_ids:
            self._ensure_not_last_admin(user, admin_role_ids)
        user = self.store.update(user, {"role_id": role.id})
        logger.info("User %s moved to role '%s'", user_id, role.name)
        return user

    def set_status(self, user_id: int, is_active: bool) -> User:
        user = self.get(user_id)
        if user.is_active == is_active:
            return user
        if not is_active:
            self._ensure_not_last_admin(user)
            self._revoke_refresh_tokens(user.id)
        values = {"is_active": is_active}
        if is_active:
            values.update({"failed_login_attempts": 0, "locked_until": None})
        user = self.store.update(user, values)
        logger.info("User %s %s", user_id, "activated" if is_active else "deactivated")
        return user

    def delete(self, user_id: int) -> None:
        user = self.get(user_id)
        self._ensure_not_last_admin(user)
        self.store.delete(user)
        logger.info("Deleted user %s", user_id)

    def bulk(self, user_ids: Iterable[int], action: str) -> dict:
        """Apply one action to many users; failures are reported per id."""
        handlers = {
            "activate": lambda uid: self.set_status(uid, True),
            "deactivate": lambda uid: self.set_status(uid, False),
            "delete": self.delete,
        }
        if action not in handlers:
            raise ValidationError(f"Unknown bulk action '{action}'")

        succeeded, failed = [], []
        for user_id in dict.fromkeys(user_ids):
            try:
                handlers[action](user_id)
                succeeded.append(user_id)
            except UserManagementError as exc:
                failed.append({"id": user_id, "error": exc.message})
        return {"action": action, "succeeded": succeeded, "failed": failed}

    def _revoke_refresh_tokens(self, user_id: int) -> None:
        self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at.is_(None),
        ).update({"revoked_at": utcnow()}, synchronize_session=False)

