"""Role -> permission graph with a per-role cache."""

import logging
from typing import Iterable, Optional, Union

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from usermgmt.core.config import settings
from usermgmt.core.exceptions import ResourceNotFoundError
from usermgmt.models import Permission, Role, RolePermission, User

logger = logging.getLogger("user_management.permissions")

CACHE_PREFIX = "permissions:role:"

PermissionPair = tuple[str, str]
PermissionRef = Union[str, PermissionPair]


def as_pair(permission: PermissionRef) -> PermissionPair:
    """Accept ``("users", "read")`` or ``"users:read"``."""
    if isinstance(permission, str):
        resource, _, action = permission.partition(":")
        return resource, action
    resource, action = permission
    return resource, action


class PermissionGraph:
    """Answers "does role R hold resource:action?".

    A user's effective permissions are exactly those attached to their
    single role. Unknown or inactive roles hold nothing, and lookup
    failures deny rather than raise.

    Results are cached per role name. Any grant or revoke drops every
    cached role at once instead of patching entries.
    """

    def __init__(self, db: Session, cache=None, ttl_seconds: int = settings.PERMISSION_CACHE_TTL_SECONDS):
        self.db = db
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    # ── Queries ──────────────────────────────────────────────────

    def get_permissions(self, role: Optional[str]) -> frozenset[PermissionPair]:
        if not role:
            return frozenset()

        key = f"{CACHE_PREFIX}{role}"
        if self.cache is not None:
            cached = self.cache.get_json(key)
            if isinstance(cached, list):
                return frozenset(as_pair(name) for name in cached)

        try:
            permissions = self._load(role)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Permission lookup failed for role '%s': %s", role, exc)
            return frozenset()

        if self.cache is not None:
            self.cache.set_json(key, sorted(f"{r}:{a}" for r, a in permissions), self.ttl_seconds)
        return permissions

    def _load(self, role: str) -> frozenset[PermissionPair]:
        role_obj = self.db.query(Role).filter(Role.name == role).first()
        if role_obj is None or not role_obj.is_active:
            return frozenset()
        rows = (
            self.db.query(Permission.resource, Permission.action)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id == role_obj.id)
            .all()
        )
        return frozenset((resource, action) for resource, action in rows)

    def has_permission(self, role: Optional[str], resource: str, action: str) -> bool:
        return (resource, action) in self.get_permissions(role)

    def has_any_permission(self, role: Optional[str], permissions: Iterable[PermissionRef]) -> bool:
        held = self.get_permissions(role)
        return any(as_pair(p) in held for p in permissions)

    def has_all_permissions(self, role: Optional[str], permissions: Iterable[PermissionRef]) -> bool:
        held = self.get_permissions(role)
        return all(as_pair(p) in held for p in permissions)

    def permissions_for_user(self, user_id: int) -> frozenset[PermissionPair]:
        user = self.db.get(User, user_id)
        if user is None or user.role is None:
            return frozenset()
        return self.get_permissions(user.role.name)

    def role_ids_with(self, resource: str, action: str) -> list[int]:
        """Ids of active roles holding ``resource:action``."""
        rows = (
            self.db.query(Role.id)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .filter(
                Permission.resource == resource,
                Permission.action == action,
                Role.is_active.is_(True),
            )
            .all()
        )
        return [row[0] for row in rows]

    # ── Catalog ─────────────────────────────────────────────────

    def list_roles(self) -> list[Role]:
        return self.db.query(Role).order_by(Role.name).all()

    def get_role(self, role_id: int) -> Role:
        role = self.db.get(Role, role_id)
        if role is None:
            raise ResourceNotFoundError(f"Role {role_id} not found")
        return role

    def get_role_by_name(self, name: str) -> Optional[Role]:
        return self.db.query(Role).filter(Role.name == name).first()

    def list_permissions(self) -> list[Permission]:
        return self.db.query(Permission).order_by(Permission.resource, Permission.action).all()

    def role_stats(self) -> list[dict]:
        """Per-role user and permission counts."""
        user_counts = dict(
            self.db.query(User.role_id, func.count(User.id)).group_by(User.role_id).all()
        )
        active_counts = dict(
            self.db.query(User.role_id, func.count(User.id))
            .filter(User.is_active.is_(True))
            .group_by(User.role_id)
            .all()
        )
        stats = []
        for role in self.list_roles():
            stats.append({
                "id": role.id,
                "name": role.name,
                "is_active": role.is_active,
                "user_count": user_counts.get(role.id, 0),
                "active_user_count": active_counts.get(role.id, 0),
                "permission_count": len(role.permission_links),
            })
        return stats

    # ── Mutations ───────────────────────────────────────────────

    def _resolve(self, role_id: int, permission_id: int) -> tuple[Role, Permission]:
        role = self.get_role(role_id)
        permission = self.db.get(Permission, permission_id)
        if permission is None:
            raise ResourceNotFoundError(f"Permission {permission_id} not found")
        return role, permission

    def grant_permission(self, role_id: int, permission_id: int) -> bool:
        """Attach a permission to a role. Returns False if it was already held."""
        role, permission = self._resolve(role_id, permission_id)
        existing = (
            self.db.query(RolePermission)
            .filter(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            .first()
        )
        if existing is not None:
            return False

        self.db.add(RolePermission(role_id=role_id, permission_id=permission_id))
        try:
            self.db.commit()
        except IntegrityError:
            # a concurrent grant of the same pair won the race
            self.db.rollback()
            return False

        self.invalidate()
        logger.info("Granted %s to role '%s'", permission.name, role.name)
        return True

    def revoke_permission(self, role_id: int, permission_id: int) -> bool:
        """Detach a permission from a role. Returns False if it was not held."""
        role, permission = self._resolve(role_id, permission_id)
        removed = (
            self.db.query(RolePermission)
            .filter(RolePermission.role_id == role_id, RolePermission.permission_id == permission_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if not removed:
            return False

        self.invalidate()
        logger.info("Revoked %s from role '%s'", permission.name, role.name)
        return True

    def invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_pattern(f"{CACHE_PREFIX}*")
