"""Per-request authorization decisions."""

import enum
from dataclasses import dataclass
from typing import Optional, Protocol

from usermgmt.core.exceptions import AuthenticationError, AuthorizationError

# Actions that never benefit from the self-access short-circuit.
PRIVILEGED_ACTIONS = frozenset({
    ("roles", "manage"),
    ("users", "activate"),
})


class PermissionSource(Protocol):
    def has_permission(self, role: Optional[str], resource: str, action: str) -> bool:
        ...


@dataclass(frozen=True)
class Principal:
    """The resolved caller identity."""

    id: int
    email: str
    role: Optional[str]
    is_active: bool = True


class DenyReason(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_PERMISSION = "insufficient_permission"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    @classmethod
    def allow(cls) -> "Decision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: DenyReason) -> "Decision":
        return cls(allowed=False, reason=reason)

    def raise_for_deny(self) -> None:
        if self.allowed:
            return
        if self.reason == DenyReason.UNAUTHENTICATED:
            raise AuthenticationError()
        raise AuthorizationError()


class AccessGuard:
    """Combines caller identity, ownership and the permission graph.

    Order of evaluation:

    1. the caller must be present and active;
    2. a caller acting on a resource they own is allowed, unless the action
       is privileged (role management, account activation);
    3. otherwise the caller's role must hold ``resource:action``.
    """

    def __init__(self, permissions: PermissionSource):
        self.permissions = permissions

    def authorize(
        self,
        caller: Optional[Principal],
        resource: str,
        action: str,
        resource_owner_id: Optional[int] = None,
    ) -> Decision:
        if caller is None or not caller.is_active:
            return Decision.deny(DenyReason.UNAUTHENTICATED)

        privileged = (resource, action) in PRIVILEGED_ACTIONS
        if resource_owner_id is not None and resource_owner_id == caller.id and not privileged:
            return Decision.allow()

        if self.permissions.has_permission(caller.role, resource, action):
            return Decision.allow()
        return Decision.deny(DenyReason.INSUFFICIENT_PERMISSION)

    def require(
        self,
        caller: Optional[Principal],
        resource: str,
        action: str,
        resource_owner_id: Optional[int] = None,
    ) -> Principal:
        """Like :meth:`authorize` but raises on deny and returns the caller."""
        self.authorize(caller, resource, action, resource_owner_id).raise_for_deny()
        return caller
