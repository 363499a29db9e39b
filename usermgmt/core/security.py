"""JWT authentication and permission-based authorization helpers."""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from usermgmt.core.config import settings
from usermgmt.core.exceptions import AuthenticationError
from usermgmt.core.guard import AccessGuard, Principal
from usermgmt.db.session import get_db
from usermgmt.models.user import User
from usermgmt.services.cache_service import CacheService, get_cache
from usermgmt.services.permission_service import PermissionGraph

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)

ACCESS = "access"
REFRESH = "refresh"


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def hash_token(token: str) -> str:
    """SHA-256 digest used to store refresh/reset/verification tokens."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token() -> str:
    return secrets.token_urlsafe(32)


def _encode(data: dict, token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + expires_delta,
        "type": token_type,
        # keeps tokens minted in the same second distinct
        "jti": secrets.token_hex(8),
    })
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    return _encode(data, ACCESS, expires_delta or timedelta(minutes=settings.JWT_EXPIRY_MINUTES))


def create_refresh_token(data: dict) -> str:
    """Create a JWT refresh token."""
    return _encode(data, REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRY_DAYS))


def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    """Decode and validate a JWT token of the given type."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    if payload.get("type") != expected_type:
        raise AuthenticationError("Invalid token type")
    if payload.get("sub") is None:
        raise AuthenticationError("Invalid token payload")
    return payload


def principal_for(user: User) -> Principal:
    return Principal(
        id=user.id,
        email=user.email,
        role=user.role.name if user.role else None,
        is_active=user.is_active,
    )


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the caller from the Bearer token.

    The role is read from the database, not the token, so role changes take
    effect on the next request.
    """
    if credentials is None:
        raise AuthenticationError()
    payload = decode_token(credentials.credentials)
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise AuthenticationError("Invalid token payload")

    user = db.get(User, user_id)
    if user is None:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthenticationError("Account is deactivated")

    request.state.user_id = user.id
    return principal_for(user)


def get_permission_graph(
    db: Session = Depends(get_db),
    cache: CacheService = Depends(get_cache),
) -> PermissionGraph:
    return PermissionGraph(db, cache)


def get_guard(graph: PermissionGraph = Depends(get_permission_graph)) -> AccessGuard:
    return AccessGuard(graph)


class RequirePermission:
    """Dependency that checks the caller may perform ``resource:action``.

    With ``owner_param`` set, the named path (or query) parameter is read as
    the owning user's id, so callers acting on their own records pass
    without holding the permission.
    """

    def __init__(self, resource: str, action: str, owner_param: Optional[str] = None):
        self.resource = resource
        self.action = action
        self.owner_param = owner_param

    def owner_id(self, request: Request) -> Optional[int]:
        if not self.owner_param:
            return None
        raw = request.path_params.get(self.owner_param)
        if raw is None:
            raw = request.query_params.get(self.owner_param)
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    async def __call__(
        self,
        request: Request,
        principal: Principal = Depends(get_current_principal),
        guard: AccessGuard = Depends(get_guard),
    ) -> Principal:
        return guard.require(principal, self.resource, self.action, self.owner_id(request))
