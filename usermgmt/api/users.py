"""Users API router."""

from fastapi import APIRouter, Depends, status

from usermgmt.api.deps import get_user_service, list_query
from usermgmt.core.guard import AccessGuard, Principal
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import USERS
from usermgmt.core.security import RequirePermission, get_current_principal, get_guard
from usermgmt.schemas.schemas import (
    BulkUserRequest,
    MessageResponse,
    RoleChangeRequest,
    StatusChangeRequest,
    UserCreateRequest,
    UserOut,
    UserUpdateRequest,
)
from usermgmt.services.user_service import UserService, serialize_user

router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_users(
    query: NormalizedQuery = Depends(list_query(USERS)),
    principal: Principal = Depends(RequirePermission("users", "read")),
    users: UserService = Depends(get_user_service),
):
    """List users with filtering, sorting and pagination."""
    return users.list_page(query)


@router.get("/stats")
async def user_stats(
    principal: Principal = Depends(RequirePermission("users", "read")),
    users: UserService = Depends(get_user_service),
):
    return users.stats()


@router.post("/bulk")
async def bulk_users(
    body: BulkUserRequest,
    principal: Principal = Depends(get_current_principal),
    guard: AccessGuard = Depends(get_guard),
    users: UserService = Depends(get_user_service),
):
    """Activate, deactivate or delete several users at once."""
    if body.action == "delete":
        guard.require(principal, "users", "delete")
    else:
        guard.require(principal, "users", "update")
        guard.require(principal, "users", "activate")
    return users.bulk(body.user_ids, body.action)


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: int,
    principal: Principal = Depends(RequirePermission("users", "read", owner_param="user_id")),
    users: UserService = Depends(get_user_service),
):
    return serialize_user(users.get(user_id))


@router.post("", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreateRequest,
    principal: Principal = Depends(RequirePermission("users", "create")),
    users: UserService = Depends(get_user_service),
):
    user = users.create(
        body.email,
        body.password,
        body.full_name,
        role_name=body.role,
        is_active=body.is_active,
        email_verified=body.email_verified,
    )
    return serialize_user(user)


@router.put("/{user_id}", response_model=UserOut)
async def update_user(
    user_id: int,
    body: UserUpdateRequest,
    principal: Principal = Depends(RequirePermission("users", "update", owner_param="user_id")),
    users: UserService = Depends(get_user_service),
):
    """Update name or email. Owners may update themselves."""
    return serialize_user(users.update(user_id, full_name=body.full_name, email=body.email))


@router.patch("/{user_id}/role", response_model=UserOut)
async def change_role(
    user_id: int,
    body: RoleChangeRequest,
    principal: Principal = Depends(RequirePermission("roles", "manage", owner_param="user_id")),
    users: UserService = Depends(get_user_service),
):
    """Move a user to another role. Never allowed on ownership alone."""
    return serialize_user(users.change_role(user_id, body.role))


@router.patch("/{user_id}/status", response_model=UserOut)
async def set_status(
    user_id: int,
    body: StatusChangeRequest,
    principal: Principal = Depends(RequirePermission("users", "activate", owner_param="user_id")),
    users: UserService = Depends(get_user_service),
):
    """Activate or deactivate an account. Never allowed on ownership alone."""
    return serialize_user(users.set_status(user_id, body.is_active))


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_user(
    user_id: int,
    principal: Principal = Depends(RequirePermission("users", "delete", owner_param="user_id")),
    users: UserService = Depends(get_user_service),
):
    users.delete(user_id)
    return MessageResponse(message="User deleted")
