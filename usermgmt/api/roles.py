"""Roles and permissions API router."""

from fastapi import APIRouter, Depends, Query

from usermgmt.core.guard import AccessGuard, Principal
from usermgmt.core.security import RequirePermission, get_current_principal, get_guard, get_permission_graph
from usermgmt.models.role import Role
from usermgmt.schemas.schemas import PermissionCheckResponse, PermissionOut
from usermgmt.services.permission_service import PermissionGraph, as_pair

router = APIRouter(prefix="/roles", tags=["roles"])


def _names(pairs) -> list[str]:
    return sorted(f"{resource}:{action}" for resource, action in pairs)


def _serialize_role(role: Role) -> dict:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "is_active": role.is_active,
        "permissions": sorted(link.permission.name for link in role.permission_links),
    }


@router.get("")
async def list_roles(
    principal: Principal = Depends(RequirePermission("roles", "manage")),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    """Roles with user counts and the permissions each holds."""
    stats = {entry["id"]: entry for entry in graph.role_stats()}
    result = []
    for role in graph.list_roles():
        data = _serialize_role(role)
        data["user_count"] = stats[role.id]["user_count"]
        data["active_user_count"] = stats[role.id]["active_user_count"]
        result.append(data)
    return result


@router.get("/permissions", response_model=list[PermissionOut])
async def list_permissions(
    principal: Principal = Depends(RequirePermission("roles", "manage")),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    return graph.list_permissions()


@router.get("/me/permissions")
async def my_permissions(
    principal: Principal = Depends(get_current_principal),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    return {"role": principal.role, "permissions": _names(graph.get_permissions(principal.role))}


@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    permission: str = Query(..., pattern=r"^[a-z_]+:[a-z_]+$"),
    principal: Principal = Depends(get_current_principal),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    """Whether the caller's role holds ``resource:action``."""
    resource, action = as_pair(permission)
    return PermissionCheckResponse(
        permission=permission,
        allowed=graph.has_permission(principal.role, resource, action),
    )


@router.get("/users/{user_id}/permissions")
async def user_permissions(
    user_id: int,
    principal: Principal = Depends(get_current_principal),
    guard: AccessGuard = Depends(get_guard),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    """Anyone may read their own effective permissions."""
    if user_id != principal.id:
        guard.require(principal, "roles", "manage")
    return {"user_id": user_id, "permissions": _names(graph.permissions_for_user(user_id))}


@router.get("/{role_id}")
async def get_role(
    role_id: int,
    principal: Principal = Depends(RequirePermission("roles", "manage")),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    return _serialize_role(graph.get_role(role_id))


@router.post("/{role_id}/permissions/{permission_id}")
async def grant_permission(
    role_id: int,
    permission_id: int,
    principal: Principal = Depends(RequirePermission("roles", "manage")),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    """Attach a permission. Granting one the role already holds changes nothing."""
    granted = graph.grant_permission(role_id, permission_id)
    return {"granted": granted, "role": _serialize_role(graph.get_role(role_id))}


@router.delete("/{role_id}/permissions/{permission_id}")
async def revoke_permission(
    role_id: int,
    permission_id: int,
    principal: Principal = Depends(RequirePermission("roles", "manage")),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    revoked = graph.revoke_permission(role_id, permission_id)
    return {"revoked": revoked, "role": _serialize_role(graph.get_role(role_id))}
