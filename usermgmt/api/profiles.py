"""Profiles API router."""

from fastapi import APIRouter, Depends

from usermgmt.api.deps import get_profile_service, is_full_admin, list_query, owner_scope
from usermgmt.core.guard import Principal
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import PROFILES
from usermgmt.core.security import RequirePermission, get_current_principal, get_permission_graph
from usermgmt.schemas.schemas import MessageResponse, ProfileUpsert
from usermgmt.services.permission_service import PermissionGraph
from usermgmt.services.profile_service import ProfileService, serialize_profile

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("")
async def list_profiles(
    query: NormalizedQuery = Depends(list_query(PROFILES)),
    principal: Principal = Depends(RequirePermission("profiles", "read", owner_param="userId")),
    graph: PermissionGraph = Depends(get_permission_graph),
    profiles: ProfileService = Depends(get_profile_service),
):
    """List profiles. Without full admin rights only public ones (and your own) show."""
    scope = owner_scope(principal, graph, "profiles")
    return profiles.list_page(query, principal, is_full_admin(principal, graph), scope)


@router.get("/stats")
async def profile_stats(
    principal: Principal = Depends(RequirePermission("profiles", "read")),
    profiles: ProfileService = Depends(get_profile_service),
):
    return profiles.stats()


@router.get("/me")
async def get_my_profile(
    principal: Principal = Depends(get_current_principal),
    profiles: ProfileService = Depends(get_profile_service),
):
    return serialize_profile(profiles.get_for_user(principal.id))


@router.put("/me")
async def upsert_my_profile(
    body: ProfileUpsert,
    principal: Principal = Depends(get_current_principal),
    profiles: ProfileService = Depends(get_profile_service),
):
    return serialize_profile(profiles.upsert(principal.id, body.model_dump(exclude_unset=True)))


@router.delete("/me", response_model=MessageResponse)
async def delete_my_profile(
    principal: Principal = Depends(get_current_principal),
    profiles: ProfileService = Depends(get_profile_service),
):
    profiles.delete(principal.id)
    return MessageResponse(message="Profile deleted")


@router.get("/{user_id}")
async def get_profile(
    user_id: int,
    principal: Principal = Depends(RequirePermission("profiles", "read", owner_param="user_id")),
    graph: PermissionGraph = Depends(get_permission_graph),
    profiles: ProfileService = Depends(get_profile_service),
):
    return profiles.view(user_id, principal, is_full_admin(principal, graph))


@router.put("/{user_id}")
async def upsert_profile(
    user_id: int,
    body: ProfileUpsert,
    principal: Principal = Depends(RequirePermission("profiles", "update", owner_param="user_id")),
    profiles: ProfileService = Depends(get_profile_service),
):
    return serialize_profile(profiles.upsert(user_id, body.model_dump(exclude_unset=True)))


@router.delete("/{user_id}", response_model=MessageResponse)
async def delete_profile(
    user_id: int,
    principal: Principal = Depends(RequirePermission("profiles", "delete", owner_param="user_id")),
    profiles: ProfileService = Depends(get_profile_service),
):
    profiles.delete(user_id)
    return MessageResponse(message="Profile deleted")
