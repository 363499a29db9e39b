"""Service and query dependencies shared by the routers."""

from typing import Callable

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from usermgmt.core.filters import Op, Predicate, ResourceSpec
from usermgmt.core.guard import Principal
from usermgmt.core.query_params import NormalizedQuery, normalize_query, params_from_request
from usermgmt.core.security import get_permission_graph
from usermgmt.db.session import get_db
from usermgmt.services.auth_service import AuthService
from usermgmt.services.channels import ChannelSender, get_channel_sender
from usermgmt.services.log_service import LogService
from usermgmt.services.notification_service import NotificationService
from usermgmt.services.permission_service import PermissionGraph
from usermgmt.services.profile_service import ProfileService
from usermgmt.services.user_service import UserService


def get_user_service(
    db: Session = Depends(get_db),
    graph: PermissionGraph = Depends(get_permission_graph),
) -> UserService:
    return UserService(db, graph)


def get_notification_service(
    db: Session = Depends(get_db),
    sender: ChannelSender = Depends(get_channel_sender),
) -> NotificationService:
    return NotificationService(db, sender)


def get_auth_service(
    db: Session = Depends(get_db),
    users: UserService = Depends(get_user_service),
    notifications: NotificationService = Depends(get_notification_service),
) -> AuthService:
    return AuthService(db, users, notifications)


def get_profile_service(db: Session = Depends(get_db)) -> ProfileService:
    return ProfileService(db)


def get_log_service(db: Session = Depends(get_db)) -> LogService:
    return LogService(db)


def list_query(resource: ResourceSpec) -> Callable[[Request], NormalizedQuery]:
    """Dependency factory normalizing the query string for ``resource``."""

    def dependency(request: Request) -> NormalizedQuery:
        return normalize_query(params_from_request(request.query_params), resource)

    return dependency


def is_full_admin(principal: Principal, graph: PermissionGraph) -> bool:
    return graph.has_permission(principal.role, "admin", "full")


def owner_scope(principal: Principal, graph: PermissionGraph, resource: str, action: str = "read") -> list:
    """Restrict a listing to the caller's own rows unless the role grants ``resource:action``."""
    if graph.has_permission(principal.role, resource, action):
        return []
    return [Predicate("user_id", Op.EQ, principal.id)]
