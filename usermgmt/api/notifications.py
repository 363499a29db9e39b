"""Notifications API router."""

from fastapi import APIRouter, Depends, status

from usermgmt.api.deps import get_notification_service, list_query, owner_scope
from usermgmt.core.exceptions import ResourceNotFoundError
from usermgmt.core.filters import Op, Predicate
from usermgmt.core.guard import AccessGuard, Principal
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import NOTIFICATIONS
from usermgmt.core.security import RequirePermission, get_current_principal, get_guard, get_permission_graph
from usermgmt.schemas.schemas import NotificationCreate, NotificationTypeCreate, PreferenceUpdate
from usermgmt.services.notification_service import (
    PREFERENCE_DEFAULTS,
    NotificationService,
    serialize_notification,
    serialize_type,
)
from usermgmt.services.permission_service import PermissionGraph

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _own(principal: Principal) -> list:
    return [Predicate("user_id", Op.EQ, principal.id)]


@router.get("")
async def list_notifications(
    query: NormalizedQuery = Depends(list_query(NOTIFICATIONS)),
    principal: Principal = Depends(RequirePermission("notifications", "read", owner_param="userId")),
    graph: PermissionGraph = Depends(get_permission_graph),
    notifications: NotificationService = Depends(get_notification_service),
):
    """List notifications. Pass ``userId`` equal to your own id to see only yours."""
    return notifications.list_page(query, owner_scope(principal, graph, "notifications"))


@router.get("/me")
async def list_my_notifications(
    query: NormalizedQuery = Depends(list_query(NOTIFICATIONS)),
    principal: Principal = Depends(get_current_principal),
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.list_page(query, _own(principal))


@router.get("/me/stats")
async def my_notification_stats(
    principal: Principal = Depends(get_current_principal),
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.stats(_own(principal))


@router.get("/stats")
async def notification_stats(
    principal: Principal = Depends(RequirePermission("notifications", "read")),
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.stats()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: NotificationCreate,
    principal: Principal = Depends(RequirePermission("notifications", "create")),
    notifications: NotificationService = Depends(get_notification_service),
):
    notification = notifications.create(
        user_id=body.user_id,
        type_id=body.type_id,
        title=body.title,
        message=body.message,
        channel=body.channel,
        priority=body.priority,
        scheduled_for=body.scheduled_for,
        max_retries=body.max_retries,
        metadata=body.metadata,
    )
    return serialize_notification(notification)


@router.post("/dispatch")
async def dispatch_notifications(
    principal: Principal = Depends(RequirePermission("notifications", "send")),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Deliver everything due now; the beat schedule does the same periodically."""
    return notifications.dispatch_due()


# ── Types and preferences ──────────────────────────────────────────

@router.get("/types")
async def list_types(
    principal: Principal = Depends(get_current_principal),
    notifications: NotificationService = Depends(get_notification_service),
):
    return [serialize_type(t) for t in notifications.list_types()]


@router.post("/types", status_code=status.HTTP_201_CREATED)
async def create_type(
    body: NotificationTypeCreate,
    principal: Principal = Depends(RequirePermission("notifications", "create")),
    notifications: NotificationService = Depends(get_notification_service),
):
    return serialize_type(notifications.create_type(body.name, body.description, body.default_channel))


@router.get("/preferences")
async def get_preferences(
    principal: Principal = Depends(get_current_principal),
    notifications: NotificationService = Depends(get_notification_service),
):
    return notifications.get_preferences(principal.id)


@router.put("/preferences")
async def update_preference(
    body: PreferenceUpdate,
    principal: Principal = Depends(get_current_principal),
    notifications: NotificationService = Depends(get_notification_service),
):
    pref = notifications.update_preference(principal.id, body.type_id, body.model_dump(exclude={"type_id"}))
    result = {"type_id": pref.type_id}
    for flag in PREFERENCE_DEFAULTS:
        result[flag] = getattr(pref, flag)
    return result


# ── Single notification ────────────────────────────────────────────

@router.get("/{notification_id}")
async def get_notification(
    notification_id: int,
    principal: Principal = Depends(get_current_principal),
    guard: AccessGuard = Depends(get_guard),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Unreadable and missing notifications both answer 404."""
    notification = notifications.find(notification_id)
    owner_id = notification.user_id if notification is not None else None
    decision = guard.authorize(principal, "notifications", "read", resource_owner_id=owner_id)
    if notification is None or not decision.allowed:
        raise ResourceNotFoundError(f"Notification {notification_id} not found")
    return serialize_notification(notification)


@router.patch("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    principal: Principal = Depends(get_current_principal),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Recipients only. Marking an already-read notification is a no-op."""
    return serialize_notification(notifications.mark_read(notification_id, principal.id))


@router.post("/{notification_id}/send")
async def send_now(
    notification_id: int,
    principal: Principal = Depends(RequirePermission("notifications", "send")),
    notifications: NotificationService = Depends(get_notification_service),
):
    return serialize_notification(notifications.send_now(notification_id))


@router.post("/{notification_id}/retry")
async def retry_notification(
    notification_id: int,
    principal: Principal = Depends(RequirePermission("notifications", "send")),
    notifications: NotificationService = Depends(get_notification_service),
):
    """Requeue a failed notification. ``retried`` is false once retries run out."""
    retried = notifications.retry(notification_id)
    return {
        "retried": retried,
        "notification": serialize_notification(notifications.get(notification_id)),
    }
