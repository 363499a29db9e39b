"""Notification service — creation, status transitions, dispatch, preferences."""

import json
import logging
from typing import Any, Optional, Sequence

from sqlalchemy.orm import Session

from usermgmt.core.exceptions import (
    ResourceConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from usermgmt.core.filters import AnyOf, Node, Op, Predicate, compile_filters
from usermgmt.core.pagination import assemble
from usermgmt.core.query_params import NormalizedQuery
from usermgmt.core.resources import NOTIFICATIONS
from usermgmt.core.timeutil import utcnow
from usermgmt.db.store import Increment, SqlStore, notification_store
from usermgmt.models.notification import (
    Notification,
    NotificationChannel,
    NotificationPreference,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)
from usermgmt.models.user import User
from usermgmt.services.channels import ChannelSender, LoggingChannelSender

logger = logging.getLogger("user_management.notifications")

PENDING = NotificationStatus.pending.value
SENT = NotificationStatus.sent.value
DELIVERED = NotificationStatus.delivered.value
FAILED = NotificationStatus.failed.value
READ = NotificationStatus.read.value

PREFERENCE_DEFAULTS = {
    "email_enabled": True,
    "push_enabled": True,
    "sms_enabled": False,
    "in_app_enabled": True,
}


def serialize_notification(n: Notification) -> dict:
    metadata = None
    if n.metadata_json:
        try:
            metadata = json.loads(n.metadata_json)
        except ValueError:
            metadata = None
    return {
        "id": n.id,
        "user_id": n.user_id,
        "type_id": n.type_id,
        "type": n.type.name if n.type else None,
        "title": n.title,
        "message": n.message,
        "channel": NotificationChannel(n.channel).value,
        "status": NotificationStatus(n.status).value,
        "priority": NotificationPriority(n.priority).value,
        "scheduled_for": n.scheduled_for,
        "sent_at": n.sent_at,
        "delivered_at": n.delivered_at,
        "read_at": n.read_at,
        "retry_count": n.retry_count,
        "max_retries": n.max_retries,
        "failure_reason": n.failure_reason,
        "metadata": metadata,
        "created_at": n.created_at,
        "updated_at": n.updated_at,
    }


def serialize_type(t: NotificationType) -> dict:
    return {
        "id": t.id,
        "name": t.name,
        "description": t.description,
        "default_channel": NotificationChannel(t.default_channel).value,
        "is_active": t.is_active,
    }


class NotificationService:
    """Every status change is one conditional UPDATE on the current status,
    so concurrent workers cannot move a notification backwards or apply the
    same transition twice.
    """

    def __init__(self, db: Session, sender: Optional[ChannelSender] = None):
        self.db = db
        self.store: SqlStore = notification_store(db)
        self.sender = sender or LoggingChannelSender()

    # ── Queries ──────────────────────────────────────────────────

    def list_page(self, query: NormalizedQuery, scope: Sequence[Node] = ()) -> dict:
        predicates = list(scope) + compile_filters(NOTIFICATIONS, query.filters)
        rows = self.store.find_many(
            predicates,
            sort=NOTIFICATIONS.resolve_sort(query.sort),
            limit=query.pagination.limit,
            offset=query.pagination.offset,
        )
        total = self.store.count(predicates)
        return assemble([serialize_notification(r) for r in rows], total, query.pagination)

    def find(self, notification_id: int) -> Optional[Notification]:
        return self.store.get(notification_id)

    def get(self, notification_id: int) -> Notification:
        notification = self.store.get(notification_id)
        if notification is None:
            raise ResourceNotFoundError(f"Notification {notification_id} not found")
        return notification

    def stats(self, scope: Sequence[Node] = ()) -> dict:
        predicates = list(scope)
        unread = predicates + [
            Predicate("read_at", Op.IS_NULL),
            Predicate("status", Op.IN, (SENT, DELIVERED)),
        ]
        return {
            "total": self.store.count(predicates),
            "unread": self.store.count(unread),
            "by_status": self.store.group_counts("status", predicates),
            "by_channel": self.store.group_counts("channel", predicates),
            "by_priority": self.store.group_counts("priority", predicates),
        }

    # ── Creation ─────────────────────────────────────────────────

    def create(
        self,
        user_id: int,
        type_id: int,
        title: str,
        message: str,
        channel: NotificationChannel = NotificationChannel.in_app,
        priority: NotificationPriority = NotificationPriority.normal,
        scheduled_for=None,
        max_retries: int = 3,
        metadata: Optional[dict[str, Any]] = None,
        respect_preferences: bool = True,
    ) -> Notification:
        """Queue a notification.

        The type must exist and be active, and the recipient must not have
        switched the channel off for that type. Unscheduled in-app
        notifications are delivered on the spot.
        """
        channel = NotificationChannel(channel)
        ntype = self.db.get(NotificationType, type_id)
        if ntype is None:
            raise ResourceNotFoundError(f"Notification type {type_id} not found")
        if not ntype.is_active:
            raise ValidationError(f"Notification type '{ntype.name}' is inactive")
        if self.db.get(User, user_id) is None:
            raise ResourceNotFoundError(f"User {user_id} not found")

        preference = self._preference(user_id, type_id) if respect_preferences else None
        if preference is not None and not preference.allows(channel):
            raise ValidationError(
                f"User {user_id} has disabled {channel.value} notifications for '{ntype.name}'"
            )

        notification = self.store.create({
            "user_id": user_id,
            "type_id": type_id,
            "title": title,
            "message": message,
            "channel": channel,
            "priority": NotificationPriority(priority),
            "status": NotificationStatus.pending,
            "scheduled_for": scheduled_for,
            "max_retries": max_retries,
            "metadata_json": json.dumps(metadata, default=str) if metadata else None,
        })
        logger.info("Queued notification %s (%s) for user %s", notification.id, channel.value, user_id)

        if channel == NotificationChannel.in_app and scheduled_for is None:
            return self.deliver(notification.id)
        return notification

    def create_system(
        self,
        user_id: int,
        type_name: str,
        title: str,
        message: str,
        channel: Optional[NotificationChannel] = None,
    ) -> Optional[Notification]:
        """Queue an account notification by type name, ignoring channel preferences.

        Skipped if the type is not seeded.
        """
        ntype = self.db.query(NotificationType).filter(NotificationType.name == type_name).first()
        if ntype is None:
            logger.warning("Notification type '%s' is not seeded; skipping", type_name)
            return None
        return self.create(
            user_id=user_id,
            type_id=ntype.id,
            title=title,
            message=message,
            channel=channel or ntype.default_channel,
            priority=NotificationPriority.high,
            respect_preferences=False,
        )

    # ── Transitions ──────────────────────────────────────────────

    def _transition(self, notification_id: int, from_statuses: tuple, values: dict, extra=()) -> bool:
        predicates = [
            Predicate("id", Op.EQ, notification_id),
            Predicate("status", Op.IN, from_statuses),
            *extra,
        ]
        return self.store.update_where(predicates, values) == 1

    def mark_sent(self, notification_id: int) -> bool:
        return self._transition(notification_id, (PENDING,), {
            "status": NotificationStatus.sent, "sent_at": utcnow(),
        })

    def mark_delivered(self, notification_id: int) -> bool:
        return self._transition(notification_id, (SENT,), {
            "status": NotificationStatus.delivered, "delivered_at": utcnow(),
        })

    def mark_failed(self, notification_id: int, reason: str) -> bool:
        return self._transition(notification_id, (PENDING, SENT), {
            "status": NotificationStatus.failed,
            "failure_reason": reason[:500],
        })

    def retry(self, notification_id: int) -> bool:
        """Move a failed notification back to pending while retries remain.

        ``retry_count`` counts requeues, so ``max_retries`` is the number of
        extra delivery attempts after the first one.
        """
        notification = self.get(notification_id)
        if NotificationStatus(notification.status) != NotificationStatus.failed:
            return False
        if notification.retry_count >= notification.max_retries:
            return False
        # compare-and-set on the observed retry count
        return self._transition(
            notification_id,
            (FAILED,),
            {"status": NotificationStatus.pending, "failure_reason": None, "retry_count": Increment(1)},
            extra=(Predicate("retry_count", Op.EQ, notification.retry_count),),
        )

    def mark_read(self, notification_id: int, user_id: int) -> Notification:
        notification = self.get(notification_id)
        if notification.user_id != user_id:
            raise ResourceNotFoundError(f"Notification {notification_id} not found")
        if NotificationStatus(notification.status) == NotificationStatus.read:
            return notification
        changed = self._transition(
            notification_id,
            (SENT, DELIVERED),
            {"status": NotificationStatus.read, "read_at": utcnow()},
            extra=(Predicate("user_id", Op.EQ, user_id),),
        )
        if not changed:
            current = self.get(notification_id)
            if NotificationStatus(current.status) == NotificationStatus.read:
                return current
            raise ResourceConflictError(
                f"Notification in status '{NotificationStatus(current.status).value}' cannot be marked read"
            )
        return self.get(notification_id)

    # ── Delivery ─────────────────────────────────────────────────

    def deliver(self, notification_id: int) -> Notification:
        """pending -> sent -> delivered, or -> failed if the sender raises."""
        if not self.mark_sent(notification_id):
            return self.get(notification_id)

        notification = self.get(notification_id)
        if NotificationChannel(notification.channel) != NotificationChannel.in_app:
            try:
                self.sender.send(notification)
            except Exception as exc:
                logger.warning("Delivery of notification %s failed: %s", notification_id, exc)
                self.mark_failed(notification_id, str(exc) or type(exc).__name__)
                return self.get(notification_id)

        self.mark_delivered(notification_id)
        return self.get(notification_id)

    def send_now(self, notification_id: int) -> Notification:
        """Deliver a pending notification immediately, retrying it if it failed."""
        notification = self.get(notification_id)
        status = NotificationStatus(notification.status)
        if status == NotificationStatus.failed:
            if not self.retry(notification_id):
                raise ResourceConflictError("Notification has no retries left")
        elif status != NotificationStatus.pending:
            raise ResourceConflictError(f"Notification already {status.value}")
        return self.deliver(notification_id)

    def dispatch_due(self, batch_size: int = 100) -> dict:
        """Deliver due pending notifications and requeue retryable failures."""
        now = utcnow()
        retried = 0
        failed = self.store.find_many([Predicate("status", Op.EQ, FAILED)], limit=batch_size)
        for notification in failed:
            if notification.retry_count < notification.max_retries and self.retry(notification.id):
                retried += 1

        due = self.store.find_many(
            [
                Predicate("status", Op.EQ, PENDING),
                AnyOf((
                    Predicate("scheduled_for", Op.IS_NULL),
                    Predicate("scheduled_for", Op.LTE, now),
                )),
            ],
            limit=batch_size,
        )
        delivered = failures = 0
        for notification in due:
            result = self.deliver(notification.id)
            if NotificationStatus(result.status) == NotificationStatus.failed:
                failures += 1
            elif NotificationStatus(result.status) == NotificationStatus.delivered:
                delivered += 1
        return {"retried": retried, "delivered": delivered, "failed": failures}

    # ── Preferences ──────────────────────────────────────────────

    def _preference(self, user_id: int, type_id: int) -> Optional[NotificationPreference]:
        return (
            self.db.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id, NotificationPreference.type_id == type_id)
            .first()
        )

    def get_preferences(self, user_id: int) -> list[dict]:
        """One entry per active type; types without a stored row show defaults."""
        stored = {
            p.type_id: p
            for p in self.db.query(NotificationPreference)
            .filter(NotificationPreference.user_id == user_id)
            .all()
        }
        result = []
        for ntype in self.list_types():
            pref = stored.get(ntype.id)
            entry = {"type_id": ntype.id, "type": ntype.name}
            for flag, default in PREFERENCE_DEFAULTS.items():
                entry[flag] = getattr(pref, flag) if pref is not None else default
            result.append(entry)
        return result

    def update_preference(self, user_id: int, type_id: int, changes: dict) -> NotificationPreference:
        if self.db.get(NotificationType, type_id) is None:
            raise ResourceNotFoundError(f"Notification type {type_id} not found")
        pref = self._preference(user_id, type_id)
        if pref is None:
            pref = NotificationPreference(user_id=user_id, type_id=type_id)
            self.db.add(pref)
        for flag in PREFERENCE_DEFAULTS:
            if changes.get(flag) is not None:
                setattr(pref, flag, bool(changes[flag]))
        self.db.commit()
        self.db.refresh(pref)
        return pref

    # ── Types ────────────────────────────────────────────────────

    def list_types(self) -> list[NotificationType]:
        return (
            self.db.query(NotificationType)
            .filter(NotificationType.is_active.is_(True))
            .order_by(NotificationType.name)
            .all()
        )

    def create_type(self, name: str, description: Optional[str], default_channel) -> NotificationType:
        name = name.strip()
        if self.db.query(NotificationType).filter(NotificationType.name == name).first():
            raise ResourceConflictError(f"Notification type '{name}' already exists")
        ntype = NotificationType(
            name=name,
            description=description,
            default_channel=NotificationChannel(default_channel),
        )
        self.db.add(ntype)
        self.db.commit()
        self.db.refresh(ntype)
        return ntype
