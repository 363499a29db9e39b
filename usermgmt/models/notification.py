"""Notification, notification type and per-user channel preference models."""

import enum

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import relationship

from usermgmt.db.base import Base


class NotificationChannel(str, enum.Enum):
    email = "email"
    push = "push"
    sms = "sms"
    in_app = "in_app"


class NotificationStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    delivered = "delivered"
    failed = "failed"
    read = "read"


class NotificationPriority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class NotificationType(Base):
    """Category of notification (welcome, password_reset, ...)."""
    __tablename__ = "notification_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(String(255), nullable=True)
    default_channel = Column(
        Enum(NotificationChannel), default=NotificationChannel.in_app, nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class NotificationPreference(Base):
    """Channel toggles a user has chosen for one notification type."""
    __tablename__ = "notification_preferences"
    __table_args__ = (UniqueConstraint("user_id", "type_id", name="uq_notification_preference"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type_id = Column(
        Integer, ForeignKey("notification_types.id", ondelete="CASCADE"), nullable=False,
    )
    email_enabled = Column(Boolean, default=True, nullable=False)
    push_enabled = Column(Boolean, default=True, nullable=False)
    sms_enabled = Column(Boolean, default=False, nullable=False)
    in_app_enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    def allows(self, channel: NotificationChannel) -> bool:
        return bool(getattr(self, f"{NotificationChannel(channel).value}_enabled"))


class Notification(Base):
    """A message addressed to one user over one channel.

    Status only moves forward; ``sent_at``, ``delivered_at`` and ``read_at``
    are written once, by the transition that sets them.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type_id = Column(Integer, ForeignKey("notification_types.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    channel = Column(Enum(NotificationChannel), default=NotificationChannel.in_app, nullable=False)
    status = Column(
        Enum(NotificationStatus), default=NotificationStatus.pending, nullable=False, index=True,
    )
    priority = Column(
        Enum(NotificationPriority), default=NotificationPriority.normal, nullable=False,
    )
    scheduled_for = Column(DateTime, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)
    failure_reason = Column(String(500), nullable=True)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    type = relationship("NotificationType", lazy="joined")
