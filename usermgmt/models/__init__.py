"""Models package — import all models so metadata.create_all can discover them."""

from usermgmt.models.role import Role, Permission, RolePermission
from usermgmt.models.user import User, RefreshToken
from usermgmt.models.profile import UserProfile
from usermgmt.models.notification import (
    Notification, NotificationChannel, NotificationPreference,
    NotificationPriority, NotificationStatus, NotificationType,
)
from usermgmt.models.log_entry import LogEntry, LogLevel

__all__ = [
    "Role", "Permission", "RolePermission",
    "User", "RefreshToken", "UserProfile",
    "Notification", "NotificationChannel", "NotificationPreference",
    "NotificationPriority", "NotificationStatus", "NotificationType",
    "LogEntry", "LogLevel",
]
