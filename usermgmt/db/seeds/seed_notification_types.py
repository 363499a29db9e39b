"""Seed the built-in notification types."""

from sqlalchemy.orm import Session

from usermgmt.models.notification import NotificationChannel, NotificationType

NOTIFICATION_TYPES = [
    ("welcome", "Sent after registration", NotificationChannel.in_app),
    ("email_verification", "Email address verification link", NotificationChannel.email),
    ("password_reset", "Password reset link", NotificationChannel.email),
    ("security_alert", "Account security events", NotificationChannel.email),
    ("system", "System announcements", NotificationChannel.in_app),
]


def seed_notification_types(db: Session) -> None:
    existing = {name for (name,) in db.query(NotificationType.name).all()}
    for name, description, channel in NOTIFICATION_TYPES:
        if name not in existing:
            db.add(NotificationType(name=name, description=description, default_channel=channel))
    db.commit()
    print(f"✅ Seeded {len(NOTIFICATION_TYPES)} notification types")
