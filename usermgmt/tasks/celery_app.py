"""Celery app and periodic tasks for notification dispatch and log retention."""

import logging

from celery import Celery
from usermgmt.core.config import settings

logger = logging.getLogger("user_management.tasks")

celery_app = Celery(
    "user_management",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_soft_time_limit=120,
    task_time_limit=300,
    beat_schedule={
        "dispatch-due-notifications": {
            "task": "dispatch_due_notifications",
            "schedule": 60.0,
        },
        "cleanup-old-logs": {
            "task": "cleanup_old_logs",
            "schedule": 24 * 60 * 60.0,
        },
    },
)


@celery_app.task(name="dispatch_due_notifications")
def dispatch_due_notifications(batch_size: int = 100) -> dict:
    """Deliver pending notifications that are due and requeue retryable failures."""
    from usermgmt.db.session import SessionLocal
    from usermgmt.services.channels import get_channel_sender
    from usermgmt.services.notification_service import NotificationService

    db = SessionLocal()
    try:
        result = NotificationService(db, get_channel_sender()).dispatch_due(batch_size)
        logger.info("Notification dispatch: %s", result)
        return result
    finally:
        db.close()


@celery_app.task(name="cleanup_old_logs")
def cleanup_old_logs(days: int = settings.LOG_RETENTION_DAYS) -> dict:
    """Purge request logs older than the retention window."""
    from usermgmt.db.session import SessionLocal
    from usermgmt.services.log_service import LogService

    db = SessionLocal()
    try:
        return {"deleted": LogService(db).cleanup(days)}
    finally:
        db.close()
