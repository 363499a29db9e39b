"""Unit tests for notification status transitions and dispatch."""

from datetime import timedelta

import pytest

from usermgmt.core.exceptions import ResourceConflictError, ResourceNotFoundError, ValidationError
from usermgmt.core.timeutil import utcnow
from usermgmt.models import NotificationChannel, NotificationStatus, NotificationType
from usermgmt.services.channels import DeliveryError
from usermgmt.services.notification_service import NotificationService
from tests.conftest import make_user


class RecordingSender:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, notification):
        if self.fail:
            raise DeliveryError("smtp unavailable")
        self.sent.append(notification.id)


@pytest.fixture
def recipient(db):
    return make_user(db, "recipient@test.com")


@pytest.fixture
def system_type(db):
    return db.query(NotificationType).filter(NotificationType.name == "system").one()


def _status(service, notification_id):
    return NotificationStatus(service.get(notification_id).status)


class TestCreate:
    def test_in_app_is_delivered_immediately(self, db, recipient, system_type):
        service = NotificationService(db, RecordingSender())
        notification = service.create(recipient.id, system_type.id, "Hi", "Hello there")
        assert NotificationStatus(notification.status) == NotificationStatus.delivered
        assert notification.sent_at is not None
        assert notification.delivered_at is not None

    def test_email_waits_for_dispatch(self, db, recipient, system_type):
        sender = RecordingSender()
        service = NotificationService(db, sender)
        notification = service.create(
            recipient.id, system_type.id, "Hi", "Hello", channel=NotificationChannel.email,
        )
        assert NotificationStatus(notification.status) == NotificationStatus.pending
        assert sender.sent == []

    def test_unknown_type(self, db, recipient):
        with pytest.raises(ResourceNotFoundError):
            NotificationService(db).create(recipient.id, 9999, "Hi", "Hello")

    def test_disabled_channel_rejected(self, db, recipient, system_type):
        service = NotificationService(db)
        service.update_preference(recipient.id, system_type.id, {"email_enabled": False})
        with pytest.raises(ValidationError):
            service.create(recipient.id, system_type.id, "Hi", "Hello", channel=NotificationChannel.email)

    def test_system_notifications_ignore_preferences(self, db, recipient):
        service = NotificationService(db)
        security = db.query(NotificationType).filter(NotificationType.name == "security_alert").one()
        service.update_preference(recipient.id, security.id, {"email_enabled": False})
        notification = service.create_system(recipient.id, "security_alert", "Alert", "New login")
        assert notification is not None

    def test_missing_system_type_is_skipped(self, db, recipient):
        assert NotificationService(db).create_system(recipient.id, "nonexistent", "x", "y") is None


class TestTransitions:
    def _pending(self, service, recipient, system_type, **kwargs):
        return service.create(
            recipient.id, system_type.id, "Hi", "Hello", channel=NotificationChannel.email, **kwargs,
        )

    def test_status_only_moves_forward(self, db, recipient, system_type):
        service = NotificationService(db)
        notification = self._pending(service, recipient, system_type)

        assert service.mark_sent(notification.id) is True
        assert service.mark_sent(notification.id) is False
        assert service.mark_delivered(notification.id) is True
        assert service.mark_failed(notification.id, "late failure") is False
        assert _status(service, notification.id) == NotificationStatus.delivered

    def test_failed_delivery_records_reason(self, db, recipient, system_type):
        service = NotificationService(db, RecordingSender(fail=True))
        notification = self._pending(service, recipient, system_type)

        result = service.deliver(notification.id)

        assert NotificationStatus(result.status) == NotificationStatus.failed
        assert result.retry_count == 0
        assert result.failure_reason == "smtp unavailable"

    def test_retry_counts_requeues(self, db, recipient, system_type):
        service = NotificationService(db, RecordingSender(fail=True))
        notification = self._pending(service, recipient, system_type)
        service.deliver(notification.id)

        assert service.retry(notification.id) is True
        assert service.get(notification.id).retry_count == 1
        assert _status(service, notification.id) == NotificationStatus.pending

    def test_max_retries_allows_that_many_requeues(self, db, recipient, system_type):
        sender = RecordingSender(fail=True)
        service = NotificationService(db, sender)
        notification = self._pending(service, recipient, system_type, max_retries=3)
        service.deliver(notification.id)

        requeues = 0
        while service.retry(notification.id):
            requeues += 1
            service.deliver(notification.id)

        assert requeues == 3
        assert service.get(notification.id).retry_count == 3
        assert _status(service, notification.id) == NotificationStatus.failed

    def test_retry_stops_at_max_retries(self, db, recipient, system_type):
        service = NotificationService(db, RecordingSender(fail=True))
        notification = self._pending(service, recipient, system_type, max_retries=1)
        service.deliver(notification.id)
        assert service.retry(notification.id) is True
        service.deliver(notification.id)

        assert service.retry(notification.id) is False
        with pytest.raises(ResourceConflictError):
            service.send_now(notification.id)

    def test_no_retries_when_max_is_zero(self, db, recipient, system_type):
        service = NotificationService(db, RecordingSender(fail=True))
        notification = self._pending(service, recipient, system_type, max_retries=0)
        service.deliver(notification.id)
        assert service.retry(notification.id) is False

    def test_retry_then_succeed(self, db, recipient, system_type):
        failing = NotificationService(db, RecordingSender(fail=True))
        notification = self._pending(failing, recipient, system_type)
        failing.deliver(notification.id)

        working = NotificationService(db, RecordingSender())
        result = working.send_now(notification.id)
        assert NotificationStatus(result.status) == NotificationStatus.delivered
        assert result.failure_reason is None

    def test_mark_read(self, db, recipient, system_type):
        service = NotificationService(db)
        notification = service.create(recipient.id, system_type.id, "Hi", "Hello")

        result = service.mark_read(notification.id, recipient.id)
        assert NotificationStatus(result.status) == NotificationStatus.read
        read_at = result.read_at
        assert service.mark_read(notification.id, recipient.id).read_at == read_at

    def test_mark_read_requires_recipient(self, db, recipient, system_type):
        service = NotificationService(db)
        notification = service.create(recipient.id, system_type.id, "Hi", "Hello")
        with pytest.raises(ResourceNotFoundError):
            service.mark_read(notification.id, recipient.id + 1000)

    def test_pending_cannot_be_read(self, db, recipient, system_type):
        service = NotificationService(db)
        notification = self._pending(service, recipient, system_type)
        with pytest.raises(ResourceConflictError):
            service.mark_read(notification.id, recipient.id)


class TestDispatch:
    def test_dispatch_due_only(self, db, recipient, system_type):
        sender = RecordingSender()
        service = NotificationService(db, sender)
        due = service.create(recipient.id, system_type.id, "Now", "x", channel=NotificationChannel.email)
        later = service.create(
            recipient.id, system_type.id, "Later", "y",
            channel=NotificationChannel.email,
            scheduled_for=utcnow() + timedelta(days=1),
        )

        result = service.dispatch_due()

        assert result == {"retried": 0, "delivered": 1, "failed": 0}
        assert sender.sent == [due.id]
        assert _status(service, later.id) == NotificationStatus.pending

    def test_dispatch_requeues_failures(self, db, recipient, system_type):
        failing = NotificationService(db, RecordingSender(fail=True))
        notification = failing.create(
            recipient.id, system_type.id, "Now", "x", channel=NotificationChannel.email,
        )
        failing.deliver(notification.id)

        result = NotificationService(db, RecordingSender()).dispatch_due()
        assert result["retried"] == 1
        assert result["delivered"] == 1


def test_preferences_default_and_update(db, recipient, system_type):
    service = NotificationService(db)
    defaults = {p["type"]: p for p in service.get_preferences(recipient.id)}
    assert defaults["system"]["sms_enabled"] is False
    assert defaults["system"]["email_enabled"] is True

    service.update_preference(recipient.id, system_type.id, {"sms_enabled": True, "email_enabled": None})
    updated = {p["type"]: p for p in service.get_preferences(recipient.id)}
    assert updated["system"]["sms_enabled"] is True
    assert updated["system"]["email_enabled"] is True
