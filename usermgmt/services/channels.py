"""Outbound delivery channels for notifications."""

import logging
from typing import Protocol

from usermgmt.models.notification import Notification, NotificationChannel

logger = logging.getLogger("user_management.channels")


class DeliveryError(Exception):
    """Raised by a sender when a message could not be handed off."""


class ChannelSender(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class LoggingChannelSender:
    """Default sender: records the hand-off in the application log.

    Real email/SMS/push providers plug in by implementing ``send`` and
    raising :class:`DeliveryError` on failure.
    """

    def send(self, notification: Notification) -> None:
        channel = NotificationChannel(notification.channel).value
        logger.info(
            "Delivering notification %s via %s to user %s: %s",
            notification.id, channel, notification.user_id, notification.title,
        )


def get_channel_sender() -> ChannelSender:
    """FastAPI dependency returning the configured sender."""
    return LoggingChannelSender()
