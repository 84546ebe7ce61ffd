"""
Channel adapter capability interface.
"""

import logging
from abc import ABC, abstractmethod

from app.services.notifications.exceptions import NotificationServiceError
from app.services.notifications.models import ChannelSendResult, ChannelType, Notification

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """
    One delivery channel (Telegram, Email, ...).

    Subclasses implement deliver(), raising NotificationServiceError subclasses
    on failure. send() never raises: every failure becomes a failed
    ChannelSendResult carrying the error code.
    """

    channel: ChannelType

    @abstractmethod
    def is_configured(self) -> bool:
        """True if the adapter holds the credentials it needs to send."""

    @abstractmethod
    async def deliver(self, notification: Notification) -> None:
        """Deliver one notification or raise NotificationServiceError."""

    async def send(self, notification: Notification) -> ChannelSendResult:
        try:
            await self.deliver(notification)
        except NotificationServiceError as e:
            return ChannelSendResult.failed(e.code, e.message)
        except Exception as e:
            logger.exception(
                f"CHANNEL_SEND_UNEXPECTED_ERROR channel={self.channel.value} notification_id={notification.id}"
            )
            return ChannelSendResult.failed("CHANNEL_SEND_FAILED", str(e) or type(e).__name__)
        return ChannelSendResult.ok()

    async def health_check(self) -> bool:
        """Reachability of the channel; adapters with a cheap remote check override this."""
        return self.is_configured()
