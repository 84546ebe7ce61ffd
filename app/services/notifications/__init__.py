"""
Notification Service Layer

This package routes notifications to Telegram and Email with bounded retry.
"""

from app.services.notifications.service import (
    NotificationDispatcher,
    build_dispatcher,
    DEFAULT_RETRY_POLICY,
    DEFAULT_TYPE_CHANNEL_MAPPING,
)

from app.services.notifications.models import (
    ChannelSendResult,
    ChannelType,
    DispatchResult,
    Notification,
    NotificationError,
    NotificationStatus,
    NotificationType,
    SendNotificationInput,
)

from app.services.notifications.channels import (
    NotificationChannel,
    EmailChannel,
    TelegramChannel,
)

from app.services.notifications.exceptions import (
    NotificationServiceError,
    ChannelNotConfiguredError,
    ChannelSendFailedError,
    InvalidNotificationDataError,
    RetryExhaustedError,
)

__all__ = [
    "NotificationDispatcher",
    "build_dispatcher",
    "DEFAULT_RETRY_POLICY",
    "DEFAULT_TYPE_CHANNEL_MAPPING",
    "ChannelSendResult",
    "ChannelType",
    "DispatchResult",
    "Notification",
    "NotificationError",
    "NotificationStatus",
    "NotificationType",
    "SendNotificationInput",
    "NotificationChannel",
    "EmailChannel",
    "TelegramChannel",
    "NotificationServiceError",
    "ChannelNotConfiguredError",
    "ChannelSendFailedError",
    "InvalidNotificationDataError",
    "RetryExhaustedError",
]
