"""
Notification Service Domain Exceptions

Channel adapters raise these internally; NotificationChannel.send() converts
them into a failed ChannelSendResult so the dispatcher never sees an exception.
"""

from app.core.exceptions import DomainError


class NotificationServiceError(DomainError):
    """Base exception for notification service errors"""
    code = "INTERNAL_ERROR"


class ChannelNotConfiguredError(NotificationServiceError):
    """Raised when a channel has no credentials or no destination"""
    code = "CHANNEL_NOT_CONFIGURED"


class ChannelSendFailedError(NotificationServiceError):
    """Raised when the provider API rejects or fails the delivery"""
    code = "CHANNEL_SEND_FAILED"


class InvalidNotificationDataError(NotificationServiceError):
    """Raised when the notification cannot be delivered as addressed"""
    code = "INVALID_NOTIFICATION_DATA"


class RetryExhaustedError(NotificationServiceError):
    """All delivery attempts failed without a recorded error"""
    code = "RETRY_EXHAUSTED"
