"""
Notification channel adapters.
"""

from app.services.notifications.channels.base import NotificationChannel
from app.services.notifications.channels.email import EmailChannel
from app.services.notifications.channels.telegram import TelegramChannel

__all__ = [
    "NotificationChannel",
    "EmailChannel",
    "TelegramChannel",
]
