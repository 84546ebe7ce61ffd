"""
Notification domain models.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List


class NotificationType(str, Enum):
    PAYMENT_PENDING = "payment_pending"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_REJECTED = "payment_rejected"
    SUBSCRIPTION_EXPIRING = "subscription_expiring"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    WELCOME = "welcome"
    PASSWORD_RESET = "password_reset"


class ChannelType(str, Enum):
    TELEGRAM = "telegram"
    EMAIL = "email"


class NotificationStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class NotificationError:
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class SendNotificationInput:
    """What to send. channel is ignored by send_to_all_channels."""
    type: NotificationType
    recipient: str
    body: str
    channel: Optional[ChannelType] = None
    subject: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Notification:
    id: str
    type: NotificationType
    channel: ChannelType
    recipient: str
    body: str
    subject: Optional[str] = None
    status: NotificationStatus = NotificationStatus.PENDING
    metadata: Dict[str, Any] = field(default_factory=dict)
    sent_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_input(cls, data: SendNotificationInput, channel: ChannelType) -> "Notification":
        return cls(
            id=str(uuid.uuid4()),
            type=NotificationType(data.type),
            channel=ChannelType(channel),
            recipient=data.recipient,
            subject=data.subject,
            body=data.body,
            metadata=dict(data.metadata or {}),
        )

    @property
    def error(self) -> Optional[NotificationError]:
        """
        Last delivery error recorded on a failed notification.

        metadata is caller-supplied, so an "error" entry that is not a
        {"code", "message"} mapping, or one on a notification that did not
        fail, is not treated as a delivery error.
        """
        if self.status != NotificationStatus.FAILED:
            return None
        error = self.metadata.get("error")
        if not isinstance(error, dict) or not isinstance(error.get("code"), str):
            return None
        return NotificationError(code=error["code"], message=str(error.get("message") or error["code"]))


@dataclass
class ChannelSendResult:
    """Outcome of a single delivery attempt through one adapter."""
    success: bool
    error: Optional[NotificationError] = None

    @classmethod
    def ok(cls) -> "ChannelSendResult":
        return cls(success=True)

    @classmethod
    def failed(cls, code: str, message: str) -> "ChannelSendResult":
        return cls(success=False, error=NotificationError(code=code, message=message))


@dataclass
class DispatchResult:
    """Outcome of fanning a notification out to every enabled channel."""
    success: bool
    notifications: List[Notification] = field(default_factory=list)
    error: Optional[NotificationError] = None
