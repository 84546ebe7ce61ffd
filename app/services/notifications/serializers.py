"""
JSON encoding of notifications (camelCase keys, ISO-8601 timestamps).

Decoding validates type, channel and status against the closed enums and
raises ValueError on anything else.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from app.services.notifications.models import (
    ChannelType,
    Notification,
    NotificationStatus,
    NotificationType,
    SendNotificationInput,
)

VALID_TYPES = {t.value for t in NotificationType}
VALID_CHANNELS = {c.value for c in ChannelType}
VALID_STATUSES = {s.value for s in NotificationStatus}


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check(value: Optional[str], valid: set, label: str) -> None:
    if value is not None and value not in valid:
        raise ValueError(f"Invalid notification {label}: {value}")


def serialize_notification(notification: Notification) -> Dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "channel": notification.channel.value,
        "recipient": notification.recipient,
        "subject": notification.subject,
        "body": notification.body,
        "status": notification.status.value,
        "metadata": dict(notification.metadata),
        "sentAt": notification.sent_at.isoformat() if notification.sent_at else None,
        "createdAt": notification.created_at.isoformat(),
    }


def serialize_notifications(notifications: List[Notification]) -> List[Dict[str, Any]]:
    return [serialize_notification(n) for n in notifications]


def deserialize_notification(body: Dict[str, Any]) -> Notification:
    """
    Raises:
        ValueError: On unknown type, channel or status
    """
    _check(body.get("type"), VALID_TYPES, "type")
    _check(body.get("channel"), VALID_CHANNELS, "channel")
    _check(body.get("status"), VALID_STATUSES, "status")

    return Notification(
        id=body.get("id") or "",
        type=NotificationType(body.get("type") or "welcome"),
        channel=ChannelType(body.get("channel") or "email"),
        recipient=body.get("recipient") or "",
        subject=body.get("subject"),
        body=body.get("body") or "",
        status=NotificationStatus(body.get("status") or "pending"),
        metadata=dict(body.get("metadata") or {}),
        sent_at=_parse_dt(body.get("sentAt")),
        created_at=_parse_dt(body.get("createdAt")) or datetime.now(timezone.utc),
    )


def deserialize_send_input(body: Dict[str, Any]) -> SendNotificationInput:
    """
    Decode a send request. type, channel, recipient and body are required.

    Raises:
        ValueError: On a missing required field or unknown type/channel
    """
    for required in ("type", "channel", "recipient", "body"):
        if not body.get(required):
            raise ValueError(f"Notification {required} is required")
    _check(body["type"], VALID_TYPES, "type")
    _check(body["channel"], VALID_CHANNELS, "channel")

    return SendNotificationInput(
        type=NotificationType(body["type"]),
        channel=ChannelType(body["channel"]),
        recipient=body["recipient"],
        subject=body.get("subject"),
        body=body["body"],
        metadata=dict(body.get("metadata") or {}),
    )
