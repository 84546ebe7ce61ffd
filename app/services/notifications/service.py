"""
Notification Service Layer

Routes notifications to channel adapters and retries failed deliveries.

Delivery rules:
- get_enabled_channels(type): static type → channel mapping, filtered by the
  runtime channel config, by registration and by adapter.is_configured()
- send(): a missing or unconfigured adapter yields a failed Notification at
  once (no retry loop); otherwise up to max_retries extra attempts with
  bounded exponential backoff, no wait after the final attempt
- A Notification's terminal status (sent/failed) is set exactly once, after
  the retry loop
- send_to_all_channels(): succeeds if at least one channel delivered

Nothing here raises on delivery failure; callers inspect the returned
Notification / DispatchResult.
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Callable, Awaitable, Union

import config
from app.core.structured_logger import log_event
from app.utils.retry import RetryPolicy
from app.services.notifications.channels import EmailChannel, NotificationChannel, TelegramChannel
from app.services.notifications.exceptions import (
    ChannelNotConfiguredError,
    ChannelSendFailedError,
    RetryExhaustedError,
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

logger = logging.getLogger(__name__)


DEFAULT_RETRY_POLICY = RetryPolicy(
    max_retries=3,
    initial_delay_ms=1000,
    max_delay_ms=30000,
    backoff_multiplier=2.0,
)

DEFAULT_TYPE_CHANNEL_MAPPING: Dict[str, List[str]] = {
    "payment_pending": ["telegram", "email"],
    "payment_confirmed": ["telegram", "email"],
    "payment_rejected": ["telegram", "email"],
    "subscription_expiring": ["telegram", "email"],
    "subscription_expired": ["telegram", "email"],
    "welcome": ["email"],
    "password_reset": ["email"],
}


def _key(value: Union[str, ChannelType, NotificationType]) -> str:
    return getattr(value, "value", value)


class NotificationDispatcher:
    """
    Args:
        channel_config: Runtime switches per channel, either
            {"telegram": {"enabled": True, ...}} or {"telegram": True}
        type_channel_mapping: Notification type → ordered channel list
        retry_policy: Backoff policy (defaults: 3 retries, 1000ms, 30000ms cap, x2)
        sleep: Awaitable taking seconds; injected by tests to avoid real waits
    """

    def __init__(
        self,
        channel_config: Dict[str, Any],
        type_channel_mapping: Optional[Dict[str, List[str]]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.channel_config = {_key(k): v for k, v in (channel_config or {}).items()}
        mapping = type_channel_mapping if type_channel_mapping is not None else DEFAULT_TYPE_CHANNEL_MAPPING
        self.type_channel_mapping = {
            _key(t): [_key(c) for c in channels] for t, channels in mapping.items()
        }
        self.retry_policy = retry_policy or DEFAULT_RETRY_POLICY
        self._sleep = sleep
        self._channels: Dict[str, NotificationChannel] = {}

    def register_channel(self, channel: Union[str, ChannelType], adapter: NotificationChannel) -> None:
        self._channels[ChannelType(_key(channel)).value] = adapter

    async def close(self) -> None:
        """Release adapter sessions (aiogram Bot session)."""
        for name, adapter in self._channels.items():
            close = getattr(adapter, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"NOTIFICATION_CHANNEL_CLOSE_FAILED channel={name} error={e}")

    async def check_channels(self) -> Dict[str, bool]:
        """
        Health of every registered, config-enabled channel.

        Returns:
            channel name → True if the adapter reports itself reachable
        """
        health = {}
        for name, adapter in self._channels.items():
            if not self._channel_enabled(name):
                continue
            try:
                health[name] = bool(await adapter.health_check())
            except Exception as e:
                logger.warning(f"NOTIFICATION_CHANNEL_HEALTH_FAILED channel={name} error={e}")
                health[name] = False
        return health

    def _channel_enabled(self, channel: str) -> bool:
        settings = self.channel_config.get(channel)
        if isinstance(settings, dict):
            return bool(settings.get("enabled", False))
        return bool(settings)

    def get_enabled_channels(self, notification_type: Union[str, NotificationType]) -> List[ChannelType]:
        enabled = []
        for channel in self.type_channel_mapping.get(_key(notification_type), []):
            adapter = self._channels.get(channel)
            if adapter is None or not self._channel_enabled(channel):
                continue
            if adapter.is_configured():
                enabled.append(ChannelType(channel))
        return enabled

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, data: SendNotificationInput) -> Notification:
        """
        Send one notification through data.channel.

        Returns:
            Notification with terminal status sent (sent_at set) or failed
            (metadata["error"] holds the last error)
        """
        if data.channel is None:
            raise ValueError("SendNotificationInput.channel is required for send()")
        notification = Notification.from_input(data, ChannelType(_key(data.channel)))

        adapter = self._channels.get(notification.channel.value)
        if adapter is None:
            self._mark_failed(notification, NotificationError(
                code=ChannelNotConfiguredError.code,
                message=f"Channel {notification.channel.value} is not configured",
            ))
            return notification
        if not adapter.is_configured():
            self._mark_failed(notification, NotificationError(
                code=ChannelNotConfiguredError.code,
                message=f"Channel {notification.channel.value} is not properly configured",
            ))
            return notification

        start = time.monotonic()
        error = await self._send_with_retry(notification, adapter)
        duration_ms = int((time.monotonic() - start) * 1000)

        if error is None:
            notification.status = NotificationStatus.SENT
            notification.sent_at = datetime.now(timezone.utc)
            log_event(
                logger,
                component="notifications",
                operation="notification_send",
                correlation_id=notification.id,
                outcome="success",
                duration_ms=duration_ms,
                message=(
                    f"NOTIFICATION_SENT type={notification.type.value} "
                    f"channel={notification.channel.value}"
                ),
            )
        else:
            self._mark_failed(notification, error)
            log_event(
                logger,
                component="notifications",
                operation="notification_send",
                correlation_id=notification.id,
                outcome="failed",
                duration_ms=duration_ms,
                reason=error.code,
                level="warning",
                message=(
                    f"NOTIFICATION_FAILED type={notification.type.value} "
                    f"channel={notification.channel.value} code={error.code}"
                ),
            )
        return notification

    @staticmethod
    def _mark_failed(notification: Notification, error: NotificationError) -> None:
        notification.status = NotificationStatus.FAILED
        notification.metadata["error"] = error.to_dict()

    async def _attempt(self, notification: Notification, adapter: NotificationChannel) -> ChannelSendResult:
        try:
            return await adapter.send(notification)
        except Exception as e:
            logger.exception(f"NOTIFICATION_ADAPTER_RAISED channel={notification.channel.value}")
            return ChannelSendResult.failed(ChannelSendFailedError.code, str(e) or type(e).__name__)

    async def _send_with_retry(
        self, notification: Notification, adapter: NotificationChannel
    ) -> Optional[NotificationError]:
        """
        Run the retry loop.

        Returns:
            None on success, otherwise the last observed error (or a
            synthesized RETRY_EXHAUSTED error if no attempt reported one)
        """
        schedule = self.retry_policy.schedule()
        last_error: Optional[NotificationError] = None

        while not schedule.exhausted:
            attempt = schedule.record_attempt()
            result = await self._attempt(notification, adapter)
            if result.success:
                return None

            if result.error is not None:
                last_error = result.error
            logger.warning(
                f"NOTIFICATION_ATTEMPT_FAILED notification_id={notification.id} "
                f"channel={notification.channel.value} attempt={attempt}/{self.retry_policy.max_attempts} "
                f"code={last_error.code if last_error else None}"
            )

            delay_ms = schedule.next_delay_ms()
            if delay_ms is None:
                break
            await self._sleep(delay_ms / 1000.0)

        return last_error or NotificationError(
            code=RetryExhaustedError.code,
            message="Failed to send notification after all retry attempts",
        )

    async def send_to_all_channels(self, data: SendNotificationInput) -> DispatchResult:
        """
        Fan the notification out to every enabled channel for its type.

        Returns:
            DispatchResult: success if at least one channel delivered; all
            produced notifications are included either way
        """
        channels = self.get_enabled_channels(data.type)
        if not channels:
            return DispatchResult(
                success=False,
                error=NotificationError(
                    code=ChannelNotConfiguredError.code,
                    message=f"No channels configured for notification type: {_key(data.type)}",
                ),
            )

        notifications = []
        for channel in channels:
            notifications.append(await self.send(replace(data, channel=channel)))

        if any(n.status == NotificationStatus.SENT for n in notifications):
            return DispatchResult(success=True, notifications=notifications)

        first_error = next((n.error for n in notifications if n.error is not None), None)
        return DispatchResult(
            success=False,
            notifications=notifications,
            error=first_error or NotificationError(
                code=ChannelSendFailedError.code,
                message="Failed to send notification to any channel",
            ),
        )


# ====================================================================================
# Construction from process configuration
# ====================================================================================

def build_dispatcher(sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> NotificationDispatcher:
    """Build a dispatcher with the Telegram and Email adapters from config.py."""
    dispatcher = NotificationDispatcher(
        channel_config={
            "telegram": {"enabled": config.TELEGRAM_ENABLED},
            "email": {"enabled": config.EMAIL_ENABLED},
        },
        retry_policy=RetryPolicy(
            max_retries=config.NOTIFY_MAX_RETRIES,
            initial_delay_ms=config.NOTIFY_INITIAL_DELAY_MS,
            max_delay_ms=config.NOTIFY_MAX_DELAY_MS,
            backoff_multiplier=config.NOTIFY_BACKOFF_MULTIPLIER,
        ),
        sleep=sleep,
    )
    dispatcher.register_channel(
        ChannelType.TELEGRAM,
        TelegramChannel(config.TELEGRAM_BOT_TOKEN, default_chat_id=config.TELEGRAM_DEFAULT_CHAT_ID),
    )
    dispatcher.register_channel(
        ChannelType.EMAIL,
        EmailChannel(
            config.EMAIL_API_KEY,
            config.EMAIL_FROM,
            from_name=config.EMAIL_FROM_NAME,
            provider=config.EMAIL_PROVIDER,
            api_endpoint=config.EMAIL_API_ENDPOINT,
        ),
    )
    return dispatcher
