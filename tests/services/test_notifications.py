"""
Unit tests for the notification dispatcher.

Tests focus on:
- Enabled channel resolution
- Retry loop (attempt counts, backoff delays, no wait after the last attempt)
- Terminal status handling
- Fan-out to all channels
"""
import pytest
from typing import List, Optional
from unittest.mock import AsyncMock

from app.services.notifications.channels.base import NotificationChannel
from app.services.notifications.exceptions import ChannelSendFailedError
from app.services.notifications.models import (
    ChannelSendResult,
    ChannelType,
    Notification,
    NotificationStatus,
    NotificationType,
    SendNotificationInput,
)
from app.services.notifications.service import NotificationDispatcher
from app.utils.retry import RetryPolicy


class FakeChannel(NotificationChannel):
    """Adapter that fails a fixed number of times before succeeding."""

    def __init__(self, channel: ChannelType, failures: int = 0, configured: bool = True,
                 error_code: Optional[str] = "CHANNEL_SEND_FAILED"):
        self.channel = channel
        self.failures = failures
        self.configured = configured
        self.error_code = error_code
        self.attempts: List[Notification] = []

    def is_configured(self) -> bool:
        return self.configured

    async def deliver(self, notification: Notification) -> None:
        raise NotImplementedError

    async def send(self, notification: Notification) -> ChannelSendResult:
        self.attempts.append(notification)
        if len(self.attempts) <= self.failures:
            if self.error_code is None:
                return ChannelSendResult(success=False)
            return ChannelSendResult.failed(self.error_code, f"attempt {len(self.attempts)} failed")
        return ChannelSendResult.ok()


class RaisingChannel(FakeChannel):
    async def send(self, notification: Notification) -> ChannelSendResult:
        self.attempts.append(notification)
        raise RuntimeError("adapter crashed")


def make_dispatcher(*adapters, config=None, policy=None, mapping=None):
    sleep = AsyncMock()
    dispatcher = NotificationDispatcher(
        channel_config=config if config is not None else {"telegram": {"enabled": True}, "email": {"enabled": True}},
        type_channel_mapping=mapping,
        retry_policy=policy or RetryPolicy(max_retries=3, initial_delay_ms=1000, max_delay_ms=30000, backoff_multiplier=2.0),
        sleep=sleep,
    )
    for adapter in adapters:
        dispatcher.register_channel(adapter.channel, adapter)
    return dispatcher, sleep


def make_input(channel=ChannelType.TELEGRAM, type_=NotificationType.PAYMENT_CONFIRMED) -> SendNotificationInput:
    return SendNotificationInput(
        type=type_,
        channel=channel,
        recipient="123456",
        subject="Payment Confirmed",
        body="Your payment has been confirmed.",
    )


def sleep_delays(sleep: AsyncMock) -> List[float]:
    return [c.args[0] for c in sleep.await_args_list]


class TestGetEnabledChannels:

    def test_intersects_mapping_config_and_configuration(self):
        telegram = FakeChannel(ChannelType.TELEGRAM)
        email = FakeChannel(ChannelType.EMAIL, configured=False)
        dispatcher, _ = make_dispatcher(telegram, email)

        assert dispatcher.get_enabled_channels("payment_confirmed") == [ChannelType.TELEGRAM]

    def test_disabled_in_config(self):
        dispatcher, _ = make_dispatcher(
            FakeChannel(ChannelType.TELEGRAM), FakeChannel(ChannelType.EMAIL),
            config={"telegram": False, "email": True},
        )
        assert dispatcher.get_enabled_channels(NotificationType.PAYMENT_CONFIRMED) == [ChannelType.EMAIL]

    def test_mapping_restricts_channels(self):
        dispatcher, _ = make_dispatcher(FakeChannel(ChannelType.TELEGRAM), FakeChannel(ChannelType.EMAIL))
        assert dispatcher.get_enabled_channels("welcome") == [ChannelType.EMAIL]

    def test_unregistered_channel_skipped(self):
        dispatcher, _ = make_dispatcher(FakeChannel(ChannelType.EMAIL))
        assert dispatcher.get_enabled_channels("payment_rejected") == [ChannelType.EMAIL]

    def test_custom_mapping(self):
        dispatcher, _ = make_dispatcher(
            FakeChannel(ChannelType.TELEGRAM), FakeChannel(ChannelType.EMAIL),
            mapping={"password_reset": ["telegram"]},
        )
        assert dispatcher.get_enabled_channels("password_reset") == [ChannelType.TELEGRAM]
        assert dispatcher.get_enabled_channels("welcome") == []


class TestSend:

    @pytest.mark.asyncio
    async def test_first_attempt_success(self):
        adapter = FakeChannel(ChannelType.TELEGRAM)
        dispatcher, sleep = make_dispatcher(adapter)

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.SENT
        assert notification.sent_at is not None
        assert len(adapter.attempts) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failures", [1, 2, 3])
    async def test_fails_n_times_then_succeeds(self, failures):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=failures)
        dispatcher, sleep = make_dispatcher(adapter)

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.SENT
        assert len(adapter.attempts) == failures + 1
        assert sleep_delays(sleep) == [1.0, 2.0, 4.0][:failures]

    @pytest.mark.asyncio
    async def test_always_failing_makes_max_retries_plus_one_attempts(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=100)
        dispatcher, sleep = make_dispatcher(adapter)

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.FAILED
        assert notification.sent_at is None
        assert len(adapter.attempts) == 4
        # no wait after the final attempt
        assert sleep_delays(sleep) == [1.0, 2.0, 4.0]
        assert notification.error.code == "CHANNEL_SEND_FAILED"
        assert notification.error.message == "attempt 4 failed"

    @pytest.mark.asyncio
    async def test_delay_capped_at_max(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=100)
        policy = RetryPolicy(max_retries=5, initial_delay_ms=1000, max_delay_ms=3000, backoff_multiplier=2.0)
        dispatcher, sleep = make_dispatcher(adapter, policy=policy)

        await dispatcher.send(make_input())

        assert sleep_delays(sleep) == [1.0, 2.0, 3.0, 3.0, 3.0]

    @pytest.mark.asyncio
    async def test_zero_retries_single_attempt(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=100)
        dispatcher, sleep = make_dispatcher(adapter, policy=RetryPolicy(max_retries=0))

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.FAILED
        assert len(adapter.attempts) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failures_without_error_yield_retry_exhausted(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=100, error_code=None)
        dispatcher, _ = make_dispatcher(adapter, policy=RetryPolicy(max_retries=1, initial_delay_ms=10))

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.FAILED
        assert notification.error.code == "RETRY_EXHAUSTED"

    @pytest.mark.asyncio
    async def test_adapter_exception_becomes_failed_attempt(self):
        adapter = RaisingChannel(ChannelType.TELEGRAM)
        dispatcher, _ = make_dispatcher(adapter, policy=RetryPolicy(max_retries=2, initial_delay_ms=10))

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.FAILED
        assert len(adapter.attempts) == 3
        assert notification.error.code == ChannelSendFailedError.code

    @pytest.mark.asyncio
    async def test_unregistered_channel_fails_without_retry(self):
        dispatcher, sleep = make_dispatcher()

        notification = await dispatcher.send(make_input(ChannelType.EMAIL))

        assert notification.status == NotificationStatus.FAILED
        assert notification.error.code == "CHANNEL_NOT_CONFIGURED"
        assert notification.error.message == "Channel email is not configured"
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unconfigured_adapter_fails_without_attempt(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, configured=False)
        dispatcher, _ = make_dispatcher(adapter)

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.FAILED
        assert notification.error.message == "Channel telegram is not properly configured"
        assert adapter.attempts == []

    @pytest.mark.asyncio
    async def test_status_pending_during_attempts(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=1)
        dispatcher, _ = make_dispatcher(adapter)

        notification = await dispatcher.send(make_input())

        assert notification.status == NotificationStatus.SENT
        assert all(n is notification for n in adapter.attempts)

    @pytest.mark.asyncio
    async def test_caller_error_metadata_on_sent_notification(self):
        dispatcher, _ = make_dispatcher(FakeChannel(ChannelType.TELEGRAM))
        data = make_input()
        data.metadata = {"error": "previous attempt timed out"}

        notification = await dispatcher.send(data)

        assert notification.status == NotificationStatus.SENT
        assert notification.error is None

    @pytest.mark.asyncio
    async def test_delivery_error_replaces_caller_error_metadata(self):
        adapter = FakeChannel(ChannelType.TELEGRAM, failures=100)
        dispatcher, _ = make_dispatcher(adapter, policy=RetryPolicy(max_retries=0))
        data = make_input()
        data.metadata = {"error": ["not", "a", "mapping"]}

        notification = await dispatcher.send(data)

        assert notification.error.code == "CHANNEL_SEND_FAILED"
        assert notification.error.message == "attempt 1 failed"

    @pytest.mark.parametrize("value", ["timeout", 42, ["x"], {"message": "no code"}])
    def test_malformed_error_metadata_ignored(self, value):
        notification = Notification.from_input(make_input(), ChannelType.TELEGRAM)
        notification.status = NotificationStatus.FAILED
        notification.metadata["error"] = value

        assert notification.error is None

    @pytest.mark.asyncio
    async def test_channel_required(self):
        dispatcher, _ = make_dispatcher()
        data = make_input()
        data.channel = None
        with pytest.raises(ValueError):
            await dispatcher.send(data)


class TestSendToAllChannels:

    @pytest.mark.asyncio
    async def test_fans_out_to_every_enabled_channel(self):
        telegram = FakeChannel(ChannelType.TELEGRAM)
        email = FakeChannel(ChannelType.EMAIL)
        dispatcher, _ = make_dispatcher(telegram, email)

        result = await dispatcher.send_to_all_channels(make_input(channel=None))

        assert result.success is True
        assert [n.channel for n in result.notifications] == [ChannelType.TELEGRAM, ChannelType.EMAIL]
        assert len(telegram.attempts) == 1
        assert len(email.attempts) == 1

    @pytest.mark.asyncio
    async def test_one_success_is_enough(self):
        telegram = FakeChannel(ChannelType.TELEGRAM, failures=100)
        email = FakeChannel(ChannelType.EMAIL)
        dispatcher, _ = make_dispatcher(telegram, email, policy=RetryPolicy(max_retries=1, initial_delay_ms=10))

        result = await dispatcher.send_to_all_channels(make_input())

        assert result.success is True
        assert [n.status for n in result.notifications] == [NotificationStatus.FAILED, NotificationStatus.SENT]

    @pytest.mark.asyncio
    async def test_all_failed_surfaces_first_error(self):
        telegram = FakeChannel(ChannelType.TELEGRAM, failures=100, error_code="CHANNEL_SEND_FAILED")
        email = FakeChannel(ChannelType.EMAIL, failures=100, error_code="INVALID_NOTIFICATION_DATA")
        dispatcher, _ = make_dispatcher(telegram, email, policy=RetryPolicy(max_retries=0))

        result = await dispatcher.send_to_all_channels(make_input())

        assert result.success is False
        assert result.error.code == "CHANNEL_SEND_FAILED"
        assert len(result.notifications) == 2

    @pytest.mark.asyncio
    async def test_no_enabled_channels(self):
        dispatcher, _ = make_dispatcher(FakeChannel(ChannelType.TELEGRAM))

        result = await dispatcher.send_to_all_channels(make_input(type_=NotificationType.WELCOME))

        assert result.success is False
        assert result.error.code == "CHANNEL_NOT_CONFIGURED"
        assert result.error.message == "No channels configured for notification type: welcome"
        assert result.notifications == []

    @pytest.mark.asyncio
    async def test_close_releases_adapters(self):
        telegram = FakeChannel(ChannelType.TELEGRAM)
        telegram.close = AsyncMock()
        dispatcher, _ = make_dispatcher(telegram, FakeChannel(ChannelType.EMAIL))

        await dispatcher.close()

        telegram.close.assert_awaited_once()


class TestCheckChannels:

    @pytest.mark.asyncio
    async def test_reports_enabled_channels(self):
        telegram = FakeChannel(ChannelType.TELEGRAM)
        telegram.health_check = AsyncMock(return_value=False)
        email = FakeChannel(ChannelType.EMAIL)
        dispatcher, _ = make_dispatcher(telegram, email)

        assert await dispatcher.check_channels() == {"telegram": False, "email": True}

    @pytest.mark.asyncio
    async def test_disabled_channel_omitted(self):
        dispatcher, _ = make_dispatcher(
            FakeChannel(ChannelType.TELEGRAM), FakeChannel(ChannelType.EMAIL),
            config={"telegram": False, "email": True},
        )
        assert await dispatcher.check_channels() == {"email": True}

    @pytest.mark.asyncio
    async def test_raising_check_is_unhealthy(self):
        telegram = FakeChannel(ChannelType.TELEGRAM)
        telegram.health_check = AsyncMock(side_effect=RuntimeError("session closed"))
        dispatcher, _ = make_dispatcher(telegram)

        assert await dispatcher.check_channels() == {"telegram": False}
