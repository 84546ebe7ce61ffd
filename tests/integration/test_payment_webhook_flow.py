"""
Integration tests for the signed webhook → payment → subscription → notification flow.

Runs the real router, default handlers, services and channel adapters
against the in-memory store. External edges (Telegram Bot, email HTTP API)
are faked at the transport level.
"""
import json
import pytest
import httpx
from datetime import datetime
from unittest.mock import AsyncMock

from app.services.notifications.channels import EmailChannel, TelegramChannel
from app.services.notifications.models import ChannelType
from app.services.notifications.service import NotificationDispatcher
from app.services.subscriptions.service import calculate_period_end, is_subscription_active
from app.services.subscriptions.models import Subscription
from app.services.webhooks import WebhookRegistry, WebhookRouter, register_default_handlers, sign_payload
from app.utils.retry import RetryPolicy
from tests.factories import TENANT_ID, USER_ID, WEBHOOK_SECRET, payment_webhook_body


@pytest.fixture
def bot():
    return AsyncMock()


@pytest.fixture
def sent_emails():
    return []


@pytest.fixture
def dispatcher(bot, sent_emails):
    def email_api(request: httpx.Request) -> httpx.Response:
        sent_emails.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "msg_1"})

    dispatcher = NotificationDispatcher(
        channel_config={"telegram": {"enabled": True}, "email": {"enabled": True}},
        retry_policy=RetryPolicy(max_retries=1, initial_delay_ms=10),
        sleep=AsyncMock(),
    )
    dispatcher.register_channel(ChannelType.TELEGRAM, TelegramChannel("123:abc", bot=bot))
    dispatcher.register_channel(ChannelType.EMAIL, EmailChannel(
        "key_123",
        "billing@example.com",
        client=httpx.AsyncClient(transport=httpx.MockTransport(email_api)),
    ))
    return dispatcher


@pytest.fixture
def webhook_router(dispatcher):
    registry = register_default_handlers(WebhookRegistry(), secret=WEBHOOK_SECRET, dispatcher=dispatcher)
    return WebhookRouter(registry)


@pytest.fixture
def payment_row(store, monthly_plan):
    async def create():
        return await store.create_payment({
            "tenant_id": TENANT_ID,
            "user_id": USER_ID,
            "plan_id": monthly_plan["id"],
            "amount": monthly_plan["price"],
            "currency": "IDR",
            "status": "pending",
            "method": "gateway",
            "metadata": {
                "planName": monthly_plan["name"],
                "notifyRecipient": "owner@example.com",
                "notifyChatId": 987654321,
            },
        })
    return create


def signed(body: bytes) -> str:
    return f"sha256={sign_payload(body, WEBHOOK_SECRET)}"


class TestPaymentWebhookFlow:

    @pytest.mark.asyncio
    async def test_confirmed_webhook_activates_and_notifies(self, store, webhook_router, payment_row, bot, sent_emails):
        payment = await payment_row()
        body = payment_webhook_body(payment, "payment.confirmed")

        result = await webhook_router.process(body, signed(body))

        assert result.success is True
        assert result.data.message == f"Payment {payment['id']} confirmed and subscription activated"

        row = store.payments[payment["id"]]
        assert row["status"] == "confirmed"
        assert row["confirmed_by"] == "webhook"
        assert isinstance(row["confirmed_at"], datetime)

        [subscription_row] = store.subscriptions.values()
        subscription = Subscription.from_row(subscription_row)
        assert subscription.tenant_id == TENANT_ID
        assert subscription.plan_id == payment["plan_id"]
        assert subscription.current_period_start == row["confirmed_at"]
        assert subscription.current_period_end == calculate_period_end(subscription.current_period_start, "monthly")
        assert is_subscription_active(subscription, subscription.current_period_start)

        bot.send_message.assert_awaited_once()
        assert bot.send_message.await_args.args[0] == "987654321"
        assert len(sent_emails) == 1
        assert sent_emails[0]["to"] == ["owner@example.com"]
        assert sent_emails[0]["subject"] == "Payment Confirmed"

    @pytest.mark.asyncio
    async def test_redelivery_is_a_no_op(self, store, webhook_router, payment_row, bot):
        payment = await payment_row()
        body = payment_webhook_body(payment, "payment.confirmed")

        await webhook_router.process(body, signed(body))
        snapshot = dict(store.payments[payment["id"]])
        second = await webhook_router.process(body, signed(body))

        assert second.success is True
        assert second.data.message == f"Payment {payment['id']} already confirmed"
        assert store.payments[payment["id"]] == snapshot
        assert len(store.subscriptions) == 1
        assert bot.send_message.await_count == 1

    @pytest.mark.asyncio
    async def test_tampered_body_rejected_without_mutation(self, store, webhook_router, payment_row, bot):
        payment = await payment_row()
        body = payment_webhook_body(payment, "payment.confirmed")
        signature = signed(body)
        tampered = body.replace(b'"gateway"', b'"qris"')

        result = await webhook_router.process(tampered, signature)

        assert result.success is False
        assert result.error.code == "INVALID_SIGNATURE"
        assert store.payments[payment["id"]]["status"] == "pending"
        assert store.subscriptions == {}
        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_webhook_after_confirm_is_skipped(self, store, webhook_router, payment_row):
        payment = await payment_row()
        confirm = payment_webhook_body(payment, "payment.confirmed")
        await webhook_router.process(confirm, signed(confirm))

        reject = payment_webhook_body(payment, "payment.rejected", rejectionReason="late")
        result = await webhook_router.process(reject, signed(reject))

        assert result.success is True
        assert result.data.message == f"Payment {payment['id']} already processed (status: confirmed)"
        assert store.payments[payment["id"]]["status"] == "confirmed"
        assert store.payments[payment["id"]]["rejection_reason"] is None

    @pytest.mark.asyncio
    async def test_unknown_payment_is_handler_error(self, store, webhook_router, payment_row):
        payment = await payment_row()
        store.payments.clear()
        body = payment_webhook_body(payment, "payment.confirmed")

        result = await webhook_router.process(body, signed(body))

        assert result.success is False
        assert result.error.code == "HANDLER_ERROR"
        assert result.error.message == f"Payment {payment['id']} not found"
