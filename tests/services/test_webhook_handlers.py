"""
Unit tests for the default webhook handlers.

Handlers run against the in-memory store; redelivery must be a no-op.
"""
import pytest
from unittest.mock import AsyncMock, patch

from app.services.subscriptions import service as subscription_service
from app.services.webhooks import handlers
from app.services.webhooks.models import WebhookEventType
from app.services.webhooks.parser import parse_event
from app.services.webhooks.router import WebhookRegistry
from tests.factories import ADMIN_ID, TENANT_ID, payment_webhook_body, subscription_webhook_body


def payment_event(payment, event_type="payment.confirmed", **overrides):
    return parse_event(payment_webhook_body(payment, event_type, **overrides))


class TestPaymentCreated:

    @pytest.mark.asyncio
    async def test_acknowledged_without_mutation(self, store, pending_payment):
        result = await handlers.handle_payment_created(payment_event(pending_payment, "payment.created"))

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} creation acknowledged"
        assert store.payments[pending_payment["id"]]["status"] == "pending"


class TestPaymentConfirmed:

    @pytest.mark.asyncio
    async def test_confirms_and_activates(self, store, pending_payment):
        result = await handlers.handle_payment_confirmed(payment_event(pending_payment))

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} confirmed and subscription activated"
        row = store.payments[pending_payment["id"]]
        assert row["status"] == "confirmed"
        assert row["confirmed_by"] == "webhook"
        assert len(store.subscriptions) == 1

    @pytest.mark.asyncio
    async def test_activation_failure_reported(self, store, pending_payment):
        with patch.object(
            subscription_service,
            "activate_subscription",
            AsyncMock(side_effect=ConnectionError("connection reset")),
        ):
            result = await handlers.handle_payment_confirmed(payment_event(pending_payment))

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} confirmed; subscription activation failed"
        assert store.payments[pending_payment["id"]]["status"] == "confirmed"
        assert store.subscriptions == {}

    @pytest.mark.asyncio
    async def test_uses_confirmed_by_from_payload(self, store, pending_payment):
        await handlers.handle_payment_confirmed(payment_event(pending_payment, confirmedBy=ADMIN_ID))
        assert store.payments[pending_payment["id"]]["confirmed_by"] == ADMIN_ID

    @pytest.mark.asyncio
    async def test_redelivery_is_noop(self, store, pending_payment):
        event = payment_event(pending_payment)
        await handlers.handle_payment_confirmed(event)
        confirmed_row = dict(store.payments[pending_payment["id"]])

        result = await handlers.handle_payment_confirmed(event)

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} already confirmed"
        assert store.payments[pending_payment["id"]] == confirmed_row
        assert len(store.subscriptions) == 1

    @pytest.mark.asyncio
    async def test_rejected_payment_is_skipped(self, store, pending_payment):
        store.payments[pending_payment["id"]]["status"] = "rejected"

        result = await handlers.handle_payment_confirmed(payment_event(pending_payment))

        assert result.success is True
        assert "already processed (status: rejected)" in result.message
        assert store.payments[pending_payment["id"]]["status"] == "rejected"
        assert store.subscriptions == {}

    @pytest.mark.asyncio
    async def test_unknown_payment_fails(self, store, pending_payment):
        del store.payments[pending_payment["id"]]

        result = await handlers.handle_payment_confirmed(payment_event(pending_payment))

        assert result.success is False
        assert result.error == f"Payment {pending_payment['id']} not found"

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_confirm(self, store, pending_payment):
        foreign = dict(pending_payment, tenant_id="22222222-2222-4222-8222-222222222222")

        result = await handlers.handle_payment_confirmed(payment_event(foreign))

        assert result.success is False
        assert store.payments[pending_payment["id"]]["status"] == "pending"

    @pytest.mark.asyncio
    async def test_lost_race_counts_as_already_confirmed(self, store, pending_payment):
        async def confirm_elsewhere(tenant_id, payment_id, fields, expected_status=None):
            store.payments[payment_id]["status"] = "confirmed"
            return None

        with patch.object(store, "update_payment", side_effect=confirm_elsewhere):
            result = await handlers.handle_payment_confirmed(payment_event(pending_payment))

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} already confirmed"

    @pytest.mark.asyncio
    async def test_activation_failure_keeps_confirmation(self, store, pending_payment):
        with patch.object(
            subscription_service, "activate_subscription",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            result = await handlers.handle_payment_confirmed(payment_event(pending_payment))

        assert result.success is True
        assert store.payments[pending_payment["id"]]["status"] == "confirmed"
        assert store.subscriptions == {}

    @pytest.mark.asyncio
    async def test_dispatcher_passed_through(self, store, pending_payment):
        dispatcher = AsyncMock()
        with patch.object(handlers.payment_service, "confirm_payment", wraps=handlers.payment_service.confirm_payment) as spy:
            await handlers.handle_payment_confirmed(payment_event(pending_payment), dispatcher=dispatcher)
        assert spy.call_args.kwargs["dispatcher"] is dispatcher


class TestPaymentRejected:

    @pytest.mark.asyncio
    async def test_rejects_with_default_reason(self, store, pending_payment):
        result = await handlers.handle_payment_rejected(payment_event(pending_payment, "payment.rejected"))

        assert result.success is True
        row = store.payments[pending_payment["id"]]
        assert row["status"] == "rejected"
        assert row["rejection_reason"] == "Rejected via webhook"
        assert row["confirmed_by"] == "webhook"

    @pytest.mark.asyncio
    async def test_rejects_with_payload_reason(self, store, pending_payment):
        event = payment_event(pending_payment, "payment.rejected", rejectionReason="Insufficient funds")
        await handlers.handle_payment_rejected(event)
        assert store.payments[pending_payment["id"]]["rejection_reason"] == "Insufficient funds"

    @pytest.mark.asyncio
    async def test_redelivery_is_noop(self, store, pending_payment):
        event = payment_event(pending_payment, "payment.rejected")
        await handlers.handle_payment_rejected(event)

        result = await handlers.handle_payment_rejected(event)

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} already rejected"

    @pytest.mark.asyncio
    async def test_confirmed_payment_not_rejected(self, store, pending_payment):
        store.payments[pending_payment["id"]]["status"] = "confirmed"

        result = await handlers.handle_payment_rejected(payment_event(pending_payment, "payment.rejected"))

        assert result.success is True
        assert store.payments[pending_payment["id"]]["status"] == "confirmed"


class TestPaymentExpired:

    @pytest.mark.asyncio
    async def test_expires_pending_payment(self, store, pending_payment):
        result = await handlers.handle_payment_expired(payment_event(pending_payment, "payment.expired"))

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} marked as expired"
        assert store.payments[pending_payment["id"]]["status"] == "expired"

    @pytest.mark.asyncio
    async def test_processed_payment_is_skipped(self, store, pending_payment):
        store.payments[pending_payment["id"]]["status"] = "confirmed"

        result = await handlers.handle_payment_expired(payment_event(pending_payment, "payment.expired"))

        assert result.success is True
        assert result.message == f"Payment {pending_payment['id']} already processed (status: confirmed)"
        assert store.payments[pending_payment["id"]]["status"] == "confirmed"


class TestSubscriptionEvents:

    @pytest.mark.asyncio
    async def test_created_acknowledged(self, store, monthly_plan, fixed_now):
        subscription = await subscription_service.activate_subscription(TENANT_ID, monthly_plan["id"], now=fixed_now)
        row = store.subscriptions[subscription.id]

        result = await handlers.handle_subscription_created(
            parse_event(subscription_webhook_body(row, "subscription.created"))
        )

        assert result.success is True

    @pytest.mark.asyncio
    async def test_canceled_cancels_once(self, store, monthly_plan, fixed_now):
        subscription = await subscription_service.activate_subscription(TENANT_ID, monthly_plan["id"], now=fixed_now)
        event = parse_event(subscription_webhook_body(store.subscriptions[subscription.id], "subscription.canceled"))

        first = await handlers.handle_subscription_canceled(event)
        canceled_at = store.subscriptions[subscription.id]["canceled_at"]
        second = await handlers.handle_subscription_canceled(event)

        assert first.message == f"Subscription {subscription.id} canceled"
        assert second.message == f"Subscription {subscription.id} already canceled"
        assert store.subscriptions[subscription.id]["status"] == "canceled"
        assert store.subscriptions[subscription.id]["canceled_at"] == canceled_at

    @pytest.mark.asyncio
    async def test_expired_marks_active_subscription(self, store, monthly_plan, fixed_now):
        subscription = await subscription_service.activate_subscription(TENANT_ID, monthly_plan["id"], now=fixed_now)
        event = parse_event(subscription_webhook_body(store.subscriptions[subscription.id], "subscription.expired"))

        result = await handlers.handle_subscription_expired(event)
        again = await handlers.handle_subscription_expired(event)

        assert result.success is True
        assert store.subscriptions[subscription.id]["status"] == "expired"
        assert again.message == f"Subscription {subscription.id} already processed (status: expired)"

    @pytest.mark.asyncio
    async def test_unknown_subscription_fails(self, store, monthly_plan, fixed_now):
        subscription = await subscription_service.activate_subscription(TENANT_ID, monthly_plan["id"], now=fixed_now)
        row = dict(store.subscriptions.pop(subscription.id))

        result = await handlers.handle_subscription_canceled(
            parse_event(subscription_webhook_body(row, "subscription.canceled"))
        )

        assert result.success is False


class TestRegisterDefaultHandlers:

    def test_registers_every_event_type(self):
        registry = handlers.register_default_handlers(WebhookRegistry(), secret="s3cret")

        assert set(registry.registered_types()) == set(WebhookEventType)
        assert all(registry.requires_signature(t) for t in WebhookEventType)

    def test_without_secret_no_signature_required(self):
        registry = handlers.register_default_handlers(WebhookRegistry())
        assert not any(registry.requires_signature(t) for t in WebhookEventType)
