"""
Webhook Event Handlers

Gateway-reported payment and subscription events, applied through the same
service functions administrative actions use.

Every handler is idempotent under redelivery: an event whose effect is
already in place (payment already confirmed, subscription already canceled)
is acknowledged as success without touching the record.
"""

import logging
from functools import partial
from typing import Optional

from app.services.payments import service as payment_service
from app.services.payments.exceptions import PaymentAlreadyProcessedError, PaymentNotFoundError
from app.services.payments.models import Payment, PaymentStatus
from app.services.subscriptions import service as subscription_service
from app.services.subscriptions.exceptions import SubscriptionNotFoundError
from app.services.subscriptions.models import SubscriptionStatus
from app.services.webhooks.models import PaymentWebhookPayload, SubscriptionWebhookPayload, WebhookEvent, WebhookEventType
from app.services.webhooks.router import HandlerResult, WebhookRegistry

logger = logging.getLogger(__name__)

WEBHOOK_ACTOR = "webhook"
DEFAULT_REJECTION_REASON = "Rejected via webhook"


def _already_processed(payment_id: str, status: str) -> HandlerResult:
    return HandlerResult(
        success=True,
        message=f"Payment {payment_id} already processed (status: {status})",
    )


async def _load_payment(payload: PaymentWebhookPayload) -> Optional[Payment]:
    try:
        return await payment_service.get_payment(payload.tenant_id, payload.payment_id)
    except PaymentNotFoundError:
        return None


# ====================================================================================
# Payment Events
# ====================================================================================

async def handle_payment_created(event: WebhookEvent) -> HandlerResult:
    payload: PaymentWebhookPayload = event.data
    logger.info(
        f"WEBHOOK_PAYMENT_CREATED tenant_id={payload.tenant_id} payment_id={payload.payment_id} "
        f"amount={payload.amount} currency={payload.currency} method={payload.method}"
    )
    return HandlerResult(success=True, message=f"Payment {payload.payment_id} creation acknowledged")


async def handle_payment_confirmed(event: WebhookEvent, dispatcher=None) -> HandlerResult:
    """
    Confirm the payment and activate its plan.

    Already confirmed → success, nothing changes (no second subscription).
    Rejected/expired → success, skipped.
    """
    payload: PaymentWebhookPayload = event.data
    payment = await _load_payment(payload)
    if payment is None:
        return HandlerResult(success=False, error=f"Payment {payload.payment_id} not found")

    if payment.status == PaymentStatus.CONFIRMED:
        return HandlerResult(success=True, message=f"Payment {payload.payment_id} already confirmed")
    if payment.is_terminal:
        return _already_processed(payload.payment_id, payment.status.value)

    try:
        confirmed = await payment_service.confirm_payment(
            payload.tenant_id,
            payload.payment_id,
            payload.confirmed_by or WEBHOOK_ACTOR,
            dispatcher=dispatcher,
        )
    except PaymentAlreadyProcessedError as e:
        # Concurrent delivery won the transition
        logger.info(f"WEBHOOK_PAYMENT_CONFIRM_RACE payment_id={payload.payment_id} status={e.status}")
        if e.status == PaymentStatus.CONFIRMED.value:
            return HandlerResult(success=True, message=f"Payment {payload.payment_id} already confirmed")
        return _already_processed(payload.payment_id, e.status)

    if not confirmed.plan_id:
        return HandlerResult(success=True, message=f"Payment {payload.payment_id} confirmed")

    # activation failures are swallowed by confirm_payment
    active = await subscription_service.get_active_subscription(payload.tenant_id)
    if (
        active is not None
        and active.plan_id == confirmed.plan_id
        and active.current_period_start == confirmed.confirmed_at
    ):
        return HandlerResult(
            success=True,
            message=f"Payment {payload.payment_id} confirmed and subscription activated",
        )
    logger.warning(f"WEBHOOK_PAYMENT_CONFIRMED_WITHOUT_SUBSCRIPTION payment_id={payload.payment_id}")
    return HandlerResult(
        success=True,
        message=f"Payment {payload.payment_id} confirmed; subscription activation failed",
    )


async def handle_payment_rejected(event: WebhookEvent, dispatcher=None) -> HandlerResult:
    payload: PaymentWebhookPayload = event.data
    payment = await _load_payment(payload)
    if payment is None:
        return HandlerResult(success=False, error=f"Payment {payload.payment_id} not found")

    if payment.status == PaymentStatus.REJECTED:
        return HandlerResult(success=True, message=f"Payment {payload.payment_id} already rejected")
    if payment.is_terminal:
        return _already_processed(payload.payment_id, payment.status.value)

    try:
        await payment_service.reject_payment(
            payload.tenant_id,
            payload.payment_id,
            payload.confirmed_by or WEBHOOK_ACTOR,
            payload.rejection_reason or DEFAULT_REJECTION_REASON,
            dispatcher=dispatcher,
        )
    except PaymentAlreadyProcessedError as e:
        return _already_processed(payload.payment_id, e.status)

    return HandlerResult(success=True, message=f"Payment {payload.payment_id} rejected")


async def handle_payment_expired(event: WebhookEvent) -> HandlerResult:
    payload: PaymentWebhookPayload = event.data
    payment = await _load_payment(payload)
    if payment is None:
        return HandlerResult(success=False, error=f"Payment {payload.payment_id} not found")

    if payment.is_terminal:
        return _already_processed(payload.payment_id, payment.status.value)

    try:
        await payment_service.expire_payment(payload.tenant_id, payload.payment_id)
    except PaymentAlreadyProcessedError as e:
        return _already_processed(payload.payment_id, e.status)

    return HandlerResult(success=True, message=f"Payment {payload.payment_id} marked as expired")


# ====================================================================================
# Subscription Events
# ====================================================================================

async def handle_subscription_created(event: WebhookEvent) -> HandlerResult:
    payload: SubscriptionWebhookPayload = event.data
    logger.info(
        f"WEBHOOK_SUBSCRIPTION_CREATED tenant_id={payload.tenant_id} "
        f"subscription_id={payload.subscription_id} plan_id={payload.plan_id}"
    )
    return HandlerResult(
        success=True,
        message=f"Subscription {payload.subscription_id} creation acknowledged",
    )


async def handle_subscription_canceled(event: WebhookEvent) -> HandlerResult:
    payload: SubscriptionWebhookPayload = event.data
    try:
        subscription = await subscription_service.get_subscription(payload.tenant_id, payload.subscription_id)
    except SubscriptionNotFoundError:
        return HandlerResult(success=False, error=f"Subscription {payload.subscription_id} not found")

    if subscription.status == SubscriptionStatus.CANCELED:
        return HandlerResult(
            success=True,
            message=f"Subscription {payload.subscription_id} already canceled",
        )

    await subscription_service.cancel_subscription(payload.tenant_id, payload.subscription_id)
    return HandlerResult(success=True, message=f"Subscription {payload.subscription_id} canceled")


async def handle_subscription_expired(event: WebhookEvent) -> HandlerResult:
    payload: SubscriptionWebhookPayload = event.data
    try:
        subscription = await subscription_service.get_subscription(payload.tenant_id, payload.subscription_id)
    except SubscriptionNotFoundError:
        return HandlerResult(success=False, error=f"Subscription {payload.subscription_id} not found")

    if subscription.status != SubscriptionStatus.ACTIVE:
        return HandlerResult(
            success=True,
            message=(
                f"Subscription {payload.subscription_id} already processed "
                f"(status: {subscription.status.value})"
            ),
        )

    await subscription_service.expire_subscription(payload.tenant_id, payload.subscription_id)
    return HandlerResult(success=True, message=f"Subscription {payload.subscription_id} marked as expired")


# ====================================================================================
# Registration
# ====================================================================================

def register_default_handlers(
    registry: WebhookRegistry,
    secret: Optional[str] = None,
    dispatcher=None,
) -> WebhookRegistry:
    """
    Register handlers for every known event type.

    Args:
        registry: Registry to populate
        secret: Shared secret; when set, every type requires a signature
        dispatcher: Optional NotificationDispatcher for payment decisions

    Returns:
        The same registry
    """
    registry.register(WebhookEventType.PAYMENT_CREATED, handle_payment_created, secret)
    registry.register(
        WebhookEventType.PAYMENT_CONFIRMED,
        partial(handle_payment_confirmed, dispatcher=dispatcher),
        secret,
    )
    registry.register(
        WebhookEventType.PAYMENT_REJECTED,
        partial(handle_payment_rejected, dispatcher=dispatcher),
        secret,
    )
    registry.register(WebhookEventType.PAYMENT_EXPIRED, handle_payment_expired, secret)
    registry.register(WebhookEventType.SUBSCRIPTION_CREATED, handle_subscription_created, secret)
    registry.register(WebhookEventType.SUBSCRIPTION_CANCELED, handle_subscription_canceled, secret)
    registry.register(WebhookEventType.SUBSCRIPTION_EXPIRED, handle_subscription_expired, secret)

    if not secret:
        logger.warning("WEBHOOK_SECRET_NOT_SET webhooks accepted without signature verification")
    return registry
