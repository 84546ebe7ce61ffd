"""
Payment Service Layer

Payment state machine for plan purchases. Administrative actions and the
webhook handlers call the same transition functions.

States: pending (initial) → confirmed | rejected | expired (all terminal).
No transition leaves a terminal state; can_transition() is the single source
of truth for legality.

POLICY:
- Missing payment → PaymentNotFoundError
- Non-pending payment on confirm/reject/expire/upload_proof →
  PaymentAlreadyProcessedError (record left unchanged)
- Amount must equal the plan price at creation → InvalidPaymentDataError
- Subscription activation after confirmation is best-effort: failures are
  logged and never roll back the confirmation
- Notifications are best-effort: failures are logged and never block
- Store errors (asyncpg) propagate untouched
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Union

import database
from app.core.structured_logger import log_event
from app.services.subscriptions import service as subscription_service
from app.services.subscriptions.models import SubscriptionPlan
from app.services.notifications.models import SendNotificationInput
from app.services.payments.models import Payment, PaymentInput, PaymentMethod, PaymentStatus
from app.services.payments.exceptions import (
    PaymentNotFoundError,
    PaymentAlreadyProcessedError,
    InvalidPaymentDataError,
    PaymentPlanNotFoundError,
    PaymentPlanInactiveError,
)

logger = logging.getLogger(__name__)


# ====================================================================================
# Transition Table
# ====================================================================================

ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.CONFIRMED,
        PaymentStatus.REJECTED,
        PaymentStatus.EXPIRED,
    }),
    PaymentStatus.CONFIRMED: frozenset(),
    PaymentStatus.REJECTED: frozenset(),
    PaymentStatus.EXPIRED: frozenset(),
}


def can_transition(from_status: Union[PaymentStatus, str], to_status: Union[PaymentStatus, str]) -> bool:
    return PaymentStatus(to_status) in ALLOWED_TRANSITIONS[PaymentStatus(from_status)]


# ====================================================================================
# Result Types
# ====================================================================================

@dataclass
class PaymentPage:
    """One page of a payment listing"""
    items: List[Payment]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ====================================================================================
# Queries
# ====================================================================================

async def get_payment(tenant_id: str, payment_id: str) -> Payment:
    """
    Raises:
        PaymentNotFoundError: If the tenant has no such payment
    """
    row = await database.get_payment(tenant_id, payment_id)
    if row is None:
        raise PaymentNotFoundError("Payment not found")
    return Payment.from_row(row)


async def list_payments(
    tenant_id: str,
    status: Optional[Union[PaymentStatus, str]] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> PaymentPage:
    """
    Page through the tenant's payments, newest first.

    Args:
        tenant_id: Tenant ID
        status: Optional status filter
        user_id: Optional payer filter
        page: 1-based page number
        limit: Page size (1..100)
    """
    page = max(1, int(page))
    limit = max(1, min(100, int(limit)))
    status_value = PaymentStatus(status).value if status is not None else None

    rows, total = await database.list_payments(
        tenant_id,
        status=status_value,
        user_id=user_id,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return PaymentPage(items=[Payment.from_row(r) for r in rows], total=total, page=page, limit=limit)


async def list_pending_payments(tenant_id: str, page: int = 1, limit: int = 20) -> PaymentPage:
    """Admin review queue"""
    return await list_payments(tenant_id, status=PaymentStatus.PENDING, page=page, limit=limit)


# ====================================================================================
# Creation
# ====================================================================================

def _validate_payment_input(data: PaymentInput) -> PaymentMethod:
    amount = data.amount
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidPaymentDataError("Amount must be a positive integer in minor units")
    if not isinstance(data.currency, str) or len(data.currency) != 3:
        raise InvalidPaymentDataError("Currency must be 3 characters")
    if not data.plan_id:
        raise InvalidPaymentDataError("Subscription plan is required")
    try:
        return PaymentMethod(data.method)
    except ValueError as e:
        raise InvalidPaymentDataError(f"Invalid payment method: {data.method}") from e


async def create_payment(tenant_id: str, user_id: str, data: PaymentInput) -> Payment:
    """
    Create a pending payment for a plan purchase.

    Args:
        tenant_id: Tenant ID
        user_id: Paying user
        data: Requested plan, amount (minor units), currency and method

    Returns:
        The new pending payment; metadata records planName and planInterval

    Raises:
        InvalidPaymentDataError: If input is malformed or amount != plan price
        PaymentPlanNotFoundError: If the plan does not exist
        PaymentPlanInactiveError: If the plan is deactivated
    """
    method = _validate_payment_input(data)

    plan_row = await database.get_plan(data.plan_id)
    if plan_row is None:
        raise PaymentPlanNotFoundError("Subscription plan not found")
    plan = SubscriptionPlan.from_row(plan_row)
    if not plan.is_active:
        raise PaymentPlanInactiveError("Subscription plan is not active")

    if data.amount != plan.price:
        raise InvalidPaymentDataError(
            f"Payment amount must match plan price: {plan.price} {plan.currency}"
        )

    metadata = dict(data.metadata or {})
    metadata.update({"planName": plan.name, "planInterval": plan.interval.value})

    now = _utcnow()
    row = await database.create_payment({
        "tenant_id": tenant_id,
        "user_id": user_id,
        "plan_id": plan.id,
        "amount": data.amount,
        "currency": data.currency.upper(),
        "status": PaymentStatus.PENDING.value,
        "method": method.value,
        "metadata": metadata,
        "created_at": now,
        "updated_at": now,
    })
    payment = Payment.from_row(row)
    logger.info(
        f"PAYMENT_CREATED tenant_id={tenant_id} payment_id={payment.id} "
        f"plan_id={plan.id} amount={payment.amount} currency={payment.currency}"
    )
    return payment


# ====================================================================================
# Transitions
# ====================================================================================

async def _transition(
    tenant_id: str,
    payment_id: str,
    target: PaymentStatus,
    fields: Dict[str, Any],
    now: datetime,
) -> Payment:
    payment = await get_payment(tenant_id, payment_id)
    if not can_transition(payment.status, target):
        raise PaymentAlreadyProcessedError(
            f"Payment has already been {payment.status.value}",
            status=payment.status.value,
        )

    updates = dict(fields)
    updates["status"] = target.value
    updates["updated_at"] = now
    row = await database.update_payment(
        tenant_id, payment_id, updates, expected_status=payment.status.value
    )
    if row is None:
        # Lost a race with a concurrent transition
        current = await get_payment(tenant_id, payment_id)
        raise PaymentAlreadyProcessedError(
            f"Payment has already been {current.status.value}",
            status=current.status.value,
        )

    updated = Payment.from_row(row)
    log_event(
        logger,
        component="payments",
        operation=f"payment_{target.value}",
        correlation_id=payment_id,
        tenant_id=tenant_id,
        outcome="success",
        message=f"PAYMENT_{target.value.upper()} tenant_id={tenant_id} payment_id={payment_id}",
    )
    return updated


async def confirm_payment(
    tenant_id: str,
    payment_id: str,
    actor_id: str,
    dispatcher=None,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Confirm a pending payment and activate the purchased subscription.

    Args:
        tenant_id: Tenant ID
        payment_id: Payment to confirm
        actor_id: Admin user id, gateway actor, or "webhook"
        dispatcher: Optional NotificationDispatcher for payment_confirmed
        now: Confirmation time (defaults to current UTC time)

    Returns:
        The confirmed payment

    Raises:
        PaymentNotFoundError: If payment does not exist
        PaymentAlreadyProcessedError: If payment is not pending
    """
    now = now or _utcnow()
    payment = await _transition(
        tenant_id,
        payment_id,
        PaymentStatus.CONFIRMED,
        {"confirmed_by": actor_id, "confirmed_at": now},
        now,
    )

    if payment.plan_id:
        await _activate_subscription_after_confirm(payment, now)

    await _notify(dispatcher, payment, "payment_confirmed")
    return payment


async def _activate_subscription_after_confirm(payment: Payment, now: datetime) -> None:
    """Confirmation is the source of truth; activation failure is logged, not raised."""
    try:
        await subscription_service.activate_subscription(payment.tenant_id, payment.plan_id, now=now)
    except Exception as e:
        log_event(
            logger,
            component="payments",
            operation="subscription_activate",
            correlation_id=payment.id,
            tenant_id=payment.tenant_id,
            outcome="failed",
            reason=getattr(e, "code", type(e).__name__),
            level="error",
            message=(
                f"SUBSCRIPTION_ACTIVATION_FAILED tenant_id={payment.tenant_id} "
                f"payment_id={payment.id} plan_id={payment.plan_id} error={e}"
            ),
        )


async def reject_payment(
    tenant_id: str,
    payment_id: str,
    actor_id: str,
    reason: str,
    dispatcher=None,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Reject a pending payment.

    Raises:
        InvalidPaymentDataError: If reason is empty
        PaymentNotFoundError: If payment does not exist
        PaymentAlreadyProcessedError: If payment is not pending
    """
    if not reason or not reason.strip():
        raise InvalidPaymentDataError("Rejection reason is required")
    now = now or _utcnow()
    payment = await _transition(
        tenant_id,
        payment_id,
        PaymentStatus.REJECTED,
        {"confirmed_by": actor_id, "confirmed_at": now, "rejection_reason": reason},
        now,
    )
    await _notify(dispatcher, payment, "payment_rejected")
    return payment


async def expire_payment(tenant_id: str, payment_id: str, now: Optional[datetime] = None) -> Payment:
    """
    Raises:
        PaymentNotFoundError: If payment does not exist
        PaymentAlreadyProcessedError: If payment is not pending
    """
    now = now or _utcnow()
    return await _transition(tenant_id, payment_id, PaymentStatus.EXPIRED, {}, now)


async def upload_proof(
    tenant_id: str,
    payment_id: str,
    file_id: str,
    now: Optional[datetime] = None,
) -> Payment:
    """
    Link a proof-of-payment file to a pending payment. Status is unchanged.

    Raises:
        InvalidPaymentDataError: If file_id is empty
        PaymentNotFoundError: If payment does not exist
        PaymentAlreadyProcessedError: If payment is not pending
    """
    if not file_id:
        raise InvalidPaymentDataError("Proof file id is required")
    now = now or _utcnow()

    payment = await get_payment(tenant_id, payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise PaymentAlreadyProcessedError(
            "Cannot upload proof for a processed payment",
            status=payment.status.value,
        )

    row = await database.update_payment(
        tenant_id,
        payment_id,
        {"proof_file_id": file_id, "updated_at": now},
        expected_status=PaymentStatus.PENDING.value,
    )
    if row is None:
        current = await get_payment(tenant_id, payment_id)
        raise PaymentAlreadyProcessedError(
            "Cannot upload proof for a processed payment",
            status=current.status.value,
        )
    logger.info(f"PAYMENT_PROOF_UPLOADED tenant_id={tenant_id} payment_id={payment_id}")
    return Payment.from_row(row)


# ====================================================================================
# Notifications
# ====================================================================================

def _notification_body(payment: Payment, notification_type: str) -> Dict[str, Optional[str]]:
    plan_name = payment.metadata.get("planName") or "your plan"
    amount = f"{payment.amount} {payment.currency}"
    if notification_type == "payment_confirmed":
        return {
            "subject": "Payment Confirmed",
            "body": f"Your payment of {amount} for {plan_name} has been confirmed.",
        }
    return {
        "subject": "Payment Rejected",
        "body": (
            f"Your payment of {amount} for {plan_name} was rejected.\n"
            f"Reason: {payment.rejection_reason}"
        ),
    }


async def _notify(dispatcher, payment: Payment, notification_type: str) -> None:
    """
    Announce a payment decision to the payer when a dispatcher and a
    recipient (metadata notifyRecipient / notifyChatId) are available.
    """
    if dispatcher is None:
        return
    recipient = payment.metadata.get("notifyRecipient")
    chat_id = payment.metadata.get("notifyChatId")
    if not recipient and not chat_id:
        logger.debug(f"PAYMENT_NOTIFY_SKIPPED payment_id={payment.id} reason=no_recipient")
        return

    content = _notification_body(payment, notification_type)
    metadata: Dict[str, Any] = {"paymentId": payment.id}
    if chat_id:
        metadata["telegramChatId"] = str(chat_id)

    try:
        result = await dispatcher.send_to_all_channels(SendNotificationInput(
            type=notification_type,
            recipient=str(recipient or chat_id),
            subject=content["subject"],
            body=content["body"],
            metadata=metadata,
        ))
    except Exception as e:
        logger.error(f"PAYMENT_NOTIFY_ERROR payment_id={payment.id} type={notification_type} error={e}")
        return

    if not result.success:
        logger.warning(
            f"PAYMENT_NOTIFY_FAILED payment_id={payment.id} type={notification_type} "
            f"code={result.error.code if result.error else None}"
        )
