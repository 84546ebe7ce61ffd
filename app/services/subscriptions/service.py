"""
Subscription Service Layer

Subscription lifecycle (activate, renew, cancel, expire, sweep), live access
checks, feature gating and plan catalogue management.

All functions are pure business logic over the database row functions; they
raise SubscriptionServiceError subclasses on business failures and let store
errors propagate untouched.

Invariant: at most one active subscription per tenant. Activation cancels the
current active subscription BEFORE creating the new one, so a failure between
the two steps leaves the tenant with zero active subscriptions, never two.
Two concurrent activations for one tenant can still race on this
cancel-then-create sequence; closing that needs a conditional write in the
store.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Union

import database
from app.core.structured_logger import log_event
from app.services.subscriptions.models import (
    PlanFeature,
    PlanInterval,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)
from app.services.subscriptions.exceptions import (
    SubscriptionNotFoundError,
    PlanNotFoundError,
    PlanInactiveError,
    PlanNameExistsError,
    InvalidPlanDataError,
)

logger = logging.getLogger(__name__)

# Lifetime plans never lapse in practice; the period end is pushed this far out.
LIFETIME_YEARS = 100


# ====================================================================================
# Period Arithmetic
# ====================================================================================

def _add_months(start: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_period_end(start: datetime, interval: Union[PlanInterval, str]) -> datetime:
    """
    Compute the end of a billing period.

    Calendar arithmetic, not fixed durations: monthly adds one calendar month,
    yearly one calendar year, lifetime 100 years. The day is clamped to the
    target month's length (2024-01-31 monthly → 2024-02-29; 2024-02-29 yearly
    → 2025-02-28). Time of day and tzinfo are preserved.

    Raises:
        ValueError: If interval is not a known billing interval
    """
    interval = PlanInterval(interval)
    if interval == PlanInterval.MONTHLY:
        return _add_months(start, 1)
    if interval == PlanInterval.YEARLY:
        return _add_months(start, 12)
    return _add_months(start, 12 * LIFETIME_YEARS)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_subscription_active(subscription: Subscription, now: Optional[datetime] = None) -> bool:
    """
    Live access check.

    Stored status lags reality until the next expiry sweep, so this compares
    the clock against the period end instead of trusting status alone.
    Canceled and expired subscriptions never grant access.
    """
    now = now or _utcnow()
    if subscription.status in (SubscriptionStatus.CANCELED, SubscriptionStatus.EXPIRED):
        return False
    return now < subscription.current_period_end


# ====================================================================================
# Plan Catalogue
# ====================================================================================

async def get_plan(plan_id: str) -> SubscriptionPlan:
    """
    Raises:
        PlanNotFoundError: If no such plan exists
    """
    row = await database.get_plan(plan_id)
    if row is None:
        raise PlanNotFoundError("Subscription plan not found")
    return SubscriptionPlan.from_row(row)


async def list_plans(active_only: bool = False) -> List[SubscriptionPlan]:
    rows = await database.list_plans(active_only=active_only)
    return [SubscriptionPlan.from_row(row) for row in rows]


def _validate_plan_fields(fields: Dict[str, Any]) -> None:
    if "name" in fields and not str(fields["name"] or "").strip():
        raise InvalidPlanDataError("Plan name must not be empty")
    if "price" in fields:
        price = fields["price"]
        if isinstance(price, bool) or not isinstance(price, int):
            raise InvalidPlanDataError("Price must be an integer amount in minor units")
        if price < 0:
            raise InvalidPlanDataError("Price must be non-negative")
    if "currency" in fields:
        currency = fields["currency"]
        if not isinstance(currency, str) or len(currency) != 3:
            raise InvalidPlanDataError("Currency must be a 3-letter code")
    if "interval" in fields:
        try:
            PlanInterval(fields["interval"])
        except ValueError as e:
            raise InvalidPlanDataError(f"Invalid billing interval: {fields['interval']}") from e
    if "limits" in fields:
        for key, value in (fields["limits"] or {}).items():
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidPlanDataError(f"Limit {key} must be an integer")


def _plan_row_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(fields)
    if "interval" in row:
        row["interval"] = PlanInterval(row["interval"]).value
    if "currency" in row:
        row["currency"] = row["currency"].upper()
    if "features" in row:
        row["features"] = [PlanFeature.from_value(f).to_dict() for f in (row["features"] or [])]
    return row


async def create_plan(
    name: str,
    price: int,
    currency: str,
    interval: Union[PlanInterval, str],
    description: str = "",
    features: Optional[List[Any]] = None,
    limits: Optional[Dict[str, int]] = None,
) -> SubscriptionPlan:
    """
    Create a plan. New plans are active.

    Raises:
        InvalidPlanDataError: If price is negative or a field is malformed
        PlanNameExistsError: If another plan already uses the name
    """
    fields = {
        "name": name,
        "description": description,
        "price": price,
        "currency": currency,
        "interval": interval,
        "features": features or [],
        "limits": limits or {},
        "is_active": True,
    }
    _validate_plan_fields(fields)

    if await database.get_plan_by_name(name) is not None:
        raise PlanNameExistsError("A plan with this name already exists")

    row = await database.create_plan(_plan_row_fields(fields))
    plan = SubscriptionPlan.from_row(row)
    logger.info(f"PLAN_CREATED plan_id={plan.id} interval={plan.interval.value} price={plan.price}")
    return plan


async def update_plan(plan_id: str, **fields) -> SubscriptionPlan:
    """
    Update plan fields (name, description, price, currency, interval,
    features, limits, is_active).

    Raises:
        PlanNotFoundError, PlanNameExistsError, InvalidPlanDataError
    """
    allowed = {"name", "description", "price", "currency", "interval", "features", "limits", "is_active"}
    unknown = set(fields) - allowed
    if unknown:
        raise InvalidPlanDataError(f"Unknown plan fields: {', '.join(sorted(unknown))}")

    existing = await get_plan(plan_id)
    _validate_plan_fields(fields)

    new_name = fields.get("name")
    if new_name and new_name != existing.name:
        if await database.get_plan_by_name(new_name) is not None:
            raise PlanNameExistsError("A plan with this name already exists")

    row = await database.update_plan(plan_id, _plan_row_fields(fields))
    if row is None:
        raise PlanNotFoundError("Subscription plan not found")
    return SubscriptionPlan.from_row(row)


async def set_plan_active(plan_id: str, is_active: bool) -> SubscriptionPlan:
    """Activate or deactivate a plan. Existing subscriptions are untouched."""
    await get_plan(plan_id)
    row = await database.update_plan(plan_id, {"is_active": is_active})
    if row is None:
        raise PlanNotFoundError("Subscription plan not found")
    logger.info(f"PLAN_ACTIVE_CHANGED plan_id={plan_id} is_active={is_active}")
    return SubscriptionPlan.from_row(row)


async def _get_active_plan(plan_id: str) -> SubscriptionPlan:
    plan = await get_plan(plan_id)
    if not plan.is_active:
        raise PlanInactiveError("Subscription plan is not active")
    return plan


# ====================================================================================
# Subscription Lifecycle
# ====================================================================================

async def get_subscription(tenant_id: str, subscription_id: str) -> Subscription:
    """
    Raises:
        SubscriptionNotFoundError: If the tenant has no such subscription
    """
    row = await database.get_subscription(tenant_id, subscription_id)
    if row is None:
        raise SubscriptionNotFoundError("Subscription not found")
    return Subscription.from_row(row)


async def get_active_subscription(tenant_id: str) -> Optional[Subscription]:
    """Stored-status lookup; may return a lapsed subscription until the next sweep."""
    row = await database.get_active_subscription(tenant_id)
    return Subscription.from_row(row) if row else None


async def list_subscriptions(tenant_id: str) -> List[Subscription]:
    rows = await database.list_subscriptions(tenant_id)
    return [Subscription.from_row(row) for row in rows]


async def activate_subscription(
    tenant_id: str,
    plan_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Start a new active subscription for the tenant on the given plan.

    The tenant's current active subscription (if any) is canceled first.

    Args:
        tenant_id: Tenant ID
        plan_id: Plan to subscribe to
        now: Period start (defaults to current UTC time)

    Returns:
        The new active subscription

    Raises:
        PlanNotFoundError: If plan does not exist
        PlanInactiveError: If plan is deactivated
    """
    now = now or _utcnow()
    plan = await _get_active_plan(plan_id)

    current = await database.get_active_subscription(tenant_id)
    if current is not None:
        await database.update_subscription(
            tenant_id,
            str(current["id"]),
            {"status": SubscriptionStatus.CANCELED.value, "canceled_at": now, "updated_at": now},
        )
        logger.info(
            f"SUBSCRIPTION_SUPERSEDED tenant_id={tenant_id} subscription_id={current['id']}"
        )

    row = await database.create_subscription({
        "tenant_id": tenant_id,
        "plan_id": plan.id,
        "status": SubscriptionStatus.ACTIVE.value,
        "current_period_start": now,
        "current_period_end": calculate_period_end(now, plan.interval),
        "created_at": now,
        "updated_at": now,
    })
    subscription = Subscription.from_row(row)

    log_event(
        logger,
        component="subscriptions",
        operation="subscription_activate",
        correlation_id=subscription.id,
        tenant_id=tenant_id,
        outcome="success",
        message=(
            f"SUBSCRIPTION_ACTIVATED tenant_id={tenant_id} plan_id={plan.id} "
            f"period_end={subscription.current_period_end.isoformat()}"
        ),
    )
    return subscription


async def renew_subscription(
    tenant_id: str,
    subscription_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Start a fresh billing period from now on the subscription's plan.

    Any other active subscription of the tenant is canceled first.

    Raises:
        SubscriptionNotFoundError, PlanNotFoundError, PlanInactiveError
    """
    now = now or _utcnow()
    subscription = await get_subscription(tenant_id, subscription_id)
    plan = await get_plan(subscription.plan_id)
    if not plan.is_active:
        raise PlanInactiveError("Subscription plan is no longer active")

    current = await database.get_active_subscription(tenant_id)
    if current is not None and str(current["id"]) != subscription_id:
        await database.update_subscription(
            tenant_id,
            str(current["id"]),
            {"status": SubscriptionStatus.CANCELED.value, "canceled_at": now, "updated_at": now},
        )
        logger.info(
            f"SUBSCRIPTION_SUPERSEDED tenant_id={tenant_id} subscription_id={current['id']} "
            f"renewed_subscription_id={subscription_id}"
        )

    row = await database.update_subscription(tenant_id, subscription_id, {
        "status": SubscriptionStatus.ACTIVE.value,
        "current_period_start": now,
        "current_period_end": calculate_period_end(now, plan.interval),
        "canceled_at": None,
        "updated_at": now,
    })
    if row is None:
        raise SubscriptionNotFoundError("Subscription not found")

    renewed = Subscription.from_row(row)
    logger.info(
        f"SUBSCRIPTION_RENEWED tenant_id={tenant_id} subscription_id={subscription_id} "
        f"period_end={renewed.current_period_end.isoformat()}"
    )
    return renewed


async def cancel_subscription(
    tenant_id: str,
    subscription_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Raises:
        SubscriptionNotFoundError: If the tenant has no such subscription
    """
    now = now or _utcnow()
    await get_subscription(tenant_id, subscription_id)
    row = await database.update_subscription(tenant_id, subscription_id, {
        "status": SubscriptionStatus.CANCELED.value,
        "canceled_at": now,
        "updated_at": now,
    })
    if row is None:
        raise SubscriptionNotFoundError("Subscription not found")
    logger.info(f"SUBSCRIPTION_CANCELED tenant_id={tenant_id} subscription_id={subscription_id}")
    return Subscription.from_row(row)


async def expire_subscription(
    tenant_id: str,
    subscription_id: str,
    now: Optional[datetime] = None,
) -> Subscription:
    """
    Mark one subscription expired. Already expired subscriptions are returned as-is.

    Raises:
        SubscriptionNotFoundError: If the tenant has no such subscription
    """
    now = now or _utcnow()
    subscription = await get_subscription(tenant_id, subscription_id)
    if subscription.status == SubscriptionStatus.EXPIRED:
        return subscription
    row = await database.update_subscription(tenant_id, subscription_id, {
        "status": SubscriptionStatus.EXPIRED.value,
        "updated_at": now,
    })
    if row is None:
        raise SubscriptionNotFoundError("Subscription not found")
    logger.info(f"SUBSCRIPTION_EXPIRED tenant_id={tenant_id} subscription_id={subscription_id}")
    return Subscription.from_row(row)


async def sweep_expired_subscriptions(tenant_id: str, now: Optional[datetime] = None) -> int:
    """
    Mark every active subscription whose period ended before now as expired.

    Batch operation, run periodically; reads never trigger it.

    Returns:
        Number of subscriptions marked expired
    """
    now = now or _utcnow()
    rows = await database.list_lapsed_active_subscriptions(tenant_id, now)

    expired_count = 0
    for row in rows:
        updated = await database.update_subscription(
            tenant_id,
            str(row["id"]),
            {"status": SubscriptionStatus.EXPIRED.value, "updated_at": now},
        )
        if updated is not None:
            expired_count += 1

    if expired_count:
        log_event(
            logger,
            component="subscriptions",
            operation="subscription_sweep",
            tenant_id=tenant_id,
            outcome="success",
            message=f"SUBSCRIPTIONS_SWEPT tenant_id={tenant_id} expired={expired_count}",
        )
    return expired_count


# ====================================================================================
# Feature Gating
# ====================================================================================

async def _live_plan_for_tenant(tenant_id: str, now: Optional[datetime]) -> Optional[SubscriptionPlan]:
    subscription = await get_active_subscription(tenant_id)
    if subscription is None or not is_subscription_active(subscription, now):
        return None
    row = await database.get_plan(subscription.plan_id)
    if row is None:
        return None
    plan = SubscriptionPlan.from_row(row)
    return plan if plan.is_active else None


async def check_feature_access(tenant_id: str, feature_key: str, now: Optional[datetime] = None) -> bool:
    """
    True if the tenant's live active subscription is on an active plan that
    includes the feature.
    """
    plan = await _live_plan_for_tenant(tenant_id, now)
    return plan is not None and plan.has_feature(feature_key)


async def get_feature_limit(tenant_id: str, limit_key: str, now: Optional[datetime] = None) -> int:
    """Plan limit value, or 0 when the tenant has no live access."""
    plan = await _live_plan_for_tenant(tenant_id, now)
    if plan is None:
        return 0
    return int(plan.limits.get(limit_key, 0))
