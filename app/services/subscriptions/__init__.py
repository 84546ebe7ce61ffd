"""
Subscription Service Layer

This package provides the subscription lifecycle, feature gating and plan catalogue.
"""

from app.services.subscriptions.service import (
    calculate_period_end,
    is_subscription_active,
    activate_subscription,
    renew_subscription,
    cancel_subscription,
    expire_subscription,
    sweep_expired_subscriptions,
    get_subscription,
    get_active_subscription,
    list_subscriptions,
    check_feature_access,
    get_feature_limit,
    create_plan,
    update_plan,
    set_plan_active,
    get_plan,
    list_plans,
)

from app.services.subscriptions.models import (
    PlanFeature,
    PlanInterval,
    Subscription,
    SubscriptionPlan,
    SubscriptionStatus,
)

from app.services.subscriptions.exceptions import (
    SubscriptionServiceError,
    SubscriptionNotFoundError,
    PlanNotFoundError,
    PlanInactiveError,
    PlanNameExistsError,
    InvalidPlanDataError,
)

__all__ = [
    "calculate_period_end",
    "is_subscription_active",
    "activate_subscription",
    "renew_subscription",
    "cancel_subscription",
    "expire_subscription",
    "sweep_expired_subscriptions",
    "get_subscription",
    "get_active_subscription",
    "list_subscriptions",
    "check_feature_access",
    "get_feature_limit",
    "create_plan",
    "update_plan",
    "set_plan_active",
    "get_plan",
    "list_plans",
    "PlanFeature",
    "PlanInterval",
    "Subscription",
    "SubscriptionPlan",
    "SubscriptionStatus",
    "SubscriptionServiceError",
    "SubscriptionNotFoundError",
    "PlanNotFoundError",
    "PlanInactiveError",
    "PlanNameExistsError",
    "InvalidPlanDataError",
]
