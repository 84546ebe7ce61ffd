"""
Subscription service domain exceptions.
"""

from app.core.exceptions import DomainError


class SubscriptionServiceError(DomainError):
    """Base exception for subscription service errors"""
    code = "INTERNAL_ERROR"


class SubscriptionNotFoundError(SubscriptionServiceError):
    """Raised when the subscription does not exist for the tenant"""
    code = "SUBSCRIPTION_NOT_FOUND"


class PlanNotFoundError(SubscriptionServiceError):
    """Raised when the subscription plan does not exist"""
    code = "PLAN_NOT_FOUND"


class PlanInactiveError(SubscriptionServiceError):
    """Raised when the subscription plan is deactivated"""
    code = "PLAN_INACTIVE"


class PlanNameExistsError(SubscriptionServiceError):
    """Raised when another plan already uses the name"""
    code = "PLAN_NAME_EXISTS"


class InvalidPlanDataError(SubscriptionServiceError):
    """Raised when plan fields fail validation"""
    code = "INVALID_PLAN_DATA"
