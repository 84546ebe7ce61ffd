"""
Payment Service Domain Exceptions

All exceptions raised by the payment service layer.
"""

from app.core.exceptions import DomainError


class PaymentServiceError(DomainError):
    """Base exception for payment service errors"""
    code = "INTERNAL_ERROR"


class PaymentNotFoundError(PaymentServiceError):
    """Raised when the payment does not exist for the tenant"""
    code = "PAYMENT_NOT_FOUND"


class PaymentAlreadyProcessedError(PaymentServiceError):
    """Raised when the payment has left the pending state (idempotency guard)"""
    code = "PAYMENT_ALREADY_PROCESSED"

    def __init__(self, message: str = "", status: str = None):
        super().__init__(message)
        self.status = status


class InvalidPaymentDataError(PaymentServiceError):
    """Raised when payment input is malformed or the amount does not match the plan price"""
    code = "INVALID_PAYMENT_DATA"


class PaymentPlanNotFoundError(PaymentServiceError):
    """Raised when the payment references an unknown plan"""
    code = "PLAN_NOT_FOUND"


class PaymentPlanInactiveError(PaymentServiceError):
    """Raised when the payment references a deactivated plan"""
    code = "PLAN_INACTIVE"
