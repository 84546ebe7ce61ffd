"""
Payment Service Layer

This package provides the payment state machine: creation, confirmation,
rejection, expiry and proof upload.
"""

from app.services.payments.service import (
    can_transition,
    create_payment,
    confirm_payment,
    reject_payment,
    expire_payment,
    upload_proof,
    get_payment,
    list_payments,
    list_pending_payments,
    PaymentPage,
)

from app.services.payments.models import (
    Payment,
    PaymentInput,
    PaymentMethod,
    PaymentStatus,
)

from app.services.payments.exceptions import (
    PaymentServiceError,
    PaymentNotFoundError,
    PaymentAlreadyProcessedError,
    InvalidPaymentDataError,
    PaymentPlanNotFoundError,
    PaymentPlanInactiveError,
)

__all__ = [
    "can_transition",
    "create_payment",
    "confirm_payment",
    "reject_payment",
    "expire_payment",
    "upload_proof",
    "get_payment",
    "list_payments",
    "list_pending_payments",
    "PaymentPage",
    "Payment",
    "PaymentInput",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentServiceError",
    "PaymentNotFoundError",
    "PaymentAlreadyProcessedError",
    "InvalidPaymentDataError",
    "PaymentPlanNotFoundError",
    "PaymentPlanInactiveError",
]
