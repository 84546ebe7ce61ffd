"""
Webhook Domain Exceptions

The parser raises these; WebhookRouter.process() converts every failure into
a WebhookResult carrying the same code, so nothing escapes the router.
"""

from app.core.exceptions import DomainError


class WebhookServiceError(DomainError):
    """Base exception for webhook processing errors"""
    code = "INTERNAL_ERROR"


class InvalidWebhookPayloadError(WebhookServiceError):
    """Raised when the body is not JSON or does not match the event schema"""
    code = "INVALID_PAYLOAD"


class InvalidWebhookSignatureError(WebhookServiceError):
    """Raised when a required signature is missing or does not verify"""
    code = "INVALID_SIGNATURE"


class WebhookHandlerNotFoundError(WebhookServiceError):
    """Raised when no handler is registered for the event type"""
    code = "HANDLER_NOT_FOUND"


class WebhookHandlerError(WebhookServiceError):
    """Raised when a handler fails or reports failure"""
    code = "HANDLER_ERROR"
