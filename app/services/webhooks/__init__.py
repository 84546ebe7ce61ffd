"""
Webhook Service Layer

Signed webhook ingestion: signature verification, event parsing, routing to
registered handlers, and the default payment / subscription handlers.
"""

from app.services.webhooks.signature import (
    sign_payload,
    verify_signature,
    SignatureVerification,
    SIGNATURE_PREFIX,
)

from app.services.webhooks.parser import parse_event

from app.services.webhooks.router import (
    WebhookRegistry,
    WebhookRouter,
    HandlerResult,
    WebhookError,
    WebhookResult,
    create_webhook_event,
)

from app.services.webhooks.handlers import register_default_handlers

from app.services.webhooks.models import (
    WebhookEvent,
    WebhookEventType,
    PaymentWebhookPayload,
    SubscriptionWebhookPayload,
)

from app.services.webhooks.exceptions import (
    WebhookServiceError,
    InvalidWebhookPayloadError,
    InvalidWebhookSignatureError,
    WebhookHandlerNotFoundError,
    WebhookHandlerError,
)

__all__ = [
    "sign_payload",
    "verify_signature",
    "SignatureVerification",
    "SIGNATURE_PREFIX",
    "parse_event",
    "WebhookRegistry",
    "WebhookRouter",
    "HandlerResult",
    "WebhookError",
    "WebhookResult",
    "create_webhook_event",
    "register_default_handlers",
    "WebhookEvent",
    "WebhookEventType",
    "PaymentWebhookPayload",
    "SubscriptionWebhookPayload",
    "WebhookServiceError",
    "InvalidWebhookPayloadError",
    "InvalidWebhookSignatureError",
    "WebhookHandlerNotFoundError",
    "WebhookHandlerError",
]
