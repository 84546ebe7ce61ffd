"""
Webhook Router

WebhookRegistry holds the event type → (handler, secret) association. It is
built once at startup and handed to WebhookRouter; there is no module-level
registry.

WebhookRouter.process() pipeline:
1. parse the body (INVALID_PAYLOAD)
2. if a secret is registered for the event type, require and verify the
   signature header (INVALID_SIGNATURE); without a secret the verifier is
   never called
3. look up the handler (HANDLER_NOT_FOUND)
4. run the handler; any exception or failed HandlerResult becomes
   HANDLER_ERROR

process() never raises. Events are not deduplicated by id: handlers must be
idempotent under redelivery.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Callable, Awaitable, Union

from app.core.structured_logger import bind_delivery_id, log_event
from app.services.webhooks.exceptions import (
    InvalidWebhookSignatureError,
    WebhookHandlerError,
    WebhookHandlerNotFoundError,
    WebhookServiceError,
)
from app.services.webhooks.models import WebhookEvent, WebhookEventType
from app.services.webhooks.parser import parse_event
from app.services.webhooks.signature import verify_signature

logger = logging.getLogger(__name__)


# ====================================================================================
# Result Types
# ====================================================================================

@dataclass
class HandlerResult:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.message is not None:
            data["message"] = self.message
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class WebhookError:
    code: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


@dataclass
class WebhookResult:
    success: bool
    data: Optional[HandlerResult] = None
    error: Optional[WebhookError] = None


WebhookHandler = Callable[[WebhookEvent], Awaitable[HandlerResult]]


# ====================================================================================
# Registry
# ====================================================================================

class WebhookRegistry:
    """Event type → handler and optional shared secret."""

    def __init__(self):
        self._handlers: Dict[WebhookEventType, WebhookHandler] = {}
        self._secrets: Dict[WebhookEventType, str] = {}

    def register(
        self,
        event_type: Union[WebhookEventType, str],
        handler: WebhookHandler,
        secret: Optional[str] = None,
    ) -> None:
        """
        Register the handler for an event type, replacing any previous one.
        Registering without a secret also drops a previously set secret.
        """
        event_type = WebhookEventType(event_type)
        self._handlers[event_type] = handler
        if secret:
            self._secrets[event_type] = secret
        else:
            self._secrets.pop(event_type, None)
        logger.debug(
            f"WEBHOOK_HANDLER_REGISTERED type={event_type.value} signed={bool(secret)}"
        )

    def get_handler(self, event_type: Union[WebhookEventType, str]) -> Optional[WebhookHandler]:
        return self._handlers.get(WebhookEventType(event_type))

    def get_secret(self, event_type: Union[WebhookEventType, str]) -> Optional[str]:
        return self._secrets.get(WebhookEventType(event_type))

    def registered_types(self) -> List[WebhookEventType]:
        return list(self._handlers.keys())

    def has_handler(self, event_type: Union[WebhookEventType, str]) -> bool:
        return WebhookEventType(event_type) in self._handlers

    def requires_signature(self, event_type: Union[WebhookEventType, str]) -> bool:
        return WebhookEventType(event_type) in self._secrets


# ====================================================================================
# Router
# ====================================================================================

class WebhookRouter:
    def __init__(self, registry: WebhookRegistry):
        self.registry = registry

    async def process(
        self,
        raw_body: Union[bytes, str],
        signature_header: Optional[str] = None,
    ) -> WebhookResult:
        """
        Parse, authenticate and dispatch one webhook delivery.

        Args:
            raw_body: Request body exactly as received (signature covers these bytes)
            signature_header: Signature header value, if any

        Returns:
            WebhookResult with the handler's HandlerResult, or an error whose
            code is INVALID_PAYLOAD, INVALID_SIGNATURE, HANDLER_NOT_FOUND or
            HANDLER_ERROR
        """
        start = time.monotonic()
        event: Optional[WebhookEvent] = None
        try:
            event = parse_event(raw_body)
            self._authenticate(event, raw_body, signature_header)
            handler = self.registry.get_handler(event.type)
            if handler is None:
                raise WebhookHandlerNotFoundError(
                    f"No handler registered for webhook type: {event.type.value}"
                )
            with bind_delivery_id(event.id):
                result = await self._run_handler(handler, event)
        except WebhookServiceError as e:
            self._log(event, "failed", start, reason=e.code)
            return WebhookResult(success=False, error=WebhookError(code=e.code, message=e.message))

        self._log(event, "success", start)
        return WebhookResult(success=True, data=result)

    def _authenticate(
        self,
        event: WebhookEvent,
        raw_body: Union[bytes, str],
        signature_header: Optional[str],
    ) -> None:
        secret = self.registry.get_secret(event.type)
        if not secret:
            return
        if not signature_header:
            raise InvalidWebhookSignatureError("Webhook signature is required but not provided")
        verification = verify_signature(raw_body, signature_header, secret)
        if not verification.valid:
            raise InvalidWebhookSignatureError(verification.reason or "Invalid webhook signature")

    async def _run_handler(self, handler: WebhookHandler, event: WebhookEvent) -> HandlerResult:
        try:
            result = await handler(event)
        except Exception as e:
            logger.exception(
                f"WEBHOOK_HANDLER_EXCEPTION event_id={event.id} type={event.type.value}"
            )
            raise WebhookHandlerError(str(e) or "Handler execution failed") from e

        if result is None:
            return HandlerResult(success=True)
        if not result.success:
            raise WebhookHandlerError(result.error or result.message or "Handler execution failed")
        return result

    def _log(self, event: Optional[WebhookEvent], outcome: str, start: float, reason: Optional[str] = None) -> None:
        event_type = event.type.value if event is not None else "unknown"
        log_event(
            logger,
            component="webhook",
            operation="webhook_process",
            correlation_id=event.id if event is not None else None,
            outcome=outcome,
            duration_ms=int((time.monotonic() - start) * 1000),
            reason=reason,
            level="info" if outcome == "success" else "warning",
            message=f"WEBHOOK_PROCESSED type={event_type} outcome={outcome}"
            + (f" code={reason}" if reason else ""),
        )


def create_webhook_event(event_type: Union[WebhookEventType, str], data: Any) -> WebhookEvent:
    """Build an envelope with a fresh id and the current UTC timestamp."""
    return WebhookEvent(
        id=str(uuid.uuid4()),
        type=WebhookEventType(event_type),
        timestamp=datetime.now(timezone.utc),
        data=data,
    )
