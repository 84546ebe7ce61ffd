"""
Webhook ingress.

POST /webhooks           generic endpoint (X-Webhook-Signature, X-Hub-Signature-256, X-Signature)
POST /webhooks/payments  payment gateway endpoint (X-Webhook-Signature, X-Hub-Signature-256)
GET  /webhooks/types     registered event types and signature requirements

The raw body is handed to WebhookRouter unchanged; the signature covers
those exact bytes. Router error codes map to HTTP statuses via
ERROR_STATUS_CODES.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from app.services.webhooks import WebhookResult, WebhookRouter

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "INVALID_SIGNATURE": 401,
    "INVALID_PAYLOAD": 400,
    "HANDLER_NOT_FOUND": 404,
    "HANDLER_ERROR": 500,
    "INTERNAL_ERROR": 500,
}

SIGNATURE_HEADER = "X-Webhook-Signature"
SIGNATURE_FORMAT = "sha256=<hex-encoded-hmac>"


def _to_response(result: WebhookResult) -> JSONResponse:
    if not result.success:
        status_code = ERROR_STATUS_CODES.get(result.error.code, 500)
        return JSONResponse(
            {"success": False, "error": result.error.to_dict()},
            status_code=status_code,
        )
    data = result.data.to_dict() if result.data is not None else None
    return JSONResponse({"success": True, "data": data})


def build_webhook_routes(webhook_router: WebhookRouter) -> APIRouter:
    router = APIRouter(prefix="/webhooks")

    @router.post("")
    async def receive_webhook(
        request: Request,
        x_webhook_signature: Optional[str] = Header(default=None),
        x_hub_signature_256: Optional[str] = Header(default=None),
        x_signature: Optional[str] = Header(default=None),
    ):
        body = await request.body()
        signature = x_webhook_signature or x_hub_signature_256 or x_signature
        result = await webhook_router.process(body, signature)
        return _to_response(result)

    @router.post("/payments")
    async def receive_payment_webhook(
        request: Request,
        x_webhook_signature: Optional[str] = Header(default=None),
        x_hub_signature_256: Optional[str] = Header(default=None),
    ):
        body = await request.body()
        signature = x_webhook_signature or x_hub_signature_256
        result = await webhook_router.process(body, signature)
        if not result.success:
            logger.error(
                "PAYMENT_WEBHOOK_FAILED code=%s message=%s ip=%s",
                result.error.code,
                result.error.message,
                request.client.host if request.client else "unknown",
            )
        return _to_response(result)

    @router.get("/types")
    async def list_webhook_types():
        registry = webhook_router.registry
        types = [
            {"type": event_type.value, "requiresSignature": registry.requires_signature(event_type)}
            for event_type in registry.registered_types()
        ]
        return JSONResponse({
            "success": True,
            "data": {
                "types": types,
                "signatureHeader": SIGNATURE_HEADER,
                "signatureFormat": SIGNATURE_FORMAT,
            },
        })

    return router
