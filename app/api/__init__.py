"""
API module: HTTP endpoints for webhooks and health.
"""
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

import database
from app.api.webhooks import build_webhook_routes
from app.services.notifications import NotificationDispatcher
from app.services.webhooks import WebhookRouter


def create_app(webhook_router: WebhookRouter, dispatcher: Optional[NotificationDispatcher] = None) -> FastAPI:
    app = FastAPI(title="billing-core")
    app.include_router(build_webhook_routes(webhook_router))

    @app.get("/health")
    async def health():
        # Channel state is informational; only the database degrades the service
        payload = {"status": "ok", "database": "ready" if database.DB_READY else "degraded"}
        if dispatcher is not None:
            payload["channels"] = {
                name: "ok" if healthy else "unavailable"
                for name, healthy in (await dispatcher.check_channels()).items()
            }
        return JSONResponse(payload)

    return app
