import asyncio
import logging
import os

import config

# Configure logging FIRST (before any other imports that may log)
# Routes INFO/WARNING → stdout, ERROR/CRITICAL → stderr for correct container classification
from app.core.logging_config import setup_logging
setup_logging(config.LOG_LEVEL)

import uvicorn

import database
from app.api import create_app
from app.core.structured_logger import log_event
from app.services.notifications import build_dispatcher
from app.services.webhooks import WebhookRegistry, WebhookRouter, register_default_handlers
from app.workers.expiry_sweep import expiry_sweep_task

# ====================================================================================
# LOGGING CONTRACT
# ====================================================================================
# Standard log fields (see app.core.structured_logger):
# - component        (webhook / payments / subscriptions / notifications / worker)
# - operation        (what is happening)
# - correlation_id   (webhook event id, payment id, iteration id)
# - outcome          (success | skipped | failed)
# - duration_ms      (when applicable)
# - reason           (short, non-PII explanation)
#
# SECURITY:
# - DO NOT log secrets, signatures or full payloads
# ====================================================================================

logger = logging.getLogger(__name__)

DB_RETRY_INTERVAL_SECONDS = 30


async def retry_db_init(background_tasks: list) -> None:
    """
    Retry database initialization every 30 seconds while DB_READY is False.
    Starts the expiry sweep once the database becomes available.
    """
    while not database.DB_READY:
        try:
            await asyncio.sleep(DB_RETRY_INTERVAL_SECONDS)
            logger.info("Retrying database initialization...")
            if await database.init_db():
                logger.info("DATABASE RECOVERY SUCCESSFUL - RESUMING FULL FUNCTIONALITY")
                background_tasks.append(asyncio.create_task(expiry_sweep_task()))
                logger.info("Expiry sweep task started (recovered)")
                break
            logger.warning("Database initialization retry failed, will retry later")
        except asyncio.CancelledError:
            logger.info("DB retry task cancelled")
            break
        except Exception as e:
            logger.warning(f"Database initialization retry error: {type(e).__name__}: {e}")


async def main():
    config.validate_required_config()
    logger.info(f"Starting billing core in {config.APP_ENV.upper()} environment")

    # ====================================================================================
    # SAFE STARTUP GUARD: the HTTP ingress always starts, even if the database is
    # unavailable. Webhooks fail with HANDLER_ERROR until DB_READY.
    # ====================================================================================
    try:
        if await database.init_db():
            logger.info("Database initialized")
        else:
            logger.error("DB INIT FAILED - RUNNING IN DEGRADED MODE")
    except Exception as e:
        logger.exception("DB INIT FAILED - RUNNING IN DEGRADED MODE")
        logger.error(f"Database initialization error: {type(e).__name__}: {e}")
        database.DB_READY = False

    dispatcher = build_dispatcher()
    enabled = [
        channel.value
        for channel in (dispatcher.get_enabled_channels("payment_confirmed") or [])
    ]
    logger.info(f"NOTIFICATION_CHANNELS_ENABLED channels={enabled or 'none'}")

    registry = register_default_handlers(
        WebhookRegistry(),
        secret=config.WEBHOOK_SECRET or None,
        dispatcher=dispatcher,
    )
    app = create_app(WebhookRouter(registry), dispatcher=dispatcher)

    background_tasks = []
    if database.DB_READY:
        background_tasks.append(asyncio.create_task(expiry_sweep_task()))
        logger.info("Expiry sweep task started")
    else:
        logger.warning("Expiry sweep task skipped (DB not ready)")
        background_tasks.append(asyncio.create_task(retry_db_init(background_tasks)))

    host = os.getenv("HTTP_HOST", "0.0.0.0")
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=host,
        port=config.HTTP_PORT,
        log_config=None,
        access_log=False,
    ))
    logger.info(f"HTTP server starting on http://{host}:{config.HTTP_PORT}")

    try:
        await server.serve()
    finally:
        log_event(logger, component="shutdown", operation="shutdown_start", outcome="success")

        for task in background_tasks:
            if task and not task.done():
                task.cancel()
        for task in background_tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Error during shutdown of task {task.get_name()}: {e}")

        await dispatcher.close()

        try:
            await database.close_pool()
        except Exception as e:
            logger.error(f"Error closing database pool: {e}")

        log_event(logger, component="shutdown", operation="shutdown_completed", outcome="success")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Billing core stopped")
