"""
Subscription Expiry Sweep Worker

Periodically marks active subscriptions whose period has ended as expired,
tenant by tenant. Reads never trigger expiry; between sweeps a lapsed
subscription still reports status=active (use is_subscription_active() for
a live answer).

- Skips iterations while the database is not ready
- One tenant's failure does not stop the sweep for the others
- Never raises out of the loop except on cancellation
"""
import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

import config
import database
from app.core.structured_logger import log_event
from app.services.subscriptions import service as subscription_service

logger = logging.getLogger(__name__)


async def run_sweep_iteration(now: Optional[datetime] = None) -> int:
    """
    Sweep every tenant with active subscriptions once.

    Returns:
        Total number of subscriptions marked expired
    """
    now = now or datetime.now(timezone.utc)
    tenant_ids = await database.list_tenants_with_active_subscriptions()

    total = 0
    for tenant_id in tenant_ids:
        try:
            total += await subscription_service.sweep_expired_subscriptions(tenant_id, now=now)
        except Exception as e:
            logger.error(f"EXPIRY_SWEEP_TENANT_FAILED tenant_id={tenant_id} error={type(e).__name__}: {e}")
    return total


async def expiry_sweep_task(interval_seconds: Optional[int] = None):
    interval = interval_seconds or config.EXPIRY_SWEEP_INTERVAL_SECONDS
    logger.info(f"Expiry sweep task started (interval: {interval} seconds)")

    while True:
        try:
            await asyncio.sleep(interval)

            correlation_id = str(uuid.uuid4())
            if not database.DB_READY:
                log_event(
                    logger,
                    component="worker",
                    operation="expiry_sweep",
                    correlation_id=correlation_id,
                    outcome="skipped",
                    reason="db_not_ready",
                    level="warning",
                )
                continue

            start = time.monotonic()
            expired = await run_sweep_iteration()
            log_event(
                logger,
                component="worker",
                operation="expiry_sweep",
                correlation_id=correlation_id,
                outcome="success",
                duration_ms=int((time.monotonic() - start) * 1000),
                message=f"EXPIRY_SWEEP_DONE expired={expired}",
            )
        except asyncio.CancelledError:
            logger.info("Expiry sweep task cancelled")
            break
        except Exception as e:
            logger.exception(f"EXPIRY_SWEEP_ERROR error={type(e).__name__}: {e}")
