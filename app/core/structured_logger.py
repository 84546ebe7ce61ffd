"""
Structured logging normalization.

Single contract for lifecycle logs of the billing core:
- component      (webhook / payments / subscriptions / notifications / worker)
- operation      (webhook_process, payment_confirm, subscription_activate, ...)
- correlation_id (entity id; falls back to the bound delivery id)
- delivery_id    (webhook event id bound for the duration of a delivery)
- tenant_id      (optional)
- outcome        (success | skipped | failed)
- duration_ms    (optional, omitted if None)
- reason         (optional, short non-PII explanation)

The webhook router binds the event id with bind_delivery_id(), so payment,
subscription and notification events emitted while a handler runs can be
joined back to the delivery that caused them.

Do not log secrets, signatures or full payloads.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from logging import Logger
from typing import Optional, Iterator

OUTCOMES = ("success", "skipped", "failed")

_delivery_id: ContextVar[Optional[str]] = ContextVar("delivery_id", default=None)


@contextmanager
def bind_delivery_id(delivery_id: Optional[str]) -> Iterator[None]:
    """Bind a webhook delivery id to every log_event call inside the block."""
    token = _delivery_id.set(str(delivery_id) if delivery_id is not None else None)
    try:
        yield
    finally:
        _delivery_id.reset(token)


def get_delivery_id() -> Optional[str]:
    return _delivery_id.get()


def log_event(
    logger: Logger,
    *,
    component: str,
    operation: str,
    correlation_id: Optional[str] = None,
    outcome: str,
    duration_ms: Optional[int] = None,
    reason: Optional[str] = None,
    tenant_id: Optional[str] = None,
    level: str = "info",
    message: Optional[str] = None,
) -> None:
    """
    Emit structured log event.

    Args:
        logger: Logger instance
        component: Component name (e.g. "webhook", "payments")
        operation: Operation name (e.g. "webhook_process", "payment_confirm")
        correlation_id: Entity identifier; defaults to the bound delivery id
        outcome: One of OUTCOMES
        duration_ms: Duration in milliseconds (omitted if None)
        reason: Short non-PII explanation (optional)
        tenant_id: Tenant the event belongs to (optional)
        level: Log level ("info", "warning", "error", "critical", "debug")
        message: Optional override message

    Raises:
        ValueError: If outcome is not one of OUTCOMES
    """
    if outcome not in OUTCOMES:
        raise ValueError(f"Unknown log outcome: {outcome}")

    delivery_id = _delivery_id.get()
    if correlation_id is None:
        correlation_id = delivery_id

    extra: dict = {
        "component": component,
        "operation": operation,
        "outcome": outcome,
    }
    if correlation_id is not None:
        extra["correlation_id"] = str(correlation_id)
    if delivery_id is not None:
        extra["delivery_id"] = delivery_id
    if tenant_id is not None:
        extra["tenant_id"] = str(tenant_id)
    if duration_ms is not None:
        extra["duration_ms"] = duration_ms
    if reason is not None:
        extra["reason"] = reason

    if message is None:
        parts = [f"{component.upper()}_{operation.upper()}", f"outcome={outcome}"]
        if correlation_id is not None:
            parts.append(f"id={correlation_id}")
        if reason is not None:
            parts.append(f"reason={reason}")
        message = " ".join(parts)
    log_method = getattr(logger, level.lower(), logger.info)
    log_method(message, extra=extra)
