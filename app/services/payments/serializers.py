"""
JSON encoding of payments for API responses and decoding from request bodies.

Keys are camelCase, timestamps ISO-8601. Unknown status or method values
raise ValueError.
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from app.services.payments.models import Payment, PaymentMethod, PaymentStatus


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "tenantId": payment.tenant_id,
        "userId": payment.user_id,
        "planId": payment.plan_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status.value,
        "method": payment.method.value,
        "proofFileId": payment.proof_file_id,
        "confirmedBy": payment.confirmed_by,
        "confirmedAt": _iso(payment.confirmed_at),
        "rejectionReason": payment.rejection_reason,
        "metadata": dict(payment.metadata),
        "createdAt": _iso(payment.created_at),
        "updatedAt": _iso(payment.updated_at),
    }


def serialize_payments(payments: List[Payment]) -> List[Dict[str, Any]]:
    return [serialize_payment(p) for p in payments]


def deserialize_payment(body: Dict[str, Any]) -> Payment:
    """
    Build a Payment from a camelCase request body.

    Missing fields fall back to defaults (pending, qris, IDR, now).

    Raises:
        ValueError: If status or method is not a known value
    """
    status = body.get("status")
    if status is not None and status not in {s.value for s in PaymentStatus}:
        raise ValueError(f"Invalid payment status: {status}")
    method = body.get("method")
    if method is not None and method not in {m.value for m in PaymentMethod}:
        raise ValueError(f"Invalid payment method: {method}")

    now = datetime.now(timezone.utc)
    return Payment(
        id=body.get("id") or "",
        tenant_id=body.get("tenantId") or "",
        user_id=body.get("userId") or "",
        plan_id=body.get("planId"),
        amount=body.get("amount") or 0,
        currency=body.get("currency") or "IDR",
        status=PaymentStatus(status or "pending"),
        method=PaymentMethod(method or "qris"),
        proof_file_id=body.get("proofFileId"),
        confirmed_by=body.get("confirmedBy"),
        confirmed_at=_parse_dt(body.get("confirmedAt")),
        rejection_reason=body.get("rejectionReason"),
        metadata=dict(body.get("metadata") or {}),
        created_at=_parse_dt(body.get("createdAt")) or now,
        updated_at=_parse_dt(body.get("updatedAt")) or now,
    )
