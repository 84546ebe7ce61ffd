"""
Payment domain models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class PaymentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    EXPIRED = "expired"


class PaymentMethod(str, Enum):
    QRIS = "qris"
    BANK_TRANSFER = "bank_transfer"
    GATEWAY = "gateway"


@dataclass
class PaymentInput:
    """Client request to pay for a plan. amount is in minor units."""
    plan_id: str
    amount: int
    currency: str
    method: PaymentMethod
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Payment:
    id: str
    tenant_id: str
    user_id: str
    amount: int
    currency: str
    status: PaymentStatus
    method: PaymentMethod
    plan_id: Optional[str] = None
    proof_file_id: Optional[str] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Payment":
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            user_id=str(row["user_id"]),
            plan_id=str(row["plan_id"]) if row.get("plan_id") else None,
            amount=int(row["amount"]),
            currency=row["currency"],
            status=PaymentStatus(row["status"]),
            method=PaymentMethod(row["method"]),
            proof_file_id=row.get("proof_file_id"),
            confirmed_by=row.get("confirmed_by"),
            confirmed_at=row.get("confirmed_at"),
            rejection_reason=row.get("rejection_reason"),
            metadata=dict(row.get("metadata") or {}),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != PaymentStatus.PENDING
