"""
Subscription domain models.

Rows coming from database.py are plain dicts with snake_case keys; from_row()
turns them into typed dataclasses the services work with.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


class PlanInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    LIFETIME = "lifetime"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"


@dataclass
class PlanFeature:
    key: str
    name: str
    description: Optional[str] = None

    @classmethod
    def from_value(cls, value: Any) -> "PlanFeature":
        if isinstance(value, PlanFeature):
            return value
        return cls(key=value["key"], name=value["name"], description=value.get("description"))

    def to_dict(self) -> Dict[str, Any]:
        data = {"key": self.key, "name": self.name}
        if self.description is not None:
            data["description"] = self.description
        return data


@dataclass
class SubscriptionPlan:
    """Global (not tenant-scoped) plan catalogue entry"""
    id: str
    name: str
    price: int
    currency: str
    interval: PlanInterval
    description: str = ""
    features: List[PlanFeature] = field(default_factory=list)
    limits: Dict[str, int] = field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SubscriptionPlan":
        return cls(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description") or "",
            price=int(row["price"]),
            currency=row["currency"],
            interval=PlanInterval(row["interval"]),
            features=[PlanFeature.from_value(f) for f in (row.get("features") or [])],
            limits=dict(row.get("limits") or {}),
            is_active=bool(row.get("is_active", True)),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def has_feature(self, key: str) -> bool:
        return any(f.key == key for f in self.features)


@dataclass
class Subscription:
    id: str
    tenant_id: str
    plan_id: str
    status: SubscriptionStatus
    current_period_start: datetime
    current_period_end: datetime
    canceled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Subscription":
        return cls(
            id=str(row["id"]),
            tenant_id=str(row["tenant_id"]),
            plan_id=str(row["plan_id"]),
            status=SubscriptionStatus(row["status"]),
            current_period_start=row["current_period_start"],
            current_period_end=row["current_period_end"],
            canceled_at=row.get("canceled_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )
