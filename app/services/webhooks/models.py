"""
Webhook event schemas.

Incoming JSON uses camelCase keys; the models expose snake_case attributes
through aliases. Unknown keys are ignored.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictInt, StringConstraints, field_validator

UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"

UuidStr = Annotated[str, StringConstraints(pattern=UUID_PATTERN)]
CurrencyCode = Annotated[str, StringConstraints(min_length=3, max_length=3)]


class WebhookEventType(str, Enum):
    PAYMENT_CREATED = "payment.created"
    PAYMENT_CONFIRMED = "payment.confirmed"
    PAYMENT_REJECTED = "payment.rejected"
    PAYMENT_EXPIRED = "payment.expired"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_CANCELED = "subscription.canceled"
    SUBSCRIPTION_EXPIRED = "subscription.expired"

    @property
    def family(self) -> str:
        return self.value.split(".", 1)[0]


def _require_iso_string(value: Any) -> Any:
    # pydantic would otherwise accept unix timestamps
    if value is not None and not isinstance(value, (str, datetime)):
        raise ValueError("must be an ISO-8601 datetime string")
    return value


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class PaymentWebhookPayload(_Payload):
    payment_id: UuidStr = Field(alias="paymentId")
    tenant_id: UuidStr = Field(alias="tenantId")
    user_id: UuidStr = Field(alias="userId")
    amount: Annotated[StrictInt, Field(gt=0)]
    currency: CurrencyCode
    status: Literal["pending", "confirmed", "rejected", "expired"]
    method: Literal["qris", "bank_transfer", "gateway"]
    plan_id: Optional[UuidStr] = Field(default=None, alias="planId")
    confirmed_by: Optional[UuidStr] = Field(default=None, alias="confirmedBy")
    confirmed_at: Optional[AwareDatetime] = Field(default=None, alias="confirmedAt")
    rejection_reason: Optional[str] = Field(default=None, alias="rejectionReason")

    check_confirmed_at = field_validator("confirmed_at", mode="before")(_require_iso_string)


class SubscriptionWebhookPayload(_Payload):
    subscription_id: UuidStr = Field(alias="subscriptionId")
    tenant_id: UuidStr = Field(alias="tenantId")
    plan_id: UuidStr = Field(alias="planId")
    status: Literal["active", "canceled", "expired", "past_due"]
    current_period_start: AwareDatetime = Field(alias="currentPeriodStart")
    current_period_end: AwareDatetime = Field(alias="currentPeriodEnd")

    check_periods = field_validator(
        "current_period_start", "current_period_end", mode="before"
    )(_require_iso_string)


class WebhookEvent(BaseModel):
    """
    Parsed webhook envelope. data is a PaymentWebhookPayload for payment.*
    events, a SubscriptionWebhookPayload for subscription.* events.
    """
    model_config = ConfigDict(frozen=True)

    id: UuidStr
    type: WebhookEventType
    timestamp: AwareDatetime
    data: Any

    check_timestamp = field_validator("timestamp", mode="before")(_require_iso_string)

    def to_dict(self) -> Dict[str, Any]:
        data = self.data.model_dump(by_alias=True, mode="json", exclude_none=True) if isinstance(self.data, BaseModel) else self.data
        return {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "data": data,
        }


class WebhookEnvelope(WebhookEvent):
    """Family-independent shape check: data must be a JSON object."""
    data: Dict[str, Any]


FAMILY_PAYLOADS = {
    "payment": PaymentWebhookPayload,
    "subscription": SubscriptionWebhookPayload,
}