"""
Tests for payment and notification JSON encoding.
"""
import pytest
from datetime import datetime, timezone, timedelta

from app.services.notifications.models import (
    ChannelType,
    Notification,
    NotificationStatus,
    NotificationType,
)
from app.services.notifications.serializers import (
    deserialize_notification,
    deserialize_send_input,
    serialize_notification,
)
from app.services.payments.models import Payment, PaymentMethod, PaymentStatus
from app.services.payments.serializers import deserialize_payment, serialize_payment
from tests.factories import ADMIN_ID, TENANT_ID, USER_ID


def confirmed_payment() -> Payment:
    created = datetime(2024, 1, 30, 8, 0, tzinfo=timezone.utc)
    return Payment(
        id="55555555-5555-4555-8555-555555555555",
        tenant_id=TENANT_ID,
        user_id=USER_ID,
        plan_id="66666666-6666-4666-8666-666666666666",
        amount=150000,
        currency="IDR",
        status=PaymentStatus.CONFIRMED,
        method=PaymentMethod.BANK_TRANSFER,
        proof_file_id="proof-1",
        confirmed_by=ADMIN_ID,
        confirmed_at=created + timedelta(hours=2),
        metadata={"planName": "Pro Monthly"},
        created_at=created,
        updated_at=created + timedelta(hours=2),
    )


class TestPaymentSerializer:

    def test_camel_case_keys_and_iso_dates(self):
        body = serialize_payment(confirmed_payment())

        assert body["tenantId"] == TENANT_ID
        assert body["status"] == "confirmed"
        assert body["method"] == "bank_transfer"
        assert body["confirmedAt"] == "2024-01-30T10:00:00+00:00"
        assert body["rejectionReason"] is None
        assert "tenant_id" not in body

    def test_round_trip(self):
        payment = confirmed_payment()
        assert deserialize_payment(serialize_payment(payment)) == payment

    def test_zulu_timestamps_accepted(self):
        body = serialize_payment(confirmed_payment())
        body["confirmedAt"] = "2024-01-30T10:00:00Z"
        assert deserialize_payment(body).confirmed_at == datetime(2024, 1, 30, 10, 0, tzinfo=timezone.utc)

    def test_equivalent_instant_in_other_offset(self):
        body = serialize_payment(confirmed_payment())
        body["confirmedAt"] = "2024-01-30T17:00:00+07:00"
        assert deserialize_payment(body).confirmed_at == confirmed_payment().confirmed_at

    @pytest.mark.parametrize("field,value", [("status", "refunded"), ("method", "cash")])
    def test_unknown_enum_rejected(self, field, value):
        body = serialize_payment(confirmed_payment())
        body[field] = value
        with pytest.raises(ValueError):
            deserialize_payment(body)

    def test_defaults_for_missing_fields(self):
        payment = deserialize_payment({"tenantId": TENANT_ID, "userId": USER_ID, "amount": 1000})
        assert payment.status == PaymentStatus.PENDING
        assert payment.method == PaymentMethod.QRIS
        assert payment.currency == "IDR"
        assert payment.created_at is not None


class TestNotificationSerializer:

    def make_notification(self) -> Notification:
        return Notification(
            id="77777777-7777-4777-8777-777777777777",
            type=NotificationType.PAYMENT_REJECTED,
            channel=ChannelType.EMAIL,
            recipient="user@example.com",
            subject="Payment Rejected",
            body="Proof image unreadable",
            status=NotificationStatus.FAILED,
            metadata={"error": {"code": "CHANNEL_SEND_FAILED", "message": "timeout"}},
            created_at=datetime(2024, 1, 31, 12, 0, tzinfo=timezone.utc),
        )

    def test_round_trip(self):
        notification = self.make_notification()
        body = serialize_notification(notification)

        assert body["sentAt"] is None
        assert body["channel"] == "email"
        assert deserialize_notification(body) == notification

    @pytest.mark.parametrize("field,value", [
        ("type", "newsletter"),
        ("channel", "sms"),
        ("status", "queued"),
    ])
    def test_unknown_enum_rejected(self, field, value):
        body = serialize_notification(self.make_notification())
        body[field] = value
        with pytest.raises(ValueError, match=f"Invalid notification {field}"):
            deserialize_notification(body)

    def test_send_input(self):
        data = deserialize_send_input({
            "type": "welcome",
            "channel": "email",
            "recipient": "user@example.com",
            "body": "Hello",
            "metadata": {"ctaUrl": "https://app.example.com"},
        })
        assert data.type == NotificationType.WELCOME
        assert data.channel == ChannelType.EMAIL
        assert data.subject is None

    def test_send_input_requires_recipient(self):
        with pytest.raises(ValueError, match="recipient"):
            deserialize_send_input({"type": "welcome", "channel": "email", "body": "Hello"})
