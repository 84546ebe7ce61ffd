"""
Webhook Event Parser

Decodes a raw request body into a WebhookEvent. The envelope is validated
first, independent of event family; the data object is then validated
against the family schema selected by the type prefix ("payment.",
"subscription."). Unknown families get envelope validation only.

Every failure raises InvalidWebhookPayloadError; nothing is partially accepted.
"""

import json
import logging
from typing import Union

from pydantic import ValidationError

from app.services.webhooks.exceptions import InvalidWebhookPayloadError
from app.services.webhooks.models import FAMILY_PAYLOADS, WebhookEnvelope, WebhookEvent

logger = logging.getLogger(__name__)


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "body"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


def parse_event(raw_body: Union[bytes, str]) -> WebhookEvent:
    """
    Parse and validate a webhook body.

    Args:
        raw_body: Request body exactly as received

    Returns:
        WebhookEvent whose data is the family payload model (or the raw
        dict for families without a schema)

    Raises:
        InvalidWebhookPayloadError: Body is not JSON, or envelope / payload
            shape is invalid
    """
    try:
        decoded = json.loads(raw_body)
    except (ValueError, TypeError) as e:
        raise InvalidWebhookPayloadError("Failed to parse webhook payload as JSON") from e

    try:
        envelope = WebhookEnvelope.model_validate(decoded)
    except ValidationError as e:
        raise InvalidWebhookPayloadError(
            f"Invalid webhook payload: {_format_validation_error(e)}"
        ) from e

    payload_model = FAMILY_PAYLOADS.get(envelope.type.family)
    if payload_model is None:
        return WebhookEvent(
            id=envelope.id,
            type=envelope.type,
            timestamp=envelope.timestamp,
            data=envelope.data,
        )

    try:
        payload = payload_model.model_validate(envelope.data)
    except ValidationError as e:
        logger.debug(f"WEBHOOK_PAYLOAD_INVALID event_id={envelope.id} type={envelope.type.value}")
        raise InvalidWebhookPayloadError(
            f"Invalid {envelope.type.value} payload: {_format_validation_error(e)}"
        ) from e

    return WebhookEvent(
        id=envelope.id,
        type=envelope.type,
        timestamp=envelope.timestamp,
        data=payload,
    )
