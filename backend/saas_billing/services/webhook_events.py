"""
Inbound Stripe webhook events: signature verification and classification.

Verification uses Stripe's scheme (HMAC-SHA256 over "{timestamp}.{payload}",
header "t=...,v1=...") with a timestamp tolerance window. Nothing here touches
the database; mutation happens in the reconciler.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any

import stripe

from saas_billing.core.errors import MalformedEvent, SignatureInvalid


class EventKind(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    TRIAL_WILL_END = "customer.subscription.trial_will_end"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class WebhookEvent:
    id: str | None
    type: str  # raw Stripe event type, kept for logging unhandled events
    kind: EventKind
    object: dict[str, Any] = field(default_factory=dict)
    created: int | None = None


def classify(event_type: str) -> EventKind:
    try:
        return EventKind(event_type)
    except ValueError:
        return EventKind.UNHANDLED


def verify_signature(payload: bytes, sig_header: str, secret: str, tolerance: int | None) -> str:
    """Check the signature header against the body. Returns the decoded body."""
    if not sig_header:
        raise SignatureInvalid("No signature provided")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SignatureInvalid("Payload is not valid UTF-8") from e
    try:
        stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        raise SignatureInvalid(str(e)) from e
    return body


def parse_event(payload: bytes, sig_header: str, secret: str, tolerance: int | None = 300) -> WebhookEvent:
    """Verify and decode a webhook delivery. Raises SignatureInvalid or MalformedEvent."""
    body = verify_signature(payload, sig_header, secret, tolerance)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedEvent(f"Invalid JSON payload: {e}") from e
    if not isinstance(data, dict):
        raise MalformedEvent("Event payload must be a JSON object")

    event_type = data.get("type")
    envelope = data.get("data")
    obj = envelope.get("object") if isinstance(envelope, dict) else None
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEvent("Event has no type")
    if not isinstance(obj, dict):
        raise MalformedEvent(f"Event {event_type} has no data.object")

    return WebhookEvent(
        id=data.get("id"),
        type=event_type,
        kind=classify(event_type),
        object=obj,
        created=data.get("created"),
    )
