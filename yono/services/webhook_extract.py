"""
Webhook payload extraction.

Provider payloads nest the same facts in different places (Razorpay under
payload.payment.entity, Stripe under data.object, our own generic format at
the top level). Every lookup here goes through an ordered list of dotted
paths; a missing intermediate object just means "try the next path".

Amounts are passed through exactly as the provider reports them.
"""

import hashlib
from typing import Any, Dict, Iterable, Optional

from ..schemas.webhook import PaymentWebhookEvent

EVENT_ID_PATHS = ("eventId", "id", "payload.payment.entity.id")

BOOKING_ID_PATHS = (
    "bookingId",
    "booking_id",
    "metadata.bookingId",
    "metadata.booking_id",
    "notes.bookingId",
    "notes.booking_id",
    "payload.payment.entity.notes.bookingId",
    "payload.payment.entity.notes.booking_id",
    "payload.order.entity.notes.bookingId",
    "payload.order.entity.notes.booking_id",
    "data.object.metadata.bookingId",
    "data.object.metadata.booking_id",
)

EVENT_TYPE_PATHS = ("event", "type", "eventType", "event_type")

PAYMENT_ID_PATHS = (
    "payload.payment.entity.id",
    "data.object.payment_intent",
    "data.object.id",
    "providerPaymentId",
    "provider_payment_id",
    "paymentId",
    "payment_id",
)

ORDER_ID_PATHS = (
    "payload.payment.entity.order_id",
    "payload.order.entity.id",
    "providerOrderId",
    "provider_order_id",
    "orderId",
    "order_id",
)

AMOUNT_CAPTURED_PATHS = (
    "payload.payment.entity.amount",
    "data.object.amount_received",
    "data.object.amount",
    "amountCaptured",
    "amount_captured",
    "amount",
)

AMOUNT_REFUNDED_PATHS = (
    "payload.refund.entity.amount",
    "payload.payment.entity.amount_refunded",
    "data.object.amount_refunded",
    "amountRefunded",
    "amount_refunded",
)

CURRENCY_PATHS = (
    "payload.payment.entity.currency",
    "data.object.currency",
    "currency",
)


def path_get(payload: Any, path: str) -> Any:
    """Value at a dotted path, or None if any step is missing or not an object."""
    current = payload
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def first_text(payload: Any, paths: Iterable[str]) -> Optional[str]:
    """First non-empty string (or number, as text) among paths."""
    for path in paths:
        text = _as_text(path_get(payload, path))
        if text:
            return text
    return None


def first_number(payload: Any, paths: Iterable[str]) -> Optional[float]:
    for path in paths:
        value = path_get(payload, path)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                continue
    return None


def hash_event_id(raw_body: bytes) -> str:
    return f"evt_hash_{hashlib.sha256(raw_body).hexdigest()}"


def resolve_event_id(header_event_id: Optional[str], payload: Any, raw_body: bytes) -> str:
    """Header -> eventId -> id -> payload.payment.entity.id -> evt_hash_<sha256(body)>."""
    header_event_id = (header_event_id or "").strip()
    if header_event_id:
        return header_event_id
    return first_text(payload, EVENT_ID_PATHS) or hash_event_id(raw_body)


def extract_booking_id(payload: Any) -> Optional[str]:
    return first_text(payload, BOOKING_ID_PATHS)


def extract_event_type(payload: Any) -> str:
    return (first_text(payload, EVENT_TYPE_PATHS) or "unknown").lower()


def normalize_event(provider: str, event_id: str, booking_id: str, payload: Dict[str, Any]) -> PaymentWebhookEvent:
    currency = first_text(payload, CURRENCY_PATHS)
    return PaymentWebhookEvent(
        provider=provider,
        event_id=event_id,
        event_type=extract_event_type(payload),
        booking_id=booking_id,
        provider_payment_id=first_text(payload, PAYMENT_ID_PATHS),
        provider_order_id=first_text(payload, ORDER_ID_PATHS),
        amount_captured=first_number(payload, AMOUNT_CAPTURED_PATHS),
        amount_refunded=first_number(payload, AMOUNT_REFUNDED_PATHS),
        currency=currency.upper() if currency else None,
        raw_payload=payload,
    )
