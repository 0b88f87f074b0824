"""
Payment Webhook Pipeline

One delivery, in order:
1. verify the HMAC signature over the raw body (nothing is written before this)
2. parse JSON
3. resolve the event id (header, payload ids, or evt_hash_<sha256>)
4. take the (provider, event_id) lock in the webhook ledger
5. resolve the booking id
6. reconcile payment + booking
7. heartbeat + analytics, whatever happened after the lock

Duplicate deliveries answer {ok: true, skipped: true} and touch nothing but
the heartbeat. When the ledger cannot answer, processing continues and the
booking state machine absorbs any duplicate effect.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .payment_service import PaymentService, ReconcileResult
from .telemetry import Telemetry
from .webhook_extract import extract_booking_id, extract_event_type, normalize_event, resolve_event_id
from .webhook_ledger import LockOutcome, LockResult, WebhookLedger
from ..utils.errors import BookingIdMissing, DomainError, InvalidJson, WebhookSecretMissing, WebhookSignatureInvalid
from ..utils.expiring_store import ExpiringKeyStore
from ..utils.security import signature_header_for, verify_signature

logger = logging.getLogger(__name__)

HEARTBEAT_KIND = "payment_webhook"
ANALYTICS_EVENT = "payment_success"

# Explicit event id headers, first present wins
EVENT_ID_HEADERS = ("X-Razorpay-Event-Id", "X-Payment-Event-Id", "X-Event-Id", "Idempotency-Key")


@dataclass
class WebhookResult:
    event_id: str
    lock: LockOutcome
    skipped: bool = False
    booking_id: Optional[str] = None
    payment_id: Optional[str] = None
    lifecycle_changed: bool = False
    booking_status: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": True, "event_id": self.event_id}
        if self.skipped:
            body["skipped"] = True
            return body
        body["booking_id"] = self.booking_id
        body["payment_id"] = self.payment_id
        body["booking_status"] = self.booking_status
        body["lifecycle_changed"] = self.lifecycle_changed
        return body


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


class WebhookPipeline:
    def __init__(
        self,
        ledger: WebhookLedger,
        payments: PaymentService,
        telemetry: Telemetry,
        inflight: ExpiringKeyStore,
        settings,
    ):
        self.ledger = ledger
        self.payments = payments
        self.telemetry = telemetry
        self.inflight = inflight
        self.settings = settings

    def verify(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> None:
        secret = self.settings.webhook_secret_for(provider)
        if not secret:
            logger.error(f"No webhook secret configured for provider {provider}")
            raise WebhookSecretMissing(f"Webhook secret is not configured for {provider}")

        signature = _header(headers, signature_header_for(provider))
        if not verify_signature(raw_body, signature, secret):
            logger.warning(f"Rejected {provider} webhook with invalid signature")
            raise WebhookSignatureInvalid("Invalid webhook signature")

    @staticmethod
    def parse(raw_body: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise InvalidJson("Invalid JSON payload")
        if not isinstance(payload, dict):
            raise InvalidJson("Webhook payload must be a JSON object")
        return payload

    async def handle(self, provider: str, raw_body: bytes, headers: Mapping[str, str]) -> WebhookResult:
        provider = (provider or self.settings.default_webhook_provider).lower()

        self.verify(provider, raw_body, headers)
        payload = self.parse(raw_body)

        header_event_id = next(
            (value for value in (_header(headers, name) for name in EVENT_ID_HEADERS) if value), None
        )
        event_id = resolve_event_id(header_event_id, payload, raw_body)
        event_type = extract_event_type(payload)
        inflight_key = f"{provider}:{event_id}"

        if not self.inflight.add(inflight_key):
            logger.info(f"Webhook {inflight_key} already handled in this process, skipping")
            await self.telemetry.write_heartbeat(HEARTBEAT_KIND, {"lock": LockOutcome.SKIPPED.value, "event_id": event_id})
            return WebhookResult(event_id=event_id, lock=LockOutcome.SKIPPED, skipped=True)

        lock = await self.ledger.acquire(provider, event_id, event_type=event_type, payload=payload)
        if not lock.should_process:
            await self.telemetry.write_heartbeat(HEARTBEAT_KIND, {"lock": lock.outcome.value, "event_id": event_id})
            return WebhookResult(event_id=event_id, lock=lock.outcome, skipped=True)

        if lock.outcome == LockOutcome.UNAVAILABLE:
            logger.warning(f"Processing webhook {inflight_key} without ledger lock ({lock.error})")

        result: Optional[ReconcileResult] = None
        booking_id: Optional[str] = None
        error_code: Optional[str] = None
        try:
            booking_id = extract_booking_id(payload)
            if not booking_id:
                raise BookingIdMissing("Webhook payload does not reference a booking")

            event = normalize_event(provider, event_id, booking_id, payload)
            result = await self.payments.reconcile_payment_webhook(event)
            await self.ledger.mark_processed(
                lock, booking_id=booking_id, payment_id=result.payment.id if result.payment else None
            )
        except Exception as e:
            error_code = e.code if isinstance(e, DomainError) else "INTERNAL_ERROR"
            message = e.message if isinstance(e, DomainError) else f"{type(e).__name__}: {e}"
            await self.ledger.mark_failed(lock, f"{error_code}: {message}", booking_id=booking_id)
            self.inflight.discard(inflight_key)
            logger.warning(f"Webhook {inflight_key} failed: {error_code}")
            raise
        finally:
            await self._emit(lock, event_id, booking_id, result, error_code)

        logger.info(
            f"Webhook {inflight_key} processed: booking={booking_id} "
            f"outcome={result.outcome.value} changed={result.lifecycle_changed}"
        )
        return WebhookResult(
            event_id=event_id,
            lock=lock.outcome,
            booking_id=booking_id,
            payment_id=result.payment.id if result.payment else None,
            lifecycle_changed=result.lifecycle_changed,
            booking_status=result.booking.status.value,
        )

    async def _emit(
        self,
        lock: LockResult,
        event_id: str,
        booking_id: Optional[str],
        result: Optional[ReconcileResult],
        error_code: Optional[str],
    ) -> None:
        heartbeat = {"lock": lock.outcome.value, "event_id": event_id}
        if error_code:
            heartbeat["error"] = error_code
        await self.telemetry.write_heartbeat(HEARTBEAT_KIND, heartbeat)
        await self.telemetry.track_event(
            ANALYTICS_EVENT,
            {
                "booking_id": booking_id,
                "payment_id": result.payment.id if result and result.payment else None,
                "lifecycle_changed": bool(result and result.lifecycle_changed),
                "outcome": result.outcome.value if result else "error",
            },
            booking_id=booking_id,
        )
