"""
Payment Service

Use cases that touch both the payment ledger and the booking lifecycle:
- create_payment_intent: provider intent + ledger row + booking -> pending_payment
- confirm_payment: direct (non-webhook) confirmation through the provider
- reconcile_payment_webhook: apply a normalized provider event

The booking state machine is the canonical invariant holder. Payment rows
are last-write-wins; a booking move the machine forbids is skipped, never
forced. A payment success it cannot apply is recorded as an automation
failure instead of being dropped.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .booking_store import BookingStore, can_transition
from .data_store import StoreError, UniqueViolation
from .payment_ledger import PaymentLedger
from .payment_provider import (
    ConfirmPaymentRequest,
    CreateIntentRequest,
    CreateIntentResult,
    PaymentProvider,
    get_payment_provider,
)
from .telemetry import Telemetry
from ..schemas.booking import Booking, BookingStatus
from ..schemas.payment import PaymentIntent, PaymentIntentCreate, PaymentStatus
from ..schemas.webhook import PaymentWebhookEvent
from ..utils.errors import BookingNotFound, DomainError, IllegalTransition, PaymentNotFound, ValidationFailed

logger = logging.getLogger(__name__)

PAYMENT_CONFIRMED_EVENT = "payment.confirmed"


class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    REFUND = "refund"
    PENDING = "pending"


def _can_reach_paid(status: BookingStatus) -> bool:
    return status in (BookingStatus.PAID, BookingStatus.CONFIRMED) or can_transition(status, BookingStatus.PAID)


def classify_event(event_type: str) -> PaymentOutcome:
    lowered = (event_type or "").lower()
    if any(marker in lowered for marker in ("captured", "succeeded", "paid")):
        return PaymentOutcome.SUCCESS
    if "fail" in lowered:
        return PaymentOutcome.FAILURE
    if "refund" in lowered:
        return PaymentOutcome.REFUND
    return PaymentOutcome.PENDING


@dataclass
class IntentCreated:
    payment: PaymentIntent
    booking: Booking
    provider: CreateIntentResult


@dataclass
class ReconcileResult:
    outcome: PaymentOutcome
    booking: Booking
    payment: Optional[PaymentIntent] = None
    lifecycle_changed: bool = False


class PaymentService:
    def __init__(
        self,
        bookings: BookingStore,
        payments: PaymentLedger,
        telemetry: Telemetry,
        provider_factory: Callable[[Optional[str]], PaymentProvider] = get_payment_provider,
    ):
        self.bookings = bookings
        self.payments = payments
        self.telemetry = telemetry
        self.provider_factory = provider_factory

    async def _require_booking(self, booking_id: str) -> Booking:
        booking = await self.bookings.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(booking_id)
        return booking

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def create_payment_intent(
        self, request: PaymentIntentCreate, provider_name: Optional[str] = None
    ) -> IntentCreated:
        booking = await self._require_booking(request.booking_id)

        key = request.idempotency_key
        if key:
            existing = await self.payments.find_by_idempotency_key(key)
            if existing is not None:
                return await self._replay_intent(existing, booking)

        if not can_transition(booking.status, BookingStatus.PENDING_PAYMENT):
            raise IllegalTransition(booking.status.value, BookingStatus.PENDING_PAYMENT.value)

        amount = request.amount or booking.amount
        currency = (request.currency or booking.currency).upper()

        provider = self.provider_factory(provider_name)
        try:
            created = await provider.create_intent(CreateIntentRequest(
                booking_id=booking.id,
                amount=amount,
                currency=currency,
                description=f"Yono booking {booking.reference}",
                customer=booking.contact,
                notes={"reference": booking.reference},
            ))
        finally:
            await provider.close()

        try:
            intent = await self.payments.create_payment_intent(
                booking.id,
                amount,
                currency,
                provider=created.provider,
                provider_payment_id=created.provider_payment_id,
                provider_order_id=created.provider_order_id,
                idempotency_key=key,
            )
        except UniqueViolation:
            # A concurrent request with the same key won the insert
            existing = await self.payments.find_by_idempotency_key(key) if key else None
            if existing is None:
                raise
            return await self._replay_intent(existing, await self._require_booking(booking.id))

        booking = await self.bookings.transition_status(
            booking.id,
            BookingStatus.PENDING_PAYMENT,
            extra={"payment_intent_id": intent.id},
        )
        return IntentCreated(payment=intent, booking=booking, provider=created)

    async def _replay_intent(self, intent: PaymentIntent, booking: Booking) -> IntentCreated:
        if intent.booking_id != booking.id:
            raise ValidationFailed(
                "Idempotency key was already used for another booking", code="IDEMPOTENCY_KEY_REUSED"
            )
        logger.info(f"Payment intent {intent.id} returned for repeated idempotency key")
        return IntentCreated(
            payment=intent,
            booking=booking,
            provider=CreateIntentResult(
                provider=intent.provider,
                provider_payment_id=intent.provider_payment_id,
                provider_order_id=intent.provider_order_id,
            ),
        )

    async def confirm_payment(self, payment_id: str, provider_payment_id: Optional[str] = None) -> ReconcileResult:
        intent = await self.payments.get_payment_intent(payment_id)
        if intent is None:
            raise PaymentNotFound(payment_id)
        booking = await self._require_booking(intent.booking_id)

        provider = self.provider_factory(intent.provider)
        try:
            confirmed = await provider.confirm_payment(ConfirmPaymentRequest(
                payment_intent_id=intent.id,
                provider_payment_id=provider_payment_id or intent.provider_payment_id,
            ))
        finally:
            await provider.close()

        intent = await self.payments.update_payment_status(
            intent.id,
            confirmed.status,
            provider_payment_id=confirmed.provider_payment_id,
            amount_captured=confirmed.amount_captured,
        ) or intent

        outcome = PaymentOutcome.SUCCESS if confirmed.status == PaymentStatus.SUCCEEDED else PaymentOutcome.FAILURE
        booking, changed = await self._drive_booking(
            booking, outcome, intent, provider_payment_id=confirmed.provider_payment_id
        )
        return ReconcileResult(outcome=outcome, booking=booking, payment=intent, lifecycle_changed=changed)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def reconcile_payment_webhook(self, event: PaymentWebhookEvent) -> ReconcileResult:
        booking = await self._require_booking(event.booking_id)
        outcome = classify_event(event.event_type)

        applied = await self.payments.find_by_webhook_event(event.event_id)
        if applied is not None:
            return await self._resume_webhook(booking, outcome, applied, event)

        intent = await self._record_payment(booking, event, outcome)
        booking, changed = await self._drive_booking(
            booking, outcome, intent, provider_payment_id=event.provider_payment_id, event_id=event.event_id
        )
        return ReconcileResult(outcome=outcome, booking=booking, payment=intent, lifecycle_changed=changed)

    async def _resume_webhook(
        self, booking: Booking, outcome: PaymentOutcome, intent: PaymentIntent, event: PaymentWebhookEvent
    ) -> ReconcileResult:
        """
        Redelivery of an event the payment row already carries.

        The payment row is left as it is; only a booking move the first
        delivery did not finish is attempted. A success that could not move
        the booking was recorded as an automation failure the first time.
        """
        logger.info(f"Webhook event {event.event_id} already applied to payment {intent.id}")
        if outcome == PaymentOutcome.SUCCESS and not _can_reach_paid(booking.status):
            return ReconcileResult(outcome=outcome, booking=booking, payment=intent)

        booking, changed = await self._drive_booking(
            booking, outcome, intent, provider_payment_id=event.provider_payment_id, event_id=event.event_id
        )
        return ReconcileResult(outcome=outcome, booking=booking, payment=intent, lifecycle_changed=changed)

    async def _record_payment(
        self, booking: Booking, event: PaymentWebhookEvent, outcome: PaymentOutcome
    ) -> PaymentIntent:
        fields: Dict[str, Any] = {
            "provider_order_id": event.provider_order_id,
            "webhook_event_id": event.event_id,
            "raw_payload": event.raw_payload,
        }
        if outcome == PaymentOutcome.SUCCESS:
            fields["amount_captured"] = event.amount_captured
        if outcome == PaymentOutcome.REFUND:
            fields["amount_refunded"] = event.amount_refunded

        intent = await self.payments.latest_for_booking(booking.id)
        if intent is None:
            intent = await self.payments.create_payment_intent(
                booking.id,
                booking.amount,
                event.currency or booking.currency,
                provider=event.provider,
            )

        if outcome == PaymentOutcome.SUCCESS:
            status = PaymentStatus.SUCCEEDED
        elif outcome == PaymentOutcome.FAILURE:
            status = PaymentStatus.FAILED
        else:
            status = intent.status

        updated = await self.payments.update_payment_status(
            intent.id, status, provider_payment_id=event.provider_payment_id, **fields
        )
        return updated or intent

    async def _drive_booking(
        self,
        booking: Booking,
        outcome: PaymentOutcome,
        intent: Optional[PaymentIntent],
        provider_payment_id: Optional[str] = None,
        event_id: Optional[str] = None,
    ):
        """Move the booking as far as the outcome allows. Returns (booking, changed)."""
        extra: Dict[str, Any] = {}
        if provider_payment_id:
            extra["provider_payment_id"] = provider_payment_id
        if intent is not None:
            extra["payment_intent_id"] = intent.id

        if outcome == PaymentOutcome.SUCCESS:
            try:
                return await self._confirm_booking(booking, extra)
            except (DomainError, StoreError) as e:
                await self.telemetry.record_automation_failure(
                    PAYMENT_CONFIRMED_EVENT,
                    e,
                    booking_id=booking.id,
                    payload={
                        "booking_id": booking.id,
                        "payment_id": intent.id if intent else None,
                        "provider_payment_id": provider_payment_id,
                        "event_id": event_id,
                    },
                )
                raise

        if outcome == PaymentOutcome.FAILURE:
            if booking.status in (BookingStatus.PAID, BookingStatus.CONFIRMED, BookingStatus.FAILED):
                return booking, False
            if not can_transition(booking.status, BookingStatus.FAILED):
                logger.info(f"Booking {booking.id} is {booking.status.value}; ignoring payment failure")
                return booking, False
            updated = await self.bookings.transition_status(
                booking.id, BookingStatus.FAILED, extra=extra, note="payment failed"
            )
            return updated, True

        if outcome == PaymentOutcome.REFUND:
            if booking.status == BookingStatus.CANCELLED or not can_transition(booking.status, BookingStatus.CANCELLED):
                return booking, False
            updated = await self.bookings.transition_status(
                booking.id,
                BookingStatus.CANCELLED,
                extra={**extra, "cancellation_reason": "refunded"},
                note="refunded",
            )
            return updated, True

        return booking, False

    async def _confirm_booking(self, booking: Booking, extra: Dict[str, Any]):
        changed = False
        if booking.status not in (BookingStatus.PAID, BookingStatus.CONFIRMED):
            if not can_transition(booking.status, BookingStatus.PAID):
                logger.warning(
                    f"Payment succeeded for booking {booking.id} in status {booking.status.value}"
                )
                raise IllegalTransition(booking.status.value, BookingStatus.PAID.value)
            booking = await self.bookings.transition_status(booking.id, BookingStatus.PAID, extra=extra)
            changed = True

        if booking.status != BookingStatus.CONFIRMED and can_transition(booking.status, BookingStatus.CONFIRMED):
            booking = await self.bookings.transition_status(booking.id, BookingStatus.CONFIRMED, extra=extra)
            changed = True

        return booking, changed

    async def redrive_confirmation(self, booking_id: Optional[str], payload: Any = None) -> Booking:
        """Automation retry handler for a confirmation that failed after payment."""
        payload = payload if isinstance(payload, dict) else {}
        booking_id = booking_id or payload.get("booking_id")
        if not booking_id:
            raise DomainError("payment.confirmed retry has no booking id")

        booking = await self._require_booking(booking_id)
        extra = {}
        if payload.get("provider_payment_id"):
            extra["provider_payment_id"] = payload["provider_payment_id"]
        if payload.get("payment_id"):
            extra["payment_intent_id"] = payload["payment_id"]

        booking, _ = await self._confirm_booking(booking, extra)
        if booking.status != BookingStatus.CONFIRMED:
            raise IllegalTransition(booking.status.value, BookingStatus.CONFIRMED.value)
        return booking
