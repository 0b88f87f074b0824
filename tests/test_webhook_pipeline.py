"""
Tests for the Payment Webhook Pipeline

Tests cover:
- Signed success webhook drives booking to confirmed
- Redelivery is skipped (in-process guard and ledger)
- Invalid signature writes nothing
- Missing booking id fails the ledger entry
- Failed and abandoned ledger entries are re-claimed by a redelivery
- Missing ledger table does not block processing or repeat writes
- Missing webhook secret is a 503 config error
- Failure and refund events, and a capture after a failure

Webhooks MUST be idempotent and MUST NOT be processed before the
signature is verified.
"""

import asyncio
import json

import pytest

from conftest import WEBHOOK_SECRET, booking_payload


def signed(body, secret=WEBHOOK_SECRET, provider="razorpay", event_id=None):
    from yono.utils.security import compute_signature, signature_header_for

    raw = json.dumps(body).encode("utf-8")
    headers = {signature_header_for(provider): compute_signature(raw, secret)}
    if event_id:
        headers["X-Razorpay-Event-Id"] = event_id
    return raw, headers


def captured_body(booking_id, event="payment.captured", amount=1500000):
    return {
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": "pay_rzp_0001",
                    "order_id": "order_rzp_0001",
                    "amount": amount,
                    "currency": "inr",
                    "notes": {"booking_id": booking_id},
                }
            }
        },
    }


def build(store):
    from yono.config import settings
    from yono.services.container import build_services
    return build_services(store, settings)


async def pending_booking(services):
    from yono.schemas.booking import BookingCreate
    from yono.schemas.payment import PaymentIntentCreate

    booking = await services.bookings.create_booking(BookingCreate(**booking_payload()))
    created = await services.payment_service.create_payment_intent(PaymentIntentCreate(booking_id=booking.id))
    return created.booking, created.payment


class TestSignedSuccessWebhook:
    """Create, pay by webhook, redeliver"""

    def test_success_webhook_confirms_booking(self, store):
        async def scenario():
            services = build(store)
            booking, intent = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_success_1")
            result = await services.pipeline.handle("razorpay", raw, headers)
            return services, booking, intent, result

        services, booking, intent, result = asyncio.run(scenario())

        body = result.to_response()
        assert body["ok"] is True
        assert body["event_id"] == "evt_success_1"
        assert body["booking_status"] == "confirmed"
        assert body["lifecycle_changed"] is True
        assert body["payment_id"] == intent.id

        async def reload():
            return (
                await services.bookings.get_booking(booking.id),
                await services.payments.get_payment_intent(intent.id),
                await services.ledger.get_entry("razorpay", "evt_success_1"),
                await services.payments.find_by_webhook_event("evt_success_1"),
            )

        stored, payment, entry, by_event = asyncio.run(reload())
        assert by_event.id == intent.id
        assert [e.status.value for e in stored.status_timeline] == [
            "draft", "pending_payment", "paid", "confirmed",
        ]
        assert stored.provider_payment_id == "pay_rzp_0001"
        assert payment.status.value == "succeeded"
        # Provider amounts are stored as reported
        assert payment.amount_captured == 1500000
        assert payment.webhook_event_id == "evt_success_1"
        assert entry.status == "processed"
        assert entry.booking_id == booking.id
        assert entry.payment_id == intent.id

    def test_redelivery_is_skipped(self, store):
        async def snapshot(booking_id, payment_id):
            return (
                await store.select_single("bookings", {"id": booking_id}),
                await store.select_single("payments", {"id": payment_id}),
            )

        async def scenario():
            services = build(store)
            booking, intent = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_dup_1")
            await services.pipeline.handle("razorpay", raw, headers)
            before = await snapshot(booking.id, intent.id)
            again = await services.pipeline.handle("razorpay", raw, headers)
            # Fresh process: the in-memory guard is empty, the ledger still answers
            restarted = build(store)
            from_ledger = await restarted.pipeline.handle("razorpay", raw, headers)
            return again, from_ledger, before, await snapshot(booking.id, intent.id)

        again, from_ledger, before, after = asyncio.run(scenario())

        assert again.to_response() == {"ok": True, "event_id": "evt_dup_1", "skipped": True}
        assert from_ledger.skipped is True
        assert from_ledger.lock.value == "skipped"
        assert after == before
        assert len(after[0]["status_timeline"]) == 4

    def test_event_id_falls_back_to_payload_hash(self, store):
        from yono.services.webhook_extract import hash_event_id

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            body = {"event": "payment_link.paid", "bookingId": booking.id}
            raw, headers = signed(body)
            return raw, await services.pipeline.handle("razorpay", raw, headers)

        raw, result = asyncio.run(scenario())

        assert result.event_id == hash_event_id(raw)
        assert result.booking_status == "confirmed"

    def test_heartbeat_and_analytics_written(self, store):
        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_hb_1")
            await services.pipeline.handle("razorpay", raw, headers)
            heartbeats = await store.select_many("system_heartbeats", {"kind": "payment_webhook"})
            analytics = await store.select_many("analytics_events", {"name": "payment_success"})
            return booking, heartbeats, analytics

        booking, heartbeats, analytics = asyncio.run(scenario())

        assert len(heartbeats) == 1
        assert heartbeats[0]["meta"]["lock"] == "acquired"
        assert len(analytics) == 1
        assert analytics[0]["booking_id"] == booking.id
        assert analytics[0]["properties"]["outcome"] == "success"


class TestRejectedWebhooks:

    def test_invalid_signature_writes_nothing(self, store):
        from yono.utils.errors import WebhookSignatureInvalid

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), secret="whsec_wrong", event_id="evt_bad_sig")
            with pytest.raises(WebhookSignatureInvalid) as exc_info:
                await services.pipeline.handle("razorpay", raw, headers)
            return (
                exc_info.value,
                booking,
                await services.bookings.get_booking(booking.id),
                await store.select_many("webhook_events"),
            )

        error, before, after, ledger_rows = asyncio.run(scenario())

        assert error.status_code == 401
        assert error.code == "INVALID_WEBHOOK_SIGNATURE"
        assert ledger_rows == []
        assert after.to_row() == before.to_row()

    def test_missing_signature_header_rejected(self, store):
        from yono.utils.errors import WebhookSignatureInvalid

        services = build(store)
        with pytest.raises(WebhookSignatureInvalid):
            asyncio.run(services.pipeline.handle("razorpay", b'{"event": "payment.captured"}', {}))

    def test_missing_secret_is_service_unavailable(self, store, monkeypatch):
        from yono.config import settings
        from yono.utils.errors import WebhookSecretMissing

        monkeypatch.setattr(settings, "payment_webhook_secret", "")
        monkeypatch.setattr(settings, "razorpay_webhook_secret", "")

        services = build(store)
        with pytest.raises(WebhookSecretMissing) as exc_info:
            asyncio.run(services.pipeline.handle("razorpay", b"{}", {"X-Razorpay-Signature": "abc"}))
        # Config errors must not look like a generic 500
        assert exc_info.value.status_code == 503
        assert exc_info.value.code == "WEBHOOK_SECRET_MISSING"
        assert asyncio.run(store.select_many("webhook_events")) == []

    def test_invalid_json_rejected_after_signature(self, store):
        from yono.utils.errors import InvalidJson
        from yono.utils.security import compute_signature

        raw = b"not-json"
        headers = {"X-Razorpay-Signature": compute_signature(raw, WEBHOOK_SECRET)}

        services = build(store)
        with pytest.raises(InvalidJson) as exc_info:
            asyncio.run(services.pipeline.handle("razorpay", raw, headers))
        assert exc_info.value.code == "INVALID_JSON"

    def test_missing_booking_id_fails_ledger_entry(self, store):
        from yono.utils.errors import BookingIdMissing

        async def scenario():
            services = build(store)
            raw, headers = signed({"event": "payment.captured", "id": "evt_no_booking"})
            with pytest.raises(BookingIdMissing) as exc_info:
                await services.pipeline.handle("razorpay", raw, headers)
            return exc_info.value, await services.ledger.get_entry("razorpay", "evt_no_booking")

        error, entry = asyncio.run(scenario())

        assert error.status_code == 400
        assert error.code == "BOOKING_ID_MISSING"
        assert entry.status == "failed"
        assert entry.error.startswith("BOOKING_ID_MISSING")

    def test_unknown_booking_fails_ledger_entry(self, store):
        from yono.utils.errors import BookingNotFound

        async def scenario():
            services = build(store)
            raw, headers = signed(captured_body("no-such-booking"), event_id="evt_unknown_booking")
            with pytest.raises(BookingNotFound):
                await services.pipeline.handle("razorpay", raw, headers)
            return await services.ledger.get_entry("razorpay", "evt_unknown_booking")

        entry = asyncio.run(scenario())

        assert entry.status == "failed"
        assert entry.booking_id == "no-such-booking"


class TestLedgerRecovery:

    def test_failed_entry_is_reclaimed_by_redelivery(self, store):
        from yono.utils.errors import BookingIdMissing

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)

            raw, headers = signed({"event": "payment.captured"}, event_id="evt_retry_1")
            with pytest.raises(BookingIdMissing):
                await services.pipeline.handle("razorpay", raw, headers)

            raw, headers = signed(captured_body(booking.id), event_id="evt_retry_1")
            result = await services.pipeline.handle("razorpay", raw, headers)
            return result, await services.ledger.get_entry("razorpay", "evt_retry_1")

        result, entry = asyncio.run(scenario())

        assert result.lock.value == "reclaimed"
        assert result.booking_status == "confirmed"
        assert entry.status == "processed"
        assert entry.error is None

    def test_missing_ledger_table_still_processes(self, make_store):
        """No webhook_events table and no telemetry tables"""
        store = make_store("bookings", "payments")

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_no_ledger")
            return await services.pipeline.handle("razorpay", raw, headers)

        result = asyncio.run(scenario())

        assert result.lock.value == "unavailable"
        assert result.booking_status == "confirmed"

    def test_redelivery_without_ledger_leaves_rows_untouched(self, make_store):
        """The payment row already carrying the event id stops a second write"""
        store = make_store("bookings", "payments")

        async def snapshot(booking_id, payment_id):
            return (
                await store.select_single("bookings", {"id": booking_id}),
                await store.select_single("payments", {"id": payment_id}),
            )

        async def scenario():
            services = build(store)
            booking, intent = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_no_ledger_dup")
            await services.pipeline.handle("razorpay", raw, headers)
            before = await snapshot(booking.id, intent.id)
            restarted = build(store)
            again = await restarted.pipeline.handle("razorpay", raw, headers)
            return again, before, await snapshot(booking.id, intent.id)

        again, before, after = asyncio.run(scenario())

        assert again.lock.value == "unavailable"
        assert again.skipped is False
        assert again.lifecycle_changed is False
        assert again.booking_status == "confirmed"
        assert after == before

    def test_abandoned_processing_entry_is_reclaimed(self, store):
        from datetime import datetime, timedelta, timezone

        stale = (datetime.now(timezone.utc) - timedelta(minutes=30)).isoformat(timespec="milliseconds")

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            await store.insert_single("webhook_events", {
                "id": "wh-abandoned-1",
                "provider": "razorpay",
                "event_id": "evt_abandoned",
                "event_type": "payment.captured",
                "status": "processing",
                "created_at": stale,
                "updated_at": stale,
            })
            raw, headers = signed(captured_body(booking.id), event_id="evt_abandoned")
            result = await services.pipeline.handle("razorpay", raw, headers)
            return result, await services.ledger.get_entry("razorpay", "evt_abandoned")

        result, entry = asyncio.run(scenario())

        assert result.lock.value == "reclaimed"
        assert result.booking_status == "confirmed"
        assert entry.id == "wh-abandoned-1"
        assert entry.status == "processed"

    def test_recent_processing_entry_is_skipped(self, store):
        from yono.utils.db_helpers import now_iso

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            started = now_iso()
            await store.insert_single("webhook_events", {
                "id": "wh-in-flight-1",
                "provider": "razorpay",
                "event_id": "evt_in_flight",
                "status": "processing",
                "created_at": started,
                "updated_at": started,
            })
            raw, headers = signed(captured_body(booking.id), event_id="evt_in_flight")
            result = await services.pipeline.handle("razorpay", raw, headers)
            return result, await services.bookings.get_booking(booking.id)

        result, stored = asyncio.run(scenario())

        assert result.skipped is True
        assert result.lock.value == "skipped"
        assert stored.status.value == "pending_payment"

    def test_confirmation_failure_is_queued_for_retry(self, store, monkeypatch):
        from yono.services.data_store import StoreUnavailable

        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            original = services.bookings.transition_status

            async def flaky(booking_id, next_status, extra=None, note=None):
                if str(getattr(next_status, "value", next_status)) == "confirmed":
                    raise StoreUnavailable("connection reset", table="bookings")
                return await original(booking_id, next_status, extra=extra, note=note)

            monkeypatch.setattr(services.bookings, "transition_status", flaky)
            raw, headers = signed(captured_body(booking.id), event_id="evt_flaky")
            with pytest.raises(StoreUnavailable):
                await services.pipeline.handle("razorpay", raw, headers)
            return (
                booking,
                await services.bookings.get_booking(booking.id),
                await store.select_many("automation_failures"),
                await services.ledger.get_entry("razorpay", "evt_flaky"),
            )

        booking, stored, failures, entry = asyncio.run(scenario())

        assert stored.status.value == "paid"
        assert len(failures) == 1
        assert failures[0]["event"] == "payment.confirmed"
        assert failures[0]["booking_id"] == booking.id
        assert failures[0]["status"] == "failed"
        assert entry.status == "failed"


class TestOtherOutcomes:

    def test_failure_event_fails_pending_booking(self, store):
        async def scenario():
            services = build(store)
            booking, intent = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id, event="payment.failed"), event_id="evt_fail_1")
            result = await services.pipeline.handle("razorpay", raw, headers)
            return result, await services.payments.get_payment_intent(intent.id)

        result, payment = asyncio.run(scenario())

        assert result.booking_status == "failed"
        assert payment.status.value == "failed"

    def test_failure_after_confirmation_is_ignored(self, store):
        async def scenario():
            services = build(store)
            booking, _ = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_ok_2")
            await services.pipeline.handle("razorpay", raw, headers)
            raw, headers = signed(captured_body(booking.id, event="payment.failed"), event_id="evt_fail_2")
            return await services.pipeline.handle("razorpay", raw, headers)

        result = asyncio.run(scenario())

        assert result.booking_status == "confirmed"
        assert result.lifecycle_changed is False

    def test_success_after_failure_is_recorded(self, store):
        """A capture for a booking already failed is money taken with no booking"""
        from yono.utils.errors import IllegalTransition

        async def scenario():
            services = build(store)
            booking, intent = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id, event="payment.failed"), event_id="evt_first_try")
            await services.pipeline.handle("razorpay", raw, headers)

            raw, headers = signed(captured_body(booking.id), event_id="evt_second_try")
            with pytest.raises(IllegalTransition) as exc_info:
                await services.pipeline.handle("razorpay", raw, headers)
            failed_entry = await services.ledger.get_entry("razorpay", "evt_second_try")
            # Provider redelivery after the error does not record it twice
            redelivered = await services.pipeline.handle("razorpay", raw, headers)
            return (
                exc_info.value,
                failed_entry,
                redelivered,
                await services.bookings.get_booking(booking.id),
                await services.payments.get_payment_intent(intent.id),
                await store.select_many("automation_failures"),
                await services.ledger.get_entry("razorpay", "evt_second_try"),
            )

        error, failed_entry, redelivered, stored, payment, failures, entry = asyncio.run(scenario())

        assert error.from_status == "failed"
        assert failed_entry.status == "failed"
        assert stored.status.value == "failed"
        assert payment.status.value == "succeeded"
        assert len(failures) == 1
        assert failures[0]["event"] == "payment.confirmed"
        assert failures[0]["booking_id"] == stored.id
        assert failures[0]["payload"]["event_id"] == "evt_second_try"
        assert redelivered.lock.value == "reclaimed"
        assert redelivered.booking_status == "failed"
        assert redelivered.lifecycle_changed is False
        assert entry.status == "processed"

    def test_refund_cancels_confirmed_booking(self, store):
        async def scenario():
            services = build(store)
            booking, intent = await pending_booking(services)
            raw, headers = signed(captured_body(booking.id), event_id="evt_ok_3")
            await services.pipeline.handle("razorpay", raw, headers)
            refund = {
                "event": "refund.processed",
                "bookingId": booking.id,
                "payload": {"refund": {"entity": {"amount": 1500000}}},
            }
            raw, headers = signed(refund, event_id="evt_refund_3")
            result = await services.pipeline.handle("razorpay", raw, headers)
            return (
                result,
                await services.bookings.get_booking(booking.id),
                await services.payments.get_payment_intent(intent.id),
            )

        result, stored, payment = asyncio.run(scenario())

        assert result.booking_status == "cancelled"
        assert stored.cancellation_reason == "refunded"
        assert payment.amount_refunded == 1500000
        assert payment.status.value == "succeeded"
