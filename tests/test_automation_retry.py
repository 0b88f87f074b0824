"""
Tests for the Automation Retry Worker

Tests cover:
- Backoff schedule and attempt cap
- Claim, dispatch and finalize per record
- Unknown events stay failed
- Heartbeat after every run
- Re-driving a payment confirmation end to end
"""

import asyncio
from datetime import datetime, timedelta, timezone

from conftest import booking_payload


def minutes_ago(minutes):
    value = datetime.now(timezone.utc) - timedelta(minutes=minutes)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def failure_row(event="payment.confirmed", attempts=0, updated_minutes_ago=60, **extra):
    row = {
        "event": event,
        "status": "failed",
        "attempts": attempts,
        "last_error": "boom",
        "payload": {"booking_id": "b-1"},
        "meta": None,
        "updated_at": minutes_ago(updated_minutes_ago),
    }
    row.update(extra)
    return row


def worker(store, handlers):
    from yono.services.automation_retry import AutomationRetryWorker
    from yono.services.telemetry import Telemetry
    return AutomationRetryWorker(store, Telemetry(store), handlers=handlers)


class TestEligibility:

    def test_backoff_schedule(self):
        from yono.services.automation_retry import required_delay

        assert required_delay(0) == timedelta(minutes=5)
        assert required_delay(1) == timedelta(minutes=15)
        assert required_delay(2) == timedelta(minutes=45)
        assert required_delay(7) == timedelta(minutes=45)

    def test_is_eligible(self):
        from yono.services.automation_retry import is_eligible

        now = datetime.now(timezone.utc)
        assert is_eligible({"attempts": 0, "updated_at": minutes_ago(6)}, now)
        assert not is_eligible({"attempts": 0, "updated_at": minutes_ago(2)}, now)
        assert not is_eligible({"attempts": 1, "updated_at": minutes_ago(10)}, now)
        assert is_eligible({"attempts": 2, "updated_at": minutes_ago(50)}, now)
        assert not is_eligible({"attempts": 3, "updated_at": minutes_ago(500)}, now)
        assert is_eligible({"attempts": None, "updated_at": None}, now)

    def test_event_names_normalized(self):
        from yono.services.automation_retry import normalize_event_name

        assert normalize_event_name("PAYMENT_CONFIRMED") == "payment.confirmed"


class TestRunOnce:

    def test_successful_retry_resolves_row(self, store):
        calls = []

        async def handler(booking_id, payload):
            calls.append((booking_id, payload))

        async def scenario():
            row = await store.insert_single("automation_failures", failure_row(booking_id="b-1"))
            summary = await worker(store, {"payment.confirmed": handler}).run_once()
            return row, summary, await store.select_single("automation_failures", {"id": row["id"]})

        row, summary, after = asyncio.run(scenario())

        assert summary.to_dict() == {"processed": 1, "resolved": 1, "still_failed": 0}
        assert calls == [("b-1", {"booking_id": "b-1"})]
        assert after["status"] == "resolved"
        assert after["attempts"] == 1
        assert len(after["meta"]["retry_history"]) == 1
        assert after["meta"]["last_retry_outcome"] == "resolved"
        assert after["last_error"] is None

    def test_failing_handler_keeps_row_failed(self, store):
        async def handler(booking_id, payload):
            raise RuntimeError("still broken")

        async def scenario():
            row = await store.insert_single("automation_failures", failure_row(attempts=1))
            summary = await worker(store, {"payment.confirmed": handler}).run_once()
            return summary, await store.select_single("automation_failures", {"id": row["id"]})

        summary, after = asyncio.run(scenario())

        assert summary.still_failed == 1
        assert after["status"] == "failed"
        assert after["attempts"] == 2
        assert after["last_error"] == "still broken"

    def test_rows_inside_backoff_or_over_cap_are_left_alone(self, store):
        calls = []

        async def handler(booking_id, payload):
            calls.append(booking_id)

        async def scenario():
            await store.insert_single("automation_failures", failure_row(updated_minutes_ago=2))
            await store.insert_single("automation_failures", failure_row(attempts=3, updated_minutes_ago=600))
            await store.insert_single("automation_failures", failure_row(status="resolved"))
            return await worker(store, {"payment.confirmed": handler}).run_once()

        summary = asyncio.run(scenario())

        assert summary.processed == 0
        assert calls == []

    def test_unknown_event_stays_failed(self, store):
        async def scenario():
            row = await store.insert_single("automation_failures", failure_row(event="email.send"))
            summary = await worker(store, {}).run_once()
            return summary, await store.select_single("automation_failures", {"id": row["id"]})

        summary, after = asyncio.run(scenario())

        assert summary.still_failed == 1
        assert after["status"] == "failed"
        assert "No automation handler" in after["last_error"]

    def test_run_writes_heartbeat_and_process_log(self, store):
        async def handler(booking_id, payload):
            return None

        async def scenario():
            await store.insert_single("automation_failures", failure_row())
            await worker(store, {"payment.confirmed": handler}).run_once()
            return (
                await store.select_many("system_heartbeats", {"kind": "cron_retry"}),
                await store.select_many("system_logs", {"event": "automation.retry"}),
            )

        heartbeats, logs = asyncio.run(scenario())

        assert heartbeats[0]["meta"] == {"processed": 1, "resolved": 1, "still_failed": 0}
        assert logs[0]["meta"]["outcome"] == "resolved"

    def test_missing_table_is_an_empty_run(self, make_store):
        store = make_store("system_heartbeats")
        summary = asyncio.run(worker(store, {}).run_once())
        assert summary.processed == 0

    def test_batch_size_limits_run(self, store):
        from yono.services.automation_retry import AutomationRetryWorker
        from yono.services.telemetry import Telemetry

        async def handler(booking_id, payload):
            return None

        async def scenario():
            for _ in range(3):
                await store.insert_single("automation_failures", failure_row())
            retry = AutomationRetryWorker(
                store, Telemetry(store), handlers={"payment.confirmed": handler}, batch_size=2
            )
            return await retry.run_once()

        assert asyncio.run(scenario()).processed == 2


class TestRedriveConfirmation:

    def test_paid_booking_is_confirmed_on_retry(self, store):
        from yono.config import settings
        from yono.schemas.booking import BookingCreate
        from yono.services.container import build_services

        async def scenario():
            services = build_services(store, settings)
            booking = await services.bookings.create_booking(BookingCreate(**booking_payload()))
            await services.bookings.transition_status(booking.id, "pending_payment")
            await services.bookings.transition_status(booking.id, "paid")
            await store.insert_single("automation_failures", failure_row(
                booking_id=booking.id,
                payload={"booking_id": booking.id, "provider_payment_id": "pay_rzp_7"},
            ))
            summary = await services.retry_worker.run_once()
            return summary, await services.bookings.get_booking(booking.id)

        summary, booking = asyncio.run(scenario())

        assert summary.resolved == 1
        assert booking.status.value == "confirmed"
        assert booking.provider_payment_id == "pay_rzp_7"

    def test_container_registers_confirmation_handler(self, store):
        from yono.config import settings
        from yono.services.container import build_services

        services = build_services(store, settings)

        assert services.retry_worker.handlers["payment.confirmed"] == services.payment_service.redrive_confirmation

    def test_failed_booking_stays_queued(self, store):
        """A capture against a failed booking needs a person, not a retry"""
        from yono.config import settings
        from yono.schemas.booking import BookingCreate
        from yono.services.container import build_services

        async def scenario():
            services = build_services(store, settings)
            booking = await services.bookings.create_booking(BookingCreate(**booking_payload()))
            await services.bookings.transition_status(booking.id, "failed")
            await store.insert_single("automation_failures", failure_row(
                booking_id=booking.id, payload={"booking_id": booking.id},
            ))
            summary = await services.retry_worker.run_once()
            rows = await store.select_many("automation_failures")
            return summary, rows, await services.bookings.get_booking(booking.id)

        summary, rows, booking = asyncio.run(scenario())

        assert summary.still_failed == 1
        assert rows[0]["status"] == "failed"
        assert rows[0]["attempts"] == 1
        assert booking.status.value == "failed"
