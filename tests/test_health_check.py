"""
Tests for the System Health report
"""

import asyncio
from datetime import datetime, timedelta, timezone


def iso(dt):
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TestFreshness:

    def test_freshness(self):
        from yono.services.health_check import freshness

        now = datetime.now(timezone.utc)
        assert freshness(None, 60, now) == "unknown"
        assert freshness("garbage", 60, now) == "unknown"
        assert freshness(iso(now - timedelta(minutes=5)), 60, now) == "ok"
        assert freshness(iso(now - timedelta(hours=2)), 60, now) == "stale"


class TestSystemHealthService:

    def test_empty_store_reports_unknown(self, store):
        from yono.services.health_check import SystemHealthService

        report = asyncio.run(SystemHealthService(store).report())

        assert report.last_payment_webhook_at is None
        assert report.failures_24h == 0
        assert report.integration_status == {"payment_webhook": "unknown", "cron_retry": "unknown"}
        assert report.generated_at

    def test_report_counts_and_heartbeats(self, store):
        from yono.services.health_check import SystemHealthService
        from yono.services.telemetry import Telemetry

        async def scenario():
            telemetry = Telemetry(store)
            await telemetry.write_heartbeat("payment_webhook", {"lock": "acquired"})
            await telemetry.record_automation_failure("payment.confirmed", "boom")
            await store.insert_single("webhook_events", {"provider": "razorpay", "event_id": "e1", "status": "processed"})
            await store.insert_single("webhook_events", {"provider": "razorpay", "event_id": "e2", "status": "failed"})
            await store.insert_single("webhook_events", {
                "provider": "razorpay", "event_id": "old", "status": "failed",
                "created_at": iso(datetime.now(timezone.utc) - timedelta(days=3)),
            })
            return await SystemHealthService(store).report()

        report = asyncio.run(scenario())

        assert report.last_payment_webhook_at is not None
        assert report.integration_status["payment_webhook"] == "ok"
        assert report.integration_status["cron_retry"] == "unknown"
        assert report.failures_24h == 1
        assert report.webhook_events_24h == 2
        assert report.webhook_failed_24h == 1

    def test_stale_heartbeat(self, store):
        from yono.services.health_check import SystemHealthService

        async def scenario():
            await store.insert_single("system_heartbeats", {
                "kind": "cron_retry", "created_at": iso(datetime.now(timezone.utc) - timedelta(hours=3)),
            })
            return await SystemHealthService(store, stale_minutes=60).report()

        assert asyncio.run(scenario()).integration_status["cron_retry"] == "stale"

    def test_heartbeat_found_in_system_logs(self, make_store):
        from yono.services.health_check import SystemHealthService
        from yono.services.telemetry import Telemetry

        store = make_store("system_logs")

        async def scenario():
            await Telemetry(store).write_heartbeat("cron_retry", {"processed": 0})
            return await SystemHealthService(store).latest_heartbeat("cron_retry")

        assert asyncio.run(scenario()) is not None
