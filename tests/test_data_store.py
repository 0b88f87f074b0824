"""
Tests for the row stores

Tests cover:
- SqlDataStore filters, ordering and compare-and-set updates
- Error translation (missing table, unique violation)
- Supabase REST query building and error mapping
- ExpiringKeyStore expiry
"""

import asyncio
import json

import httpx
import pytest


class TestSqlDataStore:

    def test_filters_and_ordering(self, store):
        async def scenario():
            for index, created_at in enumerate(["2026-01-01", "2026-01-05", "2026-01-09"]):
                await store.insert_single("system_logs", {
                    "level": "info", "event": f"e{index}", "message": str(index), "created_at": created_at,
                })
            between = await store.select_many(
                "system_logs",
                {"created_at": [("gte", "2026-01-02"), ("lte", "2026-01-09")]},
                order_by="created_at",
                descending=True,
            )
            in_list = await store.select_many("system_logs", {"event": ("in", ["e0", "e2"])}, order_by="created_at")
            not_e1 = await store.select_many("system_logs", {"event": ("neq", "e1")})
            null_booking = await store.select_many("system_logs", {"booking_id": None})
            page = await store.select_many("system_logs", order_by="created_at", limit=1, offset=1)
            return between, in_list, not_e1, null_booking, page

        between, in_list, not_e1, null_booking, page = asyncio.run(scenario())

        assert [row["event"] for row in between] == ["e2", "e1"]
        assert [row["event"] for row in in_list] == ["e0", "e2"]
        assert len(not_e1) == 2
        assert len(null_booking) == 3
        assert [row["event"] for row in page] == ["e1"]

    def test_conditional_update_is_compare_and_set(self, store):
        async def scenario():
            row = await store.insert_single("automation_failures", {"event": "x", "status": "failed", "attempts": 0})
            first = await store.update_single(
                "automation_failures", {"id": row["id"], "status": "failed"}, {"status": "retrying"}
            )
            second = await store.update_single(
                "automation_failures", {"id": row["id"], "status": "failed"}, {"status": "retrying"}
            )
            return first, second

        first, second = asyncio.run(scenario())

        assert first["status"] == "retrying"
        assert second is None

    def test_missing_table(self, make_store):
        from yono.services.data_store import TableMissing

        store = make_store("bookings")
        with pytest.raises(TableMissing):
            asyncio.run(store.select_many("webhook_events"))

    def test_unknown_column(self, store):
        from yono.services.data_store import ColumnMissing

        with pytest.raises(ColumnMissing):
            asyncio.run(store.insert_single("system_logs", {"no_such_column": 1}))

    def test_unique_violation(self, store):
        from yono.services.data_store import UniqueViolation

        row = {"provider": "razorpay", "event_id": "evt_1", "status": "processing"}

        async def scenario():
            await store.insert_single("webhook_events", dict(row))
            await store.insert_single("webhook_events", dict(row))

        with pytest.raises(UniqueViolation):
            asyncio.run(scenario())


class TestSupabaseRestStore:

    def make(self, handler):
        from yono.services.supabase_rest import SupabaseRestStore
        return SupabaseRestStore(
            "https://project.supabase.test/", "service-role-key", transport=httpx.MockTransport(handler)
        )

    def test_build_query(self):
        from yono.services.supabase_rest import build_query

        params = build_query({
            "status": ("in", ["paid", "payment_received"]),
            "created_at": [("gte", "2026-01-01"), ("lte", "2026-01-31T23:59:59.999Z")],
            "booking_id": None,
            "provider": "razorpay",
        })

        assert params == [
            ("status", "in.(paid,payment_received)"),
            ("created_at", "gte.2026-01-01"),
            ("created_at", "lte.2026-01-31T23:59:59.999Z"),
            ("booking_id", "is.null"),
            ("provider", "eq.razorpay"),
        ]

    def test_select_sends_auth_and_params(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            seen["apikey"] = request.headers.get("apikey")
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json=[{"id": "b-1"}])

        async def scenario():
            store = self.make(handler)
            try:
                return await store.select_many(
                    "bookings", {"status": "draft"}, order_by="created_at", descending=True, limit=5
                )
            finally:
                await store.close()

        rows = asyncio.run(scenario())

        assert rows == [{"id": "b-1"}]
        assert seen["url"].path == "/rest/v1/bookings"
        assert seen["url"].params["status"] == "eq.draft"
        assert seen["url"].params["order"] == "created_at.desc"
        assert seen["url"].params["limit"] == "5"
        assert seen["apikey"] == "service-role-key"
        assert seen["auth"] == "Bearer service-role-key"

    def test_insert_returns_representation(self):
        def handler(request):
            assert request.method == "POST"
            assert request.headers["prefer"] == "return=representation"
            return httpx.Response(201, json=[{**json.loads(request.content), "id": "row-1"}])

        async def scenario():
            store = self.make(handler)
            try:
                return await store.insert_single("system_logs", {"message": "hi"})
            finally:
                await store.close()

        assert asyncio.run(scenario()) == {"message": "hi", "id": "row-1"}

    def test_update_with_no_match_returns_none(self):
        def handler(request):
            assert request.method == "PATCH"
            return httpx.Response(200, json=[])

        async def scenario():
            store = self.make(handler)
            try:
                return await store.update_single("bookings", {"id": "b-1"}, {"notes": "x"})
            finally:
                await store.close()

        assert asyncio.run(scenario()) is None

    @pytest.mark.parametrize("status_code,body,error_name", [
        (404, {"code": "42P01", "message": 'relation "public.system_heartbeats" does not exist'}, "TableMissing"),
        (404, {"code": "PGRST205", "message": "Could not find the table"}, "TableMissing"),
        (400, {"code": "PGRST204", "message": "Could not find the 'meta' column"}, "ColumnMissing"),
        (409, {"code": "23505", "message": "duplicate key value"}, "UniqueViolation"),
        (503, {"message": "upstream down"}, "StoreUnavailable"),
    ])
    def test_error_mapping(self, status_code, body, error_name):
        from yono.services import data_store

        def handler(request):
            return httpx.Response(status_code, json=body)

        async def scenario():
            store = self.make(handler)
            try:
                await store.insert_single("system_heartbeats", {"kind": "x"})
            finally:
                await store.close()

        with pytest.raises(getattr(data_store, error_name)):
            asyncio.run(scenario())

    def test_connection_error_is_unavailable(self):
        from yono.services.data_store import StoreUnavailable

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async def scenario():
            store = self.make(handler)
            try:
                await store.select_many("bookings")
            finally:
                await store.close()

        with pytest.raises(StoreUnavailable):
            asyncio.run(scenario())

    def test_not_configured(self):
        from yono.services.data_store import StoreNotConfigured
        from yono.services.supabase_rest import SupabaseRestStore

        with pytest.raises(StoreNotConfigured):
            SupabaseRestStore("", "")


class TestExpiringKeyStore:

    def test_add_is_a_claim(self):
        from yono.utils.expiring_store import ExpiringKeyStore

        keys = ExpiringKeyStore(60)

        assert keys.add("razorpay:evt_1") is True
        assert keys.add("razorpay:evt_1") is False
        assert "razorpay:evt_1" in keys

    def test_keys_expire(self):
        from yono.utils.expiring_store import ExpiringKeyStore

        now = [1000.0]
        keys = ExpiringKeyStore(30, clock=lambda: now[0])
        keys.add("a")
        now[0] += 31

        assert "a" not in keys
        assert len(keys) == 0
        assert keys.add("a") is True

    def test_discard(self):
        from yono.utils.expiring_store import ExpiringKeyStore

        keys = ExpiringKeyStore(30)
        keys.add("a")
        keys.discard("a")
        keys.discard("missing")

        assert keys.add("a") is True
