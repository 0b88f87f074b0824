"""
System Health Report

Answers "is the money path alive?" for the admin dashboard:
- when the last payment webhook and the last automation retry run happened
  (system_heartbeats, or the heartbeat lines in system_logs where that table
  does not exist)
- webhook ledger and automation failure counts over the last 24 hours

Every read is best-effort: a missing table reads as "no data".
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .data_store import DataStore, StoreError
from ..utils.db_helpers import parse_iso

logger = logging.getLogger(__name__)

# Heartbeats written as system log lines are found by scanning this many recent rows
LOG_SCAN_LIMIT = 50
COUNT_SCAN_LIMIT = 1000


@dataclass
class SystemHealthReport:
    last_payment_webhook_at: Optional[str] = None
    last_cron_retry_at: Optional[str] = None
    failures_24h: int = 0
    webhook_events_24h: int = 0
    webhook_failed_24h: int = 0
    integration_status: Dict[str, str] = field(default_factory=dict)
    generated_at: Optional[str] = None


def freshness(value: Optional[str], stale_minutes: int, now: datetime) -> str:
    parsed = parse_iso(value)
    if parsed is None:
        return "unknown"
    return "stale" if now - parsed > timedelta(minutes=stale_minutes) else "ok"


class SystemHealthService:
    def __init__(self, store: DataStore, stale_minutes: int = 60):
        self.store = store
        self.stale_minutes = stale_minutes

    async def _safe_select(self, table: str, filters: Optional[dict] = None, **kwargs) -> List[Dict[str, Any]]:
        try:
            return await self.store.select_many(table, filters, **kwargs)
        except StoreError as e:
            logger.debug(f"Health read from {table} failed: {e}")
            return []

    async def latest_heartbeat(self, kind: str) -> Optional[str]:
        rows = await self._safe_select(
            "system_heartbeats", {"kind": kind}, order_by="created_at", descending=True, limit=1
        )
        if rows and rows[0].get("created_at"):
            return rows[0]["created_at"]

        rows = await self._safe_select(
            "system_logs",
            {"event": "heartbeat", "message": kind},
            order_by="created_at",
            descending=True,
            limit=1,
        )
        if rows and rows[0].get("created_at"):
            return rows[0]["created_at"]

        # Degraded system_logs layouts may lack the event column
        rows = await self._safe_select("system_logs", order_by="created_at", descending=True, limit=LOG_SCAN_LIMIT)
        for row in rows:
            if str(row.get("event") or "").lower() == "heartbeat" and row.get("message") == kind:
                return row.get("created_at")
        return None

    async def _count_since(self, table: str, since: str, extra: Optional[dict] = None) -> int:
        filters = {"created_at": ("gte", since)}
        filters.update(extra or {})
        return len(await self._safe_select(table, filters, limit=COUNT_SCAN_LIMIT))

    async def report(self) -> SystemHealthReport:
        now = datetime.now(timezone.utc)
        since = (now - timedelta(hours=24)).isoformat(timespec="milliseconds").replace("+00:00", "Z")

        last_webhook = await self.latest_heartbeat("payment_webhook")
        last_retry = await self.latest_heartbeat("cron_retry")

        failures = (
            await self._count_since("automation_failures", since)
            + await self._count_since("event_failures", since)
        )

        return SystemHealthReport(
            last_payment_webhook_at=last_webhook,
            last_cron_retry_at=last_retry,
            failures_24h=failures,
            webhook_events_24h=await self._count_since("webhook_events", since),
            webhook_failed_24h=await self._count_since("webhook_events", since, {"status": "failed"}),
            integration_status={
                "payment_webhook": freshness(last_webhook, self.stale_minutes, now),
                "cron_retry": freshness(last_retry, self.stale_minutes, now),
            },
            generated_at=now.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        )
