"""
Webhook Event Ledger

Idempotency lock and audit trail for provider webhooks, keyed by the unique
(provider, event_id) pair.

acquire() outcomes:
- acquired:    we inserted the row in "processing"; this delivery owns the event
- reclaimed:   the row existed as "failed", or as "processing" older than the
               stale window (its process died mid-delivery), and we flipped
               it to a fresh "processing" with a compare-and-set, so a
               redelivery can finish what an earlier attempt could not
- skipped:     the row exists as "processed", or as "processing" and recent;
               do nothing
- unavailable: the ledger could not answer (missing table, timeout, outage);
               the caller proceeds without a lock and relies on the booking
               state machine to reject anything unsafe
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, List, Optional

from .data_store import DataStore, StoreError, UniqueViolation
from ..models.webhook_event import WebhookEventStatus
from ..schemas.webhook import LedgerEntry
from ..utils.db_helpers import now_iso, parse_iso, truncate

logger = logging.getLogger(__name__)

# Upper bound on rows scanned by the admin listing before in-memory search
LIST_SCAN_LIMIT = 500


class LockOutcome(str, Enum):
    ACQUIRED = "acquired"
    RECLAIMED = "reclaimed"
    SKIPPED = "skipped"
    UNAVAILABLE = "unavailable"


@dataclass
class LockResult:
    outcome: LockOutcome
    entry_id: Optional[str] = None
    existing_status: Optional[str] = None
    error: Optional[str] = None

    @property
    def owns_entry(self) -> bool:
        return self.outcome in (LockOutcome.ACQUIRED, LockOutcome.RECLAIMED) and bool(self.entry_id)

    @property
    def should_process(self) -> bool:
        return self.outcome != LockOutcome.SKIPPED


class WebhookLedger:
    TABLE = "webhook_events"

    def __init__(self, store: DataStore, timeout: float = 3.0, stale_after: float = 600.0, clock=None):
        self.store = store
        self.timeout = timeout
        self.stale_after = timedelta(seconds=stale_after)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _is_abandoned(self, row: dict) -> bool:
        updated_at = parse_iso(row.get("updated_at"))
        return updated_at is not None and self.clock() - updated_at >= self.stale_after

    async def acquire(
        self,
        provider: str,
        event_id: str,
        event_type: Optional[str] = None,
        payload: Any = None,
    ) -> LockResult:
        try:
            return await asyncio.wait_for(
                self._acquire(provider, event_id, event_type, payload), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Webhook ledger lock timed out for {provider}:{event_id}")
            return LockResult(LockOutcome.UNAVAILABLE, error="timeout")
        except StoreError as e:
            logger.warning(f"Webhook ledger unavailable for {provider}:{event_id}: {e}")
            return LockResult(LockOutcome.UNAVAILABLE, error=truncate(str(e)))

    async def _acquire(self, provider, event_id, event_type, payload) -> LockResult:
        created_at = now_iso()
        try:
            row = await self.store.insert_single(self.TABLE, {
                "provider": provider,
                "event_id": event_id,
                "event_type": event_type,
                "status": WebhookEventStatus.PROCESSING.value,
                "payload": payload,
                "created_at": created_at,
                "updated_at": created_at,
            })
            return LockResult(LockOutcome.ACQUIRED, entry_id=row.get("id"))
        except UniqueViolation:
            pass

        existing = await self.store.select_single(self.TABLE, {"provider": provider, "event_id": event_id})
        if existing is None:
            # Conflict reported but the row is not visible to us
            return LockResult(LockOutcome.UNAVAILABLE, error="conflicting row not readable")

        status = existing.get("status")
        if status == WebhookEventStatus.FAILED.value or (
            status == WebhookEventStatus.PROCESSING.value and self._is_abandoned(existing)
        ):
            reclaimed = await self.store.update_single(
                self.TABLE,
                {"id": existing["id"], "status": status, "updated_at": existing.get("updated_at")},
                {"status": WebhookEventStatus.PROCESSING.value, "error": None, "updated_at": now_iso()},
            )
            if reclaimed is not None:
                logger.info(f"Re-claimed {status} webhook event {provider}:{event_id}")
                return LockResult(LockOutcome.RECLAIMED, entry_id=existing["id"], existing_status=status)
            status = WebhookEventStatus.PROCESSING.value

        logger.info(f"Duplicate webhook {provider}:{event_id} ({status}), skipping")
        return LockResult(LockOutcome.SKIPPED, entry_id=existing.get("id"), existing_status=status)

    async def _finish(self, lock: LockResult, patch: dict) -> None:
        if not lock.owns_entry:
            return
        patch["updated_at"] = now_iso()
        try:
            await asyncio.wait_for(
                self.store.update_single(self.TABLE, {"id": lock.entry_id}, patch), timeout=self.timeout
            )
        except (asyncio.TimeoutError, StoreError) as e:
            logger.warning(f"Could not mark webhook event {lock.entry_id} as {patch.get('status')}: {e!r}")

    async def mark_processed(
        self,
        lock: LockResult,
        booking_id: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> None:
        await self._finish(lock, {
            "status": WebhookEventStatus.PROCESSED.value,
            "booking_id": booking_id,
            "payment_id": payment_id,
            "error": None,
        })

    async def mark_failed(self, lock: LockResult, error: str, booking_id: Optional[str] = None) -> None:
        patch = {"status": WebhookEventStatus.FAILED.value, "error": truncate(error or "Unknown error")}
        if booking_id:
            patch["booking_id"] = booking_id
        await self._finish(lock, patch)

    async def get_entry(self, provider: str, event_id: str) -> Optional[LedgerEntry]:
        row = await self.store.select_single(self.TABLE, {"provider": provider, "event_id": event_id})
        return LedgerEntry.from_row(row) if row else None

    async def list_events(
        self,
        provider: Optional[str] = None,
        status: Optional[str] = None,
        booking_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        event_type: Optional[str] = None,
        q: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple:
        """Newest first. Returns (entries, total matching)."""
        filters = {}
        if provider and provider != "all":
            filters["provider"] = provider.lower()
        if status and status != "all":
            filters["status"] = status.lower()
        if booking_id:
            filters["booking_id"] = booking_id
        if payment_id:
            filters["payment_id"] = payment_id

        rows = await self.store.select_many(
            self.TABLE, filters, order_by="created_at", descending=True, limit=LIST_SCAN_LIMIT
        )
        entries: List[LedgerEntry] = [LedgerEntry.from_row(row) for row in rows]

        if event_type:
            needle = event_type.lower()
            entries = [entry for entry in entries if needle in (entry.event_type or "").lower()]
        if q:
            needle = q.lower()
            entries = [
                entry for entry in entries
                if needle in " ".join(
                    str(value or "").lower()
                    for value in (
                        entry.id, entry.provider, entry.event_id, entry.event_type,
                        entry.status, entry.booking_id, entry.payment_id,
                    )
                )
            ]

        return entries[offset:offset + limit], len(entries)
